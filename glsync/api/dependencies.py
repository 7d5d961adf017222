from functools import lru_cache

from ..database.supabase_client import SupabaseClient


@lru_cache(maxsize=1)
def get_supabase() -> SupabaseClient:
    """Shared Supabase client for request handlers"""
    return SupabaseClient()
