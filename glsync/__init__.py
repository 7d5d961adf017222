"""
glsync - Glide to Supabase table synchronization engine
"""

__version__ = "1.0.0"
__author__ = "glsync Team"

from .core.glide_client import GlideClient, GlideApiError

__all__ = [
    "GlideClient",
    "GlideApiError",
]
