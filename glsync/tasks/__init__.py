"""Database maintenance helpers for glsync."""

from .maintenance import apply_schema, count_orphaned_references  # noqa: F401

__all__ = [
    "apply_schema",
    "count_orphaned_references",
]
