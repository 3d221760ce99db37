"""Database clients for the writing style engine."""

from writing_style.db.style_store import StyleProfileStore, SupabaseStyleProfileStore
from writing_style.db.supabase import SupabaseClient, get_supabase_client

__all__ = [
    "StyleProfileStore",
    "SupabaseClient",
    "SupabaseStyleProfileStore",
    "get_supabase_client",
]
