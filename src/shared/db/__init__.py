"""Shared database utilities."""

from .connection import SupabaseConfig, execute_async, get_supabase_client

__all__ = ["get_supabase_client", "SupabaseConfig", "execute_async"]
