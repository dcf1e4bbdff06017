"""Database clients and utilities."""

from .supabase import DatabaseUnavailableError, get_supabase_client, require_supabase_client

__all__ = ["DatabaseUnavailableError", "get_supabase_client", "require_supabase_client"]
