"""Backend utilities"""
from .supabase_client import get_supabase_client
from .auth import SupabaseIdentityVerifier

__all__ = ["get_supabase_client", "SupabaseIdentityVerifier"]
