"""
Supabase client for backend operations
"""
from typing import Optional

from supabase import create_client, Client

from agentic_tutor_pipeline.config import PipelineSettings

_supabase_client: Optional[Client] = None


def get_supabase_client(settings: Optional[PipelineSettings] = None) -> Client:
    """Get or create the Supabase client (service role) for this process"""
    global _supabase_client

    if _supabase_client is None:
        settings = settings or PipelineSettings.from_env()

        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set in environment")

        _supabase_client = create_client(settings.supabase_url, settings.supabase_service_key)

    return _supabase_client
