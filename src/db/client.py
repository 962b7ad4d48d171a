"""Supabase client initialization."""

from supabase import Client, create_client

from src.config import Settings, get_settings


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Service-role client; row access is scoped by owner in the repositories."""
    settings = settings or get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_key)
