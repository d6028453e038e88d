from supabase import create_client, Client
from functools import lru_cache
from listing_studio.config import get_settings


@lru_cache()
def get_supabase_client() -> Client:
    """
    Get Supabase client instance (cached).

    Used for resolving user sessions.

    Returns:
        Client: Supabase client instance
    """
    settings = get_settings()
    supabase: Client = create_client(
        supabase_url=settings.supabase_url,
        supabase_key=settings.supabase_key
    )
    return supabase


@lru_cache()
def get_supabase_admin_client() -> Client:
    """
    Get Supabase admin client with service role key (cached).

    Repositories use this client: ownership is enforced by the service layer,
    and the credit functions must run regardless of row level security.

    Returns:
        Client: Supabase admin client instance
    """
    settings = get_settings()
    supabase: Client = create_client(
        supabase_url=settings.supabase_url,
        supabase_key=settings.supabase_service_key
    )
    return supabase
