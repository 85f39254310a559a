from functools import lru_cache

from supabase import create_client, Client

from skillswap.core.config import get_settings


@lru_cache
def get_supabase() -> Client:
    settings = get_settings()

    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError(
            "PUBLIC_SUPABASE_URL and SECRET_API_KEY must be set to reach Supabase."
        )

    return create_client(settings.supabase_url, settings.supabase_key)
