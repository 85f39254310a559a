from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

from skillswap.utils.env_helper import (
    env_bool,
    env_float,
    env_list,
    env_none_or_str,
)

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:8080",
]


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    jwt_secret: Optional[str] = None

    cors_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_ORIGINS))

    # Reconciliation poll period for an open conversation feed
    poll_interval_seconds: float = Field(default=3.0, gt=0)
    attachments_bucket: str = "message-attachments"

    log_level: str = "INFO"
    log_json: bool = False

    @property
    def jwt_issuer(self) -> Optional[str]:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url.rstrip('/')}/auth/v1"


def load_settings() -> Settings:
    return Settings(
        supabase_url=env_none_or_str("PUBLIC_SUPABASE_URL"),
        supabase_key=env_none_or_str("SECRET_API_KEY"),
        jwt_secret=env_none_or_str("SUPABASE_JWT_SECRET"),
        cors_origins=env_list("CORS_ORIGINS", DEFAULT_ORIGINS),
        poll_interval_seconds=env_float("POLL_INTERVAL_SECONDS", 3.0),
        attachments_bucket=env_none_or_str(
            "ATTACHMENTS_BUCKET", "message-attachments"
        ),
        log_level=env_none_or_str("LOG_LEVEL", "INFO"),
        log_json=env_bool("LOG_JSON"),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
