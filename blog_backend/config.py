"""
Configuration and settings for the blog backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Directus CMS
    directus_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "directus_url", "DIRECTUS_URL", "NEXT_PUBLIC_DIRECTUS_URL"
        ),
    )
    directus_api_token: Optional[str] = Field(default=None)
    directus_timeout: float = Field(default=10.0)

    # S3-compatible storage (Cloudflare R2)
    r2_endpoint: Optional[str] = Field(default=None)
    r2_access_key: Optional[str] = Field(default=None)
    r2_secret_key: Optional[str] = Field(default=None)
    r2_bucket: str = Field(default="cms-assets")

    site_url: str = Field(default="http://localhost:3000")

    # Threads integration
    threads_app_id: Optional[str] = Field(default=None)
    threads_long_lived_token: Optional[str] = Field(default=None)
    threads_user_id: Optional[str] = Field(default=None)
    threads_redirect_uri: Optional[str] = Field(default=None)

    # Query cache (Redis is optional; the default is process-local)
    redis_url: Optional[str] = Field(default=None)
    redis_cache_prefix: str = Field(default="blog:cache")

    # Shared secret for the CMS webhook that evicts cache tags
    revalidate_secret: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
