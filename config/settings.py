"""Pydantic Settings — typed configuration with .env auto-loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Record Store ──────────────────────────────────────────
    record_store_type: str = "memory"  # "memory", "redis" or "remote"

    # ── Redis (local indexed store) ──────────────────────────
    redis_url: str = ""  # e.g. redis://localhost:6379/0
    redis_key_prefix: str = "classwork:"

    # ── Remote (PostgREST-compatible REST API) ───────────────
    remote_base_url: str = ""  # e.g. https://<project>.supabase.co/rest/v1
    remote_api_key: str = ""
    remote_timeout: int = 15  # seconds
    remote_schema: str = ""  # Accept-Profile / Content-Profile header when set

    # Collection → table mapping on the remote backend
    remote_table_work_items: str = "work_items"
    remote_table_students: str = "students"
    remote_table_submissions: str = "submissions"

    # ── Helpers ───────────────────────────────────────────────

    def remote_tables(self) -> dict[str, str]:
        """Map engine collection names to remote table names."""
        return {
            "workItems": self.remote_table_work_items,
            "students": self.remote_table_students,
            "submissions": self.remote_table_submissions,
        }


@lru_cache
def get_settings() -> Settings:
    """Singleton accessor for engine settings."""
    return Settings()
