# ─────────────────────────────────────────────────────────────────────────────
# Settings: Pydantic v2 BaseSettings
# ─────────────────────────────────────────────────────────────────────────────


from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server and worker configuration sourced from environment variables.

    Uses pydantic-settings v2 (separate package from pydantic).
    The same Settings object configures the FastAPI process and the
    Celery worker process, so both agree on key layout and TTLs.
    """

    model_config = SettingsConfigDict(env_prefix="", env_file=".env")

    # ── Provider (Gemini generateContent) ────────────────────────────────────
    gemini_api_key: SecretStr = SecretStr("")
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_vector_model: str = "gemini-2.0-flash-exp"
    gemini_image_model: str = "gemini-2.5-flash-image"
    vector_contract: Literal["outline", "dual"] = "dual"
    provider_connect_timeout_seconds: float = 10.0
    provider_read_timeout_seconds: float = 180.0

    # ── Storage ──────────────────────────────────────────────────────────────
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_namespace: str = "improve_sketch"
    cache_schema_version: int = 2
    cache_ttl_seconds: int = 7 * 24 * 3600  # days-scale
    job_ttl_seconds: int = 3600  # hours-scale, shorter than the cache

    # ── Background jobs (Celery) ─────────────────────────────────────────────
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_task_always_eager: bool = False
    worker_concurrency: int = 4
    job_max_attempts: int = 3
    job_retry_backoff_seconds: int = 2
    job_retry_backoff_max_seconds: int = 120
    job_time_limit_seconds: int = 300

    # ── Outline reconstruction ───────────────────────────────────────────────
    curve_samples: int = 12
    outline_auto_close: bool = True
    bevel_segments: int = 2
    max_depth: float = 10.0
    max_bevel: float = 1.0

    # ── HTTP surface ─────────────────────────────────────────────────────────
    port: int = 8080
    allowed_origins: str = ""
    enable_debug_routes: bool = True
    submit_rate_limit: str = "30/minute"
    max_artifact_bytes: int = 8 * 1024 * 1024

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()
