"""
Configuration management using pydantic-settings.
Loads from environment variables and ~/.env.local
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(Path.home() / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8010
    debug: bool = False
    log_level: str = "INFO"

    # Database
    notehub_db_url: str = "postgresql://localhost/notehub"

    # Redis (model configuration, pending question mirror)
    notehub_redis_url: str = "redis://localhost:6379/3"

    # CORS
    cors_origins: str = "http://localhost:3010"  # Comma-separated

    # LLM proxy (OpenAI-compatible chat completions)
    llm_proxy_url: str = "http://localhost:3400/api/v1/chat/completions"
    llm_service_id: str = "note-hub"
    llm_default_model: str = ""  # Last resort; empty means "no model" and fails loudly
    llm_timeout_seconds: float = 120.0
    model_config_key: str = "notehub:model_config"

    # Token budget
    default_context_tokens: int = 128000
    token_safety_margin: int = 500  # Anticipated size of the next tool result
    token_wind_down_percent: int = 80
    token_abort_percent: int = 100

    # Agent loop limits
    max_iterations: int = 100
    task_extraction_max_iterations: int = 50
    max_model_attempts: int = 3
    retry_backoff_seconds: float = 1.0  # Linear: attempt n waits n * backoff
    max_protocol_violations: int = 3
    ask_user_timeout_seconds: float = 180.0

    # Worker pool
    max_concurrent_requests: int = 20
    max_queue_size: int = 1000

    # Note store (tool executor backend)
    note_store_url: str = "http://localhost:8011"
    note_store_timeout_seconds: float = 30.0

    # Secondary loop
    task_extraction_enabled: bool = True

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def llm_models_url(self) -> str:
        """Model discovery endpoint derived from the proxy URL."""
        base = self.llm_proxy_url.rstrip("/")
        for suffix in ("/chat/completions", "/v1"):
            if base.endswith(suffix):
                base = base[: -len(suffix)]
        return f"{base}/v1/models"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
