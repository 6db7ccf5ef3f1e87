"""Central configuration for the embedding subsystem."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration loaded from environment variables.

    All fields are optional - validation happens when services are actually used.
    Without GEMINI_API_KEY the embedding service runs in degraded mode and
    produces placeholder vectors.

    Environment variables:
        GEMINI_API_KEY: Embedding provider credential
        EMBEDDING_PROVIDER: litellm provider prefix (default: "gemini")
        EMBEDDING_MODEL: Embedding model name, also the stored model tag
            (default: "text-embedding-004")
        EMBEDDING_DIMENSION: Expected vector length (default: 768)
        EMBEDDING_AUTO_MIGRATE: Check model consistency on startup (default: true)
        MIGRATION_BATCH_SIZE / MIGRATION_BATCH_DELAY: Sweep batching
        SEARCH_CACHE_SIZE / SEARCH_CACHE_TTL: Result cache bounds
        LANGFUSE_PUBLIC_KEY / LANGFUSE_SECRET_KEY / LANGFUSE_HOST: Optional tracing

    Example (.env file):
        GEMINI_API_KEY=...
        EMBEDDING_MODEL=text-embedding-004
        EMBEDDING_AUTO_MIGRATE=false

        settings = Settings()
    """

    # Embedding provider
    gemini_api_key: str | None = None
    embedding_provider: str = "gemini"
    embedding_model: str = "text-embedding-004"
    embedding_dimension: int = Field(default=768, gt=0)
    embedding_max_text_length: int = Field(default=8000, gt=0)
    embedding_max_retries: int = Field(default=3, ge=1)
    embedding_retry_base_delay: float = Field(default=1.0, ge=0.0)
    embedding_request_timeout: float = Field(default=30.0, gt=0.0)
    embedding_cache_size: int = Field(default=1000, ge=1)
    embedding_batch_delay: float = Field(default=0.5, ge=0.0)

    # Migration
    embedding_auto_migrate: bool = True
    migration_batch_size: int = Field(default=5, ge=1)
    migration_batch_delay: float = Field(default=1.0, ge=0.0)
    migration_placeholder_fallback: bool = True

    # Search result cache
    search_cache_size: int = Field(default=500, ge=1)
    search_cache_ttl: float = Field(default=300.0, gt=0.0)

    # Langfuse (LLM observability)
    langfuse_public_key: str | None = None
    langfuse_secret_key: str | None = None
    langfuse_host: str = "https://cloud.langfuse.com"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )
