"""Application settings and configuration.

This module defines all configuration options for the Comment Sentry service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Comment Sentry", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./comment_sentry.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Remote platform (Graph-style API) client
    platform_enabled: bool = Field(default=True, alias="PLATFORM_ENABLED")
    platform_api_base_url: str = Field(
        default="https://graph.facebook.com/v19.0",
        alias="PLATFORM_API_BASE_URL",
    )
    platform_http_timeout_seconds: float = Field(
        default=15.0,
        alias="PLATFORM_HTTP_TIMEOUT_SECONDS",
    )
    platform_max_retries: int = Field(default=3, alias="PLATFORM_MAX_RETRIES")
    platform_retry_initial_delay_seconds: float = Field(
        default=1.0,
        alias="PLATFORM_RETRY_INITIAL_DELAY_SECONDS",
    )
    platform_retry_max_delay_seconds: float = Field(
        default=10.0,
        alias="PLATFORM_RETRY_MAX_DELAY_SECONDS",
    )
    platform_retry_multiplier: float = Field(default=2.0, alias="PLATFORM_RETRY_MULTIPLIER")
    platform_comment_page_size: int = Field(default=50, alias="PLATFORM_COMMENT_PAGE_SIZE")

    # LLM classification (Groq)
    groq_api_key: str | None = Field(default=None, alias="GROQ_API_KEY")
    classification_model: str = Field(
        default="openai/gpt-oss-120b",
        alias="CLASSIFICATION_MODEL",
    )
    classification_temperature: float = Field(default=0.1, alias="CLASSIFICATION_TEMPERATURE")
    classification_max_input_chars: int = Field(
        default=5000,
        alias="CLASSIFICATION_MAX_INPUT_CHARS",
    )
    classification_max_retries: int = Field(default=2, alias="CLASSIFICATION_MAX_RETRIES")
    classification_retry_step_seconds: float = Field(
        default=0.5,
        alias="CLASSIFICATION_RETRY_STEP_SECONDS",
    )

    # Embeddings (Jina)
    jina_api_key: str | None = Field(default=None, alias="JINA_API_KEY")
    embedding_base_url: str = Field(default="https://api.jina.ai", alias="EMBEDDING_BASE_URL")
    embedding_model: str = Field(default="jina-embeddings-v3", alias="EMBEDDING_MODEL")
    embedding_task: str = Field(default="text-matching", alias="EMBEDDING_TASK")
    embedding_batch_size: int = Field(default=50, alias="EMBEDDING_BATCH_SIZE")
    embedding_http_timeout_seconds: float = Field(
        default=30.0,
        alias="EMBEDDING_HTTP_TIMEOUT_SECONDS",
    )

    # Similarity and precedent matching
    similarity_hint_floor: float = Field(default=0.5, alias="SIMILARITY_HINT_FLOOR")
    similarity_sample_size: int = Field(default=1000, alias="SIMILARITY_SAMPLE_SIZE")
    similarity_days_back: int = Field(default=30, alias="SIMILARITY_DAYS_BACK")
    review_similarity_threshold: float = Field(
        default=0.6,
        alias="REVIEW_SIMILARITY_THRESHOLD",
    )

    # Scheduler
    scheduler_enabled: bool = Field(default=False, alias="SCHEDULER_ENABLED")
    poll_enabled: bool = Field(default=True, alias="POLL_CRON_ENABLED")
    poll_interval_seconds: float = Field(default=60.0, alias="POLL_INTERVAL_SECONDS")
    hybrid_fetch_limit: int = Field(default=25, alias="HYBRID_FETCH_LIMIT")
    deep_check_limit: int = Field(default=20, alias="HYBRID_DEEP_CHECK_LIMIT")
    deep_sync_enabled: bool = Field(default=True, alias="DEEP_SYNC_ENABLED")
    deep_sync_post_limit: int = Field(default=500, alias="DEEP_SYNC_POST_LIMIT")
    deep_sync_hour: int = Field(default=3, alias="DEEP_SYNC_HOUR")
    follower_tracking_enabled: bool = Field(default=True, alias="FOLLOWER_TRACKING_ENABLED")
    follower_tracking_interval_seconds: float = Field(
        default=3600.0,
        alias="FOLLOWER_TRACKING_INTERVAL_SECONDS",
    )
    heavy_pool_size: int = Field(default=5, alias="ACCOUNT_CONCURRENCY")
    deep_pool_size: int = Field(default=2, alias="DEEP_SYNC_CONCURRENCY")
    light_pool_size: int = Field(default=10, alias="FOLLOWER_TRACKING_CONCURRENCY")

    # Classification queue
    queue_concurrency: int = Field(default=15, alias="QUEUE_CONCURRENCY")
    queue_max_attempts: int = Field(default=3, alias="QUEUE_MAX_ATTEMPTS")
    queue_retry_delay_seconds: float = Field(default=1.0, alias="QUEUE_RETRY_DELAY_SECONDS")

    # CORS configuration for the review dashboard
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.

        Returns:
            Database URL compatible with synchronous database drivers
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def effective_poll_interval(self) -> float:
        """Poll interval in seconds, never below ten seconds."""
        return max(10.0, float(self.poll_interval_seconds))

    @property
    def effective_follower_interval(self) -> float:
        """Follower tracking interval in seconds, never below one minute."""
        return max(60.0, float(self.follower_tracking_interval_seconds))

    @property
    def effective_queue_concurrency(self) -> int:
        """Classification worker count clamped to [1, 100]."""
        return min(100, max(1, self.queue_concurrency))


settings = Settings()  # type: ignore[call-arg]
