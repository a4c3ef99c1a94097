from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from wellness_os.errors import ConfigurationError

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres (enrollments, protocols, user state, memories, timeline, audit)
    DATABASE_URL: str | None = None

    # Redis (per-user locks)
    REDIS_URL: str | None = None
    USER_LOCK_TTL_SECONDS: int = 120
    USER_LOCK_WAIT_SECONDS: float = 10.0

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_COMPLETION_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    OPENAI_TIMEOUT_SECONDS: float = 30.0
    OPENAI_MAX_TOKENS: int = 220
    SAFETY_USE_MODERATION: bool = False

    # Vector index (protocol retrieval)
    VECTOR_INDEX_HOST: str | None = None
    VECTOR_INDEX_API_KEY: str | None = None
    VECTOR_INDEX_NAMESPACE: str | None = None
    VECTOR_SEARCH_TIMEOUT_SECONDS: float = 10.0

    # =================================================================
    # JOB TUNABLES
    # =================================================================
    NUDGE_MAX_CONCURRENT_USERS: int = 10
    NUDGE_USER_TIMEOUT_SECONDS: float = 45.0
    NUDGE_MEMORY_LIMIT: int = 10
    NUDGE_CANDIDATE_TOP_K: int = 5
    NUDGE_MAX_USERS_PER_RUN: int = 5000
    SCHEDULE_WRITE_BATCH_SIZE: int = 400
    SCHEDULE_DEFAULT_DURATION_MINUTES: int = 10

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def require(self, *names: str) -> None:
        """
        Fail fast when a job is started without the credentials it needs.

        Raises:
            ConfigurationError: listing every missing setting
        """
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}", missing=missing
            )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Batch jobs hold few long queries, so development stays small.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 4, "timeout": 15.0})

        return config


def load_settings() -> Settings:
    """Build settings once per process; jobs receive them through the job context."""
    return Settings()
