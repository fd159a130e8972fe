"""Configuration settings for the content jobs service."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    DATABASE_URL: str

    # LLM Configuration
    LLM_PROVIDER: str = "openai"  # openai or anthropic

    # OpenAI
    OPENAI_API_KEY: str
    OPENAI_MODEL: str = "gpt-5"
    OPENAI_MINI_MODEL: str = "gpt-5-mini"

    # Anthropic (optional)
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-4-5-sonnet"
    ANTHROPIC_MINI_MODEL: str = "claude-4-5-haiku"

    # Job queue
    JOB_STORE_BACKEND: str = "postgres"  # postgres or memory
    JOB_RETRY_BUDGET: int = 3
    JOB_RETRY_DELAY_SECONDS: float = 5.0
    JOB_LEASE_SECONDS: float = 300.0
    GENERATION_TIMEOUT_SECONDS: float = 120.0

    # Dispatch
    DISPATCH_MODE: str = "pool"  # pool or tasks
    RUN_WORKER_POOL: bool = False
    WORKER_CONCURRENCY: int = 4
    WORKER_POLL_SECONDS: float = 1.0
    SWEEP_INTERVAL_SECONDS: float = 30.0

    # GCP Cloud Tasks (only used when DISPATCH_MODE=tasks in production)
    GCS_PROJECT_ID: str = ""
    CLOUD_TASKS_LOCATION: str = "us-central1"
    CLOUD_TASKS_QUEUE: str = "content-jobs"

    # Service Configuration
    AI_SERVICE_URL: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"  # Frontend URL for CORS
    ENVIRONMENT: str = "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.ENVIRONMENT == "development"


# Global settings instance
settings = Settings()
