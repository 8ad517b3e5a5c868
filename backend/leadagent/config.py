"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadagent:leadagent123@db:5432/leadagent"

    # External providers
    LEAD_SEARCH_URL: str = "http://localhost:3000/api/lead-search"
    ENRICHMENT_URL: str = "http://localhost:3000/api/opportunities/enrich-apollo"
    PROVIDER_TIMEOUT_SECONDS: float = 60.0

    # Task engine
    TASK_BATCH_SIZE: int = 5
    MAX_TASK_RETRIES: int = 3

    # Scheduler
    ENABLE_SCHEDULER: bool = True
    AGENT_SCHEDULE_MINUTES: int = 1

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
