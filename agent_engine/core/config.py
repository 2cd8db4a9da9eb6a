"""Application configuration."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Environment
    env: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    # Default uses local socket connection with trust auth
    database_url: str = os.getenv(
        "DATABASE_URL", "postgresql:///agentengine?user=postgres"
    )

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379")
    queue_enabled: bool = _env_bool("QUEUE_ENABLED", "true")
    queue_connect_retries: int = int(os.getenv("QUEUE_CONNECT_RETRIES", "1"))

    # Worker
    agent_worker_concurrency: int = int(os.getenv("AGENT_WORKER_CONCURRENCY", "5"))
    agent_job_attempts: int = int(os.getenv("AGENT_JOB_ATTEMPTS", "3"))
    agent_job_backoff: int = int(os.getenv("AGENT_JOB_BACKOFF", "5"))  # seconds

    # Admission: job starts allowed per window, shared by every worker
    agent_admission_limit: int = int(os.getenv("AGENT_ADMISSION_LIMIT", "10"))
    agent_admission_window: int = int(os.getenv("AGENT_ADMISSION_WINDOW", "60"))

    # Cost ceilings (credits)
    agent_max_credits_per_step: int = int(
        os.getenv("AGENT_MAX_CREDITS_PER_STEP", "1000")
    )
    agent_max_credits_per_task: int = int(
        os.getenv("AGENT_MAX_CREDITS_PER_TASK", "10000")
    )
    agent_cost_warning_threshold: float = float(
        os.getenv("AGENT_COST_WARNING_THRESHOLD", "0.8")
    )

    # Models
    agent_default_model: str = os.getenv(
        "AGENT_DEFAULT_MODEL", "claude-sonnet-4-5-20250929"
    )
    agent_reasoning_model: str = os.getenv(
        "AGENT_REASONING_MODEL", "claude-haiku-4-5-20251001"
    )
    agent_planning_max_tokens: int = int(os.getenv("AGENT_PLANNING_MAX_TOKENS", "4096"))
    agent_reasoning_max_tokens: int = int(os.getenv("AGENT_REASONING_MAX_TOKENS", "200"))
    llm_api_key: str | None = os.getenv("LLM_API_KEY")
    llm_api_base: str | None = os.getenv("LLM_API_BASE")

    # Executor (in seconds)
    agent_step_retry_delay: float = float(os.getenv("AGENT_STEP_RETRY_DELAY", "1.0"))
    agent_approval_timeout: float = float(os.getenv("AGENT_APPROVAL_TIMEOUT", "300"))
    agent_approval_poll_interval: float = float(
        os.getenv("AGENT_APPROVAL_POLL_INTERVAL", "2.0")
    )

    # Tools
    http_tool_timeout: float = float(os.getenv("HTTP_TOOL_TIMEOUT", "15"))


settings = Settings()
