import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment in {"development", "test"}:
        return "postgresql+psycopg://localhost:5434/feedback_notify"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Background jobs
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv(
        "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
    )
    celery_task_always_eager: bool = (
        os.getenv("CELERY_TASK_ALWAYS_EAGER", "").strip().lower() in {"1", "true", "yes"}
    )

    # Portal links
    portal_base_url: str = os.getenv("PORTAL_BASE_URL", "").rstrip("/")
    app_domain: str = os.getenv("APP_DOMAIN", "feedback.localhost")

    # Secrets at rest (Fernet key, urlsafe base64)
    secrets_key: str = os.getenv("SECRETS_KEY", "")

    # Hook execution
    hook_timeout_seconds: float = float(os.getenv("HOOK_TIMEOUT_SECONDS", "5"))
    hook_max_attempts: int = int(os.getenv("HOOK_MAX_ATTEMPTS", "3"))
    webhook_max_failures: int = int(os.getenv("WEBHOOK_MAX_FAILURES", "50"))

    # Subscriptions
    unsubscribe_token_ttl_days: int = int(os.getenv("UNSUBSCRIBE_TOKEN_TTL_DAYS", "30"))

    # Outbound email
    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_user: str = os.getenv("SMTP_USER", "")
    smtp_password: str = os.getenv("SMTP_PASSWORD", "")
    smtp_from_email: str = os.getenv("SMTP_FROM_EMAIL", "notifications@feedback.localhost")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "json")

    # Branding
    brand_name: str = os.getenv("BRAND_NAME", "Feedback Hub")


settings = Settings()
