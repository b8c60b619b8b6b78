import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment == "development":
        return "postgresql+psycopg://localhost:5434/sharegate"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv(
        "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
    )
    outbox_drain_interval_seconds: int = int(
        os.getenv("OUTBOX_DRAIN_INTERVAL_SECONDS", "60")
    )
    outbox_max_attempts: int = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))

    # Approval expiry sweeper
    approval_sweeper_enabled: bool = _env_bool("APPROVAL_SWEEPER_ENABLED", "true")
    approval_sweep_interval_seconds: int = int(
        os.getenv("APPROVAL_SWEEP_INTERVAL_SECONDS", "1800")
    )  # 30 min
    approval_sweep_max_failures: int = int(
        os.getenv("APPROVAL_SWEEP_MAX_FAILURES", "5")
    )
    approval_sweep_cooldown_seconds: int = int(
        os.getenv("APPROVAL_SWEEP_COOLDOWN_SECONDS", "1800")
    )
    approval_sweep_max_backoff_seconds: int = int(
        os.getenv("APPROVAL_SWEEP_MAX_BACKOFF_SECONDS", "960")
    )  # 16 min
    approval_settings_cache_ttl_seconds: float = float(
        os.getenv("APPROVAL_SETTINGS_CACHE_TTL_SECONDS", "30")
    )

    # Public share links
    public_viewer_base_url: str = os.getenv(
        "PUBLIC_VIEWER_BASE_URL", "http://localhost:8000"
    )

    # SMTP
    smtp_host: str = os.getenv("SMTP_HOST", "")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: str = os.getenv("SMTP_USERNAME", "")
    smtp_password: str = os.getenv("SMTP_PASSWORD", "")
    smtp_use_tls: bool = _env_bool("SMTP_USE_TLS", "true")
    smtp_from_address: str = os.getenv("SMTP_FROM_ADDRESS", "no-reply@sharegate.local")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_format: str = os.getenv("LOG_FORMAT", "plain")

    # Branding
    brand_name: str = os.getenv("BRAND_NAME", "ShareGate")
    brand_tagline: str = os.getenv("BRAND_TAGLINE", "Approved document sharing")


settings = Settings()
