import logging
from functools import lru_cache

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

SANDBOX_KEY_PREFIX = "test_"
VALID_STEDI_MODES = {"", "live", "sandbox"}


class Settings(BaseSettings):
    DATABASE_URL: str = "postgresql+asyncpg://postgres:postgres@db:5432/dental_edi"
    DATABASE_URL_SYNC: str = "postgresql+psycopg2://postgres:postgres@db:5432/dental_edi"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Clearinghouse - Stedi
    STEDI_API_KEY: str = ""
    STEDI_BASE_URL: str = "https://healthcare.us.stedi.com/2024-04-01"
    # "live", "sandbox", or empty to derive from the key
    STEDI_MODE: str = ""
    STEDI_TIMEOUT_SECONDS: float = 15.0
    STEDI_MAX_RETRIES: int = 3
    STEDI_RETRY_BACKOFF_SECONDS: float = 1.0

    # Requesting provider used on eligibility inquiries
    PROVIDER_NPI: str = "1999999984"
    PROVIDER_ORGANIZATION_NAME: str = "Dental Practice"

    # ERA polling watermark when the caller supplies none
    ERA_POLL_LOOKBACK_HOURS: int = 24

    # Database connection pool (tune per environment via env vars)
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    model_config = {"env_file": "../.env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()

    mode = settings.STEDI_MODE.strip().lower()
    if mode not in VALID_STEDI_MODES:
        raise RuntimeError(
            f"FATAL: STEDI_MODE must be 'live', 'sandbox' or empty, got '{settings.STEDI_MODE}'."
        )

    if mode == "live" and not settings.STEDI_API_KEY:
        raise RuntimeError(
            "FATAL: STEDI_MODE is 'live' but STEDI_API_KEY is not set. "
            "Configure a production Stedi key or switch to sandbox mode."
        )

    # A sandbox key in production would silently replace real payer answers
    # with canned benefits and mock remittances.
    if settings.APP_ENV == "production":
        if settings.STEDI_API_KEY.startswith(SANDBOX_KEY_PREFIX) or mode == "sandbox":
            raise RuntimeError(
                "FATAL: Stedi is in sandbox mode in production. "
                "Set a production STEDI_API_KEY and STEDI_MODE=live."
            )
        if not settings.STEDI_API_KEY:
            logger.warning(
                "STEDI_API_KEY not set: eligibility checks and ERA polling "
                "will run against mock data."
            )

    return settings


def clear_settings_cache() -> None:
    """Clear the cached Settings so the next call to ``get_settings()``
    re-reads environment variables.  Useful after rotating API keys
    without a full process restart.
    """
    get_settings.cache_clear()
