# feedsync/core/config.py

import os
from functools import lru_cache
from typing import List, Optional, Annotated
from pydantic import ConfigDict, BeforeValidator
from pydantic_settings import BaseSettings


def _parse_email_list(value):
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [email.strip() for email in value.split(",") if email.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(email).strip() for email in value if str(email).strip()]
    return []


class Settings(BaseSettings):
    """
    Application settings.
    Loads values from environment variables (.env file)
    """
    # Database settings
    DATABASE_URL: str = ""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Synchronization switches
    MAX_TO_DELETE_COUNT: int = 50       # Abort the apply phase when a bucket exceeds this
    FORCE_UPDATE: bool = False          # Treat every matched item as changed
    SKIP_IMAGE_DOWNLOAD: bool = False
    DEV_MODE: bool = False
    DEV_MODE_MAX_READ_COUNT: int = 20   # Feed cap while DEV_MODE is on

    # Catalog
    CATALOG_PROFILE: str = "keystone"
    IMAGE_HOSTING_URL_BASE: str = ""
    FEED_FILE_PATH: str = "data/feed.csv"

    # Shopify API
    SHOPIFY_SHOP_URL: Optional[str] = None
    SHOPIFY_ADMIN_API_ACCESS_TOKEN: Optional[str] = None
    SHOPIFY_API_VERSION: str = "2024-10"
    SHOPIFY_REQUEST_TIMEOUT: float = 30.0

    # Basic Auth
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # Email notifications
    NOTIFICATION_EMAILS: Annotated[List[str], BeforeValidator(lambda v: _parse_email_list(v))] = []
    EMAIL_PUBLISH_ALERTS_ENABLED: bool = False

    # SMTP / Email
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 30
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: Optional[str] = None

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists('.env') else None,
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def feed_read_cap(self) -> Optional[int]:
        """Maximum number of feed rows to consider, or None outside dev mode."""
        return self.DEV_MODE_MAX_READ_COUNT if self.DEV_MODE else None


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
