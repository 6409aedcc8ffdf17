"""Application configuration using pydantic-settings.

Values resolve in this order: constructor arguments, the system keychain
(Plaid credentials only), environment variables, then ``.env``.
"""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential

LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
MAX_SYNC_PAGE_SIZE = 500


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Settings source that reads Plaid credentials from the keychain.

    Fields outside :data:`~services.credential_manager.CREDENTIAL_KEYS` are
    left to the sources after this one.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        key = field_name.upper()
        value = get_credential(key) if key in CREDENTIAL_KEYS else None
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        found: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field_info, field_name)
            if value is not None:
                found[key] = value
        return found


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str = "sqlite:///./finance.db"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Plaid
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"
    PLAID_CLIENT_NAME: str = "Finance Dashboard"
    PLAID_COUNTRY_CODES: str = "US,CA"
    PLAID_WEBHOOK_URL: str = ""
    PLAID_REDIRECT_URI: str = ""

    # Transaction sync
    SYNC_PAGE_SIZE: int = MAX_SYNC_PAGE_SIZE
    SYNC_DEFAULT_DAYS: int = 30
    SYNC_INTERVAL_HOURS: int = 6
    SYNC_SCHEDULER_ENABLED: bool = False
    SCHEDULER_TIMEZONE: str = ""  # empty means the server's local zone
    HEALTH_STALE_HOURS: int = 24

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        keychain = KeychainSettingsSource(settings_cls)
        return init_settings, keychain, env_settings, dotenv_settings, file_secret_settings

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {sorted(LOG_LEVELS)}, got {v!r}")
        return level

    @field_validator("SYNC_INTERVAL_HOURS")
    @classmethod
    def validate_sync_interval(cls, v: int) -> int:
        if not 1 <= v <= 24:
            raise ValueError(f"SYNC_INTERVAL_HOURS must be between 1 and 24, got {v}")
        return v

    @field_validator("SYNC_PAGE_SIZE")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        """Plaid's /transactions/sync accepts ``count`` from 1 to 500."""
        if not 1 <= v <= MAX_SYNC_PAGE_SIZE:
            raise ValueError(f"SYNC_PAGE_SIZE must be between 1 and {MAX_SYNC_PAGE_SIZE}, got {v}")
        return v

    @property
    def country_codes(self) -> list[str]:
        return [c.strip().upper() for c in self.PLAID_COUNTRY_CODES.split(",") if c.strip()]

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
