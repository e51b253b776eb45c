"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the system keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./practice_sync.db"

    # Plaid credentials and environment
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_ENVIRONMENT: str = "sandbox"

    # Plaid Link (hosted link sessions)
    PLAID_CLIENT_NAME: str = "Practice Bank Sync"
    PLAID_WEBHOOK_URL: str = ""
    PLAID_REDIRECT_URI: str = ""
    PLAID_COMPLETION_REDIRECT_URI: str = ""
    PLAID_LINK_URL_LIFETIME_SECONDS: int = 14400
    PLAID_PRODUCTS: list[str] = ["transactions"]
    PLAID_OPTIONAL_PRODUCTS: list[str] = []
    PLAID_COUNTRY_CODES: list[str] = ["US"]

    # Access token encryption
    ENCRYPTION_KEY_NAME: str = "plaid_access_token_v1"

    # Webhook ingestion
    WEBHOOK_DEDUP_BUCKET_SECONDS: int = 60

    # Transaction sync
    TRANSACTION_SYNC_MAX_RETRIES: int = 3
    TRANSACTION_SYNC_PAGE_SIZE: int = 500
    TRANSACTION_SYNC_BULK_LIMIT: int = 10

    @field_validator("PLAID_ENVIRONMENT", mode="before")
    @classmethod
    def validate_plaid_environment(cls, v: str) -> str:
        """Normalize PLAID_ENVIRONMENT; Plaid only offers sandbox and production."""
        valid = {"sandbox", "production"}
        if v.lower() not in valid:
            raise ValueError(f"PLAID_ENVIRONMENT must be one of {valid}, got {v!r}")
        return v.lower()

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def is_sandbox(self) -> bool:
        return self.PLAID_ENVIRONMENT == "sandbox"


settings = Settings()
