from functools import lru_cache
from typing import Optional, Tuple, List, Dict, Any
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    # App Settings
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None
    LOG_TO_FILES: bool = False

    # Tenant API endpoints
    SOURCE_API_URL: str = "http://localhost:8080"
    DEST_API_URL: str = "http://localhost:8080"
    API_TIMEOUT_SECONDS: float = 30.0
    INTEGRATION_NAME: str = "Vault Migration Tool"
    INTEGRATION_VERSION: str = "2.0.0"

    # Service account tokens (optional defaults for the command line)
    SOURCE_TOKEN: Optional[str] = None
    DEST_TOKEN: Optional[str] = None

    # External credential CLI
    OP_CLI_PATH: str = "op"
    OP_CLI_TIMEOUT_SECONDS: float = 120.0
    CUSTOM_TEMPLATE_ID: Optional[str] = None

    # Concurrency limits
    VAULT_CONCURRENCY_LIMIT: int = 2
    ITEM_CONCURRENCY_LIMIT: int = 1

    # Retry policy for remote calls
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_MS: int = 1000
    RETRY_MAX_DELAY_MS: int = 60000

    # Migration behaviour
    MIGRATED_VAULT_SUFFIX: str = " (Migrated)"
    PROGRESS_EVERY_N_ITEMS: int = 3
    SECURE_NOTE_PLACEHOLDER: str = "Migrated Secure Note"
    INCLUDE_ARCHIVED_IN_COUNTS: bool = False

    @field_validator("SOURCE_API_URL", "DEST_API_URL", mode="before")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Tenant API URLs must be absolute http(s) URLs."""
        if not isinstance(v, str) or not v.startswith(("http://", "https://")):
            raise ValueError("API URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator(
        "VAULT_CONCURRENCY_LIMIT",
        "ITEM_CONCURRENCY_LIMIT",
        "RETRY_MAX_ATTEMPTS",
        "PROGRESS_EVERY_N_ITEMS",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("RETRY_BASE_DELAY_MS", "RETRY_MAX_DELAY_MS")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("delay must not be negative")
        return v

    def validate_migration_config(
        self,
        source_token: Optional[str] = None,
        dest_token: Optional[str] = None,
    ) -> Tuple[bool, List[str]]:
        """
        Validate that a migration run has everything it needs.

        Args:
            source_token: Token overriding SOURCE_TOKEN
            dest_token: Token overriding DEST_TOKEN

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if not (source_token or self.SOURCE_TOKEN):
            errors.append("SOURCE_TOKEN is required to read from the source tenant")

        if not (dest_token or self.DEST_TOKEN):
            errors.append("DEST_TOKEN is required to write to the destination tenant")

        if self.RETRY_MAX_DELAY_MS < self.RETRY_BASE_DELAY_MS:
            errors.append("RETRY_MAX_DELAY_MS must be >= RETRY_BASE_DELAY_MS")

        return len(errors) == 0, errors

    def get_concurrency_limits(self) -> Dict[str, Any]:
        """Get the configured vault/item concurrency gates."""
        return {
            "vault": self.VAULT_CONCURRENCY_LIMIT,
            "item": self.ITEM_CONCURRENCY_LIMIT,
        }

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra fields in .env
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
