from .base_exceptions import BaseApplicationError, ConfigurationError
from .migration_exceptions import (
    VaultMigrationError,
    VaultApiError,
    AuthError,
    VaultCreateError,
    ItemListError,
    ItemFetchError,
    ItemCreateError,
    BridgeError,
    CancellationRequested,
    is_transient_error,
    is_transient_message,
)

__all__ = [
    "BaseApplicationError",
    "ConfigurationError",
    "VaultMigrationError",
    "VaultApiError",
    "AuthError",
    "VaultCreateError",
    "ItemListError",
    "ItemFetchError",
    "ItemCreateError",
    "BridgeError",
    "CancellationRequested",
    "is_transient_error",
    "is_transient_message",
]
