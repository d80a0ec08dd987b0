"""
Vault migration exception hierarchy.

Errors are grouped by the scope they are fatal to:

- AuthError: the whole run for the affected tenant
- VaultCreateError / ItemListError: a single vault
- ItemFetchError / ItemCreateError / BridgeError: a single item

CancellationRequested is deliberately not an application error; it is the
normal early-termination signal of a cancelled run.
"""

from typing import Optional

from vault_migration.exceptions.base_exceptions import BaseApplicationError


class VaultMigrationError(BaseApplicationError):
    """Base exception for vault migration operations."""

    def __init__(
        self,
        message: str,
        vault_id: Optional[str] = None,
        item_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.vault_id = vault_id
        self.item_id = item_id
        self.details.update({
            "vault_id": vault_id,
            "item_id": item_id
        })


class VaultApiError(VaultMigrationError):
    """
    Raised by an account client for a failed tenant API call.

    Carries the HTTP status so the account layer can translate it into the
    operation-specific error.
    """

    def __init__(
        self,
        message: str = "Tenant API request failed",
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('error_code', 'VAULT_API_ERROR')
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.details.update({"status_code": status_code})

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_validation_error(self) -> bool:
        return self.status_code in (400, 422)


class AuthError(VaultMigrationError):
    """
    Raised when a tenant token is empty or rejected.
    """

    def __init__(
        self,
        message: str = "Authentication with the tenant failed",
        tenant: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault('error_code', 'AUTH_ERROR')
        kwargs.setdefault('severity', 'critical')
        super().__init__(message, **kwargs)
        self.tenant = tenant
        self.details.update({"tenant": tenant})


class VaultCreateError(VaultMigrationError):
    """
    Raised when a destination vault cannot be created.

    A name collision is a hard failure; the engine never falls back to an
    existing vault.
    """

    def __init__(
        self,
        message: str = "Failed to create destination vault",
        vault_name: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault('error_code', 'VAULT_CREATE_ERROR')
        kwargs.setdefault('severity', 'high')
        super().__init__(message, **kwargs)
        self.vault_name = vault_name
        self.details.update({"vault_name": vault_name})


class ItemListError(VaultMigrationError):
    """Raised when the items of a vault cannot be enumerated."""

    def __init__(self, message: str = "Failed to list vault items", **kwargs):
        kwargs.setdefault('error_code', 'ITEM_LIST_ERROR')
        kwargs.setdefault('severity', 'high')
        super().__init__(message, **kwargs)


class ItemFetchError(VaultMigrationError):
    """
    Raised when a full item (or one of its payloads) cannot be read.

    Missing items are not retryable; rate limits and network errors are.
    """

    def __init__(
        self,
        message: str = "Failed to fetch item",
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('error_code', 'ITEM_FETCH_ERROR')
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.details.update({"status_code": status_code})


class ItemCreateError(VaultMigrationError):
    """
    Raised when the destination rejects an item.

    ``kind`` is either ``"validation"`` (bad field shape, never retried) or
    ``"transient"`` (rate limit, write conflict).
    """

    VALIDATION = "validation"
    TRANSIENT = "transient"

    def __init__(
        self,
        message: str = "Failed to create item",
        kind: str = "validation",
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('error_code', 'ITEM_CREATE_ERROR')
        kwargs.setdefault('retryable', kind == self.TRANSIENT)
        super().__init__(message, **kwargs)
        self.kind = kind
        self.status_code = status_code
        self.details.update({"kind": kind, "status_code": status_code})

    @property
    def is_validation_error(self) -> bool:
        return self.kind == self.VALIDATION


class BridgeError(VaultMigrationError):
    """
    Raised when the external credential CLI round-trip fails.

    Always fatal to the item only.
    """

    def __init__(
        self,
        message: str = "Custom item bridge failed",
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('error_code', 'BRIDGE_ERROR')
        super().__init__(message, **kwargs)
        self.command = command
        self.exit_code = exit_code
        self.details.update({"command": command, "exit_code": exit_code})

    @property
    def is_rate_limited(self) -> bool:
        """True when the CLI refused the request before doing any work."""
        message = self.message.lower()
        return any(indicator in message for indicator in RATE_LIMIT_INDICATORS)


class CancellationRequested(Exception):
    """Signals that a run was cancelled; not an error."""

    def __init__(self, message: str = "Migration cancelled by user"):
        super().__init__(message)
        self.message = message


RATE_LIMIT_INDICATORS = (
    "rate limit",
    "too many requests",
)

TRANSIENT_INDICATORS = RATE_LIMIT_INDICATORS + (
    "data conflict",
    "write conflict",
    "conflict",
)


def is_transient_message(message: str) -> bool:
    """True if a raw error text mentions a rate limit or a write conflict."""
    message = (message or "").lower()
    return any(indicator in message for indicator in TRANSIENT_INDICATORS)


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception is worth retrying.

    Application errors answer through their ``retryable`` flag. Anything else
    (client library errors, CLI output) is judged by its message.

    Args:
        exception: Exception to check.

    Returns:
        True if the exception is transient, False otherwise.
    """
    if isinstance(exception, CancellationRequested):
        return False

    if isinstance(exception, BaseApplicationError):
        return exception.retryable

    return is_transient_message(str(exception))
