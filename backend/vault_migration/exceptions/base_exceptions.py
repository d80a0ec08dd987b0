"""
Base exception classes for the vault migration engine.

Every engine error inherits from BaseApplicationError so callers get a
consistent error code, severity, retryable flag and serialized form.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
import traceback


class BaseApplicationError(Exception):
    """
    Base exception class for all application-specific errors.

    The ``retryable`` flag is what the retry executor consults first, so
    subclasses must set it deliberately.
    """

    def __init__(
        self,
        message: str,
        **kwargs
    ):
        """
        Initialize base application error.

        Args:
            message: Technical error message
            **kwargs: error_code, details, original_exception, user_message,
                severity, retryable; anything else is merged into details
        """
        error_code = kwargs.pop('error_code', None)
        details = kwargs.pop('details', None) or {}
        original_exception = kwargs.pop('original_exception', None)
        user_message = kwargs.pop('user_message', None)
        severity = kwargs.pop('severity', 'medium')
        retryable = kwargs.pop('retryable', False)

        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details
        self.original_exception = original_exception
        self.user_message = user_message or message
        self.severity = severity
        self.retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

        # Add any remaining kwargs to details
        self.details.update(kwargs)

        if original_exception:
            self.details.update(
                {
                    "original_exception_type": original_exception.__class__.__name__,
                    "original_exception_message": str(original_exception),
                    "traceback": (
                        traceback.format_exception(
                            type(original_exception),
                            original_exception,
                            original_exception.__traceback__,
                        )
                        if original_exception.__traceback__
                        else None
                    ),
                }
            )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "user_message": self.user_message,
            "severity": self.severity,
            "retryable": self.retryable,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_user_dict(self) -> Dict[str, Any]:
        """User-safe dictionary (no tracebacks or raw details)."""
        return {
            "error_code": self.error_code,
            "message": self.user_message,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        # Item failures are reported verbatim in run summaries, so keep this
        # to the plain message.
        return self.message


class ConfigurationError(BaseApplicationError):
    """
    Exception raised when configuration is invalid or missing.
    """

    def __init__(
        self,
        message: str = "Configuration error",
        config_key: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault('error_code', 'CONFIGURATION_ERROR')
        kwargs.setdefault('user_message', 'Migration configuration is incomplete.')
        kwargs.setdefault('severity', 'critical')

        super().__init__(message=message, **kwargs)
        self.config_key = config_key
        self.details.update({"config_key": config_key})
