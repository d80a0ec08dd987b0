"""
Retry executor for remote tenant and CLI operations.

Wraps every remote write and every rate-limited remote read with exponential
backoff. Only transient errors (see ``is_transient_error``) are retried; the
last error of an exhausted retry propagates unchanged so callers can classify
it.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from logconfig.logger import get_logger
from vault_migration.core.settings import Settings, get_settings
from vault_migration.exceptions.migration_exceptions import is_transient_error

logger = get_logger()

T = TypeVar('T')


@dataclass
class RetryAttempt:
    """Information about a retry attempt."""
    attempt_number: int
    delay_ms: float
    exception: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: Optional[float] = None


@dataclass
class RetryResult:
    """Result of a retried operation."""
    success: bool
    result: Any = None
    exception: Optional[BaseException] = None
    attempts: List[RetryAttempt] = field(default_factory=list)
    total_duration_seconds: float = 0.0

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: float = 1000,
        max_delay_ms: float = 60000,
        backoff_multiplier: float = 2.0,
        jitter: bool = False,
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Total attempts, including the first one.
            base_delay_ms: Delay before the first retry, in milliseconds.
            max_delay_ms: Upper bound for any single delay.
            backoff_multiplier: Multiplier for exponential backoff.
            jitter: Whether to add +/-10% random jitter to delays.
        """
        self.max_attempts = max(1, max_attempts)
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryConfig":
        settings = settings or get_settings()
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay_ms=settings.RETRY_BASE_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
        )

    def calculate_delay(self, attempt_number: int) -> float:
        """
        Calculate the delay after a failed attempt.

        Args:
            attempt_number: The failed attempt number (1-based).

        Returns:
            Delay in milliseconds: ``base * multiplier^(attempt-1)``, capped.
        """
        delay = self.base_delay_ms * (self.backoff_multiplier ** (attempt_number - 1))
        delay = min(delay, self.max_delay_ms)

        if self.jitter and delay > 0:
            jitter_amount = delay * 0.1
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)

        return delay


class RetryManager:
    """
    Retry manager for migration operations.

    Never wrap local computation with it; retries are for remote calls only.
    """

    def __init__(self, retry_config: Optional[RetryConfig] = None):
        self.retry_config = retry_config or RetryConfig.from_settings()

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        custom_retry_config: Optional[RetryConfig] = None,
    ) -> RetryResult:
        """
        Execute an operation with retry logic.

        Args:
            operation: Async function to execute.
            operation_name: Name of the operation for logging.
            custom_retry_config: Optional per-call retry configuration.

        Returns:
            RetryResult with the operation result or the final exception.
        """
        retry_config = custom_retry_config or self.retry_config
        start_time = time.monotonic()
        attempts: List[RetryAttempt] = []

        for attempt_num in range(1, retry_config.max_attempts + 1):
            attempt_start = time.monotonic()

            try:
                result = await operation()
                attempts.append(RetryAttempt(
                    attempt_number=attempt_num,
                    delay_ms=0.0,
                    duration_seconds=time.monotonic() - attempt_start,
                ))
                if attempt_num > 1:
                    logger.info(f"{operation_name} succeeded on attempt {attempt_num}")
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts,
                    total_duration_seconds=time.monotonic() - start_time,
                )

            except asyncio.CancelledError:
                raise
            except Exception as e:
                retryable = is_transient_error(e)
                last_attempt = attempt_num >= retry_config.max_attempts
                delay_ms = 0.0 if last_attempt or not retryable else retry_config.calculate_delay(attempt_num)

                attempts.append(RetryAttempt(
                    attempt_number=attempt_num,
                    delay_ms=delay_ms,
                    exception=e,
                    duration_seconds=time.monotonic() - attempt_start,
                ))

                if not retryable:
                    logger.debug(f"{operation_name} failed with non-transient error: {e}")
                    break
                if last_attempt:
                    logger.error(
                        f"{operation_name} failed after {attempt_num} attempts: {e}"
                    )
                    break

                logger.warning(
                    f"Retry attempt {attempt_num}/{retry_config.max_attempts} for "
                    f"{operation_name} after {delay_ms:.0f}ms: {e}"
                )
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)

        return RetryResult(
            success=False,
            exception=attempts[-1].exception if attempts else None,
            attempts=attempts,
            total_duration_seconds=time.monotonic() - start_time,
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[float] = None,
    ) -> T:
        """
        Execute an operation with retry and return its result.

        Args:
            operation: Async function to execute.
            operation_name: Name of the operation for logging.
            max_attempts: Override for the configured attempt count.
            base_delay_ms: Override for the configured base delay.

        Returns:
            The operation's result.

        Raises:
            The last error, unchanged, once retries are exhausted or a
            non-transient error occurs.
        """
        config = self.retry_config
        if max_attempts is not None or base_delay_ms is not None:
            config = RetryConfig(
                max_attempts=max_attempts if max_attempts is not None else config.max_attempts,
                base_delay_ms=base_delay_ms if base_delay_ms is not None else config.base_delay_ms,
                max_delay_ms=config.max_delay_ms,
                backoff_multiplier=config.backoff_multiplier,
                jitter=config.jitter,
            )

        outcome = await self.execute_with_retry(operation, operation_name, config)
        if outcome.success:
            return outcome.result
        raise outcome.exception
