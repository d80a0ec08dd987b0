"""
Cooperative cancellation for migration runs.
"""

import threading
from typing import Optional

from vault_migration.exceptions.migration_exceptions import CancellationRequested


class CancellationToken:
    """
    Per-run cancellation flag.

    Workers only read it; cancelling prevents new dispatches but never aborts
    calls that are already in flight. Safe to set from a signal handler or
    another thread.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Migration cancelled by user") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationRequested(self.reason or "Migration cancelled by user")
