"""
Append-only run log.

Keeps every migration event in memory for the current run (global list,
per-vault views, failed items and vault summaries) and mirrors each entry to
loguru with the vault and item bound as context.
"""

import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from logconfig.logger import get_logger
from vault_migration.schemas.migration import (
    FailedItemRecord,
    RunLogEntry,
    RunLogSummary,
    VaultLogSummary,
    VaultMigrationResult,
)

logger = get_logger()

_LOGURU_LEVELS = {"INFO": "INFO", "WARNING": "WARNING", "ERROR": "ERROR"}


class RunLog:
    """Thread-safe in-memory log of one migration run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: List[RunLogEntry] = []
        self._vault_entries: "OrderedDict[str, List[RunLogEntry]]" = OrderedDict()
        self._failed_items: List[FailedItemRecord] = []
        self._vault_summaries: "OrderedDict[str, VaultLogSummary]" = OrderedDict()
        self._errors = 0
        self._warnings = 0

    def log(
        self,
        level: str,
        vault_id: Optional[str],
        message: str,
        item_id: Optional[str] = None,
        **metadata: Any,
    ) -> RunLogEntry:
        entry = RunLogEntry(
            level=level,
            vault_id=vault_id,
            item_id=item_id,
            message=message,
            metadata=metadata,
        )

        with self._lock:
            self._entries.append(entry)
            if vault_id:
                self._vault_entries.setdefault(vault_id, []).append(entry)
            if level == "ERROR":
                self._errors += 1
            elif level == "WARNING":
                self._warnings += 1

        logger.bind(vault_id=vault_id, item_id=item_id).log(
            _LOGURU_LEVELS.get(level, "INFO"), message
        )
        return entry

    def info(self, vault_id: Optional[str], message: str, item_id: Optional[str] = None, **metadata: Any) -> RunLogEntry:
        return self.log("INFO", vault_id, message, item_id=item_id, **metadata)

    def warning(self, vault_id: Optional[str], message: str, item_id: Optional[str] = None, **metadata: Any) -> RunLogEntry:
        return self.log("WARNING", vault_id, message, item_id=item_id, **metadata)

    def error(self, vault_id: Optional[str], message: str, item_id: Optional[str] = None, **metadata: Any) -> RunLogEntry:
        return self.log("ERROR", vault_id, message, item_id=item_id, **metadata)

    def log_failed_item(
        self,
        vault_id: str,
        vault_name: str,
        item_id: str,
        item_title: str,
        error: BaseException,
    ) -> FailedItemRecord:
        """Record a failed item and log it as an error."""
        error_message = str(error) or error.__class__.__name__
        record = FailedItemRecord(
            vault_id=vault_id,
            vault_name=vault_name,
            item_id=item_id,
            item_title=item_title,
            error=error_message,
        )
        with self._lock:
            self._failed_items.append(record)

        self.error(
            vault_id,
            f'Failed to migrate item [{item_id}] "{item_title}": {error_message}',
            item_id=item_id,
            item_title=item_title,
            error_message=error_message,
        )
        return record

    def log_vault_complete(self, result: VaultMigrationResult) -> VaultLogSummary:
        """Store the final statistics of a vault."""
        summary = VaultLogSummary(
            vault_id=result.source_vault_id,
            vault_name=result.source_vault_name,
            destination_vault_id=result.destination_vault_id,
            status=result.status,
            source_item_count=result.source_item_count,
            dest_item_count=result.dest_item_count,
            success_count=result.success_count,
            failure_count=result.failure_count,
        )
        with self._lock:
            self._vault_summaries[result.source_vault_id] = summary
        return summary

    def entries(self) -> List[RunLogEntry]:
        with self._lock:
            return list(self._entries)

    def vault_entries(self, vault_id: str) -> List[RunLogEntry]:
        with self._lock:
            return list(self._vault_entries.get(vault_id, []))

    def failed_items(self) -> List[FailedItemRecord]:
        with self._lock:
            return list(self._failed_items)

    def vault_summaries(self) -> Dict[str, VaultLogSummary]:
        with self._lock:
            return dict(self._vault_summaries)

    def summary(self) -> RunLogSummary:
        with self._lock:
            return RunLogSummary(
                total_entries=len(self._entries),
                errors=self._errors,
                warnings=self._warnings,
                vaults=len(self._vault_entries),
                failed_items=len(self._failed_items),
                vault_summaries=dict(self._vault_summaries),
                failures=list(self._failed_items),
            )
