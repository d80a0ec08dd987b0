"""
Migration result and progress schemas.

This module defines the Pydantic models returned by the orchestrator, pushed
through the progress stream and kept by the run log.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VaultStatus(str, Enum):
    """Final (or current) status of a vault migration."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed-with-failures"
    CANCELLED = "cancelled"
    FAILED = "failed"


class VaultPhase(str, Enum):
    """Phases of the per-vault state machine."""
    PENDING = "pending"
    CREATING_DESTINATION_VAULT = "creating-destination-vault"
    ENUMERATING_ITEMS = "enumerating-items"
    MIGRATING_ITEMS = "migrating-items"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed-with-failures"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ItemMigrationResult(BaseModel):
    """Outcome of migrating a single item."""

    id: str
    title: str = ""
    success: bool
    error: Optional[str] = None
    progress_percent: float = 0.0
    via_bridge: bool = False
    warnings: List[str] = Field(default_factory=list)


class VaultMigrationResult(BaseModel):
    """Aggregate outcome of migrating one vault."""

    source_vault_id: str
    source_vault_name: str = ""
    destination_vault_id: Optional[str] = None
    destination_vault_name: str = ""
    source_item_count: int = 0
    dest_item_count: Optional[int] = None
    success_count: int = 0
    failure_count: int = 0
    items_processed: int = 0
    total_items: int = 0
    status: VaultStatus = VaultStatus.PENDING
    phase: VaultPhase = VaultPhase.PENDING
    results: List[ItemMigrationResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status not in (VaultStatus.PENDING, VaultStatus.IN_PROGRESS)

    @property
    def fraction_done(self) -> float:
        """Share of items processed, 0.0 - 1.0."""
        if self.is_terminal:
            return 1.0
        if self.total_items <= 0:
            return 0.0
        return min(self.items_processed / self.total_items, 1.0)


class ProgressEvent(BaseModel):
    """
    Progress update pushed while a run is in flight.

    ``event_type`` is ``phase`` for state machine transitions, ``item`` for
    item checkpoints and ``vault`` when a vault reaches a terminal status.
    """

    event_type: str = "item"
    vault_id: Optional[str] = None
    vault_name: Optional[str] = None
    phase: Optional[VaultPhase] = None
    status: Optional[VaultStatus] = None
    message: str = ""
    items_processed: int = 0
    total_items: int = 0
    success_count: int = 0
    failure_count: int = 0
    progress: float = 0.0
    overall_progress: Optional[float] = None
    completed_vaults: Optional[int] = None
    total_vaults: Optional[int] = None
    last_item: Optional[ItemMigrationResult] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class RunLogEntry(BaseModel):
    """Single append-only run log entry."""

    timestamp: datetime = Field(default_factory=_utcnow)
    level: str
    vault_id: Optional[str] = None
    item_id: Optional[str] = None
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FailedItemRecord(BaseModel):
    vault_id: str
    vault_name: str = ""
    item_id: str
    item_title: str = ""
    error: str
    timestamp: datetime = Field(default_factory=_utcnow)


class VaultLogSummary(BaseModel):
    vault_id: str
    vault_name: str = ""
    destination_vault_id: Optional[str] = None
    status: VaultStatus
    source_item_count: int = 0
    dest_item_count: Optional[int] = None
    success_count: int = 0
    failure_count: int = 0
    completed_at: datetime = Field(default_factory=_utcnow)


class RunLogSummary(BaseModel):
    """
    Run log counters.

    ``vaults`` is the number of vaults with log entries and ``failed_items``
    the number of failed items; the records behind them are carried in
    ``vault_summaries`` and ``failures``.
    """

    total_entries: int = 0
    errors: int = 0
    warnings: int = 0
    vaults: int = 0
    failed_items: int = 0
    vault_summaries: Dict[str, VaultLogSummary] = Field(default_factory=dict)
    failures: List[FailedItemRecord] = Field(default_factory=list)


class MigrationFinishedEvent(BaseModel):
    """Terminal event of a progress stream."""

    event_type: str = "finished"
    success: bool
    cancelled: bool = False
    message: str = ""
    summary: RunLogSummary = Field(default_factory=RunLogSummary)
    timestamp: datetime = Field(default_factory=_utcnow)


class MigrationRunResult(BaseModel):
    """Result of a bulk migration across several vaults."""

    success: bool
    cancelled: bool = False
    message: str = ""
    vaults: List[VaultMigrationResult] = Field(default_factory=list)
    summary: RunLogSummary = Field(default_factory=RunLogSummary)
