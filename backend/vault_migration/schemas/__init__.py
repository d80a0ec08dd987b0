from .migration import (
    FailedItemRecord,
    ItemMigrationResult,
    MigrationFinishedEvent,
    MigrationRunResult,
    ProgressEvent,
    RunLogEntry,
    RunLogSummary,
    VaultLogSummary,
    VaultMigrationResult,
    VaultPhase,
    VaultStatus,
)

__all__ = [
    "FailedItemRecord",
    "ItemMigrationResult",
    "MigrationFinishedEvent",
    "MigrationRunResult",
    "ProgressEvent",
    "RunLogEntry",
    "RunLogSummary",
    "VaultLogSummary",
    "VaultMigrationResult",
    "VaultPhase",
    "VaultStatus",
]
