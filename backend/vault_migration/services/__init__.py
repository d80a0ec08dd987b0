"""
Services package for the vault migration engine.
"""

from .cancellation import CancellationToken
from .custom_item_bridge import CustomItemBridge
from .item_transcoder import ItemTranscoder, TranscodeResult
from .migration_orchestrator import MigrationOrchestrator
from .op_cli import OpCli
from .progress_stream import ProgressStream
from .retry_manager import RetryConfig, RetryManager
from .run_log import RunLog
from .vault_account import VaultAccount
from .vault_client import HttpVaultClient, VaultClient

__all__ = [
    "CancellationToken",
    "CustomItemBridge",
    "HttpVaultClient",
    "ItemTranscoder",
    "MigrationOrchestrator",
    "OpCli",
    "ProgressStream",
    "RetryConfig",
    "RetryManager",
    "RunLog",
    "TranscodeResult",
    "VaultAccount",
    "VaultClient",
]
