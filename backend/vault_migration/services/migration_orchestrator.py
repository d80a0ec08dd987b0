"""
Vault Migration Orchestrator.

Drives the per-vault state machine:

    pending -> creating-destination-vault -> enumerating-items
            -> migrating-items -> reconciling
            -> completed | completed-with-failures | cancelled | failed

Both entry points (``migrate_one`` and ``migrate_many``) run the same per-vault
procedure. Item failures are recorded and skipped; vault failures end that
vault only; cancellation stops new dispatches without aborting calls already
in flight.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from logconfig.logger import get_logger
from vault_migration.core.settings import Settings, get_settings
from vault_migration.exceptions.migration_exceptions import BridgeError, CancellationRequested
from vault_migration.models.item import ItemCategory, ItemSummary, Vault
from vault_migration.schemas.migration import (
    ItemMigrationResult,
    MigrationFinishedEvent,
    MigrationRunResult,
    ProgressEvent,
    VaultMigrationResult,
    VaultPhase,
    VaultStatus,
)
from vault_migration.services.cancellation import CancellationToken
from vault_migration.services.custom_item_bridge import CustomItemBridge
from vault_migration.services.item_transcoder import ItemTranscoder
from vault_migration.services.run_log import RunLog
from vault_migration.services.vault_account import VaultAccount

logger = get_logger()

ProgressCallback = Callable[
    [Union[ProgressEvent, MigrationFinishedEvent]], Optional[Awaitable[None]]
]

_TERMINAL_PHASES = {
    VaultStatus.COMPLETED: VaultPhase.COMPLETED,
    VaultStatus.COMPLETED_WITH_FAILURES: VaultPhase.COMPLETED_WITH_FAILURES,
    VaultStatus.CANCELLED: VaultPhase.CANCELLED,
    VaultStatus.FAILED: VaultPhase.FAILED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _RunProgress:
    """Overall progress of a bulk run."""
    total_vaults: int
    started: List[VaultMigrationResult] = field(default_factory=list)
    completed_vaults: int = 0

    def percent(self) -> float:
        if self.total_vaults <= 0:
            return 100.0
        done = sum(r.fraction_done for r in self.started)
        return min(done / self.total_vaults * 100, 100.0)


class MigrationOrchestrator:
    """
    Orchestrator for copying vaults between two authenticated accounts.

    The source account is only read; the destination account only receives
    new vaults and items.
    """

    def __init__(
        self,
        source: VaultAccount,
        destination: VaultAccount,
        transcoder: Optional[ItemTranscoder] = None,
        run_log: Optional[RunLog] = None,
        settings: Optional[Settings] = None,
        bridge: Optional[CustomItemBridge] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            source: Authenticated source account
            destination: Authenticated destination account
            transcoder: Item transcoder; built from settings if omitted
            run_log: Run log shared with the caller
            settings: Application settings
            bridge: Fallback path for custom items; without it custom items fail
        """
        self.settings = settings or get_settings()
        self.source = source
        self.destination = destination
        self.transcoder = transcoder or ItemTranscoder(self.settings.SECURE_NOTE_PLACEHOLDER)
        self.run_log = run_log or RunLog()
        self.bridge = bridge
        self._vault_create_lock = asyncio.Lock()

    async def migrate_one(
        self,
        vault_id: str,
        vault_name: Optional[str] = None,
        dest_vault_name: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> VaultMigrationResult:
        """
        Migrate a single vault.

        Args:
            vault_id: Source vault id
            vault_name: Source vault name; looked up when omitted
            dest_vault_name: Destination vault name; defaults to the source name
            cancel_token: Cancellation token for this call
            progress: Optional progress callback

        Returns:
            VaultMigrationResult

        Raises:
            VaultCreateError, ItemListError: On vault-level failure
        """
        self._ensure_authenticated()
        cancel_token = cancel_token or CancellationToken()

        if vault_name is None:
            vault_name = await self._lookup_vault_name(vault_id)

        result = VaultMigrationResult(source_vault_id=vault_id, source_vault_name=vault_name)
        await self._migrate_vault(
            result,
            dest_vault_name or vault_name,
            cancel_token,
            progress,
        )
        return result

    async def migrate_many(
        self,
        selection: Optional[Sequence[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> MigrationRunResult:
        """
        Migrate several vaults with bounded concurrency.

        Args:
            selection: Source vault ids; all source vaults when omitted
            cancel_token: Cancellation token for this run
            progress: Optional progress callback; receives the finished event last

        Returns:
            MigrationRunResult with one result per started vault
        """
        self._ensure_authenticated()
        cancel_token = cancel_token or CancellationToken()

        vaults = await self.source.list_vaults()
        unknown: List[str] = []
        if selection is not None:
            # A vault named twice is migrated once
            selection = list(dict.fromkeys(selection))
            by_id: Dict[str, Vault] = {v.id: v for v in vaults}
            unknown = [vault_id for vault_id in selection if vault_id not in by_id]
            vaults = [by_id[vault_id] for vault_id in selection if vault_id in by_id]

        tracker = _RunProgress(total_vaults=len(vaults) + len(unknown))
        results: List[VaultMigrationResult] = []

        for vault_id in unknown:
            missing = VaultMigrationResult(
                source_vault_id=vault_id,
                source_vault_name=vault_id,
                status=VaultStatus.FAILED,
                phase=VaultPhase.FAILED,
                errors=["Vault not found in source account"],
            )
            self.run_log.error(vault_id, "Vault not found in source account")
            self.run_log.log_vault_complete(missing)
            results.append(missing)
            tracker.started.append(missing)
            tracker.completed_vaults += 1

        self.run_log.info(None, f"Starting migration of {len(vaults)} vault(s)")
        limits = self.settings.get_concurrency_limits()
        vault_semaphore = asyncio.Semaphore(limits["vault"])
        tasks = []
        skipped = 0

        for index, vault in enumerate(vaults):
            await vault_semaphore.acquire()
            if cancel_token.is_cancelled:
                vault_semaphore.release()
                skipped = len(vaults) - index
                break

            result = VaultMigrationResult(source_vault_id=vault.id, source_vault_name=vault.name)
            results.append(result)
            tracker.started.append(result)
            tasks.append(asyncio.create_task(
                self._run_vault_task(
                    result, vault_semaphore, cancel_token, progress, tracker
                )
            ))

        if tasks:
            await asyncio.gather(*tasks)

        if skipped:
            self.run_log.info(None, f"Skipped {skipped} vault(s) not started before cancellation")

        cancelled = cancel_token.is_cancelled
        completed = sum(1 for r in results if r.status == VaultStatus.COMPLETED)
        success = not cancelled and completed == len(results)

        if cancelled:
            message = f"Migration cancelled after {tracker.completed_vaults} of {tracker.total_vaults} vault(s)"
        elif success:
            message = f"Successfully migrated {completed} vault(s)"
        else:
            message = f"Migration completed with issues: {completed} of {len(results)} vault(s) fully migrated"

        self.run_log.info(None, message)
        summary = self.run_log.summary()

        await self._emit(progress, MigrationFinishedEvent(
            success=success,
            cancelled=cancelled,
            message=message,
            summary=summary,
        ))

        return MigrationRunResult(
            success=success,
            cancelled=cancelled,
            message=message,
            vaults=results,
            summary=summary,
        )

    async def _run_vault_task(
        self,
        result: VaultMigrationResult,
        vault_semaphore: asyncio.Semaphore,
        cancel_token: CancellationToken,
        progress: Optional[ProgressCallback],
        tracker: _RunProgress,
    ) -> None:
        try:
            await self._migrate_vault(
                result,
                f"{result.source_vault_name}{self.settings.MIGRATED_VAULT_SUFFIX}",
                cancel_token,
                progress,
                tracker,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Vault-level failures were recorded by the vault procedure
            if result.status != VaultStatus.FAILED:
                self._mark_failed(result, e)
            logger.debug(f"Vault {result.source_vault_id} failed: {e}")
        finally:
            vault_semaphore.release()
            tracker.completed_vaults += 1
            await self._emit(progress, ProgressEvent(
                event_type="vault",
                vault_id=result.source_vault_id,
                vault_name=result.source_vault_name,
                phase=result.phase,
                status=result.status,
                message=f"Vault {result.source_vault_name} finished: {result.status.value}",
                items_processed=result.items_processed,
                total_items=result.total_items,
                success_count=result.success_count,
                failure_count=result.failure_count,
                progress=100.0,
                overall_progress=tracker.percent(),
                completed_vaults=tracker.completed_vaults,
                total_vaults=tracker.total_vaults,
            ))

    async def _migrate_vault(
        self,
        result: VaultMigrationResult,
        dest_vault_name: str,
        cancel_token: CancellationToken,
        progress: Optional[ProgressCallback],
        tracker: Optional[_RunProgress] = None,
    ) -> None:
        """Per-vault procedure shared by both entry points."""
        vault_id = result.source_vault_id
        result.status = VaultStatus.IN_PROGRESS
        result.started_at = _utcnow()

        if cancel_token.is_cancelled:
            await self._finish_cancelled(result, progress, tracker)
            return

        self.run_log.info(vault_id, f"Starting migration for vault {result.source_vault_name}")

        try:
            await self._set_phase(
                result, VaultPhase.CREATING_DESTINATION_VAULT,
                f"Creating destination vault '{dest_vault_name}'", progress, tracker,
            )
            async with self._vault_create_lock:
                dest_vault = await self.destination.create_vault(dest_vault_name)
            result.destination_vault_id = dest_vault.id
            result.destination_vault_name = dest_vault.name or dest_vault_name
            self.run_log.info(vault_id, f"Created destination vault {dest_vault.id}")

            await self._set_phase(
                result, VaultPhase.ENUMERATING_ITEMS, "Listing source items", progress, tracker,
            )
            items = await self.source.list_item_summaries(vault_id)
            result.total_items = len(items)
            if self.settings.INCLUDE_ARCHIVED_IN_COUNTS:
                result.source_item_count = await self._safe_count(self.source, vault_id, include_archived=True)
            else:
                result.source_item_count = len(items)
            self.run_log.info(vault_id, f"Found {len(items)} items to migrate")

        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._mark_failed(result, e)
            await self._emit_phase(result, f"Vault migration failed: {e}", progress, tracker)
            raise

        await self._set_phase(
            result, VaultPhase.MIGRATING_ITEMS,
            f"Migrating {len(items)} items", progress, tracker,
        )
        cancelled = await self._migrate_items(result, items, cancel_token, progress, tracker)

        if cancelled:
            await self._finish_cancelled(result, progress, tracker)
            return

        await self._set_phase(
            result, VaultPhase.RECONCILING, "Reconciling item counts", progress, tracker,
        )
        result.dest_item_count = await self._safe_count(self.destination, result.destination_vault_id)

        if result.failure_count == 0 and result.dest_item_count == result.source_item_count:
            result.status = VaultStatus.COMPLETED
            self.run_log.info(vault_id, f"Successfully migrated all {result.source_item_count} items")
        else:
            result.status = VaultStatus.COMPLETED_WITH_FAILURES
            self.run_log.warning(
                vault_id,
                f"Item count mismatch - Source: {result.source_item_count}, "
                f"Destination: {result.dest_item_count}, Failed: {result.failure_count}",
            )

        result.phase = _TERMINAL_PHASES[result.status]
        result.completed_at = _utcnow()
        self.run_log.info(
            vault_id,
            f"Migration completed - Success: {result.success_count}, Failed: {result.failure_count}",
        )
        self.run_log.log_vault_complete(result)
        await self._emit_phase(result, f"Vault {result.status.value}", progress, tracker)

    async def _migrate_items(
        self,
        result: VaultMigrationResult,
        items: List[ItemSummary],
        cancel_token: CancellationToken,
        progress: Optional[ProgressCallback],
        tracker: Optional[_RunProgress],
    ) -> bool:
        """Dispatch items in enumeration order. Returns True if cancelled."""
        item_semaphore = asyncio.Semaphore(self.settings.ITEM_CONCURRENCY_LIMIT)
        tasks = []
        cancelled = False

        try:
            for summary in items:
                await item_semaphore.acquire()
                try:
                    cancel_token.raise_if_cancelled()
                except CancellationRequested:
                    item_semaphore.release()
                    raise
                tasks.append(asyncio.create_task(
                    self._migrate_item(result, summary, item_semaphore, progress, tracker)
                ))
        except CancellationRequested as e:
            cancelled = True
            self.run_log.info(
                result.source_vault_id,
                f"{e}; {len(items) - len(tasks)} item(s) not dispatched",
            )

        if tasks:
            await asyncio.gather(*tasks)

        return cancelled

    async def _migrate_item(
        self,
        result: VaultMigrationResult,
        summary: ItemSummary,
        item_semaphore: asyncio.Semaphore,
        progress: Optional[ProgressCallback],
        tracker: Optional[_RunProgress],
    ) -> None:
        # The slot is held until the outcome is recorded; the dispatcher
        # checks cancellation only after that.
        try:
            warnings, error = await self._process_item(result, summary)
            item_result = self._record_item(result, summary, warnings, error)

            every = self.settings.PROGRESS_EVERY_N_ITEMS
            if result.items_processed % every == 0 or result.items_processed == result.total_items:
                await self._emit(progress, ProgressEvent(
                    event_type="item",
                    vault_id=result.source_vault_id,
                    vault_name=result.source_vault_name,
                    phase=result.phase,
                    status=result.status,
                    message=f"Processed {result.items_processed} of {result.total_items} items",
                    items_processed=result.items_processed,
                    total_items=result.total_items,
                    success_count=result.success_count,
                    failure_count=result.failure_count,
                    progress=item_result.progress_percent,
                    overall_progress=tracker.percent() if tracker else None,
                    total_vaults=tracker.total_vaults if tracker else None,
                    completed_vaults=tracker.completed_vaults if tracker else None,
                    last_item=item_result,
                ))
        finally:
            item_semaphore.release()

    async def _process_item(
        self,
        result: VaultMigrationResult,
        summary: ItemSummary,
    ) -> Tuple[List[str], Optional[BaseException]]:
        """Migrate one item. Returns (warnings, error); never raises item errors."""
        vault_id = result.source_vault_id
        warnings: List[str] = []

        try:
            if summary.category is ItemCategory.CUSTOM:
                if self.bridge is None:
                    raise BridgeError(
                        "Custom items require the credential CLI bridge",
                        vault_id=vault_id,
                        item_id=summary.id,
                    )
                self.run_log.info(
                    vault_id,
                    f'Detected custom item "{summary.title}" - migrating via CLI',
                    item_id=summary.id,
                )
                await self.bridge.migrate(summary, vault_id, result.destination_vault_id)
            else:
                item = await self.source.get_item(vault_id, summary.id)
                transcoded = self.transcoder.transcode(item, result.destination_vault_id)
                warnings = transcoded.warnings
                for warning in warnings:
                    self.run_log.warning(vault_id, warning, item_id=summary.id)
                await self.destination.create_item(transcoded.item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return warnings, e

        return warnings, None

    def _record_item(
        self,
        result: VaultMigrationResult,
        summary: ItemSummary,
        warnings: List[str],
        error: Optional[BaseException],
    ) -> ItemMigrationResult:
        """Update counters and results in one step."""
        vault_id = result.source_vault_id
        via_bridge = summary.category is ItemCategory.CUSTOM

        result.items_processed += 1
        percent = result.items_processed / result.total_items * 100 if result.total_items else 100.0

        if error is None:
            result.success_count += 1
            self.run_log.info(
                vault_id,
                f'Successfully migrated item [{summary.id}] "{summary.title}"'
                + (" via CLI" if via_bridge else ""),
                item_id=summary.id,
            )
        else:
            result.failure_count += 1
            result.errors.append(f"Item {summary.id} ({summary.title}): {error}")
            self.run_log.log_failed_item(
                vault_id, result.source_vault_name, summary.id, summary.title, error
            )

        item_result = ItemMigrationResult(
            id=summary.id,
            title=summary.title,
            success=error is None,
            error=str(error) if error is not None else None,
            progress_percent=percent,
            via_bridge=via_bridge,
            warnings=warnings,
        )
        result.results.append(item_result)
        return item_result

    async def _finish_cancelled(
        self,
        result: VaultMigrationResult,
        progress: Optional[ProgressCallback],
        tracker: Optional[_RunProgress],
    ) -> None:
        result.status = VaultStatus.CANCELLED
        result.phase = VaultPhase.CANCELLED
        result.dest_item_count = None
        result.completed_at = _utcnow()
        self.run_log.info(
            result.source_vault_id,
            f"Migration cancelled by user after {result.items_processed} of {result.total_items} items",
        )
        self.run_log.log_vault_complete(result)
        await self._emit_phase(result, "Migration cancelled", progress, tracker)

    def _mark_failed(self, result: VaultMigrationResult, error: BaseException) -> None:
        result.status = VaultStatus.FAILED
        result.phase = VaultPhase.FAILED
        result.completed_at = _utcnow()
        result.errors.append(f"Vault migration: {error}")
        self.run_log.error(result.source_vault_id, f"Vault migration failed: {error}")
        self.run_log.log_vault_complete(result)

    async def _safe_count(
        self,
        account: VaultAccount,
        vault_id: Optional[str],
        include_archived: bool = False,
    ) -> int:
        """Count items; a failed count is logged and reported as 0."""
        if not vault_id:
            return 0
        try:
            return await account.count_items(vault_id, include_archived=include_archived)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.run_log.error(vault_id, f"Failed to get item count from {account.name} vault {vault_id}: {e}")
            return 0

    async def _set_phase(
        self,
        result: VaultMigrationResult,
        phase: VaultPhase,
        message: str,
        progress: Optional[ProgressCallback],
        tracker: Optional[_RunProgress],
    ) -> None:
        result.phase = phase
        await self._emit_phase(result, message, progress, tracker)

    async def _emit_phase(
        self,
        result: VaultMigrationResult,
        message: str,
        progress: Optional[ProgressCallback],
        tracker: Optional[_RunProgress],
    ) -> None:
        percent = 0.0
        if result.total_items:
            percent = result.items_processed / result.total_items * 100
        if result.is_terminal:
            percent = 100.0
        await self._emit(progress, ProgressEvent(
            event_type="phase",
            vault_id=result.source_vault_id,
            vault_name=result.source_vault_name,
            phase=result.phase,
            status=result.status,
            message=message,
            items_processed=result.items_processed,
            total_items=result.total_items,
            success_count=result.success_count,
            failure_count=result.failure_count,
            progress=percent,
            overall_progress=tracker.percent() if tracker else None,
            total_vaults=tracker.total_vaults if tracker else None,
            completed_vaults=tracker.completed_vaults if tracker else None,
        ))

    async def _emit(
        self,
        progress: Optional[ProgressCallback],
        event: Union[ProgressEvent, MigrationFinishedEvent],
    ) -> None:
        if progress is None:
            return
        try:
            outcome = progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Progress callback failed for {event.event_type} event: {e}")

    async def _lookup_vault_name(self, vault_id: str) -> str:
        for vault in await self.source.list_vaults():
            if vault.id == vault_id:
                return vault.name
        return vault_id

    def _ensure_authenticated(self) -> None:
        # Raises AuthError before any vault work starts
        _ = self.source.client
        _ = self.destination.client
