"""Tests for the migration orchestrator."""

import asyncio

import pytest

from vault_migration.exceptions import AuthError, BridgeError, ItemListError, VaultApiError, VaultCreateError
from vault_migration.models.item import ItemCategory
from vault_migration.schemas.migration import (
    MigrationFinishedEvent,
    ProgressEvent,
    VaultPhase,
    VaultStatus,
)
from vault_migration.services.cancellation import CancellationToken
from vault_migration.services.custom_item_bridge import CustomItemBridge
from vault_migration.services.item_transcoder import ItemTranscoder
from vault_migration.services.migration_orchestrator import MigrationOrchestrator
from vault_migration.services.progress_stream import ProgressStream
from vault_migration.services.vault_account import VaultAccount

from conftest import DEST_TOKEN, SOURCE_TOKEN, FakeOpCli, add_logins, make_settings


class TestMigrateOne:
    """Test single-vault migration."""

    @pytest.mark.asyncio
    async def test_clean_migration_completes(self, orchestrator, source_tenant, dest_tenant):
        add_logins(source_tenant, "src-vault-1", 5)

        result = await orchestrator.migrate_one("src-vault-1")

        assert result.status == VaultStatus.COMPLETED
        assert result.phase == VaultPhase.COMPLETED
        assert result.source_item_count == 5
        assert result.dest_item_count == 5
        assert result.success_count == 5
        assert result.failure_count == 0
        assert result.source_vault_name == "Engineering"
        assert dest_tenant.vault_by_name("Engineering").id == result.destination_vault_id

    @pytest.mark.asyncio
    async def test_round_trip_preserves_content(self, orchestrator, source_tenant, dest_tenant):
        source_tenant.add_item(
            "src-vault-1", "note", "Runbook",
            category="SECURE_NOTE",
            notes="restart the thing",
            sections=[{"id": "ops", "title": "Ops"}],
            fields=[{"id": "host", "title": "host", "fieldType": "Text", "value": "db1", "sectionId": "ops"}],
            tags=["infra"],
        )

        result = await orchestrator.migrate_one("src-vault-1", dest_vault_name="Copy")
        created = next(iter(dest_tenant.items[result.destination_vault_id].values()))

        assert created.title == "Runbook"
        assert created.category == ItemCategory.SECURE_NOTE
        assert created.notes == "restart the thing"
        assert created.tags == ["infra"]
        assert [(s.id, s.title) for s in created.sections] == [("ops", "Ops")]
        assert created.fields[0].section_id == "ops"

    @pytest.mark.asyncio
    async def test_item_failure_is_isolated(self, orchestrator, source_tenant, dest_tenant, run_log):
        add_logins(source_tenant, "src-vault-1", 4)
        dest_tenant.create_failures["Login 2"] = [VaultApiError("invalid field", status_code=422)]

        result = await orchestrator.migrate_one("src-vault-1")

        assert result.status == VaultStatus.COMPLETED_WITH_FAILURES
        assert result.success_count == 3
        assert result.failure_count == 1
        assert result.dest_item_count == 3
        failed = [r for r in result.results if not r.success]
        assert [r.title for r in failed] == ["Login 2"]
        assert "invalid field" in failed[0].error
        assert [f.item_title for f in run_log.failed_items()] == ["Login 2"]

    @pytest.mark.asyncio
    async def test_count_mismatch_is_completed_with_failures(self, orchestrator, source_tenant, dest_tenant):
        add_logins(source_tenant, "src-vault-1", 3)
        dest_tenant.drop_created.add("Login 3")

        result = await orchestrator.migrate_one("src-vault-1")

        assert result.failure_count == 0
        assert result.dest_item_count == 2
        assert result.status == VaultStatus.COMPLETED_WITH_FAILURES

    @pytest.mark.asyncio
    async def test_vault_create_failure_raises(self, orchestrator, source_tenant, dest_tenant):
        add_logins(source_tenant, "src-vault-1", 2)
        dest_tenant.add_vault("existing", "Engineering")

        with pytest.raises(VaultCreateError):
            await orchestrator.migrate_one("src-vault-1")

        assert dest_tenant.created_items == []

    @pytest.mark.asyncio
    async def test_item_list_failure_raises(self, orchestrator, source_tenant):
        source_tenant.list_items_error = VaultApiError("boom", status_code=400)
        with pytest.raises(ItemListError):
            await orchestrator.migrate_one("src-vault-1")

    @pytest.mark.asyncio
    async def test_requires_authenticated_accounts(self, source_tenant, dest_tenant, retry_manager, test_settings):
        source = VaultAccount(source_tenant.client, retry_manager, name="source")
        destination = VaultAccount(dest_tenant.client, retry_manager, name="destination")
        orchestrator = MigrationOrchestrator(source, destination, settings=test_settings)

        with pytest.raises(AuthError):
            await orchestrator.migrate_one("src-vault-1")


class TestProgress:
    """Test progress checkpoints."""

    @pytest.mark.asyncio
    async def test_checkpoints_every_three_and_last(self, orchestrator, source_tenant, dest_tenant):
        add_logins(source_tenant, "src-vault-1", 7)
        dest_tenant.create_failures["Login 5"] = [VaultApiError("invalid", status_code=400)]
        events = []

        await orchestrator.migrate_one("src-vault-1", progress=events.append)

        checkpoints = [e for e in events if e.event_type == "item"]
        assert [e.items_processed for e in checkpoints] == [3, 6, 7]
        for event in checkpoints:
            assert event.success_count + event.failure_count == event.items_processed
        assert checkpoints[-1].progress == 100.0

    @pytest.mark.asyncio
    async def test_phase_sequence(self, orchestrator, source_tenant):
        add_logins(source_tenant, "src-vault-1", 1)
        events = []

        await orchestrator.migrate_one("src-vault-1", progress=events.append)

        phases = [e.phase for e in events if e.event_type == "phase"]
        assert phases == [
            VaultPhase.CREATING_DESTINATION_VAULT,
            VaultPhase.ENUMERATING_ITEMS,
            VaultPhase.MIGRATING_ITEMS,
            VaultPhase.RECONCILING,
            VaultPhase.COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_async_callback_supported(self, orchestrator, source_tenant):
        add_logins(source_tenant, "src-vault-1", 2)
        seen = []

        async def callback(event):
            await asyncio.sleep(0)
            seen.append(event)

        await orchestrator.migrate_one("src-vault-1", progress=callback)
        assert seen

    @pytest.mark.asyncio
    async def test_broken_callback_does_not_stop_migration(self, orchestrator, source_tenant):
        add_logins(source_tenant, "src-vault-1", 2)

        def callback(event):
            raise RuntimeError("socket closed")

        result = await orchestrator.migrate_one("src-vault-1", progress=callback)
        assert result.status == VaultStatus.COMPLETED


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_after_fourth_item(self, orchestrator, source_tenant, dest_tenant):
        add_logins(source_tenant, "src-vault-1", 10)
        token = CancellationToken()

        def on_create(params):
            if params.title == "Login 4":
                token.cancel()

        dest_tenant.on_create = on_create

        result = await orchestrator.migrate_one("src-vault-1", cancel_token=token)

        assert result.status == VaultStatus.CANCELLED
        assert len(result.results) == 4
        assert result.items_processed == 4
        assert result.dest_item_count is None
        assert [p.title for p in dest_tenant.created_items] == [f"Login {n}" for n in range(1, 5)]
        assert set(dest_tenant.create_attempts) == {f"Login {n}" for n in range(1, 5)}

    @pytest.mark.asyncio
    async def test_undispatched_items_logged(self, orchestrator, source_tenant, dest_tenant, run_log):
        add_logins(source_tenant, "src-vault-1", 5)
        token = CancellationToken()

        def on_create(params):
            if params.title == "Login 2":
                token.cancel("operator pressed Ctrl-C")

        dest_tenant.on_create = on_create

        result = await orchestrator.migrate_one("src-vault-1", cancel_token=token)

        assert result.status == VaultStatus.CANCELLED
        messages = [e.message for e in run_log.entries()]
        assert "operator pressed Ctrl-C; 3 item(s) not dispatched" in messages

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, orchestrator, source_tenant, dest_tenant):
        add_logins(source_tenant, "src-vault-1", 3)
        token = CancellationToken()
        token.cancel()

        result = await orchestrator.migrate_one("src-vault-1", cancel_token=token)

        assert result.status == VaultStatus.CANCELLED
        assert dest_tenant.vaults == {}


class TestCustomItems:
    """Test routing of custom items through the bridge."""

    @pytest.mark.asyncio
    async def test_custom_item_without_template_fails_item_only(
        self, source_account, dest_account, source_tenant, run_log, test_settings
    ):
        add_logins(source_tenant, "src-vault-1", 2)
        source_tenant.add_item("src-vault-1", "custom-1", "Door code", category="Custom")
        cli = FakeOpCli(items={"custom-1": {"id": "custom-1", "title": "Door code", "fields": []}})
        orchestrator = MigrationOrchestrator(
            source_account,
            dest_account,
            transcoder=ItemTranscoder(),
            run_log=run_log,
            settings=test_settings,
            bridge=CustomItemBridge(cli, SOURCE_TOKEN, DEST_TOKEN),
        )

        result = await orchestrator.migrate_one("src-vault-1")

        assert result.success_count == 2
        assert result.failure_count == 1
        failed = next(r for r in result.results if not r.success)
        assert failed.via_bridge
        assert "custom template id" in failed.error
        assert result.status == VaultStatus.COMPLETED_WITH_FAILURES

    @pytest.mark.asyncio
    async def test_custom_item_via_bridge(self, source_account, dest_account, source_tenant, test_settings):
        source_tenant.add_item("src-vault-1", "custom-1", "Door code", category="Unsupported")
        cli = FakeOpCli(items={"custom-1": {"id": "custom-1", "title": "Door code", "fields": []}})
        orchestrator = MigrationOrchestrator(
            source_account,
            dest_account,
            settings=test_settings,
            bridge=CustomItemBridge(cli, SOURCE_TOKEN, DEST_TOKEN, custom_template_id="tmpl"),
        )

        result = await orchestrator.migrate_one("src-vault-1")

        assert result.success_count == 1
        assert result.results[0].via_bridge
        assert cli.created_templates[0]["vault"] == {"id": result.destination_vault_id}

    @pytest.mark.asyncio
    async def test_unrecognized_category_uses_account_api(
        self, source_account, dest_account, source_tenant, dest_tenant, test_settings
    ):
        source_tenant.add_item("src-vault-1", "odd-1", "Hologram card", category="Hologram")
        cli = FakeOpCli()
        orchestrator = MigrationOrchestrator(
            source_account,
            dest_account,
            settings=test_settings,
            bridge=CustomItemBridge(cli, SOURCE_TOKEN, DEST_TOKEN, custom_template_id="tmpl"),
        )

        result = await orchestrator.migrate_one("src-vault-1")

        assert result.success_count == 1
        assert not result.results[0].via_bridge
        assert any("Unrecognized category" in w for w in result.results[0].warnings)
        assert cli.calls == []
        assert [p.title for p in dest_tenant.created_items] == ["Hologram card"]

    @pytest.mark.asyncio
    async def test_custom_item_without_bridge_fails(self, orchestrator, source_tenant):
        source_tenant.add_item("src-vault-1", "custom-1", "Door code", category="CUSTOM")
        result = await orchestrator.migrate_one("src-vault-1")
        assert result.failure_count == 1
        assert "bridge" in result.results[0].error


class TestMigrateMany:
    """Test bulk migration."""

    @pytest.fixture
    def populated(self, source_tenant):
        source_tenant.add_vault("src-vault-2", "Finance")
        source_tenant.add_vault("src-vault-3", "Legal")
        add_logins(source_tenant, "src-vault-1", 3)
        add_logins(source_tenant, "src-vault-2", 2)
        add_logins(source_tenant, "src-vault-3", 1)
        return source_tenant

    @pytest.mark.asyncio
    async def test_all_vaults_with_suffix(self, orchestrator, populated, dest_tenant):
        result = await orchestrator.migrate_many()

        assert result.success
        assert not result.cancelled
        assert [v.status for v in result.vaults] == [VaultStatus.COMPLETED] * 3
        assert sorted(v.name for v in dest_tenant.vaults.values()) == [
            "Engineering (Migrated)", "Finance (Migrated)", "Legal (Migrated)",
        ]
        assert set(result.summary.vault_summaries) == {"src-vault-1", "src-vault-2", "src-vault-3"}

    @pytest.mark.asyncio
    async def test_selection(self, orchestrator, populated, dest_tenant):
        result = await orchestrator.migrate_many(selection=["src-vault-2"])
        assert [v.source_vault_id for v in result.vaults] == ["src-vault-2"]
        assert len(dest_tenant.vaults) == 1

    @pytest.mark.asyncio
    async def test_repeated_selection_migrates_once(self, orchestrator, populated, dest_tenant):
        result = await orchestrator.migrate_many(
            selection=["src-vault-3", "src-vault-2", "src-vault-3", "missing", "missing"]
        )

        assert [v.source_vault_id for v in result.vaults] == ["missing", "src-vault-3", "src-vault-2"]
        assert len(dest_tenant.vaults) == 2
        assert len(dest_tenant.created_items) == 3

    @pytest.mark.asyncio
    async def test_unknown_selection_is_failed(self, orchestrator, populated):
        result = await orchestrator.migrate_many(selection=["missing", "src-vault-3"])
        statuses = {v.source_vault_id: v.status for v in result.vaults}
        assert statuses == {"missing": VaultStatus.FAILED, "src-vault-3": VaultStatus.COMPLETED}
        assert not result.success

    @pytest.mark.asyncio
    async def test_vault_failure_does_not_stop_run(self, orchestrator, populated, dest_tenant):
        dest_tenant.add_vault("taken", "Finance (Migrated)")

        result = await orchestrator.migrate_many()

        statuses = {v.source_vault_id: v.status for v in result.vaults}
        assert statuses == {
            "src-vault-1": VaultStatus.COMPLETED,
            "src-vault-2": VaultStatus.FAILED,
            "src-vault-3": VaultStatus.COMPLETED,
        }
        assert not result.success
        failed = next(v for v in result.vaults if v.status == VaultStatus.FAILED)
        assert failed.errors

    @pytest.mark.asyncio
    async def test_progress_stream_ends_with_finished_event(self, orchestrator, populated):
        stream = ProgressStream()
        result = await orchestrator.migrate_many(progress=stream.emit)

        events = [event async for event in stream]

        assert isinstance(events[-1], MigrationFinishedEvent)
        assert events[-1].success == result.success
        vault_events = [e for e in events if isinstance(e, ProgressEvent) and e.event_type == "vault"]
        assert len(vault_events) == 3
        assert vault_events[-1].overall_progress == 100.0
        overall = [e.overall_progress for e in vault_events]
        assert overall == sorted(overall)

    @pytest.mark.asyncio
    async def test_cancel_stops_new_vaults(self, populated, source_account, dest_account, run_log, dest_tenant):
        settings = make_settings(VAULT_CONCURRENCY_LIMIT=1)
        orchestrator = MigrationOrchestrator(source_account, dest_account, run_log=run_log, settings=settings)
        token = CancellationToken()

        def on_create(params):
            if params.title == "Login 1":
                token.cancel()

        dest_tenant.on_create = on_create

        result = await orchestrator.migrate_many(cancel_token=token)

        assert result.cancelled
        assert not result.success
        assert [v.source_vault_id for v in result.vaults] == ["src-vault-1"]
        assert result.vaults[0].status == VaultStatus.CANCELLED
        assert len(dest_tenant.vaults) == 1
        assert any("Skipped 2 vault(s)" in e.message for e in run_log.entries())

    @pytest.mark.asyncio
    async def test_vault_concurrency_is_bounded(self, populated, source_account, dest_account, dest_tenant):
        settings = make_settings(VAULT_CONCURRENCY_LIMIT=2)
        orchestrator = MigrationOrchestrator(source_account, dest_account, settings=settings)
        in_flight = {"now": 0, "peak": 0}
        original = orchestrator._migrate_vault

        async def tracked(*args, **kwargs):
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            try:
                await asyncio.sleep(0.01)
                return await original(*args, **kwargs)
            finally:
                in_flight["now"] -= 1

        orchestrator._migrate_vault = tracked
        result = await orchestrator.migrate_many()

        assert result.success
        assert in_flight["peak"] == 2
