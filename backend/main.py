import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

from logconfig.logger import (
    configure_file_logging,
    get_context_filter,
    get_logger,
    install_asyncio_exception_handler,
)
from vault_migration.core.settings import Settings, get_settings
from vault_migration.exceptions import BaseApplicationError, ConfigurationError
from vault_migration.schemas.migration import MigrationFinishedEvent, MigrationRunResult
from vault_migration.services import (
    CancellationToken,
    CustomItemBridge,
    HttpVaultClient,
    ItemTranscoder,
    MigrationOrchestrator,
    OpCli,
    ProgressStream,
    RetryManager,
    RunLog,
    VaultAccount,
)
from vault_migration.utils.log_report import render_report

# Initialize logger
logger = get_logger()
context_filter = get_context_filter()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-migrator",
        description="Copy credential vaults and their items between two tenants.",
    )
    parser.add_argument("--source-token", help="Source service account token (default: SOURCE_TOKEN)")
    parser.add_argument("--source-url", help="Source account API URL (default: SOURCE_API_URL)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-vaults", help="List source vaults with item counts")

    migrate = subparsers.add_parser("migrate", help="Migrate vaults to the destination tenant")
    migrate.add_argument("--dest-token", help="Destination service account token (default: DEST_TOKEN)")
    migrate.add_argument("--dest-url", help="Destination account API URL (default: DEST_API_URL)")
    migrate.add_argument(
        "--vault",
        dest="vaults",
        action="append",
        metavar="ID",
        help="Source vault id to migrate; repeatable. All vaults when omitted.",
    )
    migrate.add_argument(
        "--custom-template-id",
        help="Destination custom template id (default: CUSTOM_TEMPLATE_ID, else discovered)",
    )
    migrate.add_argument("--report", metavar="PATH", help="Write the migration report to PATH")

    return parser


def _require(value: Optional[str], config_key: str) -> str:
    if not value:
        raise ConfigurationError(f"{config_key} is required", config_key=config_key)
    return value


async def list_vaults_command(args: argparse.Namespace, settings: Settings) -> int:
    retry_manager = RetryManager()
    source = VaultAccount(
        HttpVaultClient.factory(args.source_url or settings.SOURCE_API_URL, settings),
        retry_manager,
        name="source",
    )
    try:
        await source.authenticate(_require(args.source_token or settings.SOURCE_TOKEN, "SOURCE_TOKEN"))
        vaults = await source.list_vaults()
        for vault in vaults:
            count = await source.count_items(vault.id, settings.INCLUDE_ARCHIVED_IN_COUNTS)
            print(f"{vault.name}\t{vault.id}\t{count} items")
        logger.info(f"Listed {len(vaults)} source vault(s)")
    finally:
        await source.close()
    return 0


async def _print_progress(stream: ProgressStream) -> None:
    async for event in stream:
        if isinstance(event, MigrationFinishedEvent):
            logger.info(f"Finished: {event.message}")
        elif event.event_type == "vault":
            logger.info(f"[{event.overall_progress or 0:.0f}%] {event.message}")
        else:
            logger.info(
                f"[{event.vault_name}] {event.message} "
                f"({event.success_count} ok, {event.failure_count} failed)"
            )


async def migrate_with_progress(
    orchestrator: MigrationOrchestrator,
    selection: Optional[List[str]],
    cancel_token: CancellationToken,
) -> MigrationRunResult:
    """Run migrate_many while a printer task logs its progress events."""
    stream = ProgressStream()
    printer = asyncio.create_task(_print_progress(stream))
    try:
        result = await orchestrator.migrate_many(
            selection=selection,
            cancel_token=cancel_token,
            progress=stream.emit,
        )
    finally:
        if not stream.finished:
            printer.cancel()
        await asyncio.gather(printer, return_exceptions=True)
    return result


async def migrate_command(args: argparse.Namespace, settings: Settings) -> int:
    source_token = args.source_token or settings.SOURCE_TOKEN
    dest_token = args.dest_token or settings.DEST_TOKEN
    is_valid, errors = settings.validate_migration_config(source_token, dest_token)
    if not is_valid:
        raise ConfigurationError("; ".join(errors))

    retry_manager = RetryManager()
    source = VaultAccount(
        HttpVaultClient.factory(args.source_url or settings.SOURCE_API_URL, settings),
        retry_manager,
        name="source",
    )
    destination = VaultAccount(
        HttpVaultClient.factory(args.dest_url or settings.DEST_API_URL, settings),
        retry_manager,
        name="destination",
    )

    cancel_token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_token.cancel)
    except NotImplementedError:
        signal.signal(signal.SIGINT, lambda *_: cancel_token.cancel())

    run_log = RunLog()
    try:
        await source.authenticate(source_token)
        await destination.authenticate(dest_token)

        bridge = CustomItemBridge(
            OpCli(settings.OP_CLI_PATH, settings.OP_CLI_TIMEOUT_SECONDS),
            source_token,
            dest_token,
            args.custom_template_id or settings.CUSTOM_TEMPLATE_ID,
            retry_manager=retry_manager,
        )
        orchestrator = MigrationOrchestrator(
            source,
            destination,
            transcoder=ItemTranscoder(settings.SECURE_NOTE_PLACEHOLDER),
            run_log=run_log,
            settings=settings,
            bridge=bridge,
        )
        result = await migrate_with_progress(orchestrator, args.vaults, cancel_token)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            signal.signal(signal.SIGINT, signal.default_int_handler)
        await source.close()
        await destination.close()

    for vault in result.vaults:
        logger.info(
            f"{vault.source_vault_name}: {vault.status.value} "
            f"({vault.success_count} ok, {vault.failure_count} failed, "
            f"source {vault.source_item_count}, destination {vault.dest_item_count})"
        )

    if args.report:
        report_path = Path(args.report)
        report_path.write_text(render_report(run_log), encoding="utf-8")
        logger.info(f"Migration report written to {report_path}")

    if result.cancelled:
        return 130
    return 0 if result.success else 1


async def run(args: argparse.Namespace) -> int:
    install_asyncio_exception_handler()
    settings = get_settings()
    if args.command == "list-vaults":
        return await list_vaults_command(args, settings)
    return await migrate_command(args, settings)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    context_filter.set_context(command=args.command)

    if settings.LOG_TO_FILES:
        configure_file_logging(settings.LOG_DIR, settings.LOG_LEVEL)

    try:
        return asyncio.run(run(args))
    except BaseApplicationError as e:
        logger.bind(error=e.to_dict()).debug("Run aborted")
        user_error = e.to_user_dict()
        logger.error(f"{e.__class__.__name__} [{user_error['error_code']}]: {e.message}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
