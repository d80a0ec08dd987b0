"""
Plain-text renderings of a run log.

Produces the global and per-vault log listings, the failed item summary, the
vault statistics block and the full downloadable report.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from vault_migration.schemas.migration import FailedItemRecord, RunLogEntry
from vault_migration.services.run_log import RunLog

HEAVY_RULE = "═" * 79
LIGHT_RULE = "─" * 79
PLAIN_RULE = "=" * 80


def _timestamp(value: datetime) -> str:
    return value.isoformat()


def format_entry(entry: RunLogEntry, include_vault: bool = True) -> str:
    line = f"[{_timestamp(entry.timestamp)}] [{entry.level}]"
    if include_vault and entry.vault_id:
        line += f" [Vault: {entry.vault_id}]"
    if entry.item_id:
        line += f" [Item: {entry.item_id}]"
    return f"{line} {entry.message}"


def render_global_log(run_log: RunLog) -> str:
    return "\n".join(format_entry(e) for e in run_log.entries())


def render_vault_log(run_log: RunLog, vault_id: str) -> str:
    """Entries of one vault, without the vault column. Empty if none."""
    return "\n".join(format_entry(e, include_vault=False) for e in run_log.vault_entries(vault_id))


def render_failure_summary(run_log: RunLog) -> str:
    failed = run_log.failed_items()
    if not failed:
        return (
            f"\n{HEAVY_RULE}\n"
            "✓ NO FAILED ITEMS - All items migrated successfully!\n"
            f"{HEAVY_RULE}\n"
        )

    by_vault: Dict[str, List[FailedItemRecord]] = {}
    for record in failed:
        by_vault.setdefault(record.vault_id, []).append(record)

    lines = [
        "",
        HEAVY_RULE,
        f"FAILED ITEMS SUMMARY ({len(failed)} total failures)",
        HEAVY_RULE,
        "",
    ]
    for vault_id, records in by_vault.items():
        lines.append(f"VAULT: {records[0].vault_name}")
        lines.append(f"UUID:  {vault_id}")
        lines.append(f"Failed Items: {len(records)}")
        lines.append(LIGHT_RULE)
        lines.append("")
        for index, record in enumerate(records, start=1):
            lines.append(f'  {index}. Item: "{record.item_title}"')
            lines.append(f"     UUID:  {record.item_id}")
            lines.append(f"     Error: {record.error}")
            lines.append(f"     Time:  {_timestamp(record.timestamp)}")
            lines.append("")
        lines.append("")
    lines.append(HEAVY_RULE)
    return "\n".join(lines) + "\n"


def render_vault_stats_summary(run_log: RunLog) -> str:
    summaries = run_log.vault_summaries()
    if not summaries:
        return ""

    lines = ["", HEAVY_RULE, "VAULT MIGRATION STATISTICS", HEAVY_RULE, ""]
    for vault_id, stats in summaries.items():
        clean = stats.failure_count == 0 and stats.source_item_count == stats.dest_item_count
        dest_count = stats.dest_item_count if stats.dest_item_count is not None else "n/a"
        lines.append(f"{'✓' if clean else '⚠'} VAULT: {stats.vault_name}")
        lines.append(f"  UUID:        {vault_id}")
        lines.append(f"  Status:      {stats.status.value}")
        lines.append(f"  Source:      {stats.source_item_count} items")
        lines.append(f"  Destination: {dest_count} items")
        lines.append(f"  Success:     {stats.success_count} items")
        lines.append(f"  Failed:      {stats.failure_count} items")
        lines.append(f"  Completed:   {_timestamp(stats.completed_at)}")
        lines.append("")
    lines.append(HEAVY_RULE)
    return "\n".join(lines) + "\n"


def render_report(run_log: RunLog, generated_at: Optional[datetime] = None) -> str:
    """Full downloadable report: header counters, statistics, failures, detailed log."""
    generated_at = generated_at or datetime.now(timezone.utc)
    summary = run_log.summary()

    return (
        "Vault Migration Log\n"
        f"Generated: {_timestamp(generated_at)}\n"
        f"Total Entries: {summary.total_entries}\n"
        f"Errors: {summary.errors}\n"
        f"Warnings: {summary.warnings}\n"
        f"Vaults Processed: {summary.vaults}\n"
        f"Failed Items: {summary.failed_items}\n"
        "\n"
        f"{PLAIN_RULE}\n"
        "\n"
        f"{render_vault_stats_summary(run_log)}\n"
        f"{render_failure_summary(run_log)}\n"
        "\n"
        f"{PLAIN_RULE}\n"
        "DETAILED LOG\n"
        f"{PLAIN_RULE}\n"
        "\n"
        f"{render_global_log(run_log)}"
    )


def render_vault_report(run_log: RunLog, vault_id: str, generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    return (
        "Vault Migration Log\n"
        f"Vault ID: {vault_id}\n"
        f"Generated: {_timestamp(generated_at)}\n"
        "\n"
        f"{PLAIN_RULE}\n"
        "\n"
        f"{render_vault_log(run_log, vault_id)}"
    )
