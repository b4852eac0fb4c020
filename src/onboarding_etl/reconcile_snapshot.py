"""onboarding_etl.reconcile_snapshot

CLI entry point: one full reconciliation run over a snapshot directory.

Usage:
    onboarding-reconcile --data-dir ./snapshot --db-dsn "postgresql://..."
    onboarding-reconcile --data-dir ./snapshot --dry-run

Phases:
  1. Load the activation tag config (FATAL on invalid YAML).
  2. Load all thirteen datasets (FATAL if any is missing or lacks its key
     columns; nothing is written).
  3. Reconcile in memory.
  4. Optional Filled/Missing presence export.
  5. Write everything in one transaction (rolled back on --dry-run; FATAL
     on a persistence error).  Without a DSN a dry run skips the database.
  6. JSON run report under ./artifacts/reports/{run_id}.json.
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click
import psycopg

from onboarding_etl.activation_tags import (
    DEFAULT_TAG_CONFIG_PATH,
    ActivationTagConfig,
    TagConfigValidationError,
    load_tag_config,
)
from onboarding_etl.dataset_loader import load_snapshot
from onboarding_etl.export import write_presence_export
from onboarding_etl.reconcile import ReconciliationResult, reconcile
from onboarding_etl.shared import (
    MissingRequiredDatasetError,
    PersistenceConflictError,
    RejectWriter,
    RunCounters,
    write_run_report,
)
from onboarding_etl.writer import write_reconciliation


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def build_reconciliation_report(counters: RunCounters, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Onboarding Reconciliation Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  datasets loaded:     {counters.datasets_loaded}",
        f"  rows read:           {counters.rows_read}",
        f"  rows rejected:       {counters.rows_rejected}",
        f"  fact rows indexed:   {counters.fact_rows_indexed}",
        f"    blank FK:          {counters.blank_foreign_keys}",
        f"    unresolved FK:     {sum(counters.unresolved_foreign_keys.values())}",
        f"  accounts seen:       {counters.accounts_seen}",
        f"    excluded (admin):  {counters.accounts_excluded_admin}",
        f"  orphan roles:        {counters.orphan_roles}",
        f"  onboarding records:  {counters.onboarding_records}",
    ]
    for status, n in sorted(counters.status_counts.items()):
        lines.append(f"    → {status:<16} {n}")
    lines.append(f"  commercial records:  {counters.commercial_records}")
    for tier, n in sorted(counters.tier_counts.items()):
        lines.append(f"    → {tier:<30} {n}")
    lines.append(
        f"  upserted:            portal_user={counters.portal_users_upserted} "
        f"onboarding={counters.onboarding_upserted} "
        f"commercial={counters.commercial_upserted}"
    )
    if counters.warnings:
        lines.append(f"\nWarnings ({len(counters.warnings)}):")
        for w in counters.warnings[:20]:
            lines.append(f"  {w}")
        if len(counters.warnings) > 20:
            lines.append(f"  ... and {len(counters.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------

def _connect(db_dsn: str) -> psycopg.Connection:
    try:
        return psycopg.connect(db_dsn, autocommit=False)
    except psycopg.OperationalError as exc:
        raise PersistenceConflictError(f"cannot connect to database: {exc}") from exc


def _run_reconciliation(
    run_id: str,
    started_at: str,
    db_dsn: str | None,
    counters: RunCounters,
    rejects: RejectWriter,
    data_dir: Path,
    tag_config: ActivationTagConfig,
    dry_run: bool,
    max_workers: int = 1,
    export_path: Path | None = None,
) -> ReconciliationResult:
    try:
        snapshot = load_snapshot(data_dir, counters, rejects, max_workers=max_workers)
    except MissingRequiredDatasetError as exc:
        rejects.close()
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] Loaded {counters.datasets_loaded} datasets ({counters.rows_read} rows)")

    try:
        result = reconcile(snapshot, tag_config, counters, rejects)
    finally:
        rejects.close()
    click.echo(
        f"[{run_id}] Reconciled: onboarding={counters.onboarding_records} "
        f"commercial={counters.commercial_records}"
    )

    if export_path is not None:
        n = write_presence_export(export_path, result.onboarding_records)
        click.echo(f"[{run_id}] Presence export: {export_path} ({n} rows)")

    if db_dsn is None:
        click.echo(f"[{run_id}] [dry-run] No DSN given; database phase skipped.")
        return result

    try:
        conn = _connect(db_dsn)
        try:
            write_reconciliation(
                conn, result, run_id, started_at, tag_config, counters, dry_run=dry_run,
            )
        finally:
            conn.close()
    except PersistenceConflictError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}; nothing written", err=True)
        sys.exit(1)

    if dry_run:
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    else:
        click.echo(f"[{run_id}] Committed.")
    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--data-dir", required=True, type=click.Path(file_okay=False), help="Directory holding the thirteen snapshot CSVs")
@click.option("--db-dsn", default=None, envvar="DB_DSN", help="PostgreSQL DSN (or DB_DSN)")
@click.option(
    "--tag-config",
    default=str(DEFAULT_TAG_CONFIG_PATH),
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Activation tag YAML",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--rejects-path", default=None, type=click.Path(), help="CSV file for rejected rows")
@click.option("--export-path", default=None, type=click.Path(), help="Write a Filled/Missing presence CSV")
@click.option("--max-workers", default=1, type=click.IntRange(min=1), show_default=True, help="Threads used to parse datasets")
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    data_dir: str,
    db_dsn: str | None,
    tag_config: str,
    dry_run: bool,
    run_id: str | None,
    rejects_path: str | None,
    export_path: str | None,
    max_workers: int,
    log_level: str,
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    if db_dsn is None and not dry_run:
        click.echo(f"[{run_id}] FATAL: --db-dsn (or DB_DSN) is required unless --dry-run", err=True)
        sys.exit(1)

    click.echo(f"[{run_id}] Starting reconcile_snapshot run (dry_run={dry_run})")

    try:
        tags = load_tag_config(Path(tag_config))
    except (TagConfigValidationError, FileNotFoundError) as exc:
        click.echo(f"[{run_id}] FATAL: invalid tag config {tag_config}: {exc}", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] Tag config version={tags.version} hash={tags.yaml_hash[:12]}")

    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path) if rejects_path else None)

    _run_reconciliation(
        run_id, started_at, db_dsn, counters, rejects,
        data_dir=Path(data_dir),
        tag_config=tags,
        dry_run=dry_run,
        max_workers=max_workers,
        export_path=Path(export_path) if export_path else None,
    )

    click.echo(build_reconciliation_report(counters, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, dry_run,
        {"data_dir": data_dir, "tag_config": tag_config, "tag_config_hash": tags.yaml_hash},
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


if __name__ == "__main__":
    main()
