"""order_etl.cli

Unified CLI entrypoint for order-export ingestion.

Modes (--mode):
  ingest_file  : ingest one CSV export (default)
  watch        : watch a directory and ingest every export dropped into it
  merge_shops  : consolidate shops duplicated by timestamp-prefixed uploads
  summary      : print per-shop processing stats as JSON

Usage (ingest_file):
    order-etl --mode ingest_file \\
        --db-dsn "$ORDER_ETL_DB_DSN" \\
        --csv-path "/app/ftp/2025-08-03T23-20-16-775Z_Acme (1).csv" \\
        --rejects-path artifacts/rejects/acme_rejects.csv

Usage (watch):
    order-etl --mode watch --config config/order_etl.yml --watch-dir /app/ftp

Usage (merge_shops):
    order-etl --mode merge_shops --db-dsn "$ORDER_ETL_DB_DSN" --dry-run
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click

from order_etl.config import ConfigValidationError, IngestConfig, load_config
from order_etl.merge import build_merge_report, merge_duplicate_shops
from order_etl.pipeline import IngestionSummary, ingest_file
from order_etl.shared import (
    FileFatalError,
    PersistenceUnavailable,
    RejectWriter,
    write_run_report,
)
from order_etl.stats import get_processing_stats
from order_etl.store import connect_store
from order_etl.watcher import CsvWatcher


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fail(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] {message}", err=True)
    sys.exit(1)


def _resolve_config(
    run_id: str,
    config_path: str | None,
    db_dsn: str | None,
    watch_dir: str | None,
) -> IngestConfig:
    try:
        cfg = load_config(Path(config_path) if config_path else None)
    except (ConfigValidationError, FileNotFoundError) as exc:
        _fail(run_id, f"FATAL: invalid config: {exc}")
    cfg = cfg.with_overrides(
        db_dsn=db_dsn,
        watch_dir=Path(watch_dir) if watch_dir else None,
    )
    if not cfg.db_dsn:
        _fail(run_id, "FATAL: no database DSN; pass --db-dsn, set ORDER_ETL_DB_DSN or db_dsn in --config")
    return cfg


def build_ingest_report(summary: IngestionSummary) -> str:
    lines = [
        "=" * 60,
        "File Ingestion Report",
        f"  file:  {summary.filename}",
        f"  shop:  {summary.shop_name}",
        f"  hash:  {summary.file_hash}",
        "=" * 60,
    ]
    if summary.skipped:
        lines.append("  content already ingested; stored counts shown")
        if summary.errored and not summary.errors:
            lines.append("  row error details are reported only by the run that ingested the file")
    lines += [
        f"  rows read:            {summary.total_rows}",
        f"  orders inserted:      {summary.inserted}",
        f"  orders updated:       {summary.updated}",
        f"  rows errored:         {summary.errored}",
    ]
    if summary.errors:
        lines.append(f"\nRow errors ({len(summary.errors)}):")
        for e in summary.errors[:20]:
            lines.append(f"  row {e.row}: {e.error}")
        if len(summary.errors) > 20:
            lines.append(f"  ... and {len(summary.errors) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

def _run_ingest_file(
    run_id: str,
    started_at: str,
    cfg: IngestConfig,
    csv_path: str,
    rejects_path: str | None,
) -> None:
    if rejects_path:
        rejects = RejectWriter(Path(rejects_path))
    elif cfg.rejects_dir is not None:
        rejects = RejectWriter(cfg.rejects_dir / f"{run_id}_rejects.csv")
    else:
        rejects = None

    try:
        store = connect_store(cfg.db_dsn)  # type: ignore[arg-type]
    except PersistenceUnavailable as exc:
        _fail(run_id, f"FATAL: {exc}")
    try:
        summary = ingest_file(store, Path(csv_path), rejects=rejects)
    except FileFatalError as exc:
        _fail(run_id, f"FATAL: {type(exc).__name__}: {exc}")
    except PersistenceUnavailable as exc:
        _fail(run_id, f"FATAL: {exc}")
    finally:
        store.close()
        if rejects is not None:
            rejects.close()

    click.echo(build_ingest_report(summary))
    if rejects is not None and rejects.rows_written:
        click.echo(f"[{run_id}] Rejects: {rejects.path} ({rejects.rows_written} rows)")
    report_path = write_run_report(
        run_id, started_at, "ingest_file",
        {"csv_path": csv_path},
        summary.to_dict(),
        reports_dir=cfg.reports_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


def _run_watch(run_id: str, cfg: IngestConfig) -> None:
    if not cfg.watch_dir.is_dir():
        _fail(run_id, f"FATAL: watch directory does not exist: {cfg.watch_dir}")

    watcher = CsvWatcher(
        lambda: connect_store(cfg.db_dsn),  # type: ignore[arg-type]
        cfg.watch_dir,
        file_pattern=cfg.file_pattern,
        worker_count=cfg.worker_count,
        queue_size=cfg.queue_size,
    )
    watcher.start_watching()
    click.echo(
        f"[{run_id}] Watching {cfg.watch_dir} for {cfg.file_pattern} "
        f"({cfg.worker_count} workers); Ctrl-C to stop"
    )
    try:
        while watcher.running:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo(f"[{run_id}] Interrupted; draining queued files...")
    finally:
        watcher.stop_watching()
    click.echo(f"[{run_id}] Watcher stopped.")


def _run_merge_shops(
    run_id: str, started_at: str, cfg: IngestConfig, dry_run: bool
) -> None:
    try:
        store = connect_store(cfg.db_dsn)  # type: ignore[arg-type]
    except PersistenceUnavailable as exc:
        _fail(run_id, f"FATAL: {exc}")
    try:
        ctrs = merge_duplicate_shops(store)
        click.echo(build_merge_report(ctrs, dry_run=dry_run))
        if dry_run:
            store.rollback()
            click.echo(f"[{run_id}] DRY RUN — rolled back.")
        else:
            store.commit()
            click.echo(f"[{run_id}] Committed.")
    except PersistenceUnavailable as exc:
        _fail(run_id, f"FATAL: {exc}")
    except Exception:
        store.rollback()
        raise
    finally:
        store.close()

    report_path = write_run_report(
        run_id, started_at, "merge_shops",
        {"dry_run": str(dry_run)},
        ctrs.to_dict(),
        reports_dir=cfg.reports_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")


def _run_summary(run_id: str, cfg: IngestConfig) -> None:
    try:
        store = connect_store(cfg.db_dsn)  # type: ignore[arg-type]
    except PersistenceUnavailable as exc:
        _fail(run_id, f"FATAL: {exc}")
    try:
        stats = get_processing_stats(store, recent_limit=cfg.recent_files_limit)
        store.rollback()
    except PersistenceUnavailable as exc:
        _fail(run_id, f"FATAL: {exc}")
    finally:
        store.close()
    click.echo(json.dumps([s.to_dict() for s in stats], indent=2))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="ingest_file",
    type=click.Choice(["ingest_file", "watch", "merge_shops", "summary"]),
    show_default=True,
    help="Operation to run",
)
@click.option("--db-dsn", default=None, help="PostgreSQL DSN (overrides config and ORDER_ETL_DB_DSN)")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config file")
@click.option("--csv-path", default=None, type=click.Path(), help="[ingest_file] Input CSV")
@click.option("--rejects-path", default=None, type=click.Path(), help="[ingest_file] Rejects CSV for rows that failed")
@click.option("--watch-dir", default=None, type=click.Path(), help="[watch] Directory to watch")
@click.option("--dry-run", is_flag=True, default=False, help="[merge_shops] Roll back instead of committing")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    show_default=True,
)
def main(
    mode: str,
    db_dsn: str | None,
    config_path: str | None,
    csv_path: str | None,
    rejects_path: str | None,
    watch_dir: str | None,
    dry_run: bool,
    run_id: str | None,
    log_level: str,
) -> None:
    """Order-export ingestion CLI."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    if mode == "ingest_file" and not csv_path:
        _fail(run_id, "ERROR: --csv-path is required for --mode ingest_file")

    cfg = _resolve_config(run_id, config_path, db_dsn, watch_dir)
    if mode != "summary":
        click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "ingest_file":
        _run_ingest_file(run_id, started_at, cfg, csv_path, rejects_path)  # type: ignore[arg-type]
    elif mode == "watch":
        _run_watch(run_id, cfg)
    elif mode == "merge_shops":
        _run_merge_shops(run_id, started_at, cfg, dry_run)
    elif mode == "summary":
        _run_summary(run_id, cfg)


if __name__ == "__main__":
    main()
