"""order_etl.pipeline

End-to-end ingestion of one order-export file.

Processing order:
  1.  stat the file                                  → FileAccessError
  2.  resolve (find-or-create) the shop from the filename
  3.  SHA-256 fingerprint                            → FileAccessError
  4.  content gate: 'completed' → return stored counts, else claim as
      'processing' and COMMIT (the claim outlives a later failure)
  5.  stream rows; per row:  SAVEPOINT row_<n>
        transform_row → upsert_order_bundle
        error → ROLLBACK TO SAVEPOINT, record (row index, message), continue
  6.  csv_file → 'completed' with counts, shop.last_sync = now(), COMMIT

A file-level failure after step 2 rolls back the row work, marks the
csv_file 'failed', writes a processing_log entry and re-raises.
PersistenceUnavailable always propagates untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from order_etl.content_gate import fingerprint_file, open_gate
from order_etl.reader import CsvRecordStream
from order_etl.shared import FileAccessError, PersistenceUnavailable, RejectWriter
from order_etl.sources import extract_shop_name, resolve_shop
from order_etl.store import CsvFileRecord, OrderStore
from order_etl.transform import transform_row
from order_etl.upsert import upsert_order_bundle

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

@dataclass
class RowError:
    row: int
    error: str
    data: dict[str, str] | None = None


@dataclass
class IngestionSummary:
    filename: str = ""
    shop_name: str | None = None
    file_hash: str | None = None
    total_rows: int = 0
    inserted: int = 0
    updated: int = 0
    errored: int = 0
    skipped: bool = False
    errors: list[RowError] = field(default_factory=list)

    def record_error(self, row_index: int, message: str, data: dict[str, str] | None) -> None:
        self.errored += 1
        self.errors.append(RowError(row_index, message, data))

    def to_dict(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "shop_name": self.shop_name,
            "file_hash": self.file_hash,
            "total_rows": self.total_rows,
            "inserted": self.inserted,
            "updated": self.updated,
            "errored": self.errored,
            "skipped": self.skipped,
            "errors": [
                {"row": e.row, "error": e.error} for e in self.errors[:50]
            ],
        }


def _summary_from_record(
    path: Path, shop_name: str, file_hash: str, record: CsvFileRecord
) -> IngestionSummary:
    return IngestionSummary(
        filename=path.name,
        shop_name=shop_name,
        file_hash=file_hash,
        total_rows=record.records_total,
        inserted=record.records_inserted,
        updated=record.records_updated,
        errored=record.records_errors,
        skipped=True,
    )


def _error_text(exc: BaseException) -> str:
    """First line of the exception message (drops driver DETAIL/HINT lines)."""
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


# ---------------------------------------------------------------------------
# Row phase
# ---------------------------------------------------------------------------

def _process_records(
    store: OrderStore,
    shop_id: str,
    path: Path,
    summary: IngestionSummary,
    rejects: RejectWriter | None,
) -> None:
    stream = CsvRecordStream(path)
    for idx, row in enumerate(stream, start=1):
        sp = f"row_{idx}"
        store.savepoint(sp)
        try:
            created = upsert_order_bundle(store, shop_id, transform_row(row))
            store.release_savepoint(sp)
        except PersistenceUnavailable:
            raise
        except Exception as exc:
            store.rollback_to_savepoint(sp)
            message = _error_text(exc)
            summary.record_error(idx, message, row)
            if rejects is not None:
                rejects.write(row, idx, message)
            log.warning("%s row %d: %s", path.name, idx, message)
            continue
        if created:
            summary.inserted += 1
        else:
            summary.updated += 1
    summary.total_rows = stream.rows_read


# ---------------------------------------------------------------------------
# Failure bookkeeping
# ---------------------------------------------------------------------------

def _record_failure(
    store: OrderStore,
    shop_name: str,
    file_id: str | None,
    path: Path,
    exc: Exception,
) -> None:
    """Mark the csv_file failed and write a processing_log entry; never raises.

    The shop is looked up again after the rollback: a shop created earlier in
    the failed transaction no longer exists.
    """
    try:
        store.rollback()
        shop = store.find_shop_by_name(shop_name)
        if file_id is not None:
            store.fail_csv_file(file_id, _error_text(exc))
        store.log_processing(
            shop.id if shop else None,
            "error",
            f"File processing error: {_error_text(exc)}",
            {"filename": path.name, "file_path": str(path), "error_type": type(exc).__name__},
        )
        store.commit()
    except Exception as log_exc:
        log.error("Failed to record processing failure for %s: %s", path.name, log_exc)
        try:
            store.rollback()
        except Exception as rb_exc:
            log.error("Rollback after failed bookkeeping for %s failed: %s", path.name, rb_exc)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def ingest_file(
    store: OrderStore,
    path: Path | str,
    rejects: RejectWriter | None = None,
) -> IngestionSummary:
    """Ingest one export file for the shop named by its filename.

    Raises:
        FileAccessError: missing/unreadable file or fingerprinting failure.
        ParseError: the CSV stream is malformed.
        PersistenceUnavailable: the database cannot be reached.
    Per-row failures are reported in IngestionSummary.errors instead.
    """
    path = Path(path)
    shop_name = extract_shop_name(path.name)
    file_id: str | None = None
    log.info("Processing file: %s for shop: %s", path.name, shop_name)

    try:
        if not path.is_file():
            raise FileAccessError(path, "file not found or not a regular file")
        file_size = path.stat().st_size

        shop = resolve_shop(store, path.name)
        file_hash = fingerprint_file(path)
        gate = open_gate(store, shop.id, path, file_hash, file_size)
        store.commit()

        if gate.already_completed:
            return _summary_from_record(path, shop.name, file_hash, gate.previous)  # type: ignore[arg-type]

        file_id = gate.file_id
        summary = IngestionSummary(filename=path.name, shop_name=shop.name, file_hash=file_hash)
        _process_records(store, shop.id, path, summary, rejects)

        store.complete_csv_file(
            file_id,
            summary.total_rows,
            summary.inserted,
            summary.updated,
            summary.errored,
            f"{summary.errored} processing errors" if summary.errored else None,
        )
        store.mark_shop_synced(shop.id)
        store.commit()
    except PersistenceUnavailable:
        raise
    except Exception as exc:
        log.error("Error processing file %s: %s", path.name, exc)
        _record_failure(store, shop_name, file_id, path, exc)
        raise

    log.info(
        "File processing completed: %s (%d rows, %d inserted, %d updated, %d errors)",
        path.name, summary.total_rows, summary.inserted, summary.updated, summary.errored,
    )
    return summary
