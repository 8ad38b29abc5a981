"""order_etl.content_gate

At-most-once ingestion of a given file content per shop.

A file's identity within a shop is the SHA-256 of its bytes.  A csv_file row
already 'completed' for (shop, hash) short-circuits the pipeline with the
stored counts; anything else (new, 'processing' left by a crash, 'failed')
is claimed as 'processing' and ingested again.  A file whose bytes changed
gets a new hash and therefore a new csv_file row next to the old one.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from order_etl.shared import FileAccessError, FileFatalError
from order_etl.store import FILE_STATUS_COMPLETED, CsvFileRecord, OrderStore

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def fingerprint_file(path: Path) -> str:
    """Hex SHA-256 of the file's full content, read in chunks."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise FileAccessError(path, f"cannot fingerprint file ({exc.strerror or exc})") from exc
    return digest.hexdigest()


@dataclass(frozen=True)
class GateDecision:
    file_id: str
    file_hash: str
    already_completed: bool
    previous: CsvFileRecord | None = None


def open_gate(
    store: OrderStore,
    shop_id: str,
    path: Path,
    file_hash: str,
    file_size: int,
) -> GateDecision:
    """Decide whether `path` still needs ingesting for the shop."""
    existing = store.get_csv_file(shop_id, file_hash)
    if existing is not None and existing.status == FILE_STATUS_COMPLETED:
        log.info("File %s already processed for shop %s, skipping", path.name, shop_id)
        return GateDecision(existing.id, file_hash, True, existing)

    claim = store.claim_csv_file(shop_id, path.name, str(path), file_size, file_hash)
    if claim.conflicted:
        raise FileFatalError(
            path, f"cannot claim csv_file record (conflict on {claim.conflict_on})"
        )
    if existing is not None:
        log.info(
            "Re-claiming %s (previous status %s) for shop %s",
            path.name, existing.status, shop_id,
        )
    return GateDecision(claim.row_id, file_hash, False, existing)  # type: ignore[arg-type]
