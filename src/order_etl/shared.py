"""order_etl.shared

Shared pieces used by the ingestion pipeline, the watcher, the merge engine
and the CLI: the exception taxonomy, RejectWriter and run-report writing.
"""

from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FileFatalError(Exception):
    """A whole file cannot be ingested; its csv_file record is marked failed."""

    def __init__(self, path: Path | str, message: str) -> None:
        super().__init__(f"{message}: {path}")
        self.path = str(path)


class FileAccessError(FileFatalError):
    """The file is missing, not a regular file, or cannot be read."""


class ParseError(FileFatalError):
    """The CSV stream itself is malformed (framing, quoting, encoding)."""


class RowConflictError(Exception):
    """A row write came back as a uniqueness conflict the upsert did not absorb."""

    def __init__(self, entity: str, conflict_on: str | None) -> None:
        super().__init__(f"{entity} write conflicted on {conflict_on or 'unknown key'}")
        self.entity = entity
        self.conflict_on = conflict_on


class PersistenceUnavailable(Exception):
    """The database cannot be reached; fatal for the whole cycle."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rows that failed to persist."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.rows_written = 0

    @property
    def path(self) -> Path:
        return self._path

    def write(self, row: dict[str, str], row_index: int, reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_row_index", "_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_row_index"] = str(row_index)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()
        self.rows_written += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    source_paths: dict[str, str],
    counters: dict[str, Any],
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        **source_paths,
        "counters": counters,
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
