"""order_etl.reader

Lazy CSV row stream for one export file.

The file is never loaded into memory: rows are produced one at a time, in
file order, keyed by the header row exactly as written.  The stream can be
consumed once.  Structural problems (bad quoting, undecodable bytes, a file
that cannot be opened) raise ParseError; they are never per-row errors.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterator

from order_etl.shared import ParseError


class CsvRecordStream:
    """Single-pass iterator of raw row dicts with a running row count."""

    def __init__(self, path: Path, encoding: str = "utf-8-sig") -> None:
        self._path = path
        self._encoding = encoding
        self._started = False
        self.rows_read = 0
        self.fieldnames: list[str] | None = None

    def __iter__(self) -> Iterator[dict[str, str]]:
        if self._started:
            raise RuntimeError(f"record stream already consumed: {self._path}")
        self._started = True
        return self._rows()

    def _rows(self) -> Iterator[dict[str, str]]:
        try:
            fh = self._path.open(newline="", encoding=self._encoding)
        except OSError as exc:
            raise ParseError(self._path, f"cannot open CSV stream ({exc.strerror or exc})") from exc
        with fh:
            reader = csv.DictReader(fh, strict=True)
            try:
                self.fieldnames = list(reader.fieldnames or [])
                for raw in reader:
                    self.rows_read += 1
                    # Overflow cells land under the None key; they map to no column.
                    raw.pop(None, None)  # type: ignore[call-overload]
                    yield {k: (v if v is not None else "") for k, v in raw.items()}
            except csv.Error as exc:
                raise ParseError(
                    self._path, f"malformed CSV near line {reader.line_num} ({exc})"
                ) from exc
            except UnicodeDecodeError as exc:
                raise ParseError(self._path, f"undecodable CSV content ({exc.reason})") from exc
