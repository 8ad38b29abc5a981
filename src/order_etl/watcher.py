"""order_etl.watcher

Directory watcher that drives ingest_file for every export dropped into it.

  watchdog observer ──▶ submit(path) ──▶ worker[crc32(shop) % N].queue ──▶ ingest_file

* Each worker is a thread with its own OrderStore (one connection per
  thread) and a bounded queue; a full queue blocks the submitter.
* All files of one shop hash to the same worker, so two files for the same
  shop never race on find-or-create-shop or on order upserts.  Different
  shops run concurrently with no ordering between them.
* Failures of watch-triggered ingestion are logged and the worker moves on.
* stop_watching() stops the observer, then lets every worker finish its
  in-flight file and everything already queued before closing its store.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import queue
import threading
import zlib
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from order_etl.pipeline import ingest_file
from order_etl.shared import PersistenceUnavailable
from order_etl.sources import extract_shop_name
from order_etl.store import OrderStore

log = logging.getLogger(__name__)

StoreFactory = Callable[[], OrderStore]
IngestFn = Callable[[OrderStore, Path], Any]

_STOP = object()


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------

class _ShardWorker(threading.Thread):
    def __init__(
        self,
        index: int,
        store_factory: StoreFactory,
        ingest: IngestFn,
        queue_size: int,
    ) -> None:
        super().__init__(name=f"order-etl-worker-{index}", daemon=True)
        self.queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._store_factory = store_factory
        self._ingest = ingest
        self._store: OrderStore | None = None
        self.files_processed = 0
        self.files_failed = 0

    def run(self) -> None:
        try:
            while True:
                item = self.queue.get()
                try:
                    if item is _STOP:
                        return
                    self._handle(item)
                finally:
                    self.queue.task_done()
        finally:
            self._close_store()

    def _handle(self, path: Path) -> None:
        try:
            if self._store is None:
                self._store = self._store_factory()
            self._ingest(self._store, path)
            self.files_processed += 1
        except PersistenceUnavailable as exc:
            self.files_failed += 1
            log.error("Database unavailable while ingesting %s: %s", path.name, exc)
            self._close_store()
        except Exception as exc:
            self.files_failed += 1
            log.error("Watch-triggered ingest of %s failed: %s", path.name, exc)

    def _close_store(self) -> None:
        if self._store is not None:
            try:
                self._store.close()
            except Exception as exc:  # noqa: BLE001
                log.warning("Closing store for %s failed: %s", self.name, exc)
            self._store = None


# ---------------------------------------------------------------------------
# watchdog bridge
# ---------------------------------------------------------------------------

class _CsvEventHandler(FileSystemEventHandler):
    def __init__(self, watcher: "CsvWatcher") -> None:
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            log.info("New CSV file detected: %s", os.fsdecode(event.src_path))
            self._watcher.submit(Path(os.fsdecode(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            log.info("CSV file changed: %s", os.fsdecode(event.src_path))
            self._watcher.submit(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.submit(Path(os.fsdecode(event.dest_path)))


# ---------------------------------------------------------------------------
# Watcher
# ---------------------------------------------------------------------------

class CsvWatcher:
    def __init__(
        self,
        store_factory: StoreFactory,
        watch_dir: Path | str,
        file_pattern: str = "*.csv",
        worker_count: int = 4,
        queue_size: int = 100,
        ingest: IngestFn = ingest_file,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be >= 1")
        self.watch_dir = Path(watch_dir)
        self.file_pattern = file_pattern
        self._store_factory = store_factory
        self._worker_count = worker_count
        self._queue_size = queue_size
        self._ingest = ingest
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._workers: list[_ShardWorker] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._observer is not None

    def matches(self, path: Path) -> bool:
        name = path.name
        return not name.startswith(".") and fnmatch.fnmatch(name, self.file_pattern)

    def shard_for(self, path: Path) -> int:
        shop_name = extract_shop_name(path.name)
        return zlib.crc32(shop_name.encode("utf-8")) % self._worker_count

    def submit(self, path: Path) -> bool:
        """Queue a file for ingestion.  Returns False when it is ignored."""
        if not self.matches(path):
            return False
        with self._lock:
            workers = self._workers
        if not workers:
            log.warning("Watcher not running; ignoring %s", path)
            return False
        workers[self.shard_for(path)].queue.put(path)
        return True

    def start_watching(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            log.info("Starting CSV file watcher on %s", self.watch_dir)
            self._workers = [
                _ShardWorker(i, self._store_factory, self._ingest, self._queue_size)
                for i in range(self._worker_count)
            ]
            for worker in self._workers:
                worker.start()
            observer = self._observer_factory()
            observer.schedule(_CsvEventHandler(self), str(self.watch_dir), recursive=False)
            observer.start()
            self._observer = observer

        for path in sorted(self.watch_dir.iterdir()):
            if path.is_file():
                self.submit(path)
        log.info("CSV file watcher started")

    def stop_watching(self) -> None:
        with self._lock:
            observer = self._observer
            workers = self._workers
            self._observer = None
            self._workers = []
        if observer is None:
            return
        observer.stop()
        observer.join()
        for worker in workers:
            worker.queue.put(_STOP)
        for worker in workers:
            worker.join()
        log.info(
            "CSV file watcher stopped (%d files processed, %d failed)",
            sum(w.files_processed for w in workers),
            sum(w.files_failed for w in workers),
        )
