"""Unit tests for order_etl.watcher (no real filesystem observer, no DB)."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from order_etl.shared import PersistenceUnavailable
from order_etl.watcher import CsvWatcher


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self):
        pass


class RecordingIngest:
    def __init__(self, delay: float = 0.0, fail_on: set[str] | None = None):
        self.calls: list[tuple[str, str]] = []
        self._delay = delay
        self._fail_on = fail_on or set()
        self._lock = threading.Lock()

    def __call__(self, store, path: Path):
        if self._delay:
            time.sleep(self._delay)
        with self._lock:
            self.calls.append((threading.current_thread().name, path.name))
        if path.name in self._fail_on:
            raise ValueError(f"boom: {path.name}")


def _watcher(tmp_path: Path, ingest, observers: list | None = None, **kwargs) -> CsvWatcher:
    observers = observers if observers is not None else []

    def observer_factory():
        obs = FakeObserver()
        observers.append(obs)
        return obs

    return CsvWatcher(
        lambda: MagicMock(),
        tmp_path,
        ingest=ingest,
        observer_factory=observer_factory,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestMatching:
    def test_pattern(self, tmp_path):
        w = _watcher(tmp_path, RecordingIngest())
        assert w.matches(Path("Acme (1).csv"))
        assert not w.matches(Path("notes.txt"))
        assert not w.matches(Path(".Acme.csv"))

    def test_same_shop_same_shard(self, tmp_path):
        w = _watcher(tmp_path, RecordingIngest(), worker_count=8)
        a = w.shard_for(Path("2025-08-03T23-20-16-775Z_Acme (1).csv"))
        b = w.shard_for(Path("Acme (2).csv"))
        assert a == b

    def test_worker_count_validated(self, tmp_path):
        with pytest.raises(ValueError):
            _watcher(tmp_path, RecordingIngest(), worker_count=0)


class TestLifecycle:
    def test_submit_when_stopped_is_ignored(self, tmp_path):
        w = _watcher(tmp_path, RecordingIngest())
        assert w.submit(tmp_path / "Acme.csv") is False

    def test_start_schedules_observer_and_scans_existing(self, tmp_path):
        (tmp_path / "Acme (1).csv").write_text("Id\n")
        (tmp_path / "Beta (1).csv").write_text("Id\n")
        (tmp_path / "readme.txt").write_text("x")
        ingest = RecordingIngest()
        observers: list[FakeObserver] = []
        w = _watcher(tmp_path, ingest, observers)

        w.start_watching()
        assert w.running
        w.stop_watching()

        assert not w.running
        assert observers[0].started and observers[0].stopped
        assert observers[0].scheduled[0][1] == str(tmp_path)
        assert sorted(name for _, name in ingest.calls) == ["Acme (1).csv", "Beta (1).csv"]

    def test_start_twice_is_noop(self, tmp_path):
        observers: list[FakeObserver] = []
        w = _watcher(tmp_path, RecordingIngest(), observers)
        w.start_watching()
        w.start_watching()
        w.stop_watching()
        assert len(observers) == 1

    def test_stop_drains_queued_work(self, tmp_path):
        ingest = RecordingIngest(delay=0.02)
        w = _watcher(tmp_path, ingest, worker_count=2)
        w.start_watching()
        for i in range(6):
            assert w.submit(tmp_path / f"Shop{i} (1).csv")
        w.stop_watching()
        assert len(ingest.calls) == 6

    def test_one_shop_runs_on_one_worker_in_order(self, tmp_path):
        ingest = RecordingIngest(delay=0.01)
        w = _watcher(tmp_path, ingest, worker_count=4)
        w.start_watching()
        names = [f"2025-08-0{i}T00-00-00-000Z_Acme ({i}).csv" for i in range(1, 6)]
        for name in names:
            w.submit(tmp_path / name)
        w.stop_watching()

        threads = {t for t, _ in ingest.calls}
        assert len(threads) == 1
        assert [n for _, n in ingest.calls] == names

    def test_failure_does_not_stop_worker(self, tmp_path):
        ingest = RecordingIngest(fail_on={"Acme (1).csv"})
        w = _watcher(tmp_path, ingest, worker_count=1)
        w.start_watching()
        w.submit(tmp_path / "Acme (1).csv")
        w.submit(tmp_path / "Acme (2).csv")
        w.stop_watching()
        assert [n for _, n in ingest.calls] == ["Acme (1).csv", "Acme (2).csv"]


class TestStoreHandling:
    def test_store_recreated_after_persistence_failure(self, tmp_path):
        stores = []

        def factory():
            s = MagicMock()
            stores.append(s)
            return s

        calls = []

        def ingest(store, path):
            calls.append(store)
            if len(calls) == 1:
                raise PersistenceUnavailable("db down")

        w = CsvWatcher(
            factory, tmp_path, worker_count=1, ingest=ingest,
            observer_factory=FakeObserver,
        )
        w.start_watching()
        w.submit(tmp_path / "Acme (1).csv")
        w.submit(tmp_path / "Acme (2).csv")
        w.stop_watching()

        assert len(stores) == 2
        assert calls[0] is stores[0] and calls[1] is stores[1]
        stores[0].close.assert_called_once()
        stores[1].close.assert_called_once()
