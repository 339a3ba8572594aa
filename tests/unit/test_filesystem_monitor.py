import threading
from pathlib import Path

import pytest

pytest.importorskip("watchdog", reason="watchdog dependency is required for monitor tests")

from fitwatch.domains.activity_sync.watchers import FileSystemMonitor
from fitwatch.models.schemas import DiscoverySource


class Event:
    def __init__(self, src: Path, dest: Path | None = None, is_directory: bool = False):
        self.src_path = str(src)
        self.dest_path = str(dest) if dest else None
        self.is_directory = is_directory


class Recorder:
    def __init__(self):
        self.calls: list[tuple[str, DiscoverySource]] = []
        self.lock = threading.Lock()

    def __call__(self, path: str, source: DiscoverySource):
        with self.lock:
            self.calls.append((path, source))

    @property
    def paths(self) -> list[str]:
        return [p for p, _ in self.calls]


def test_scan_existing_filters_and_is_idempotent(tmp_path):
    (tmp_path / "ride.fit").write_bytes(b"\x0e\x10")
    (tmp_path / "RUN.FIT").write_bytes(b"\x0e\x10")
    (tmp_path / "notes.txt").write_text("not an activity")
    (tmp_path / "folder.fit").mkdir()
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)

    assert monitor.scan_existing() == 2
    assert sorted(Path(p).name for p in recorder.paths) == ["RUN.FIT", "ride.fit"]
    assert {source for _, source in recorder.calls} == {DiscoverySource.SCAN}

    assert monitor.scan_existing() == 0
    assert len(recorder.calls) == 2


def test_scan_is_not_recursive(tmp_path):
    nested = tmp_path / "2025"
    nested.mkdir()
    (nested / "deep.fit").write_bytes(b"x")
    recorder = Recorder()

    FileSystemMonitor([tmp_path], recorder).scan_existing()

    assert recorder.calls == []


def test_missing_root_does_not_stop_other_roots(tmp_path):
    good = tmp_path / "good"
    good.mkdir()
    (good / "a.fit").write_bytes(b"x")
    recorder = Recorder()

    monitor = FileSystemMonitor([tmp_path / "missing", good], recorder)

    assert monitor.scan_existing() == 1
    assert recorder.paths == [str(good / "a.fit")]


def test_event_burst_triggers_one_callback(tmp_path):
    path = tmp_path / "activity.fit"
    path.write_bytes(b"x")
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)
    handler = monitor.event_handler

    handler.on_created(Event(path))
    for _ in range(5):
        handler.on_modified(Event(path))
    handler.on_created(Event(path))

    assert recorder.calls == [(str(path), DiscoverySource.WATCH)]


def test_live_event_then_scan_does_not_duplicate(tmp_path):
    path = tmp_path / "activity.fit"
    path.write_bytes(b"x")
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)

    monitor.event_handler.on_created(Event(path))

    assert monitor.scan_existing() == 0
    assert len(recorder.calls) == 1


def test_handler_ignores_directories_and_other_suffixes(tmp_path):
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)
    handler = monitor.event_handler

    handler.on_created(Event(tmp_path / "export.fit", is_directory=True))
    handler.on_modified(Event(tmp_path / "export.fit", is_directory=True))
    handler.on_created(Event(tmp_path / "ride.gpx"))

    assert recorder.calls == []


def test_rename_into_place_is_discovered(tmp_path):
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)

    monitor.event_handler.on_moved(Event(tmp_path / "ride.fit.part", tmp_path / "ride.fit"))

    assert recorder.paths == [str(tmp_path / "ride.fit")]


def test_custom_suffix(tmp_path):
    (tmp_path / "ride.tcx").write_text("<xml/>")
    (tmp_path / "ride.fit").write_bytes(b"x")
    recorder = Recorder()

    FileSystemMonitor([tmp_path], recorder, suffix=".TCX").scan_existing()

    assert [Path(p).name for p in recorder.paths] == ["ride.tcx"]


def test_home_directory_is_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "Zwift").mkdir()
    (tmp_path / "Zwift" / "ride.fit").write_bytes(b"x")
    recorder = Recorder()

    monitor = FileSystemMonitor(["~/Zwift"], recorder)

    assert monitor.roots == [tmp_path / "Zwift"]
    assert monitor.scan_existing() == 1


def test_failing_callback_is_contained(tmp_path):
    (tmp_path / "a.fit").write_bytes(b"x")
    (tmp_path / "b.fit").write_bytes(b"y")
    seen = []

    def explode(path, source):
        seen.append(path)
        raise RuntimeError("decoder crashed")

    monitor = FileSystemMonitor([tmp_path], explode)

    assert monitor.scan_existing() == 2
    assert len(seen) == 2
    assert monitor.is_seen(str(tmp_path / "a.fit"))


def test_mark_seen_suppresses_callback(tmp_path):
    (tmp_path / "a.fit").write_bytes(b"x")
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)

    monitor.mark_seen(str(tmp_path / "a.fit"))

    assert monitor.scan_existing() == 0


def test_concurrent_reports_of_one_path_call_back_once(tmp_path):
    path = tmp_path / "a.fit"
    recorder = Recorder()
    monitor = FileSystemMonitor([tmp_path], recorder)
    start = threading.Barrier(16)

    def report():
        start.wait()
        monitor.handle_path(str(path), DiscoverySource.WATCH)

    threads = [threading.Thread(target=report) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(recorder.calls) == 1


def test_watch_returns_on_cancellation_with_missing_root(tmp_path):
    stop = threading.Event()
    stop.set()
    monitor = FileSystemMonitor([tmp_path, tmp_path / "missing"], Recorder())

    assert monitor.watch(stop, poll_interval=0.01) is True
