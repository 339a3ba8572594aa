"""
File system monitor for the Activity Sync domain.

Watches configured directories for new activity files and reports each
path exactly once per process lifetime. Uses the watchdog library for
cross-platform file system event monitoring.
"""

import threading
from pathlib import Path
from typing import Callable, Iterable, List

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from fitwatch.models.schemas import DiscoverySource
from fitwatch.utils.helpers import expand_root, has_suffix, normalise_path

OnNewFile = Callable[[str, DiscoverySource], None]


class ActivityFileHandler(FileSystemEventHandler):
    """Forwards create, modify, and move-into events to the monitor."""

    def __init__(self, monitor: "FileSystemMonitor"):
        super().__init__()
        self.monitor = monitor

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        self.monitor.handle_path(event.src_path, DiscoverySource.WATCH, event.is_directory)

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Skip directory modifications (too noisy)
        if event.is_directory:
            return
        self.monitor.handle_path(event.src_path, DiscoverySource.WATCH)

    def on_moved(self, event: FileSystemEvent):
        """Handle a file renamed into place (e.g. ``.fit.tmp`` -> ``.fit``)."""
        dest = getattr(event, "dest_path", None)
        if dest:
            self.monitor.handle_path(dest, DiscoverySource.WATCH, event.is_directory)


class FileSystemMonitor:
    """Activity file discovery orchestrator."""

    def __init__(
        self,
        roots: Iterable,
        on_new: OnNewFile,
        suffix: str = ".fit",
        observer_factory: Callable[[], Observer] = Observer,
    ):
        """
        Initialize file system monitor.

        Args:
            roots: Directories to monitor (``~`` is expanded)
            on_new: Called once per newly observed path with its discovery source
            suffix: File extension to accept, case-insensitive
            observer_factory: Builds the watchdog observer
        """
        self.roots: List[Path] = [expand_root(r) for r in roots]
        self.on_new = on_new
        self.suffix = suffix
        self.observer_factory = observer_factory
        self.event_handler = ActivityFileHandler(self)

        self._lock = threading.Lock()
        self._seen: set[str] = set()

    # Seen-set -------------------------------------------------------------------

    def mark_seen(self, path: str):
        """Mark a path as already processed (won't trigger ``on_new``)."""
        with self._lock:
            self._seen.add(normalise_path(path))

    def is_seen(self, path: str) -> bool:
        """Check if a path has already been reported."""
        with self._lock:
            return normalise_path(path) in self._seen

    def claim(self, path: str) -> bool:
        """Atomically mark ``path`` seen. False if someone got there first."""
        with self._lock:
            if path in self._seen:
                return False
            self._seen.add(path)
            return True

    def release(self, path: str):
        """Forget ``path`` so its next event or scan reports it again."""
        with self._lock:
            self._seen.discard(normalise_path(path))

    # Discovery ------------------------------------------------------------------

    def handle_path(self, raw_path: str, source: DiscoverySource, is_directory: bool = False) -> bool:
        """
        Apply the filter and report ``raw_path`` if it is new.

        Returns:
            True if ``on_new`` was invoked
        """
        if is_directory or not has_suffix(str(raw_path), self.suffix):
            return False

        path = normalise_path(raw_path)
        if not self.claim(path):
            return False

        logger.info(f"New activity file ({source.value}): {path}")

        try:
            self.on_new(path, source)
        except Exception as e:
            logger.error(f"Processing failed for {path}: {e}")

        return True

    def scan_existing(self) -> int:
        """
        Report activity files already present in each root (non-recursive).

        Use this to pick up files added while the monitor wasn't running.

        Returns:
            Number of newly reported paths
        """
        found = 0

        for root in self.roots:
            try:
                entries = list(root.iterdir())
            except OSError as e:
                logger.warning(f"Failed to scan {root}: {e}")
                continue

            for entry in entries:
                try:
                    if entry.is_dir():
                        continue
                except OSError:
                    continue

                if self.handle_path(str(entry), DiscoverySource.SCAN):
                    found += 1

        logger.info(f"Scan complete: {found} new activity files")
        return found

    def _start_observer(self) -> Observer:
        observer = self.observer_factory()
        observer.daemon = True
        observer.start()

        for root in self.roots:
            if not root.is_dir():
                logger.warning(f"Not watching {root}: directory does not exist")
                continue
            try:
                observer.schedule(self.event_handler, str(root), recursive=False)
                logger.success(f"Started watching: {root}")
            except OSError as e:
                logger.warning(f"Failed to watch {root}: {e}")

        return observer

    def watch(self, stop_event: threading.Event, poll_interval: float = 1.0) -> bool:
        """
        Watch all roots until ``stop_event`` is set.

        Returns:
            True, signalling that the loop ended through cancellation
        """
        observer = self._start_observer()
        logger.success("File system observer started")

        try:
            while not stop_event.wait(poll_interval):
                if not observer.is_alive():
                    logger.error("File system observer stopped unexpectedly, restarting")
                    observer = self._start_observer()
        finally:
            observer.stop()
            observer.join()
            logger.info("File system observer stopped")

        return True
