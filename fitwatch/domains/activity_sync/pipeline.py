"""
Sync pipeline for the Activity Sync domain.

Wires the monitor to the ledger and the dispatcher:
discover -> fingerprint -> dedupe -> decode -> record -> dispatch -> record outcome.
"""

import threading
import time
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from loguru import logger

from fitwatch.domains.activity_sync.decoders.base import Decoder, NullDecoder
from fitwatch.domains.activity_sync.destinations import build_destinations
from fitwatch.domains.activity_sync.dispatch.dispatcher import Dispatcher, RetryPolicy
from fitwatch.domains.activity_sync.watchers.filesystem import FileSystemMonitor
from fitwatch.models.errors import DecodeError
from fitwatch.models.schemas import (
    ActivityMetadata,
    Artifact,
    DiscoverySource,
    DispatchOutcome,
    LedgerStats,
)
from fitwatch.utils.config import Settings, get_settings
from fitwatch.utils.helpers import fingerprint_bytes, format_bytes
from fitwatch.utils.ledger import Ledger


class SyncPipeline:
    """Composition root for discovery and delivery."""

    def __init__(
        self,
        ledger: Ledger,
        dispatcher: Dispatcher,
        roots: Iterable = (),
        decoder: Decoder = None,
        suffix: str = ".fit",
        stop_event: threading.Event = None,
        retry_ceiling: int = 5,
        settle_interval: float = 0.5,
        settle_timeout: float = 10.0,
    ):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.decoder = decoder or NullDecoder()
        self.stop_event = stop_event or threading.Event()
        self.retry_ceiling = retry_ceiling
        self.settle_interval = settle_interval
        self.settle_timeout = settle_timeout
        self.monitor = FileSystemMonitor(roots, self.handle_new_file, suffix=suffix)

    @classmethod
    def from_settings(
        cls,
        settings: Settings = None,
        decoder: Decoder = None,
        stop_event: threading.Event = None,
    ) -> "SyncPipeline":
        """Build ledger, destinations, and dispatcher from settings."""
        settings = settings or get_settings()

        destinations = build_destinations(settings)
        if not destinations:
            logger.warning("No destinations enabled; files will be recorded but not delivered")

        return cls(
            ledger=Ledger(settings.get_ledger_path()),
            dispatcher=Dispatcher(destinations, RetryPolicy.from_settings(settings)),
            roots=settings.get_watch_dirs(),
            decoder=decoder,
            suffix=settings.file_suffix,
            stop_event=stop_event,
            retry_ceiling=settings.retry_ceiling,
            settle_interval=settings.settle_interval,
            settle_timeout=settings.settle_timeout,
        )

    # Startup --------------------------------------------------------------------

    def start(self):
        """
        Fail-fast setup: open the ledger and validate every destination.

        Raises:
            LedgerError: ledger cannot be opened or migrated
            ConfigurationError: a destination is misconfigured
        """
        self.ledger.connect()
        self.dispatcher.validate_all()

    # Discovery ------------------------------------------------------------------

    def handle_new_file(
        self,
        path: str,
        source: DiscoverySource = DiscoverySource.WATCH,
    ) -> Optional[List[DispatchOutcome]]:
        """
        Process one newly observed file.

        Returns:
            Dispatch outcomes, or None if the file was skipped
        """
        if self.ledger.find_by_path(path):
            logger.info(f"Already known, skipping: {path}")
            return None

        data = self._read_settled(path)
        if data is None:
            return None

        fingerprint = fingerprint_bytes(data)

        known = self.ledger.find_by_fingerprint(fingerprint)
        if known:
            logger.info(f"Already known, skipping: {path} (recorded as {known.path})")
            return None

        artifact = Artifact(
            path=path,
            fingerprint=fingerprint,
            size=len(data),
            source=source,
            metadata=self._decode(path, data),
        )

        artifact_id = self.ledger.record_artifact(artifact)
        if artifact_id is None:
            return None
        artifact = artifact.model_copy(update={"id": artifact_id})

        logger.info(
            f"Discovered {path} ({format_bytes(artifact.size)}, "
            f"{artifact.metadata.activity_type or 'unknown type'}, via {source.value})"
        )

        for name in self.dispatcher.names():
            self.ledger.create_delivery_record(artifact_id, name)
            self.ledger.mark_attempted(artifact_id, name)

        outcomes = self.dispatcher.dispatch(artifact, self.stop_event)
        for outcome in outcomes:
            self._record_outcome(outcome)

        return outcomes

    def _read_settled(self, path: str) -> Optional[bytes]:
        """
        Read ``path`` once the writer is done with it.

        Waits until the size is non-zero and unchanged across one
        ``settle_interval``, for at most ``settle_timeout``. Returns None if the
        file vanished, shutdown was requested, or it is still empty; an empty
        file is released back to the monitor so a later event can report it.
        """
        deadline = time.monotonic() + self.settle_timeout
        last_size = None

        while True:
            try:
                size = Path(path).stat().st_size
            except OSError as e:
                logger.warning(f"Cannot read {path}: {e}")
                return None

            if size > 0 and size == last_size:
                break
            if time.monotonic() >= deadline:
                logger.warning(f"{path} did not settle within {self.settle_timeout:g}s, reading as is")
                break
            last_size = size

            if self.stop_event.wait(self.settle_interval):
                logger.info(f"Shutdown before {path} settled; leaving it for the next scan")
                self.monitor.release(path)
                return None

        try:
            data = Path(path).read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read {path}: {e}")
            return None

        if not data:
            logger.warning(f"Skipping empty file {path}; it will be picked up once written")
            self.monitor.release(path)
            return None

        return data

    def _decode(self, path: str, data: bytes) -> ActivityMetadata:
        try:
            metadata = self.decoder.decode(data)
        except DecodeError as e:
            logger.warning(f"Could not decode {path}, recording without metadata: {e}")
            return ActivityMetadata()

        if metadata.is_empty():
            logger.debug(f"No metadata decoded for {path}")
        return metadata

    def _record_outcome(self, outcome: DispatchOutcome):
        artifact = outcome.artifact

        if outcome.cancelled:
            logger.info(f"Left pending for {outcome.destination}: {artifact.path}")
            return

        if outcome.success:
            receipt = outcome.receipt
            self.ledger.mark_succeeded(
                artifact.id,
                outcome.destination,
                receipt.remote_id if receipt else None,
                receipt.remote_url if receipt else None,
            )
            logger.success(f"Synced {artifact.path} -> {outcome.destination}")
        else:
            self.ledger.mark_failed(artifact.id, outcome.destination, outcome.error or "unknown error")
            logger.error(
                f"Sync failed {artifact.path} -> {outcome.destination} "
                f"after {outcome.attempts} attempts: {outcome.error}"
            )

    # Backlog --------------------------------------------------------------------

    def drain_pending(self) -> Dict[str, int]:
        """
        Deliver every pending record, oldest activity first.

        Returns:
            Counts keyed by "succeeded", "failed", "cancelled"
        """
        counts: Counter = Counter()

        for name in self.dispatcher.names():
            backlog = self.ledger.pending_for(name)
            if backlog:
                logger.info(f"Draining {len(backlog)} pending deliveries for {name}")

            for artifact in backlog:
                if self.stop_event.is_set():
                    return dict(counts)

                self.ledger.mark_attempted(artifact.id, name)
                for outcome in self.dispatcher.dispatch(artifact, self.stop_event, only=[name]):
                    self._record_outcome(outcome)
                    if outcome.cancelled:
                        counts["cancelled"] += 1
                    elif outcome.success:
                        counts["succeeded"] += 1
                    else:
                        counts["failed"] += 1

        return dict(counts)

    def retry_sweep(self, max_retries: int = None) -> Dict[str, int]:
        """Re-queue failed deliveries under the ceiling and drain them."""
        ceiling = self.retry_ceiling if max_retries is None else max_retries
        requeued = 0
        for name in self.dispatcher.names():
            requeued += self.ledger.reset_to_retry(name, ceiling)

        logger.info(f"Retry sweep re-queued {requeued} deliveries")
        return self.drain_pending()

    # Run modes ------------------------------------------------------------------

    def run_once(self) -> LedgerStats:
        """Deliver the backlog, scan existing files, and return ledger stats."""
        self.start()
        self.drain_pending()
        self.monitor.scan_existing()
        return self.ledger.stats()

    def run(self, stop_event: threading.Event = None) -> bool:
        """Deliver the backlog, scan, then watch until the stop event is set."""
        if stop_event is not None:
            self.stop_event = stop_event
        self.start()
        self.drain_pending()

        try:
            self.monitor.scan_existing()
        except Exception as e:
            logger.warning(f"Startup scan failed: {e}")

        logger.info(f"Watching for new activity files in {[str(r) for r in self.monitor.roots]}")
        return self.monitor.watch(self.stop_event)

    def stop(self):
        """Request shutdown of the watch loop and any in-flight backoff."""
        self.stop_event.set()
