import threading
from datetime import datetime, timezone
from typing import Optional

import pytest

from fitwatch.models.errors import ConfigurationError, DecodeError, PushError, RemoteConflictError
from fitwatch.models.schemas import ActivityMetadata, Artifact, DeliveryReceipt, DiscoverySource
from fitwatch.utils.ledger import Ledger


class StubDestination:
    """Destination double that fails a configurable number of times."""

    def __init__(
        self,
        name: str,
        failures: int = 0,
        always_fail: bool = False,
        conflict: bool = False,
        invalid: bool = False,
        crash: bool = False,
    ):
        self.name = name
        self.failures = failures
        self.always_fail = always_fail
        self.conflict = conflict
        self.invalid = invalid
        self.crash = crash
        self.calls: list[str] = []

    def validate(self):
        if self.invalid:
            raise ConfigurationError("API key is required")

    def push(self, artifact: Artifact, stop_event: threading.Event) -> DeliveryReceipt:
        self.calls.append(artifact.path)
        if self.crash:
            raise ValueError(f"{self.name} integration bug")
        if self.conflict:
            raise RemoteConflictError("already uploaded", remote_id="remote-7")
        if self.always_fail or len(self.calls) <= self.failures:
            raise PushError(f"{self.name} unavailable")
        return DeliveryReceipt(
            remote_id=f"{self.name}-{len(self.calls)}",
            remote_url=f"https://{self.name}.example/{len(self.calls)}",
        )


class RecordingStopEvent(threading.Event):
    """Stop event whose waits return immediately and are recorded.

    ``cancel_after`` sets the event on the n-th wait, simulating shutdown
    arriving mid-backoff.
    """

    def __init__(self, cancel_after: Optional[int] = None):
        super().__init__()
        self.waits: list[float] = []
        self.cancel_after = cancel_after

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.cancel_after is not None and len(self.waits) >= self.cancel_after:
            self.set()
        return self.is_set()


class StubDecoder:
    def __init__(self, metadata: ActivityMetadata = None, fail: bool = False):
        self.metadata = metadata or ActivityMetadata()
        self.fail = fail

    def decode(self, data: bytes) -> ActivityMetadata:
        if self.fail:
            raise DecodeError("invalid FIT header")
        return self.metadata


def make_artifact(
    path: str,
    fingerprint: str,
    started_at: Optional[datetime] = None,
    discovered_at: Optional[datetime] = None,
    **metadata,
) -> Artifact:
    return Artifact(
        path=path,
        fingerprint=fingerprint,
        size=128,
        discovered_at=discovered_at or datetime.now(timezone.utc),
        source=DiscoverySource.SCAN,
        metadata=ActivityMetadata(started_at=started_at, **metadata),
    )


@pytest.fixture
def ledger(tmp_path):
    """A ledger backed by a fresh SQLite file."""
    store = Ledger(tmp_path / "ledger" / "fitwatch.db")
    store.connect()
    yield store
    store.close()
