"""Destination contract for remote activity services."""

import threading
from typing import Protocol, runtime_checkable

from fitwatch.models.schemas import Artifact, DeliveryReceipt


@runtime_checkable
class Destination(Protocol):
    """A remote system that accepts activity files.

    Implementations are standalone values; they share no base class.
    """

    @property
    def name(self) -> str:
        """Stable name used as the ledger key for this destination."""
        ...

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if credentials or settings are missing."""
        ...

    def push(self, artifact: Artifact, stop_event: threading.Event) -> DeliveryReceipt:
        """
        Deliver ``artifact``.

        Raises:
            RemoteConflictError: the remote already has this activity
            PushError: delivery failed and may be retried
        """
        ...
