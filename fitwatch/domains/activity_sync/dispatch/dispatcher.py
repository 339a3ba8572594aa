"""
Dispatcher for the Activity Sync domain.

Pushes one artifact to every registered destination. Each destination gets
its own bounded exponential backoff; one destination's failure never
affects another's attempt.
"""

import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional

from loguru import logger

from fitwatch.domains.activity_sync.destinations.base import Destination
from fitwatch.models.errors import ConfigurationError, DispatchCancelled, PushError, RemoteConflictError
from fitwatch.models.schemas import Artifact, DeliveryReceipt, DispatchOutcome
from fitwatch.utils.config import Settings, get_settings


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff knobs. ``max_retries`` counts extra attempts after the first."""

    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings = None) -> "RetryPolicy":
        settings = settings or get_settings()
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.backoff_base,
            multiplier=settings.backoff_multiplier,
            max_delay=settings.backoff_cap,
        )

    def delays(self) -> List[float]:
        """Wait before each retry: base, base*m, ... capped at ``max_delay``."""
        delays = []
        delay = self.base_delay
        for _ in range(self.max_retries):
            delays.append(min(delay, self.max_delay))
            delay = delay * self.multiplier
        return delays


class Dispatcher:
    """Sends artifacts to multiple destinations."""

    def __init__(self, destinations: Iterable[Destination] = (), policy: RetryPolicy = None):
        self.destinations: List[Destination] = list(destinations)
        self.policy = policy or RetryPolicy()
        self._validated = False

    def add_destination(self, destination: Destination):
        """Register another destination; validation must be rerun."""
        self.destinations.append(destination)
        self._validated = False

    def names(self) -> List[str]:
        return [d.name for d in self.destinations]

    def validate_all(self):
        """
        Check every destination is properly configured.

        Raises:
            ConfigurationError: naming the first destination that failed
        """
        for destination in self.destinations:
            try:
                destination.validate()
            except ConfigurationError as e:
                raise ConfigurationError(f"{destination.name}: {e}") from e
            logger.info(f"Destination ready: {destination.name}")

        self._validated = True

    def dispatch(
        self,
        artifact: Artifact,
        stop_event: threading.Event,
        only: Optional[Iterable[str]] = None,
    ) -> List[DispatchOutcome]:
        """
        Push ``artifact`` to every destination (or those named in ``only``).

        Returns:
            One outcome per destination, in registration order
        """
        if not self._validated:
            raise ConfigurationError("destinations have not passed validation")

        wanted = set(only) if only is not None else None
        outcomes = []

        for destination in self.destinations:
            if wanted is not None and destination.name not in wanted:
                continue
            outcomes.append(self.push_with_retry(destination, artifact, stop_event))

        return outcomes

    def push_with_retry(
        self,
        destination: Destination,
        artifact: Artifact,
        stop_event: threading.Event,
    ) -> DispatchOutcome:
        """Attempt a push, retrying failures with exponential backoff."""
        delays = self.policy.delays()
        last_error: Optional[Exception] = None
        attempt = 0

        while True:
            if stop_event.is_set():
                return self._cancelled(destination, artifact, attempt, "shutdown requested")

            attempt += 1

            try:
                receipt = destination.push(artifact, stop_event)
            except DispatchCancelled as e:
                return self._cancelled(destination, artifact, attempt, str(e))
            except RemoteConflictError as e:
                logger.info(
                    f"{destination.name} already has {artifact.path} "
                    f"(remote id {e.remote_id or 'unknown'})"
                )
                receipt = DeliveryReceipt(remote_id=e.remote_id, remote_url=e.remote_url, duplicate=True)
                return self._succeeded(destination, artifact, attempt, receipt)
            except PushError as e:
                last_error = e
                logger.warning(
                    f"Push failed: {destination.name} {artifact.path} "
                    f"attempt {attempt}/{self.policy.max_retries + 1}: {e}"
                )
            except Exception as e:
                # Unexpected errors are not retried and stay local to this destination
                logger.exception(f"Push crashed: {destination.name} {artifact.path}: {e}")
                return DispatchOutcome(
                    destination=destination.name,
                    artifact=artifact,
                    success=False,
                    error=f"unexpected error: {e!r}",
                    attempts=attempt,
                )
            else:
                if attempt > 1:
                    logger.info(f"Retry succeeded: {destination.name} after {attempt} attempts")
                return self._succeeded(destination, artifact, attempt, receipt)

            if attempt > self.policy.max_retries:
                break

            delay = delays[attempt - 1]
            logger.info(f"Retrying {destination.name} for {artifact.path} in {delay:g}s")
            if stop_event.wait(delay):
                return self._cancelled(destination, artifact, attempt, "shutdown requested during backoff")

        message = f"failed after {attempt} attempts: {last_error}"
        logger.error(f"Giving up on {destination.name} for {artifact.path}: {message}")

        return DispatchOutcome(
            destination=destination.name,
            artifact=artifact,
            success=False,
            error=message,
            attempts=attempt,
        )

    def _succeeded(self, destination, artifact, attempts, receipt) -> DispatchOutcome:
        return DispatchOutcome(
            destination=destination.name,
            artifact=artifact,
            success=True,
            attempts=attempts,
            receipt=receipt,
        )

    def _cancelled(self, destination, artifact, attempts, reason) -> DispatchOutcome:
        logger.info(f"Delivery to {destination.name} abandoned for {artifact.path}: {reason}")
        return DispatchOutcome(
            destination=destination.name,
            artifact=artifact,
            success=False,
            error=reason,
            attempts=attempts,
            cancelled=True,
        )
