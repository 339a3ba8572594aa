"""
Exception hierarchy for FitWatch.

Configuration and ledger errors are fatal at startup. Decode and push
errors are per-item and never abort the pipeline. Cancellation is kept
apart from delivery failure so it is never retried or recorded as failed.
"""


class FitWatchError(Exception):
    """Base class for all FitWatch errors."""


class ConfigurationError(FitWatchError):
    """A destination or setting is missing or invalid."""


class LedgerError(FitWatchError):
    """The ledger could not be opened or migrated."""


class DecodeError(FitWatchError):
    """Raw file bytes could not be decoded into activity metadata."""


class PushError(FitWatchError):
    """A destination rejected or failed to receive an artifact."""


class RemoteConflictError(PushError):
    """The destination already holds this activity."""

    def __init__(self, message: str, remote_id: str = None, remote_url: str = None):
        super().__init__(message)
        self.remote_id = remote_id
        self.remote_url = remote_url


class DispatchCancelled(FitWatchError):
    """A delivery was abandoned because shutdown was requested."""
