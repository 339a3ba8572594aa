"""Decoder contract for activity file bytes."""

from typing import Protocol, runtime_checkable

from fitwatch.models.schemas import ActivityMetadata


@runtime_checkable
class Decoder(Protocol):
    """Turns raw file bytes into activity metadata."""

    def decode(self, data: bytes) -> ActivityMetadata:
        """Decode ``data``; raise ``DecodeError`` when it cannot be read."""
        ...


class NullDecoder:
    """Decoder used when no format library is plugged in.

    Artifacts are still fingerprinted and delivered; only the metadata
    columns stay empty.
    """

    def decode(self, data: bytes) -> ActivityMetadata:
        return ActivityMetadata()
