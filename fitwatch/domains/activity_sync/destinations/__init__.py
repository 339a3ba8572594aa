"""Remote destinations for activity files."""

from .base import Destination
from .intervals import IntervalsDestination

__all__ = ["Destination", "IntervalsDestination", "build_destinations"]


def build_destinations(settings) -> list:
    """Instantiate every destination enabled in ``settings``."""
    destinations = []
    if settings.intervals_enabled:
        destinations.append(IntervalsDestination.from_settings(settings))
    return destinations
