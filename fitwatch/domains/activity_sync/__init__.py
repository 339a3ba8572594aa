"""
Activity Sync Domain

Moves activity files from local folders to remote destinations:
- Watchers → Discover new files (live events + startup scan)
- Decoders → Turn raw bytes into activity metadata
- Dispatch → Push to every destination with bounded retry
- Destinations → Per-integration upload clients
"""

__all__ = ["watchers", "decoders", "dispatch", "destinations", "pipeline"]
