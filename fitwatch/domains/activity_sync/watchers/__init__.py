"""Watchers discovering activity files on disk."""

from .filesystem import ActivityFileHandler, FileSystemMonitor

__all__ = ["ActivityFileHandler", "FileSystemMonitor"]
