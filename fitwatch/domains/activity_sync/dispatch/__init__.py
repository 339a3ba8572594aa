"""Dispatch of artifacts to destinations."""

from .dispatcher import Dispatcher, RetryPolicy

__all__ = ["Dispatcher", "RetryPolicy"]
