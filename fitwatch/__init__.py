"""
FitWatch

Watches local activity file folders and syncs each new file to remote
destinations exactly once.
"""

__version__ = "0.1.0"
