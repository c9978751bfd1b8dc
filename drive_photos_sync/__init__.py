"""
Google Drive to Google Photos Sync

Incrementally copies photos and videos found in Google Drive into Google
Photos across any number of short, resumable runs, creating each Drive
file at most once.
"""
__version__ = "1.0.0"

from drive_photos_sync.config import SyncConfig
from drive_photos_sync.exceptions import (
    SyncError,
    ConfigurationError,
    AuthenticationError,
    StateError,
    RunLockedError,
    BatchDispatchError,
)

__all__ = [
    '__version__',
    'SyncConfig',
    'SyncError',
    'ConfigurationError',
    'AuthenticationError',
    'StateError',
    'RunLockedError',
    'BatchDispatchError',
]
