"""
Custom exceptions for the Drive to Google Photos sync tool.

Only the errors below are raised out of a run. Item-level and listing
failures travel as typed results (see ``drive_photos_sync.models``).
"""


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class ConfigurationError(SyncError):
    """Error related to configuration, raised before any item is touched."""
    pass


class AuthenticationError(SyncError):
    """Error during authentication."""
    pass


class StateError(SyncError):
    """Error reading or writing durable sync state."""
    pass


class RunLockedError(SyncError):
    """Another run currently holds the sync lock."""

    def __init__(self, message: str, lock_path: str, holder: str = ""):
        super().__init__(message)
        self.lock_path = lock_path
        self.holder = holder


class BatchDispatchError(SyncError):
    """The bulk create call produced no usable response at all.

    Nothing from the batch is committed; the run aborts.
    """

    def __init__(self, message: str, batch_size: int = 0, status_code: int = None):
        super().__init__(message)
        self.batch_size = batch_size
        self.status_code = status_code
