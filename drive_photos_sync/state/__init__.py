"""
Durable sync state.
"""
from drive_photos_sync.state.repository import StateRepository
from drive_photos_sync.state.run_lock import RunLock

__all__ = ['StateRepository', 'RunLock']
