"""
Source store collaborators.
"""
from drive_photos_sync.source.drive_source import DriveSource

__all__ = ['DriveSource']
