"""
Destination service collaborators.
"""
from drive_photos_sync.destination.photos_client import PhotosClient

__all__ = ['PhotosClient']
