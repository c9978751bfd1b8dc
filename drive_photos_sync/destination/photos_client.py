"""
Google Photos Library API transport.

Thin wrapper over the three REST calls the sync needs: raw byte uploads,
``mediaItems:batchCreate`` and album lookup/creation. Requests go through a
``google.auth.transport.requests.AuthorizedSession``; interpreting the
responses is left to the engine.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from google.auth.transport.requests import AuthorizedSession

from drive_photos_sync.engine.retry import (
    RetryPolicy,
    RetryRequest,
    execute_with_retry,
    is_retryable_status,
)
from drive_photos_sync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

API_BASE = 'https://photoslibrary.googleapis.com/v1'
UPLOADS_URL = f'{API_BASE}/uploads'
BATCH_CREATE_URL = f'{API_BASE}/mediaItems:batchCreate'
ALBUMS_URL = f'{API_BASE}/albums'

# Seconds; uploads carry whole files
UPLOAD_TIMEOUT = 300
API_TIMEOUT = 60


def _retryable_response(response: requests.Response) -> bool:
    return is_retryable_status(response.status_code)


def _ok_response(response: requests.Response) -> bool:
    return response.ok


class PhotosClient:
    """Minimal Google Photos Library API client."""

    def __init__(self, session: AuthorizedSession, retry_policy: RetryPolicy,
                 sleep: Optional[Callable[[float], None]] = None):
        """
        Args:
            session: Authorized HTTP session with a Photos Library scope
            retry_policy: Backoff policy for album lookups
            sleep: Optional sleep override for the retry executor
        """
        self.session = session
        self.retry_policy = retry_policy
        self._sleep_kwargs = {'sleep': sleep} if sleep else {}

    def upload_bytes(self, content: bytes, file_name: str, mime_type: str) -> requests.Response:
        """POST raw bytes to the uploads endpoint; the body of a 2xx is the upload token."""
        headers = {
            'Content-Type': 'application/octet-stream',
            'X-Goog-Upload-Content-Type': mime_type or 'application/octet-stream',
            'X-Goog-Upload-File-Name': file_name.encode('utf-8', 'replace').decode('latin-1', 'replace'),
            'X-Goog-Upload-Protocol': 'raw',
        }
        return self.session.post(UPLOADS_URL, data=content, headers=headers, timeout=UPLOAD_TIMEOUT)

    def batch_create(self, new_media_items: List[Dict[str, Any]],
                     album_id: Optional[str] = None) -> requests.Response:
        """Create media items from upload tokens, optionally adding them to an album."""
        body: Dict[str, Any] = {'newMediaItems': new_media_items}
        if album_id:
            body['albumId'] = album_id
        return self.session.post(BATCH_CREATE_URL, json=body, timeout=API_TIMEOUT)

    def _call(self, description: str, operation: Callable[[], requests.Response]) -> requests.Response:
        outcome = execute_with_retry(
            RetryRequest(
                description,
                operation,
                is_success=_ok_response,
                is_retryable_result=_retryable_response,
            ),
            self.retry_policy,
            **self._sleep_kwargs,
        )
        if not outcome.succeeded:
            raise ConfigurationError(f"{description} failed: {outcome.describe()}")
        return outcome.result

    def find_album(self, title: str) -> Optional[str]:
        """Return the id of an app-created album with ``title``, if any."""
        page_token = None
        while True:
            params = {'pageSize': 50, 'excludeNonAppCreatedData': 'true'}
            if page_token:
                params['pageToken'] = page_token
            response = self._call(
                "List albums",
                lambda params=params: self.session.get(ALBUMS_URL, params=params, timeout=API_TIMEOUT),
            )
            payload = _json_or_empty(response)
            for album in payload.get('albums', []) or []:
                if album.get('title') == title and album.get('id'):
                    return album['id']
            page_token = payload.get('nextPageToken')
            if not page_token:
                return None

    def create_album(self, title: str) -> str:
        response = self._call(
            f"Create album '{title}'",
            lambda: self.session.post(ALBUMS_URL, json={'album': {'title': title}}, timeout=API_TIMEOUT),
        )
        album_id = _json_or_empty(response).get('id')
        if not album_id:
            raise ConfigurationError(f"Create album '{title}' returned no album id")
        logger.info(f"Created album '{title}'")
        return album_id

    def find_or_create_album(self, title: str) -> str:
        """
        Resolve an album by title, creating it if absent.

        Raises:
            ConfigurationError: If the album cannot be resolved
        """
        album_id = self.find_album(title)
        if album_id:
            logger.info(f"Using existing album '{title}'")
            return album_id
        return self.create_album(title)


def _json_or_empty(response: requests.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}
