"""
Google Drive API integration: paginated listing and content fetch.
"""
import io
import logging
from typing import Callable, List, Optional

import httplib2
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload

from drive_photos_sync.engine.retry import (
    RetryPolicy,
    RetryRequest,
    execute_with_retry,
    is_retryable_status,
)
from drive_photos_sync.models import (
    FetchResult,
    ItemError,
    PageResult,
    SourceItem,
    SourcePage,
)

logger = logging.getLogger(__name__)

# Stable walk order: oldest modification first, name breaks ties
ORDER_BY = 'modifiedTime,name'
LIST_FIELDS = 'nextPageToken, files(id, name, mimeType, size)'

DRIVE_ERRORS = (HttpError, httplib2.HttpLib2Error, OSError)


def is_transient_drive_error(error: BaseException) -> bool:
    """Classify an error raised by a Drive API call."""
    if isinstance(error, HttpError):
        return is_retryable_status(getattr(error.resp, 'status', None))
    # Transport failures: socket timeouts, DNS, connection resets
    return True


def build_query(mime_types: List[str], folder_id: Optional[str] = None) -> str:
    """Build a ``files.list`` query restricted to the allow-list and excluding trashed files."""
    mime_clause = ' or '.join(f"mimeType = '{mime_type}'" for mime_type in mime_types)
    query = f"trashed = false and ({mime_clause})"
    if folder_id:
        query += f" and '{folder_id}' in parents"
    return query


class DriveSource:
    """
    Enumerates eligible files in Google Drive and fetches their content.

    Listing and fetching return typed results instead of raising: transient
    errors that survive the retry policy come back as retryable
    ``ItemError`` values, everything else as terminal ones.
    """

    def __init__(self, service, mime_types: List[str], retry_policy: RetryPolicy,
                 folder_id: Optional[str] = None, page_size: int = 100,
                 sleep: Optional[Callable[[float], None]] = None):
        """
        Args:
            service: Drive v3 resource from ``googleapiclient.discovery.build``
            mime_types: MIME types eligible for sync
            retry_policy: Backoff policy for listing and downloads
            folder_id: Optional parent folder to restrict the walk to
            page_size: Files per listing page
            sleep: Optional sleep override for the retry executor
        """
        self.service = service
        self.query = build_query(mime_types, folder_id)
        self.page_size = page_size
        self.retry_policy = retry_policy
        self._sleep_kwargs = {'sleep': sleep} if sleep else {}

    def _request(self, description: str, operation) -> RetryRequest:
        return RetryRequest(
            description,
            operation,
            is_retryable_error=is_transient_drive_error,
            handled_errors=DRIVE_ERRORS,
        )

    def list_page(self, page_token: str = "") -> PageResult:
        """
        Fetch one listing page.

        Args:
            page_token: Token from a previous page; empty for the first page

        Returns:
            PageResult with the page, or with an error when listing failed.
        """
        kwargs = {
            'q': self.query,
            'orderBy': ORDER_BY,
            'pageSize': self.page_size,
            'fields': LIST_FIELDS,
            'spaces': 'drive',
        }
        if page_token:
            kwargs['pageToken'] = page_token

        outcome = execute_with_retry(
            self._request("List Drive files", lambda: self.service.files().list(**kwargs).execute()),
            self.retry_policy,
            **self._sleep_kwargs,
        )
        if not outcome.succeeded:
            return PageResult(error=ItemError(
                f"Failed to list Drive files: {outcome.describe()}",
                retryable=outcome.retryable,
            ))

        results = outcome.result or {}
        items = []
        for file_info in results.get('files', []):
            try:
                items.append(SourceItem.from_drive_file(file_info))
            except KeyError:
                logger.warning(f"Skipping Drive file without id: {file_info}")
        logger.debug(f"Listed {len(items)} files (token={page_token or '<first>'})")
        return PageResult(page=SourcePage(items=items, next_page_token=results.get('nextPageToken')))

    def _download(self, item_id: str) -> bytes:
        request = self.service.files().get_media(fileId=item_id)
        buffer = io.BytesIO()
        downloader = MediaIoBaseDownload(buffer, request)
        done = False
        while done is False:
            status, done = downloader.next_chunk()
            if status:
                logger.debug(f"Download progress {item_id}: {int(status.progress() * 100)}%")
        return buffer.getvalue()

    def fetch_bytes(self, item_id: str) -> FetchResult:
        """Download one file's content."""
        outcome = execute_with_retry(
            self._request(f"Download {item_id}", lambda: self._download(item_id)),
            self.retry_policy,
            **self._sleep_kwargs,
        )
        if not outcome.succeeded:
            return FetchResult(error=ItemError(
                f"Failed to download: {outcome.describe()}",
                retryable=outcome.retryable,
            ))
        return FetchResult(content=outcome.result)
