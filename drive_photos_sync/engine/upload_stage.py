"""
Upload stage: turns one item's bytes into an upload token.

Uploads are surfaced item by item. With ``concurrency > 1`` a group of
uploads is dispatched together, one attempt each; any request that did not
yield a usable token (including a 2xx with an empty body) is retried on its
own, sequentially, under the full retry policy.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests

from drive_photos_sync.destination.photos_client import PhotosClient
from drive_photos_sync.engine.retry import (
    RetryPolicy,
    RetryRequest,
    attempt_once,
    execute_with_retry,
    is_retryable_status,
)
from drive_photos_sync.models import ItemError, SourceItem, UploadResult
from drive_photos_sync.utils.parallel import parallel_map

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadJob:
    item: SourceItem
    content: bytes


def _token_from(response: requests.Response) -> str:
    return (response.text or '').strip()


def _has_token(response: requests.Response) -> bool:
    return response.ok and bool(_token_from(response))


def _retryable_response(response: requests.Response) -> bool:
    return is_retryable_status(response.status_code)


class UploadStage:
    """Single-item uploads with optional bounded fan-out."""

    def __init__(self, client: PhotosClient, retry_policy: RetryPolicy, concurrency: int = 1,
                 sleep: Optional[Callable[[float], None]] = None):
        self.client = client
        self.retry_policy = retry_policy
        self.concurrency = max(1, concurrency)
        self._sleep_kwargs = {'sleep': sleep} if sleep else {}

    def _request(self, content: bytes, display_name: str, mime_type: str) -> RetryRequest:
        return RetryRequest(
            f"Upload {display_name}",
            lambda: self.client.upload_bytes(content, display_name, mime_type),
            is_success=_has_token,
            is_retryable_result=_retryable_response,
        )

    def upload(self, content: bytes, display_name: str, mime_type: str = '') -> UploadResult:
        """
        Upload one item's bytes.

        Returns:
            UploadResult with a token, or with an error classified as
            retryable (transient after all attempts) or terminal.
        """
        outcome = execute_with_retry(
            self._request(content, display_name, mime_type),
            self.retry_policy,
            **self._sleep_kwargs,
        )
        if outcome.succeeded:
            return UploadResult(token=_token_from(outcome.result))
        return UploadResult(error=_upload_error(outcome.result, outcome.error, outcome.retryable))

    def upload_many(self, jobs: List[UploadJob]) -> List[UploadResult]:
        """
        Upload several items, results aligned with ``jobs``.

        Args:
            jobs: Items with their content, in source order

        Returns:
            One UploadResult per job, in the same order.
        """
        if self.concurrency <= 1 or len(jobs) <= 1:
            return [self.upload(job.content, job.item.display_name, job.item.mime_type) for job in jobs]

        def single_attempt(job: UploadJob):
            return attempt_once(self._request(job.content, job.item.display_name, job.item.mime_type), 0)

        attempts = parallel_map(single_attempt, jobs, max_workers=self.concurrency)

        results: List[UploadResult] = []
        for job, attempt in zip(jobs, attempts):
            if attempt.succeeded:
                results.append(UploadResult(token=_token_from(attempt.result)))
                continue
            logger.info(f"Parallel upload of {job.item.display_name} yielded no token; retrying on its own")
            results.append(self.upload(job.content, job.item.display_name, job.item.mime_type))
        return results


def _upload_error(response: Optional[requests.Response], error: Optional[BaseException],
                  retryable: bool) -> ItemError:
    if error is not None:
        return ItemError(f"Upload failed: {type(error).__name__}: {error}", retryable=retryable)
    if response is not None and response.ok:
        return ItemError("Upload returned an empty upload token", retryable=False)
    status = getattr(response, 'status_code', None)
    detail = (getattr(response, 'text', '') or '').strip()[:200]
    return ItemError(f"Upload failed: HTTP {status} {detail}".rstrip(), retryable=retryable)
