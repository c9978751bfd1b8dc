"""
Batch committer: bulk-creates media items from accumulated upload tokens.

A bulk create call yields one outcome per entry, aligned with the request:
``Success``, ``RetryableFailure`` or ``TerminalFailure``. Only a call that
produces no usable response at all is fatal (``BatchDispatchError``).

Outcomes are applied in source order. Successes and terminal failures are
final (the call already happened) and become ledger entries. The first
retryable failure marks the rewind point for the cursor; entries after it
that already reached a final outcome are still recorded, so the next run
skips them through the ledger and only genuinely retries the rest.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from drive_photos_sync.destination.photos_client import PhotosClient
from drive_photos_sync.engine.retry import (
    RetryPolicy,
    RetryRequest,
    execute_with_retry,
    is_retryable_status,
)
from drive_photos_sync.exceptions import BatchDispatchError
from drive_photos_sync.models import (
    CommitOutcome,
    LedgerEntry,
    PendingBatchEntry,
    PermanentFailure,
    RetryableFailure,
    Success,
    TerminalFailure,
)

logger = logging.getLogger(__name__)

# google.rpc.Code values that mean "try again later"
RETRYABLE_STATUS_CODES = {
    4: 'DEADLINE_EXCEEDED',
    8: 'RESOURCE_EXHAUSTED',
    10: 'ABORTED',
    14: 'UNAVAILABLE',
}
RETRYABLE_STATUS_NAMES = frozenset(RETRYABLE_STATUS_CODES.values())


@dataclass(frozen=True)
class CommitRequestEntry:
    """One ``newMediaItems`` element of a bulk create call."""
    upload_token: str
    file_name: str
    description: str = ''

    def to_api(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            'simpleMediaItem': {'uploadToken': self.upload_token, 'fileName': self.file_name},
        }
        if self.description:
            item['description'] = self.description
        return item


def is_retryable_status_code(code: Any) -> bool:
    if isinstance(code, str):
        return code in RETRYABLE_STATUS_NAMES
    if isinstance(code, bool) or not isinstance(code, int):
        # Malformed code
        return True
    return code in RETRYABLE_STATUS_CODES


def classify_result(result: Any) -> CommitOutcome:
    """Turn one ``newMediaItemResults`` element into an outcome."""
    if not isinstance(result, dict):
        return RetryableFailure("missing result entry")

    status = result.get('status') or {}
    if not isinstance(status, dict):
        return RetryableFailure(f"malformed status: {status!r}")
    code = status.get('code', 0)
    message = status.get('message', '')

    if code in (0, 'OK'):
        media_item = result.get('mediaItem') or {}
        media_id = media_item.get('id') if isinstance(media_item, dict) else None
        if media_id:
            return Success(media_id)
        return RetryableFailure("result reported success without a media item id")

    if is_retryable_status_code(code):
        return RetryableFailure(f"{message} (code {code})".strip())
    return TerminalFailure(f"{message} (code {code})".strip())


def parse_batch_create_response(payload: Dict[str, Any],
                                entries: List[CommitRequestEntry]) -> List[CommitOutcome]:
    """
    Read per-entry outcomes from a ``mediaItems:batchCreate`` response.

    Results are matched to entries by upload token when the response echoes
    it, otherwise by position. Anything missing or malformed is retryable.
    """
    results = payload.get('newMediaItemResults')
    if not isinstance(results, list):
        results = []

    by_token: Dict[str, Any] = {}
    for result in results:
        token = result.get('uploadToken') if isinstance(result, dict) else None
        if token and isinstance(token, str):
            by_token.setdefault(token, result)

    outcomes: List[CommitOutcome] = []
    for index, entry in enumerate(entries):
        result = by_token.get(entry.upload_token)
        if result is None and index < len(results):
            candidate = results[index]
            echoed = candidate.get('uploadToken') if isinstance(candidate, dict) else None
            if not echoed or echoed == entry.upload_token:
                result = candidate
        outcomes.append(classify_result(result))
    return outcomes


@dataclass
class CommitReport:
    """What a flush decided, in source order."""
    ledger_entries: List[LedgerEntry] = field(default_factory=list)
    rewind_to: Optional[PendingBatchEntry] = None
    created: int = 0
    failed: int = 0
    retryable: int = 0

    @property
    def rewound(self) -> bool:
        return self.rewind_to is not None


class PendingBatch:
    """Entries held between upload and commit, in source order."""

    def __init__(self, max_batch_size: int):
        self.max_batch_size = max_batch_size
        self.entries: List[PendingBatchEntry] = []

    def add(self, entry: PendingBatchEntry) -> None:
        self.entries.append(entry)

    @property
    def token_count(self) -> int:
        return sum(1 for entry in self.entries if entry.needs_commit_call)

    def is_full(self) -> bool:
        return self.token_count >= self.max_batch_size

    def contains(self, item_id: str) -> bool:
        return any(entry.source_item.id == item_id for entry in self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)

    def take(self) -> List[PendingBatchEntry]:
        entries, self.entries = self.entries, []
        return entries


class BatchCommitter:
    """Submits bulk create calls and applies their outcomes."""

    def __init__(self, client: PhotosClient, retry_policy: RetryPolicy, max_batch_size: int,
                 sleep: Optional[Callable[[float], None]] = None):
        self.client = client
        self.retry_policy = retry_policy
        self.max_batch_size = max_batch_size
        self._sleep_kwargs = {'sleep': sleep} if sleep else {}

    def commit(self, entries: List[CommitRequestEntry],
               album_id: Optional[str] = None) -> List[CommitOutcome]:
        """
        Bulk-create ``entries``.

        Returns:
            Outcomes aligned index-for-index with ``entries``.

        Raises:
            BatchDispatchError: If the call produced no usable response
        """
        if not entries:
            return []
        if len(entries) > self.max_batch_size:
            raise ValueError(f"Batch of {len(entries)} exceeds the cap of {self.max_batch_size}")

        payload_items = [entry.to_api() for entry in entries]
        outcome = execute_with_retry(
            RetryRequest(
                f"Create {len(entries)} media items",
                lambda: self.client.batch_create(payload_items, album_id),
                is_success=_usable_response,
                is_retryable_result=lambda r: is_retryable_status(r.status_code),
            ),
            self.retry_policy,
            **self._sleep_kwargs,
        )
        if not outcome.succeeded:
            status = getattr(outcome.result, 'status_code', None)
            raise BatchDispatchError(
                f"Bulk create of {len(entries)} items failed: {outcome.describe()}",
                batch_size=len(entries),
                status_code=status,
            )
        return parse_batch_create_response(outcome.result.json(), entries)

    def flush(self, pending: List[PendingBatchEntry], album_id: Optional[str] = None) -> CommitReport:
        """
        Commit pending entries and decide ledger rows and the rewind point.

        Entries resolved locally (``local_outcome``) are not sent to the API
        but take their place in the ordered scan.

        Raises:
            BatchDispatchError: If the bulk call produced no usable response
        """
        to_send = [entry for entry in pending if entry.needs_commit_call]
        outcomes = self.commit(
            [CommitRequestEntry(entry.upload_token, entry.source_item.display_name) for entry in to_send],
            album_id,
        )
        outcome_by_entry = {id(entry): outcome for entry, outcome in zip(to_send, outcomes)}

        report = CommitReport()
        for entry in pending:
            if entry.local_outcome is not None:
                outcome: CommitOutcome = TerminalFailure(entry.local_outcome.message)
            else:
                outcome = outcome_by_entry[id(entry)]

            if isinstance(outcome, Success):
                report.ledger_entries.append(entry.proposed_ledger_entry(outcome))
                report.created += 1
            elif isinstance(outcome, TerminalFailure):
                logger.warning(f"Permanent failure for {entry.source_item.display_name}: {outcome.message}")
                report.ledger_entries.append(entry.proposed_ledger_entry(PermanentFailure(outcome.message)))
                report.failed += 1
            else:
                report.retryable += 1
                if report.rewind_to is None:
                    logger.warning(
                        f"Retryable failure creating {entry.source_item.display_name}: "
                        f"{outcome.message}; will resume from this item"
                    )
                    report.rewind_to = entry

        if to_send:
            logger.info(
                f"Committed batch of {len(to_send)}: {report.created} created, "
                f"{report.failed} failed, {report.retryable} to retry"
            )
        return report


def _usable_response(response: requests.Response) -> bool:
    if not response.ok:
        return False
    try:
        return isinstance(response.json(), dict)
    except ValueError:
        return False
