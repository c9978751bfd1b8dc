"""
Run controller: one time-bounded, resumable pass over the source listing.

The controller is the only component that sequences the others. A run
loads the cursor, walks pages from it, and for every item that is not yet
in the ledger and has an allowed MIME type fetches its bytes, uploads them
and accumulates the upload token into a pending batch. Full batches are
committed; outcomes go to the ledger and the cursor moves forward.

A run stops when the item quota is met, the time budget is spent, a
retryable failure occurs, the source cannot be listed, or the listing is
exhausted. On every stop the pending batch is flushed and the cursor is
saved pointing at the first item that still needs work.

Only ``ConfigurationError`` (before any item is touched) and
``BatchDispatchError`` escape ``run()``.
"""
import logging
import time
from typing import Callable, List, Optional, Tuple

from tqdm import tqdm

from drive_photos_sync.config import RunSettings
from drive_photos_sync.engine.batch_committer import BatchCommitter, PendingBatch
from drive_photos_sync.engine.cursor import CursorRealigner, CursorStore, WalkState
from drive_photos_sync.engine.failure_tracker import FailureTracker
from drive_photos_sync.engine.ledger import DedupLedger
from drive_photos_sync.engine.upload_stage import UploadJob, UploadStage
from drive_photos_sync.exceptions import BatchDispatchError
from drive_photos_sync.models import (
    Cursor,
    ItemError,
    PendingBatchEntry,
    PermanentFailure,
    SourceItem,
    UploadResult,
)
from drive_photos_sync.utils.metrics import RunStatistics, StopReason

logger = logging.getLogger(__name__)


class RunController:
    """Orchestrates a single sync run."""

    def __init__(
        self,
        settings: RunSettings,
        source,
        upload_stage: UploadStage,
        committer: BatchCommitter,
        ledger: DedupLedger,
        failure_tracker: FailureTracker,
        cursor_store: CursorStore,
        container_resolver: Optional[Callable[[], Optional[str]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            settings: Limits for this run
            source: Object with ``list_page(page_token)`` and ``fetch_bytes(item_id)``
            upload_stage: Single-item upload stage
            committer: Bulk create committer
            ledger: Dedup ledger loaded for this run
            failure_tracker: Persistent per-item failure counters
            cursor_store: Cursor persistence
            container_resolver: Returns the album id to add items to, or None
            clock: Monotonic clock in seconds (injected by tests)
        """
        self.settings = settings
        self.source = source
        self.upload_stage = upload_stage
        self.committer = committer
        self.ledger = ledger
        self.failure_tracker = failure_tracker
        self.cursor_store = cursor_store
        self.container_resolver = container_resolver
        self.clock = clock

        self.state = WalkState.FRESH_PAGE
        self.album_id: Optional[str] = None
        self.pending = PendingBatch(settings.max_batch_size)
        self.stats = RunStatistics()
        self._started = 0.0

    def run(self) -> RunStatistics:
        """
        Execute one run.

        Returns:
            RunStatistics including the stop reason.

        Raises:
            ConfigurationError: If the destination album cannot be resolved
            BatchDispatchError: If a bulk create call produced no usable response
        """
        self._started = self.clock()
        self.stats = RunStatistics(start_time=self._started)
        self.pending = PendingBatch(self.settings.max_batch_size)

        if self.container_resolver is not None:
            self.album_id = self.container_resolver()

        cursor = self.cursor_store.load()
        logger.info(
            f"Starting sync run: cursor token={cursor.page_token or '<first>'} "
            f"offset={cursor.offset} anchor={cursor.anchor_item_id or '-'}; "
            f"{len(self.ledger)} items in ledger"
        )

        try:
            reason = self._walk(cursor)
        except BatchDispatchError as e:
            logger.error(f"Aborting run: {e}")
            self.stats.record_error(str(e))
            raise

        self.stats.finish(reason, end_time=self.clock())
        logger.info(f"Sync run finished: {self.stats.summary()}")
        return self.stats

    # Time and quota
    def _time_exceeded(self) -> bool:
        return self.clock() - self._started >= self.settings.max_run_seconds

    def _quota_reached(self) -> bool:
        return self.stats.processed >= self.settings.max_items_per_run

    def _walk(self, cursor: Cursor) -> StopReason:
        realigner = CursorRealigner()

        while True:
            self.state = WalkState.FRESH_PAGE
            if self._time_exceeded():
                return self._stop(StopReason.TIME_BUDGET, cursor)

            result = self.source.list_page(cursor.page_token)
            self.stats.pages_listed += 1
            if not result.ok:
                logger.warning(f"Stopping: {result.error.message}")
                self.stats.record_error(result.error.message)
                return self._stop(StopReason.SOURCE_UNAVAILABLE, cursor)
            page = result.page
            logger.info(
                f"Listed page {self.stats.pages_listed} "
                f"(token={cursor.page_token or '<first>'}): {len(page.items)} files"
            )

            if cursor.pending_realignment:
                self.state = WalkState.REALIGNING
                decision = realigner.realign(cursor, page)
                cursor = decision.cursor
                if decision.refetch:
                    continue
            self.state = WalkState.ALIGNED

            stop = self._iterate_page(cursor.page_token, page.items, min(cursor.offset, len(page.items)))
            if stop is not None:
                return stop

            if not page.next_page_token:
                self.state = WalkState.DONE
                return self._stop(StopReason.SOURCE_EXHAUSTED, Cursor(cursor.page_token, len(page.items)))

            cursor = Cursor(page_token=page.next_page_token, offset=0)
            self._checkpoint(cursor)
            if self._quota_reached():
                return self._stop(StopReason.QUOTA_REACHED, cursor)

    def _iterate_page(self, page_token: str, items: List[SourceItem], offset: int) -> Optional[StopReason]:
        self.state = WalkState.ITERATING
        progress = tqdm(
            total=len(items) - offset,
            desc="Syncing page",
            unit="item",
            disable=not self.settings.show_progress,
        )
        try:
            index = offset
            while index < len(items):
                here = Cursor.at(page_token, items, index)
                if self._time_exceeded():
                    return self._stop(StopReason.TIME_BUDGET, here)
                if self._quota_reached():
                    return self._stop(StopReason.QUOTA_REACHED, here)

                chunk, next_index = self._gather(items, index)
                progress.update(next_index - index)
                stop = self._process_chunk(page_token, items, chunk)
                if stop is not None:
                    return stop
                index = next_index
            return None
        finally:
            progress.close()

    def _gather(self, items: List[SourceItem], index: int) -> Tuple[List[Tuple[int, SourceItem]], int]:
        """Collect up to ``upload_concurrency`` items needing work, starting at ``index``."""
        chunk: List[Tuple[int, SourceItem]] = []
        room = self.settings.max_items_per_run - self.stats.processed
        limit = min(self.settings.upload_concurrency, room)
        while index < len(items) and len(chunk) < limit:
            item = items[index]
            if self.ledger.has(item.id) or self.pending.contains(item.id):
                logger.debug(f"Skipping {item.display_name}: already handled")
                self.stats.skipped_already_done += 1
            elif not self.settings.is_eligible(item.mime_type):
                logger.debug(f"Skipping {item.display_name}: unsupported type {item.mime_type}")
                self.stats.skipped_ineligible += 1
            else:
                chunk.append((index, item))
            index += 1
        return chunk, index

    def _upload_chunk(self, chunk: List[Tuple[int, SourceItem]]) -> List[UploadResult]:
        results: List[Optional[UploadResult]] = [None] * len(chunk)
        jobs: List[UploadJob] = []
        job_slots: List[int] = []
        for slot, (_, item) in enumerate(chunk):
            fetched = self.source.fetch_bytes(item.id)
            if not fetched.ok:
                results[slot] = UploadResult(error=fetched.error)
                continue
            jobs.append(UploadJob(item, fetched.content))
            job_slots.append(slot)

        if jobs:
            for slot, uploaded in zip(job_slots, self.upload_stage.upload_many(jobs)):
                results[slot] = uploaded
        return results

    def _process_chunk(self, page_token: str, items: List[SourceItem],
                       chunk: List[Tuple[int, SourceItem]]) -> Optional[StopReason]:
        if not chunk:
            return None

        for (index, item), result in zip(chunk, self._upload_chunk(chunk)):
            self.stats.processed += 1
            position = Cursor.at(page_token, items, index)

            if result.ok:
                logger.debug(f"Uploaded {item.display_name}")
                self.stats.bytes_uploaded += item.size_bytes
                self.pending.add(PendingBatchEntry(item, position, upload_token=result.token))
            elif result.error.retryable:
                if not self._record_retryable(item, position, result.error):
                    return self._stop(StopReason.RETRYABLE_FAILURE, position)
            else:
                logger.warning(f"Giving up on {item.display_name}: {result.error.message}")
                self.stats.record_error(f"{item.id}: {result.error.message}")
                self.pending.add(PendingBatchEntry(
                    item, position, local_outcome=PermanentFailure(result.error.message),
                ))

            if self.pending.is_full():
                rewind = self._commit()
                if rewind is not None:
                    return self._stop(StopReason.RETRYABLE_FAILURE, rewind)
                self._checkpoint(Cursor.at(page_token, items, index + 1))
        return None

    def _record_retryable(self, item: SourceItem, position: Cursor, error: ItemError) -> bool:
        """Count a retryable item failure; return True if the item was escalated."""
        self.stats.retryable_failures += 1
        self.stats.record_error(f"{item.id}: {error.message}")
        count = self.failure_tracker.record_failure(item.id)
        if not self.failure_tracker.should_escalate(count):
            logger.warning(
                f"Retryable failure for {item.display_name} "
                f"({count}/{self.failure_tracker.threshold}): {error.message}"
            )
            return False

        logger.warning(f"Escalating {item.display_name} to permanent failure after {count} attempts")
        self.stats.escalated += 1
        self.pending.add(PendingBatchEntry(
            item, position, local_outcome=self.failure_tracker.escalation_outcome(),
        ))
        return True

    def _commit(self) -> Optional[Cursor]:
        """Flush the pending batch; return the rewind cursor if a retryable failure occurred."""
        entries = self.pending.take()
        if not entries:
            return None

        report = self.committer.flush(entries, self.album_id)
        if any(entry.needs_commit_call for entry in entries):
            self.stats.batches_committed += 1

        self.ledger.append(report.ledger_entries)
        self.failure_tracker.clear_many(entry.item_id for entry in report.ledger_entries)
        self.stats.uploaded += report.created
        self.stats.failed += report.failed
        self.stats.retryable_failures += report.retryable

        if report.rewound:
            return report.rewind_to.position
        return None

    def _checkpoint(self, current: Cursor) -> None:
        """Persist progress without moving past uncommitted work."""
        if self.pending:
            self.cursor_store.save(self.pending.entries[0].position)
        else:
            self.cursor_store.save(current)

    def _stop(self, reason: StopReason, resume_at: Cursor) -> StopReason:
        rewind = self._commit()
        if rewind is not None:
            resume_at = rewind
            reason = StopReason.RETRYABLE_FAILURE
        self.cursor_store.save(resume_at)
        self.state = WalkState.DONE
        logger.info(
            f"Stopping ({reason.value}); next run resumes at token="
            f"{resume_at.page_token or '<first>'} offset={resume_at.offset}"
        )
        return reason
