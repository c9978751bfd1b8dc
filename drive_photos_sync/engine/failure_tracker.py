"""
Per-item consecutive-failure counters that escalate a poison item.

A retryable single-item failure rewinds the cursor to that same item, so
without a bound a consistently failing item would block the walk forever.
Once an item fails ``threshold`` times in a row it is given up on.
"""
import logging
from typing import Dict

from drive_photos_sync.models import PermanentFailure
from drive_photos_sync.state.repository import StateRepository

logger = logging.getLogger(__name__)


class FailureTracker:
    """Counters persisted through the state repository after every change."""

    def __init__(self, repository: StateRepository, threshold: int):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.repository = repository
        self.threshold = threshold
        self._counts: Dict[str, int] = repository.load_failures()
        if self._counts:
            logger.info(f"{len(self._counts)} items have pending retryable failures")

    def record_failure(self, item_id: str) -> int:
        """Increment and persist the counter for ``item_id``; return the new count."""
        count = self._counts.get(item_id, 0) + 1
        self._counts[item_id] = count
        self.repository.save_failures(self._counts)
        logger.debug(f"Item {item_id} failed {count}/{self.threshold} times")
        return count

    def should_escalate(self, count: int) -> bool:
        return count >= self.threshold

    def escalation_outcome(self) -> PermanentFailure:
        return PermanentFailure(f"gave up after {self.threshold} attempts")

    def clear_many(self, item_ids) -> None:
        removed = [item_id for item_id in item_ids if self._counts.pop(item_id, None) is not None]
        if removed:
            self.repository.save_failures(self._counts)
