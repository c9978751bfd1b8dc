"""
Statistics for one sync run.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class StopReason(Enum):
    """Why a run returned."""
    QUOTA_REACHED = "quota_reached"
    TIME_BUDGET = "time_budget"
    RETRYABLE_FAILURE = "retryable_failure"
    SOURCE_UNAVAILABLE = "source_unavailable"
    SOURCE_EXHAUSTED = "source_exhausted"


@dataclass
class RunStatistics:
    """Counters returned by a run."""
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    processed: int = 0
    uploaded: int = 0
    skipped_already_done: int = 0
    skipped_ineligible: int = 0
    failed: int = 0
    escalated: int = 0
    retryable_failures: int = 0
    pages_listed: int = 0
    batches_committed: int = 0
    bytes_uploaded: int = 0
    stop_reason: Optional[StopReason] = None
    errors: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_already_done + self.skipped_ineligible

    @property
    def duration(self) -> float:
        """Get duration in seconds."""
        if self.end_time:
            return self.end_time - self.start_time
        return time.time() - self.start_time

    def record_error(self, error: str) -> None:
        self.errors.append(error)

    def finish(self, stop_reason: StopReason, end_time: Optional[float] = None) -> None:
        self.stop_reason = stop_reason
        self.end_time = end_time if end_time is not None else time.time()

    def to_dict(self) -> Dict:
        """Convert statistics to dictionary."""
        return {
            'stop_reason': self.stop_reason.value if self.stop_reason else None,
            'duration_seconds': self.duration,
            'processed': self.processed,
            'uploaded': self.uploaded,
            'skipped': self.skipped,
            'skipped_already_done': self.skipped_already_done,
            'skipped_ineligible': self.skipped_ineligible,
            'failed': self.failed,
            'escalated': self.escalated,
            'retryable_failures': self.retryable_failures,
            'pages_listed': self.pages_listed,
            'batches_committed': self.batches_committed,
            'bytes_uploaded': self.bytes_uploaded,
            'error_count': len(self.errors),
        }

    def summary(self) -> str:
        return (
            f"processed={self.processed} uploaded={self.uploaded} skipped={self.skipped} "
            f"failed={self.failed} escalated={self.escalated} "
            f"stop={self.stop_reason.value if self.stop_reason else 'running'} "
            f"({self.duration:.1f}s)"
        )

    def save_to_file(self, file_path: Path) -> None:
        """Save statistics to a JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Run statistics saved to {file_path}")
