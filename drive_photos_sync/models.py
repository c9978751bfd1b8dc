"""
Data model shared by the sync engine and its collaborators.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

LEDGER_ERROR_PREFIX = "ERROR: "


@dataclass(frozen=True)
class SourceItem:
    """Immutable snapshot of one file as listed by the source store."""
    id: str
    display_name: str
    mime_type: str
    size_bytes: int = 0

    @classmethod
    def from_drive_file(cls, file_info: Dict[str, Any]) -> 'SourceItem':
        """Build an item from a Drive ``files.list`` resource."""
        # Drive returns size as a string and omits it for Google-native files
        try:
            size = int(file_info.get('size', 0))
        except (ValueError, TypeError):
            size = 0
        return cls(
            id=file_info['id'],
            display_name=file_info.get('name', ''),
            mime_type=file_info.get('mimeType', ''),
            size_bytes=size,
        )


@dataclass(frozen=True)
class SourcePage:
    """One page of a listing walk."""
    items: List[SourceItem]
    next_page_token: Optional[str] = None


@dataclass(frozen=True)
class Cursor:
    """Persisted resume position in the listing walk.

    When ``anchor_item_id`` is set it names the next item that must be
    processed, and the cursor is pending realignment until that item is
    located (or judged absent) in a freshly fetched page.
    """
    page_token: str = ""
    offset: int = 0
    anchor_item_id: Optional[str] = None

    def __post_init__(self):
        if self.offset < 0:
            raise ValueError(f"Cursor offset must be non-negative, got {self.offset}")

    @property
    def pending_realignment(self) -> bool:
        return self.anchor_item_id is not None

    @classmethod
    def at(cls, page_token: Optional[str], items: List[SourceItem], offset: int) -> 'Cursor':
        """Cursor for position ``offset`` of a page, anchored on the item found there."""
        anchor = items[offset].id if offset < len(items) else None
        return cls(page_token=page_token or "", offset=offset, anchor_item_id=anchor)


@dataclass(frozen=True)
class ItemError:
    """A failure for one item, classified as worth automatic retry or not."""
    message: str
    retryable: bool


@dataclass(frozen=True)
class PageResult:
    """Outcome of listing one page."""
    page: Optional[SourcePage] = None
    error: Optional[ItemError] = None

    @property
    def ok(self) -> bool:
        return self.page is not None


@dataclass(frozen=True)
class FetchResult:
    """Outcome of fetching one item's bytes."""
    content: Optional[bytes] = None
    error: Optional[ItemError] = None

    @property
    def ok(self) -> bool:
        return self.content is not None


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a single-item upload: a token or an error."""
    token: Optional[str] = None
    error: Optional[ItemError] = None

    @property
    def ok(self) -> bool:
        return bool(self.token)


# Per-entry outcomes of a bulk create call

@dataclass(frozen=True)
class Success:
    destination_id: str


@dataclass(frozen=True)
class RetryableFailure:
    message: str = ""


@dataclass(frozen=True)
class TerminalFailure:
    message: str


CommitOutcome = Union[Success, RetryableFailure, TerminalFailure]


@dataclass(frozen=True)
class PermanentFailure:
    """Ledger outcome for an item that will never be attempted again."""
    message: str


LedgerOutcome = Union[Success, PermanentFailure]


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LedgerEntry:
    """One terminal outcome for one source item."""
    item_id: str
    display_name: str
    mime_type: str
    outcome: LedgerOutcome
    recorded_at: str = field(default_factory=_utcnow)

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Success)

    @classmethod
    def for_item(cls, item: SourceItem, outcome: LedgerOutcome) -> 'LedgerEntry':
        return cls(
            item_id=item.id,
            display_name=item.display_name,
            mime_type=item.mime_type,
            outcome=outcome,
        )

    def to_row(self) -> Dict[str, str]:
        """Serialize to the ledger storage columns."""
        if isinstance(self.outcome, Success):
            outcome_ref = self.outcome.destination_id
        else:
            outcome_ref = LEDGER_ERROR_PREFIX + self.outcome.message
        return {
            'itemId': self.item_id,
            'displayName': self.display_name,
            'mimeType': self.mime_type,
            'timestamp': self.recorded_at,
            'outcomeRef': outcome_ref,
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> 'LedgerEntry':
        outcome_ref = row.get('outcomeRef', '')
        if outcome_ref.startswith(LEDGER_ERROR_PREFIX):
            outcome: LedgerOutcome = PermanentFailure(outcome_ref[len(LEDGER_ERROR_PREFIX):])
        else:
            outcome = Success(outcome_ref)
        return cls(
            item_id=row['itemId'],
            display_name=row.get('displayName', ''),
            mime_type=row.get('mimeType', ''),
            outcome=outcome,
            recorded_at=row.get('timestamp', ''),
        )


@dataclass
class PendingBatchEntry:
    """An item held in memory between upload and commit.

    ``upload_token`` is set for items that go to the bulk create call.
    ``local_outcome`` is set instead for items already resolved locally
    (terminal upload error or escalation) so they are recorded in source
    order together with the rest of the batch.
    """
    source_item: SourceItem
    position: Cursor
    upload_token: Optional[str] = None
    local_outcome: Optional[PermanentFailure] = None

    @property
    def needs_commit_call(self) -> bool:
        return self.upload_token is not None

    def proposed_ledger_entry(self, outcome: LedgerOutcome) -> LedgerEntry:
        return LedgerEntry.for_item(self.source_item, outcome)
