"""
Cursor persistence and realignment of a resumed listing walk.

The source store may add, remove or reorder files between runs, so a saved
``offset`` into a page can point at the wrong file when the page is fetched
again. The saved anchor (the id of the next file to process) is used to
repair the offset. Realignment is a best-effort heuristic:

1. If the anchor is on the page, resume at its position.
2. If not, and the page was reached through a non-empty page token, restart
   the walk from the first page once per run, since an insertion earlier in
   the ordering may have pushed the anchor onto a different page.
3. If it is still missing and there is a next page, assume the anchor was
   already consumed and continue at the start of the next page.
4. Otherwise the anchor is gone; continue from the start of the last page.

Files seen twice because of a restart are filtered by the ledger.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from drive_photos_sync.models import Cursor, SourcePage
from drive_photos_sync.state.repository import StateRepository

logger = logging.getLogger(__name__)


class WalkState(Enum):
    """States of one run's listing walk."""
    FRESH_PAGE = "fresh_page"
    REALIGNING = "realigning"
    ALIGNED = "aligned"
    ITERATING = "iterating"
    DONE = "done"


class RealignAction(Enum):
    ALIGNED = "aligned"
    RESTART = "restart"
    NEXT_PAGE = "next_page"
    ANCHOR_GONE = "anchor_gone"


@dataclass(frozen=True)
class RealignDecision:
    """Where the walk continues after a realignment attempt."""
    action: RealignAction
    cursor: Cursor

    @property
    def refetch(self) -> bool:
        """True when the decision points at a different page than the one scanned."""
        return self.action in (RealignAction.RESTART, RealignAction.NEXT_PAGE)


class CursorRealigner:
    """Repairs a pending cursor against a freshly fetched page.

    One instance lives for one run; it remembers whether the single
    restart-from-the-beginning has been spent.
    """

    def __init__(self):
        self.restart_used = False

    def realign(self, cursor: Cursor, page: SourcePage) -> RealignDecision:
        """
        Locate ``cursor.anchor_item_id`` in ``page``.

        Args:
            cursor: Cursor pending realignment; ``page`` was fetched with
                ``cursor.page_token``
            page: The freshly fetched page

        Returns:
            RealignDecision whose cursor carries no anchor unless the
            walk restarts, in which case the anchor stays pending.
        """
        anchor = cursor.anchor_item_id
        for position, item in enumerate(page.items):
            if item.id == anchor:
                if position != cursor.offset:
                    logger.info(
                        f"Realigned cursor: item {anchor} moved from offset "
                        f"{cursor.offset} to {position}"
                    )
                return RealignDecision(
                    RealignAction.ALIGNED,
                    Cursor(page_token=cursor.page_token, offset=position),
                )

        if cursor.page_token and not self.restart_used:
            self.restart_used = True
            logger.info(
                f"Anchor item {anchor} not found on resumed page; "
                f"restarting listing from the first page"
            )
            return RealignDecision(
                RealignAction.RESTART,
                Cursor(page_token="", offset=0, anchor_item_id=anchor),
            )

        if page.next_page_token:
            logger.info(f"Anchor item {anchor} not found; assuming consumed, moving to next page")
            return RealignDecision(
                RealignAction.NEXT_PAGE,
                Cursor(page_token=page.next_page_token, offset=0),
            )

        logger.info(f"Anchor item {anchor} no longer exists; continuing from start of last page")
        return RealignDecision(
            RealignAction.ANCHOR_GONE,
            Cursor(page_token=cursor.page_token, offset=0),
        )


class CursorStore:
    """Persists the cursor through the state repository, skipping no-op writes."""

    def __init__(self, repository: StateRepository):
        self.repository = repository
        self._last_saved: Optional[Cursor] = None

    def load(self) -> Cursor:
        cursor = self.repository.load_cursor()
        self._last_saved = cursor
        return cursor

    def save(self, cursor: Cursor) -> None:
        if cursor == self._last_saved:
            return
        self.repository.save_cursor(cursor)
        self._last_saved = cursor
