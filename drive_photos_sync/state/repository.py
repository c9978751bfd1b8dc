"""
Durable key-value state for sync resumption.

The repository keeps a flat string map in a single JSON file and exposes
typed accessors for the three pieces of state a run needs: the listing
cursor, the per-item failure counters, and the cached album id.
"""
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from drive_photos_sync.exceptions import StateError
from drive_photos_sync.models import Cursor

logger = logging.getLogger(__name__)

CURSOR_PAGE_TOKEN_KEY = 'cursor.pageToken'
CURSOR_OFFSET_KEY = 'cursor.offset'
CURSOR_ANCHOR_KEY = 'cursor.anchorItemId'
CONTAINER_ID_KEY = 'container.id'
CONTAINER_TITLE_KEY = 'container.title'
FAILURES_KEY = 'failures'
UPDATED_AT_KEY = 'updatedAt'

CURSOR_KEYS = (CURSOR_PAGE_TOKEN_KEY, CURSOR_OFFSET_KEY, CURSOR_ANCHOR_KEY)


class StateRepository:
    """Single-writer store for cursor, failure counters and cached album id."""

    def __init__(self, state_file: Path):
        """
        Initialize the repository.

        Args:
            state_file: JSON file holding the key-value map. Its parent
                directory is created if missing.
        """
        self.state_file = Path(state_file)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self._values: Dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.state_file.exists():
            logger.info(f"📂 No existing state file found at: {self.state_file}")
            logger.info("   Starting fresh (listing walk begins at the first page)")
            return

        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            # The ledger still prevents re-uploads, so a lost cursor only costs a rescan
            logger.warning(f"⚠️  Could not load state from {self.state_file}: {e}")
            logger.warning("   Starting with empty state (listing walk restarts from the first page)")
            return

        if not isinstance(data, dict):
            logger.warning(f"⚠️  Ignoring malformed state file {self.state_file}")
            return
        self._values = {str(k): str(v) for k, v in data.items()}
        logger.info(f"📂 Loaded state from: {self.state_file}")

    def _save(self) -> None:
        self._values[UPDATED_AT_KEY] = datetime.now().isoformat()
        tmp_file = self.state_file.with_suffix(self.state_file.suffix + '.tmp')
        try:
            with open(tmp_file, 'w') as f:
                json.dump(self._values, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_file, self.state_file)
        except (IOError, OSError) as e:
            raise StateError(f"Could not save state to {self.state_file}: {e}") from e
        logger.debug(f"State saved to: {self.state_file}")

    # Raw key-value access
    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value
        self._save()

    def delete(self, *keys: str) -> None:
        changed = False
        for key in keys:
            if key in self._values:
                del self._values[key]
                changed = True
        if changed:
            self._save()

    def set_many(self, values: Dict[str, Optional[str]]) -> None:
        """Set several keys with one write; ``None`` deletes a key."""
        for key, value in values.items():
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = value
        self._save()

    # Cursor
    def load_cursor(self) -> Cursor:
        offset_raw = self.get(CURSOR_OFFSET_KEY)
        try:
            offset = max(0, int(offset_raw)) if offset_raw else 0
        except ValueError:
            logger.warning(f"Ignoring invalid cursor offset {offset_raw!r}")
            offset = 0
        return Cursor(
            page_token=self.get(CURSOR_PAGE_TOKEN_KEY) or "",
            offset=offset,
            anchor_item_id=self.get(CURSOR_ANCHOR_KEY) or None,
        )

    def save_cursor(self, cursor: Cursor) -> None:
        self.set_many({
            CURSOR_PAGE_TOKEN_KEY: cursor.page_token,
            CURSOR_OFFSET_KEY: str(cursor.offset),
            CURSOR_ANCHOR_KEY: cursor.anchor_item_id,
        })
        logger.debug(
            f"Cursor saved: token={cursor.page_token or '<first>'} "
            f"offset={cursor.offset} anchor={cursor.anchor_item_id}"
        )

    def clear_cursor(self) -> None:
        self.delete(*CURSOR_KEYS)

    # Failure counters
    def load_failures(self) -> Dict[str, int]:
        blob = self.get(FAILURES_KEY)
        if not blob:
            return {}
        try:
            data = json.loads(blob)
            return {str(k): int(v) for k, v in data.items() if int(v) > 0}
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable failure counters: {e}")
            return {}

    def save_failures(self, failures: Dict[str, int]) -> None:
        if failures:
            self.set(FAILURES_KEY, json.dumps(failures, sort_keys=True))
        else:
            self.delete(FAILURES_KEY)

    # Cached album
    def get_container_id(self, title: str) -> Optional[str]:
        """Return the cached album id if it was resolved for ``title``."""
        if self.get(CONTAINER_TITLE_KEY) != title:
            return None
        return self.get(CONTAINER_ID_KEY)

    def set_container_id(self, title: str, container_id: str) -> None:
        self.set_many({CONTAINER_TITLE_KEY: title, CONTAINER_ID_KEY: container_id})

    def clear_container_id(self) -> None:
        self.delete(CONTAINER_TITLE_KEY, CONTAINER_ID_KEY)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._values)
