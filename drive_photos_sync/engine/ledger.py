"""
Append-only record of terminal per-item outcomes.

The ledger is the single source of truth for "already handled": an item
with a ledger row is never fetched, uploaded or committed again.
"""
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, List

from drive_photos_sync.exceptions import StateError
from drive_photos_sync.models import LedgerEntry

logger = logging.getLogger(__name__)


class JsonlLedgerStorage:
    """Ledger rows stored one JSON object per line.

    Each row carries the columns ``itemId``, ``displayName``, ``mimeType``,
    ``timestamp`` and ``outcomeRef``.
    """

    def __init__(self, ledger_file: Path):
        self.ledger_file = Path(ledger_file)
        self.ledger_file.parent.mkdir(parents=True, exist_ok=True)

    def append_rows(self, rows: List[Dict[str, str]]) -> None:
        if not rows:
            return
        try:
            with open(self.ledger_file, 'a', encoding='utf-8') as f:
                if self._ends_torn():
                    # Terminate an interrupted row so the next one starts on its own line
                    f.write('\n')
                for row in rows:
                    f.write(json.dumps(row, ensure_ascii=False) + '\n')
                f.flush()
                os.fsync(f.fileno())
        except (IOError, OSError) as e:
            raise StateError(f"Could not append to ledger {self.ledger_file}: {e}") from e

    def _ends_torn(self) -> bool:
        """Return True if the file is non-empty and its last byte is not a newline."""
        with open(self.ledger_file, 'rb') as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return False
            f.seek(-1, os.SEEK_END)
            return f.read(1) != b'\n'

    def read_rows(self) -> Iterator[Dict[str, str]]:
        if not self.ledger_file.exists():
            return
        with open(self.ledger_file, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError:
                    # A torn final line from an interrupted append
                    logger.warning(f"Skipping unreadable ledger line {line_number} in {self.ledger_file}")
                    continue
                if isinstance(row, dict) and row.get('itemId'):
                    yield row

    def clear(self) -> None:
        if self.ledger_file.exists():
            self.ledger_file.unlink()
            logger.info(f"Deleted ledger file {self.ledger_file}")


class DedupLedger:
    """Dedup view over ledger storage, built once at run start."""

    def __init__(self, storage: JsonlLedgerStorage):
        self.storage = storage
        self._entries: Dict[str, LedgerEntry] = {}
        for row in storage.read_rows():
            # First row wins if an earlier crash left a duplicate behind
            if row['itemId'] not in self._entries:
                self._entries[row['itemId']] = LedgerEntry.from_row(row)
        logger.info(f"Ledger loaded: {len(self._entries)} items already handled")

    def has(self, item_id: str) -> bool:
        return item_id in self._entries

    def append(self, entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
        """
        Durably record entries, inserting each item id at most once.

        Args:
            entries: Entries in source order

        Returns:
            The entries actually written (ids already present are dropped).
        """
        new_entries: List[LedgerEntry] = []
        seen = set()
        for entry in entries:
            if entry.item_id in self._entries or entry.item_id in seen:
                logger.debug(f"Ledger already holds {entry.item_id}, not appending again")
                continue
            seen.add(entry.item_id)
            new_entries.append(entry)

        self.storage.append_rows([entry.to_row() for entry in new_entries])
        for entry in new_entries:
            self._entries[entry.item_id] = entry
        return new_entries

    def __len__(self) -> int:
        return len(self._entries)

    def counts(self) -> Dict[str, int]:
        succeeded = sum(1 for entry in self._entries.values() if entry.succeeded)
        return {
            'total': len(self._entries),
            'succeeded': succeeded,
            'failed': len(self._entries) - succeeded,
        }
