"""
Tests for the dedup ledger and its JSON-lines storage.
"""
import json

import pytest

from drive_photos_sync.engine.ledger import DedupLedger, JsonlLedgerStorage
from drive_photos_sync.exceptions import StateError
from drive_photos_sync.models import LedgerEntry, PermanentFailure, SourceItem, Success


def entry(item_id, outcome=None):
    item = SourceItem(item_id, f"{item_id}.jpg", 'image/jpeg')
    return LedgerEntry.for_item(item, outcome or Success(f"media-{item_id}"))


@pytest.fixture
def storage(tmp_path):
    return JsonlLedgerStorage(tmp_path / 'ledger.jsonl')


class TestLedgerEntry:
    """Tests for row serialization."""

    def test_success_row(self):
        row = entry('a').to_row()
        assert row['itemId'] == 'a'
        assert row['outcomeRef'] == 'media-a'
        assert set(row) == {'itemId', 'displayName', 'mimeType', 'timestamp', 'outcomeRef'}

    def test_failure_row_prefixed(self):
        row = entry('a', PermanentFailure('gave up after 3 attempts')).to_row()
        assert row['outcomeRef'] == 'ERROR: gave up after 3 attempts'

    def test_failure_read_back(self):
        row = entry('a', PermanentFailure('boom')).to_row()
        restored = LedgerEntry.from_row(row)
        assert restored.outcome == PermanentFailure('boom')
        assert not restored.succeeded


class TestDedupLedger:
    """Tests for DedupLedger."""

    def test_append_persists(self, storage):
        DedupLedger(storage).append([entry('a'), entry('b')])

        reloaded = DedupLedger(storage)
        assert reloaded.has('a')
        assert reloaded.has('b')
        assert len(reloaded) == 2

    def test_existing_ids_not_appended(self, storage):
        ledger = DedupLedger(storage)
        ledger.append([entry('a')])

        written = ledger.append([entry('a', PermanentFailure('late')), entry('b')])

        assert [e.item_id for e in written] == ['b']
        assert [row['itemId'] for row in storage.read_rows()] == ['a', 'b']
        assert ledger.counts() == {'total': 2, 'succeeded': 2, 'failed': 0}

    def test_duplicates_within_one_append(self, storage):
        written = DedupLedger(storage).append([entry('a'), entry('a')])
        assert len(written) == 1

    def test_first_row_wins_on_load(self, storage):
        storage.append_rows([entry('a').to_row(), entry('a', PermanentFailure('dup')).to_row()])

        ledger = DedupLedger(storage)

        assert ledger.counts() == {'total': 1, 'succeeded': 1, 'failed': 0}

    def test_torn_line_skipped(self, storage):
        storage.append_rows([entry('a').to_row()])
        with open(storage.ledger_file, 'a') as f:
            f.write('{"itemId": "b", "outc')

        ledger = DedupLedger(storage)

        assert ledger.has('a')
        assert not ledger.has('b')

    def test_append_after_torn_line_survives_reload(self, storage):
        storage.append_rows([entry('a').to_row()])
        with open(storage.ledger_file, 'a') as f:
            f.write('{"itemId": "b", "displ')

        DedupLedger(storage).append([entry('b'), entry('c')])

        reloaded = DedupLedger(storage)
        assert reloaded.has('a')
        assert reloaded.has('b')
        assert reloaded.has('c')
        assert storage.ledger_file.read_text().endswith('\n')

    def test_counts(self, storage):
        ledger = DedupLedger(storage)
        ledger.append([entry('a'), entry('b', PermanentFailure('bad'))])

        assert ledger.counts() == {'total': 2, 'succeeded': 1, 'failed': 1}

    def test_clear(self, storage):
        DedupLedger(storage).append([entry('a')])
        storage.clear()
        assert len(DedupLedger(storage)) == 0


class TestJsonlLedgerStorage:
    """Tests for the on-disk format."""

    def test_one_object_per_line(self, storage):
        storage.append_rows([entry('a').to_row(), entry('b').to_row()])

        lines = storage.ledger_file.read_text().splitlines()
        assert [json.loads(line)['itemId'] for line in lines] == ['a', 'b']

    def test_missing_file_reads_empty(self, storage):
        assert list(storage.read_rows()) == []

    def test_unwritable_ledger_raises_state_error(self, tmp_path):
        ledger_dir = tmp_path / 'ledger.jsonl'
        ledger_dir.mkdir()

        with pytest.raises(StateError):
            JsonlLedgerStorage(ledger_dir).append_rows([entry('a').to_row()])
