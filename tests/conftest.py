"""
Pytest configuration and shared fixtures.

The sync engine is exercised against in-memory stand-ins for Google Drive
and the Photos Library API, a simulated clock, and real state files under
``tmp_path``.
"""
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import yaml

from drive_photos_sync.config import RunSettings
from drive_photos_sync.engine.batch_committer import BatchCommitter
from drive_photos_sync.engine.controller import RunController
from drive_photos_sync.engine.cursor import CursorStore
from drive_photos_sync.engine.failure_tracker import FailureTracker
from drive_photos_sync.engine.ledger import DedupLedger, JsonlLedgerStorage
from drive_photos_sync.engine.retry import RetryPolicy
from drive_photos_sync.engine.upload_stage import UploadStage
from drive_photos_sync.models import (
    Cursor,
    FetchResult,
    ItemError,
    PageResult,
    SourceItem,
    SourcePage,
)
from drive_photos_sync.state.repository import StateRepository


def no_sleep(seconds: float) -> None:
    pass


def make_items(*item_ids: str, mime_type: str = 'image/jpeg') -> List[SourceItem]:
    """Source items named ``<id>.jpg`` with a fixed size."""
    return [SourceItem(id=item_id, display_name=f"{item_id}.jpg", mime_type=mime_type, size_bytes=100)
            for item_id in item_ids]


class FakeResponse:
    """Just enough of ``requests.Response`` for the transport code."""

    def __init__(self, status_code: int = 200, text: str = '', json_data=None):
        self.status_code = status_code
        self.text = text
        self._json_data = json_data

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._json_data is None:
            raise ValueError("No JSON object could be decoded")
        return self._json_data


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDriveSource:
    """
    In-memory listing with positional page tokens (``page-N``).

    ``items`` may be edited between runs to simulate files being added,
    removed or reordered in Drive.
    """

    def __init__(self, items: List[SourceItem], page_size: int = 100):
        self.items = list(items)
        self.page_size = page_size
        self.list_calls: List[str] = []
        self.fetch_calls: List[str] = []
        self.list_errors: List[ItemError] = []
        self.fetch_errors: Dict[str, List[ItemError]] = {}
        self.on_fetch = None

    def list_page(self, page_token: str = "") -> PageResult:
        self.list_calls.append(page_token)
        if self.list_errors:
            return PageResult(error=self.list_errors.pop(0))

        page_number = int(page_token.split('-')[1]) if page_token else 0
        start = page_number * self.page_size
        end = start + self.page_size
        next_token = f"page-{page_number + 1}" if end < len(self.items) else None
        return PageResult(page=SourcePage(items=self.items[start:end], next_page_token=next_token))

    def fetch_bytes(self, item_id: str) -> FetchResult:
        self.fetch_calls.append(item_id)
        if self.on_fetch is not None:
            self.on_fetch(item_id)
        errors = self.fetch_errors.get(item_id)
        if errors:
            return FetchResult(error=errors.pop(0))
        return FetchResult(content=f"bytes-{item_id}".encode())


class FakePhotosClient:
    """
    Stand-in for ``PhotosClient`` with scripted responses.

    ``upload_plan`` and ``create_plan`` map a file name to a list of
    scripted results consumed one per call; once a list is empty the call
    succeeds. ``batch_responses`` replaces whole bulk create responses.
    """

    def __init__(self):
        self.upload_plan: Dict[str, list] = {}
        self.create_plan: Dict[str, List[dict]] = {}
        self.batch_responses: List[FakeResponse] = []
        self.uploaded: List[str] = []
        self.batch_calls: List[dict] = []

    @staticmethod
    def _next(plan: Dict[str, list], name: str):
        scripted = plan.get(name)
        if scripted:
            return scripted.pop(0)
        return None

    def upload_bytes(self, content: bytes, file_name: str, mime_type: str):
        self.uploaded.append(file_name)
        planned = self._next(self.upload_plan, file_name)
        if isinstance(planned, Exception):
            raise planned
        if planned is None:
            return FakeResponse(200, text=f"token-{file_name}")
        return planned

    def batch_create(self, new_media_items: List[dict], album_id: Optional[str] = None):
        self.batch_calls.append({'items': new_media_items, 'album_id': album_id})
        if self.batch_responses:
            return self.batch_responses.pop(0)

        results = []
        for item in new_media_items:
            token = item['simpleMediaItem']['uploadToken']
            name = item['simpleMediaItem']['fileName']
            status = self._next(self.create_plan, name)
            if status is None:
                results.append({
                    'uploadToken': token,
                    'status': {'message': 'Success'},
                    'mediaItem': {'id': f"media-{name}"},
                })
            else:
                results.append({'uploadToken': token, 'status': status})
        return FakeResponse(200, json_data={'newMediaItemResults': results})


DEFAULT_LIMITS = {
    'max_items_per_run': 500,
    'max_batch_size': 50,
    'max_run_seconds': 300.0,
    'max_item_failures': 3,
    'upload_concurrency': 1,
}


class SyncEnvironment:
    """Builds run controllers over shared fakes and one state directory.

    Every ``run()`` rebuilds the controller from what is on disk, the same
    way a fresh process would.
    """

    def __init__(self, state_dir: Path, source: FakeDriveSource, client: FakePhotosClient,
                 clock: FakeClock):
        self.state_dir = state_dir
        self.source = source
        self.client = client
        self.clock = clock
        self.storage = JsonlLedgerStorage(state_dir / 'ledger.jsonl')

    @property
    def state_file(self) -> Path:
        return self.state_dir / 'state.json'

    def build_controller(self, container_resolver=None, **limits) -> RunController:
        settings = RunSettings(**{**DEFAULT_LIMITS, **limits})
        repository = StateRepository(self.state_file)
        policy = RetryPolicy(max_attempts=1, base_delay=0)
        return RunController(
            settings=settings,
            source=self.source,
            upload_stage=UploadStage(self.client, policy, concurrency=settings.upload_concurrency,
                                     sleep=no_sleep),
            committer=BatchCommitter(self.client, policy, settings.max_batch_size, sleep=no_sleep),
            ledger=DedupLedger(self.storage),
            failure_tracker=FailureTracker(repository, settings.max_item_failures),
            cursor_store=CursorStore(repository),
            container_resolver=container_resolver,
            clock=self.clock,
        )

    def run(self, **limits):
        """Run once; ``client.uploaded`` then lists only this run's uploads."""
        self.client.uploaded = []
        self.source.fetch_calls = []
        self.source.list_calls = []
        return self.build_controller(**limits).run()

    def ledger_rows(self) -> List[dict]:
        return list(self.storage.read_rows())

    def ledger_ids(self) -> List[str]:
        return [row['itemId'] for row in self.ledger_rows()]

    def cursor(self) -> Cursor:
        return StateRepository(self.state_file).load_cursor()

    def failures(self) -> Dict[str, int]:
        return StateRepository(self.state_file).load_failures()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_client() -> FakePhotosClient:
    return FakePhotosClient()


@pytest.fixture
def make_response():
    """Factory for fake HTTP responses."""
    return FakeResponse


@pytest.fixture
def item_factory():
    """Factory for source items named ``<id>.jpg``."""
    return make_items


@pytest.fixture
def make_source():
    """Factory for an in-memory Drive listing."""
    def _make(*item_ids: str, page_size: int = 100) -> FakeDriveSource:
        return FakeDriveSource(make_items(*item_ids), page_size=page_size)
    return _make


@pytest.fixture
def make_env(tmp_path, fake_client, fake_clock):
    """Factory wiring a fake source into a SyncEnvironment with state under tmp_path."""
    def _make(source: FakeDriveSource) -> SyncEnvironment:
        return SyncEnvironment(tmp_path / 'state', source, fake_client, fake_clock)
    return _make


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Three attempts with no delay."""
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def sample_config(tmp_path) -> Dict:
    """Fixture providing a sample configuration dictionary."""
    return {
        'drive': {
            'credentials_file': str(tmp_path / 'credentials.json'),
            'folder_id': 'test_folder_id',
            'page_size': 50,
        },
        'photos': {
            'album_title': 'From Drive',
            'max_batch_size': 20,
            'upload_concurrency': 2,
        },
        'run': {
            'max_items_per_run': 100,
            'max_run_seconds': 120,
            'max_item_failures': 3,
        },
        'retry': {
            'max_attempts': 3,
            'base_delay': 0.5,
        },
        'state': {
            'state_dir': str(tmp_path / 'state'),
        },
        'logging': {
            'level': 'INFO',
            'file': str(tmp_path / 'sync.log'),
        },
    }


@pytest.fixture
def config_file(tmp_path, sample_config) -> Path:
    """Create a temporary config.yaml file."""
    config_path = tmp_path / 'config.yaml'
    with open(config_path, 'w') as f:
        yaml.dump(sample_config, f)
    return config_path


@pytest.fixture
def credentials_file(tmp_path) -> Path:
    """Create a mock OAuth client secrets file."""
    creds_file = tmp_path / 'credentials.json'
    creds_file.write_text(
        '{"installed": {"client_id": "test_client_id", "client_secret": "test_client_secret", '
        '"auth_uri": "https://accounts.google.com/o/oauth2/auth", '
        '"token_uri": "https://oauth2.googleapis.com/token", '
        '"redirect_uris": ["http://localhost"]}}'
    )
    return creds_file
