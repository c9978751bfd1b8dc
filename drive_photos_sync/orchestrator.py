"""
Sync orchestrator: wires configuration, credentials and engine components.
"""
import logging
from typing import Callable, Dict, Optional

from drive_photos_sync.auth import build_drive_service, build_photos_session, get_credentials
from drive_photos_sync.config import SyncConfig
from drive_photos_sync.destination.photos_client import PhotosClient
from drive_photos_sync.engine.batch_committer import BatchCommitter
from drive_photos_sync.engine.controller import RunController
from drive_photos_sync.engine.cursor import CursorStore
from drive_photos_sync.engine.failure_tracker import FailureTracker
from drive_photos_sync.engine.ledger import DedupLedger, JsonlLedgerStorage
from drive_photos_sync.engine.upload_stage import UploadStage
from drive_photos_sync.exceptions import BatchDispatchError
from drive_photos_sync.source.drive_source import DriveSource
from drive_photos_sync.state.repository import StateRepository
from drive_photos_sync.state.run_lock import RunLock
from drive_photos_sync.utils.metrics import RunStatistics

logger = logging.getLogger(__name__)


def resolve_album(client: PhotosClient, repository: StateRepository,
                  title: Optional[str]) -> Optional[str]:
    """
    Return the album id for ``title``, using the cached id when present.

    Raises:
        ConfigurationError: If the album can neither be found nor created
    """
    if not title:
        return None
    cached = repository.get_container_id(title)
    if cached:
        logger.debug(f"Using cached album id for '{title}'")
        return cached
    album_id = client.find_or_create_album(title)
    repository.set_container_id(title, album_id)
    return album_id


class SyncOrchestrator:
    """Builds a run from configuration and executes it under the run lock."""

    def __init__(self, config: SyncConfig, drive_service=None, photos_session=None,
                 sleep: Optional[Callable[[float], None]] = None):
        """
        Args:
            config: Loaded configuration
            drive_service: Drive v3 resource; built from stored credentials if omitted
            photos_session: Authorized session for the Photos Library API;
                built from stored credentials if omitted
            sleep: Optional sleep override for every retry executor
        """
        self.config = config
        self.sleep = sleep
        self._drive_service = drive_service
        self._photos_session = photos_session
        self.repository = StateRepository(config.state.state_file)
        self.ledger_storage = JsonlLedgerStorage(config.state.ledger_file)

    def _ensure_clients(self) -> None:
        if self._drive_service is not None and self._photos_session is not None:
            return
        creds = get_credentials(self.config.drive.credentials_file)
        if self._drive_service is None:
            self._drive_service = build_drive_service(creds)
        if self._photos_session is None:
            self._photos_session = build_photos_session(creds)

    def build_controller(self) -> RunController:
        self._ensure_clients()
        policy = self.config.retry.to_policy()
        settings = self.config.run_settings()

        source = DriveSource(
            self._drive_service,
            mime_types=self.config.drive.mime_types,
            retry_policy=policy,
            folder_id=self.config.drive.folder_id,
            page_size=self.config.drive.page_size,
            sleep=self.sleep,
        )
        client = PhotosClient(self._photos_session, policy, sleep=self.sleep)
        album_title = self.config.photos.album_title

        return RunController(
            settings=settings,
            source=source,
            upload_stage=UploadStage(client, policy, concurrency=settings.upload_concurrency, sleep=self.sleep),
            committer=BatchCommitter(client, policy, settings.max_batch_size, sleep=self.sleep),
            ledger=DedupLedger(self.ledger_storage),
            failure_tracker=FailureTracker(self.repository, settings.max_item_failures),
            cursor_store=CursorStore(self.repository),
            container_resolver=lambda: resolve_album(client, self.repository, album_title),
        )

    def run(self) -> RunStatistics:
        """
        Run one sync pass while holding the state-directory lock.

        Raises:
            RunLockedError: If another run is in progress
            ConfigurationError: If the destination album cannot be resolved
            BatchDispatchError: If a bulk create call failed outright
        """
        with RunLock(self.config.state.lock_file):
            # Reload under the lock so state written by a previous run is current
            self.repository = StateRepository(self.config.state.state_file)
            controller = self.build_controller()
            try:
                return controller.run()
            except BatchDispatchError as e:
                if e.status_code == 400 and controller.album_id:
                    # A deleted album makes every create call fail; look it up again next run
                    logger.warning(
                        f"Bulk create rejected with 400; forgetting cached album id {controller.album_id}"
                    )
                    self.repository.clear_container_id()
                raise

    def status(self) -> Dict:
        """Summarize the durable state without touching the network."""
        cursor = self.repository.load_cursor()
        ledger = DedupLedger(self.ledger_storage)
        return {
            'cursor': {
                'page_token': cursor.page_token,
                'offset': cursor.offset,
                'anchor_item_id': cursor.anchor_item_id,
            },
            'ledger': ledger.counts(),
            'pending_failures': self.repository.load_failures(),
            'album_title': self.config.photos.album_title,
            'album_id': self.repository.get_container_id(self.config.photos.album_title or ''),
        }

    def reset(self) -> None:
        """
        Forget the walk: clear the cursor, failure counters and ledger.

        Items already created in Google Photos stay there, so the next run
        may create duplicates of them.
        """
        with RunLock(self.config.state.lock_file):
            self.repository = StateRepository(self.config.state.state_file)
            self.repository.clear_cursor()
            self.repository.save_failures({})
            self.ledger_storage.clear()
        logger.warning("Sync state reset; the next run starts from the beginning of the listing")
