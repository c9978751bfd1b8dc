"""
Configuration management using dataclasses for type safety and validation.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Tuple
import yaml
import json
import os
import jsonschema
import logging

from drive_photos_sync.engine.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Largest number of entries the Photos Library API accepts per batchCreate call
PHOTOS_MAX_BATCH_SIZE = 50

DEFAULT_MIME_TYPES = [
    'image/jpeg',
    'image/png',
    'image/gif',
    'image/heic',
    'image/heif',
    'image/webp',
    'image/tiff',
    'image/bmp',
    'video/mp4',
    'video/quicktime',
    'video/x-msvideo',
    'video/x-matroska',
    'video/mpeg',
    'video/3gpp',
    'video/webm',
]


def _default_state_dir() -> str:
    xdg_state_home = os.environ.get('XDG_STATE_HOME')
    base_dir = Path(xdg_state_home) if xdg_state_home else (Path.home() / '.local' / 'state')
    return str(base_dir / 'drive-photos-sync')


@dataclass
class DriveConfig:
    """Google Drive (source store) configuration."""
    credentials_file: str
    folder_id: Optional[str] = None
    page_size: int = 100
    mime_types: List[str] = field(default_factory=lambda: list(DEFAULT_MIME_TYPES))

    def __post_init__(self):
        """Validate Google Drive configuration."""
        if not self.credentials_file:
            raise ValueError("credentials_file is required for Google Drive")
        if not 1 <= self.page_size <= 1000:
            raise ValueError("page_size must be between 1 and 1000")
        if not self.mime_types:
            raise ValueError("mime_types must list at least one MIME type")

        creds_path = Path(self.credentials_file)
        if not creds_path.exists():
            logger.warning(f"Credentials file not found: {self.credentials_file}")


@dataclass
class PhotosConfig:
    """Google Photos (destination) configuration."""
    album_title: Optional[str] = None
    max_batch_size: int = PHOTOS_MAX_BATCH_SIZE
    upload_concurrency: int = 1

    def __post_init__(self):
        """Validate Photos configuration."""
        if not 1 <= self.max_batch_size <= PHOTOS_MAX_BATCH_SIZE:
            raise ValueError(f"max_batch_size must be between 1 and {PHOTOS_MAX_BATCH_SIZE}")
        if not 1 <= self.upload_concurrency <= 16:
            raise ValueError("upload_concurrency must be between 1 and 16")
        if self.album_title is not None and not self.album_title.strip():
            self.album_title = None


@dataclass
class RunConfig:
    """Per-run limits."""
    max_items_per_run: int = 500
    max_run_seconds: float = 300.0
    max_item_failures: int = 3
    show_progress: bool = False

    def __post_init__(self):
        """Validate run limits."""
        if self.max_items_per_run < 1:
            raise ValueError("max_items_per_run must be at least 1")
        if self.max_run_seconds <= 0:
            raise ValueError("max_run_seconds must be positive")
        if self.max_item_failures < 1:
            raise ValueError("max_item_failures must be at least 1")


@dataclass
class RetryConfig:
    """Backoff parameters for network calls."""
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


@dataclass
class StateConfig:
    """Location of the durable sync state."""
    state_dir: str = field(default_factory=_default_state_dir)

    def __post_init__(self):
        if not self.state_dir:
            raise ValueError("state_dir is required")

    @property
    def state_path(self) -> Path:
        """Get state directory as Path object."""
        return Path(self.state_dir).expanduser()

    @property
    def state_file(self) -> Path:
        return self.state_path / 'state.json'

    @property
    def ledger_file(self) -> Path:
        return self.state_path / 'ledger.jsonl'

    @property
    def lock_file(self) -> Path:
        return self.state_path / 'sync.lock'


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = "drive-photos-sync.log"
    json_format: bool = False

    def __post_init__(self):
        """Validate logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid logging level: {self.level}. Must be one of {valid_levels}")


@dataclass(frozen=True)
class RunSettings:
    """The limits a single run is executed under.

    This is the only configuration the run controller sees.
    """
    max_items_per_run: int
    max_batch_size: int
    max_run_seconds: float
    max_item_failures: int
    upload_concurrency: int = 1
    allowed_mime_types: Tuple[str, ...] = tuple(DEFAULT_MIME_TYPES)
    show_progress: bool = False

    def is_eligible(self, mime_type: str) -> bool:
        return mime_type in self.allowed_mime_types


@dataclass
class SyncConfig:
    """Main sync configuration."""
    drive: DriveConfig
    photos: PhotosConfig = field(default_factory=PhotosConfig)
    run: RunConfig = field(default_factory=RunConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    state: StateConfig = field(default_factory=StateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def run_settings(self) -> RunSettings:
        """Collect the limits handed to the run controller."""
        return RunSettings(
            max_items_per_run=self.run.max_items_per_run,
            max_batch_size=self.photos.max_batch_size,
            max_run_seconds=self.run.max_run_seconds,
            max_item_failures=self.run.max_item_failures,
            upload_concurrency=self.photos.upload_concurrency,
            allowed_mime_types=tuple(self.drive.mime_types),
            show_progress=self.run.show_progress,
        )

    @classmethod
    def from_yaml(cls, config_path: str, validate: bool = True) -> 'SyncConfig':
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML configuration file
            validate: Whether to validate against JSON schema

        Returns:
            SyncConfig instance
        """
        try:
            with open(config_path, 'r') as f:
                config_dict = yaml.safe_load(f)
        except (yaml.YAMLError, IOError, OSError) as e:
            raise ValueError(f"Failed to load configuration file '{config_path}': {e}") from e

        if config_dict is None:
            raise ValueError(f"Configuration file '{config_path}' is empty or invalid")

        config_dict = cls._apply_env_overrides(config_dict)

        if validate:
            cls._validate_schema(config_dict)

        return cls.from_dict(config_dict)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'SyncConfig':
        """
        Create configuration from dictionary.

        Args:
            config_dict: Configuration dictionary

        Returns:
            SyncConfig instance
        """
        try:
            return cls(
                drive=DriveConfig(**config_dict.get('drive') or {}),
                photos=PhotosConfig(**config_dict.get('photos') or {}),
                run=RunConfig(**config_dict.get('run') or {}),
                retry=RetryConfig(**config_dict.get('retry') or {}),
                state=StateConfig(**config_dict.get('state') or {}),
                logging=LoggingConfig(**config_dict.get('logging') or {}),
            )
        except TypeError as e:
            # Unknown or missing keys in a section
            raise ValueError(f"Invalid configuration: {e}") from e

    @staticmethod
    def _validate_schema(config_dict: Dict[str, Any]) -> None:
        """Validate configuration against JSON schema."""
        try:
            schema_path = Path(__file__).parent / 'config_schema.json'
            if schema_path.exists():
                with open(schema_path, 'r') as f:
                    schema = json.load(f)

                jsonschema.validate(instance=config_dict, schema=schema)
                logger.debug("Configuration validated against schema")
        except jsonschema.ValidationError as e:
            raise ValueError(
                f"Configuration validation failed: {e.message}\n"
                f"Path: {'.'.join(str(p) for p in e.path)}"
            ) from e
        except (IOError, OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load configuration schema for validation: {e}")

    @staticmethod
    def _apply_env_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration dictionary."""
        config = json.loads(json.dumps(config_dict))

        overrides = [
            ('DRIVE_PHOTOS_SYNC_CREDENTIALS_FILE', 'drive', 'credentials_file'),
            ('DRIVE_PHOTOS_SYNC_FOLDER_ID', 'drive', 'folder_id'),
            ('DRIVE_PHOTOS_SYNC_ALBUM_TITLE', 'photos', 'album_title'),
            ('DRIVE_PHOTOS_SYNC_STATE_DIR', 'state', 'state_dir'),
        ]
        for env_name, section, key in overrides:
            value = os.getenv(env_name)
            if value:
                if not config.get(section):
                    config[section] = {}
                config[section][key] = value

        return config
