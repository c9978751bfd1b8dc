"""
Command-line entry point for the Drive to Google Photos sync.
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from drive_photos_sync.config import SyncConfig
from drive_photos_sync.exceptions import (
    AuthenticationError,
    BatchDispatchError,
    ConfigurationError,
    RunLockedError,
    StateError,
)
from drive_photos_sync.orchestrator import SyncOrchestrator
from drive_photos_sync.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_BATCH_DISPATCH = 2
EXIT_LOCKED = 3


def load_config(config_path: str) -> SyncConfig:
    try:
        return SyncConfig.from_yaml(config_path, validate=True)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='drive-photos-sync',
        description='Incrementally copy photos and videos from Google Drive into Google Photos'
    )
    parser.add_argument(
        '--config',
        type=str,
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Override the logging level from the configuration file'
    )
    subparsers = parser.add_subparsers(dest='command')

    run_parser = subparsers.add_parser('run', help='Run one time-bounded sync pass (default)')
    run_parser.add_argument(
        '--stats-file',
        type=str,
        default=None,
        help='Write run statistics as JSON to this file'
    )

    subparsers.add_parser('status', help='Show cursor, ledger and failure counters')

    reset_parser = subparsers.add_parser(
        'reset',
        help='Forget sync progress (already-created Photos items are kept and may be duplicated)'
    )
    reset_parser.add_argument(
        '--yes',
        action='store_true',
        help='Confirm the reset'
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    command = args.command or 'run'

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        setup_logging(log_file=None, level=args.log_level or 'INFO')
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG

    setup_logging(
        log_file=config.logging.file,
        level=args.log_level or config.logging.level,
        enable_json=config.logging.json_format,
    )
    orchestrator = SyncOrchestrator(config)

    try:
        if command == 'status':
            print(json.dumps(orchestrator.status(), indent=2))
            return EXIT_OK

        if command == 'reset':
            if not args.yes:
                logger.error("Refusing to reset without --yes")
                return EXIT_CONFIG
            orchestrator.reset()
            return EXIT_OK

        stats = orchestrator.run()
        if getattr(args, 'stats_file', None):
            stats.save_to_file(args.stats_file)
        logger.info("=" * 60)
        logger.info(f"Run complete: {stats.summary()}")
        logger.info("=" * 60)
        return EXIT_OK

    except RunLockedError as e:
        logger.error(f"{e} {('(held by ' + e.holder.splitlines()[0] + ')') if e.holder else ''}".rstrip())
        return EXIT_LOCKED
    except (ConfigurationError, AuthenticationError, StateError) as e:
        logger.error(f"Sync aborted: {e}")
        return EXIT_CONFIG
    except BatchDispatchError as e:
        logger.error(f"Sync aborted, nothing from the failed batch was recorded: {e}")
        return EXIT_BATCH_DISPATCH


if __name__ == '__main__':
    sys.exit(main())
