"""
Command line entry point.

Usage:
    dumpvault backup                  # Back up every element
    dumpvault restore                 # Restore every element from its latest backup
    dumpvault restore db1 files       # Restore only the named elements
    dumpvault list                    # Show the latest backup of every element
    dumpvault schedule                # Run backups on schedule_cron, in the foreground

Options:
    --config PATH    Settings file (default: $DUMPVAULT_CONFIG or settings.json)
"""

import argparse
import logging
import sys

from dumpvault import __version__, configure_logging
from dumpvault.config import Config, ConfigurationError, load_settings
from dumpvault.backup.executor import BackupExecutor
from dumpvault.backup.storage import S3Storage, StorageError, latest_key

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dumpvault',
        description='Back up databases and folders to S3-compatible storage'
    )
    parser.add_argument('--config', '-c', default=None, help='Settings file (JSON)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    commands = parser.add_subparsers(dest='command', metavar='COMMAND')
    commands.required = True

    commands.add_parser('backup', help='Back up every configured element')

    restore = commands.add_parser('restore', help='Restore elements from their latest backup')
    restore.add_argument('titles', nargs='*', metavar='TITLE', help='Element titles (default: all)')

    commands.add_parser('list', help='Show the latest remote backup of every element')
    commands.add_parser('schedule', help='Run the backup batch on schedule_cron')

    return parser


def list_backups(settings, storage: S3Storage):
    """Print the latest object of every element."""
    print(f"\nLatest backups in s3://{settings.s3_bucket}/\n")

    for element in settings.elements:
        try:
            objects = storage.list_objects(element.remote_folder)
        except StorageError as e:
            print(f"  {element.title}: error: {e}")
            continue

        latest = latest_key(objects)
        if latest is None:
            print(f"  {element.title}: (none)")
            continue

        print(f"  {element.title}: {latest} ({len(objects)} stored)")
    print()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(Config.LOG_DIR, Config.LOG_LEVEL)

    try:
        settings = load_settings(args.config)
        storage = S3Storage.from_settings(settings)
    except (ConfigurationError, StorageError) as e:
        logger.error(f"Failed to initialize settings: {e}")
        return 1

    executor = BackupExecutor(settings, storage)

    if args.command == 'backup':
        executor.run_backup()
    elif args.command == 'restore':
        try:
            executor.run_restore(args.titles)
        except ConfigurationError as e:
            logger.error(str(e))
    elif args.command == 'list':
        list_backups(settings, storage)
    elif args.command == 'schedule':
        from dumpvault.scheduler import init_scheduler, start_scheduler
        try:
            init_scheduler(settings, storage)
        except ConfigurationError as e:
            logger.error(str(e))
            return 1
        start_scheduler()

    return 0


if __name__ == '__main__':
    sys.exit(main())
