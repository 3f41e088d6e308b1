"""
Retention policy enforcement for the local staging area.

Local artifacts are aged by the timestamp embedded in their filename, not by
filesystem metadata. Remote objects are aged by the store's last-modified time
(see S3Storage.sweep); both share is_expired().
"""

import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional

from .artifacts import parse_artifact_timestamp

logger = logging.getLogger(__name__)


class RetentionError(Exception):
    """Raised when the local staging directory cannot be swept."""
    pass


def is_expired(created_at: datetime, now: datetime, retention_days: int) -> bool:
    """
    True when created_at is strictly more than retention_days before now.

    A retention beyond what a timedelta can represent never expires.
    """
    try:
        retention = timedelta(days=retention_days)
    except OverflowError:
        return False
    return now - created_at > retention


def sweep_local(
    directory: str,
    title: str,
    retention_days: int,
    now: Optional[datetime] = None
) -> List[str]:
    """
    Delete an element's local artifacts older than its retention period.

    Files that don't belong to the element, or whose name carries no parseable
    timestamp, are left alone.

    Args:
        directory: Staging directory of the element
        title: Element title
        retention_days: Days to keep artifacts
        now: Reference time (defaults to local now)

    Returns:
        Paths of deleted files

    Raises:
        RetentionError: If the directory cannot be listed or a file cannot be deleted
    """
    now = now or datetime.now()
    deleted = []

    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError as e:
        raise RetentionError(f"Failed to list {directory}: {e}")

    for entry in entries:
        if not entry.is_file(follow_symlinks=False):
            continue

        created_at = parse_artifact_timestamp(entry.name, title)
        if created_at is None:
            continue

        if is_expired(created_at, now, retention_days):
            try:
                os.remove(entry.path)
            except OSError as e:
                raise RetentionError(f"Failed to delete {entry.path}: {e}")
            deleted.append(entry.path)
            logger.info(f"[{title}] Deleted outdated local backup: {entry.name}")

    logger.info(f"[{title}] Local retention sweep completed ({len(deleted)} deleted)")
    return deleted
