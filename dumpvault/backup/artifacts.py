"""
Artifact file naming.

Artifacts are named {title}-{YYYY-MM-DD_HH-MM-SS}.{ext}; the embedded
timestamp drives local retention.
"""

import os
from datetime import datetime
from typing import Optional

TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(TIMESTAMP_FORMAT)


def generate_artifact_filename(title: str, timestamp: datetime, extension: str) -> str:
    """
    Build the artifact filename for an element.

    Args:
        title: Element title
        timestamp: Moment the backup was started
        extension: Extension without the leading dot (e.g. 'sql', 'tar.gz')

    Returns:
        Filename (without path)
    """
    return f"{title}-{format_timestamp(timestamp)}.{extension}"


def parse_artifact_timestamp(filename: str, title: str) -> Optional[datetime]:
    """
    Extract the timestamp embedded in an artifact filename.

    The timestamp is the text between '{title}-' and the first following dot.

    Args:
        filename: Bare filename (no directory)
        title: Element title the file must belong to

    Returns:
        Parsed naive datetime, or None if the name does not follow the convention
    """
    prefix = f"{title}-"
    if not filename.startswith(prefix):
        return None

    remainder = filename[len(prefix):]
    date_part = remainder.split('.', 1)[0]

    try:
        return datetime.strptime(date_part, TIMESTAMP_FORMAT)
    except ValueError:
        return None


def artifact_path(staging_dir: str, title: str, timestamp: datetime, extension: str) -> str:
    return os.path.join(staging_dir, generate_artifact_filename(title, timestamp, extension))
