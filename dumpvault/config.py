import os
import json
from datetime import timedelta
from typing import Any, Dict, List

from dumpvault.models import RESTORE_DIR_NAME, ConfigurationError, Element, S3PathStyle, Settings
from dumpvault.backup.targets import create_target

# Largest retention a timedelta can hold
MAX_RETENTION_DAYS = timedelta.max.days

# Titles that would make the staging dir collide with backup_dir, its parent or the restore area
RESERVED_TITLES = ('.', '..', RESTORE_DIR_NAME)

__all__ = ['Config', 'ConfigurationError', 'load_settings', 'parse_settings', 'parse_element']


class Config:
    """Process-level options read from the environment"""

    # Settings file with the store connection and the element list
    CONFIG_PATH = os.environ.get('DUMPVAULT_CONFIG') or 'settings.json'

    # Logging
    LOG_DIR = os.environ.get('DUMPVAULT_LOG_DIR') or None
    LOG_LEVEL = os.environ.get('DUMPVAULT_LOG_LEVEL') or 'INFO'


def _require(data: Dict[str, Any], key: str, kind, where: str):
    if key not in data or data[key] is None:
        raise ConfigurationError(f"Missing {key} in {where}")
    value = data[key]
    # bool is an int subclass; a retention of `true` is a mistake
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ConfigurationError(f"Invalid {key} in {where}: {value!r}")
    return value


def _retention(data: Dict[str, Any], key: str, where: str) -> int:
    value = _require(data, key, int, where)
    if value < 0:
        raise ConfigurationError(f"{key} in {where} must not be negative")
    if value > MAX_RETENTION_DAYS:
        raise ConfigurationError(f"{key} in {where} must not exceed {MAX_RETENTION_DAYS}")
    return value


def parse_element(data: Dict[str, Any]) -> Element:
    """
    Build an Element from its settings entry.

    Raises:
        ConfigurationError: If a field is missing or invalid
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Each element must be an object")

    title = _require(data, 'element_title', str, 'element')
    where = f"element '{title}'"

    if not title or '/' in title or title in RESERVED_TITLES:
        raise ConfigurationError(f"Invalid element_title: {title!r}")

    folder = _require(data, 's3_folder', str, where).strip('/')
    if not folder:
        raise ConfigurationError(f"s3_folder of {where} must not be empty")

    params = data.get('params')
    try:
        target = create_target(params) if params is not None else None
    except ConfigurationError as e:
        raise ConfigurationError(f"{where}: {e}")

    return Element(
        title=title,
        remote_folder=folder,
        local_retention_days=_retention(data, 'backup_retention_days', where),
        remote_retention_days=_retention(data, 's3_backup_retention_days', where),
        target=target
    )


def parse_settings(data: Dict[str, Any]) -> Settings:
    """
    Build Settings from the decoded settings document.

    Raises:
        ConfigurationError: If the document is malformed
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Settings must be a JSON object")

    where = 'settings'

    try:
        path_style = S3PathStyle(data.get('s3_path_style', 'path'))
    except ValueError:
        raise ConfigurationError(
            f"Invalid s3_path_style: {data.get('s3_path_style')!r}. "
            f"Valid options: {[s.value for s in S3PathStyle]}"
        )

    raw_elements = data.get('elements', [])
    if not isinstance(raw_elements, list):
        raise ConfigurationError("elements must be a list")

    elements: List[Element] = [parse_element(entry) for entry in raw_elements]

    seen = set()
    for element in elements:
        if element.title in seen:
            raise ConfigurationError(f"Duplicate element_title: {element.title}")
        seen.add(element.title)

    timeout = data.get('command_timeout')
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigurationError(f"Invalid command_timeout: {timeout!r}")

    return Settings(
        s3_endpoint=data.get('s3_endpoint') or None,
        s3_region=_require(data, 's3_region', str, where),
        s3_bucket=_require(data, 's3_bucket', str, where),
        s3_access=_require(data, 's3_access', str, where),
        s3_secret=_require(data, 's3_secret', str, where),
        s3_path_style=path_style,
        backup_dir=_require(data, 'backup_dir', str, where),
        elements=elements,
        schedule_cron=data.get('schedule_cron') or '0 3 * * *',
        timezone=data.get('timezone') or 'UTC',
        command_timeout=timeout
    )


def load_settings(path: str = None) -> Settings:
    """
    Read and validate the JSON settings file.

    Args:
        path: Settings file (defaults to Config.CONFIG_PATH)

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    path = path or Config.CONFIG_PATH

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Settings file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Error parsing JSON file {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read settings file {path}: {e}")

    return parse_settings(data)
