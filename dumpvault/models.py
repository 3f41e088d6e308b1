from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from dumpvault.backup.targets import BackupTarget


# Subdirectory of backup_dir that downloads for restore land in
RESTORE_DIR_NAME = 'to_restore'


class ConfigurationError(Exception):
    """Raised when settings or an element are unusable as configured."""
    pass


class S3PathStyle(Enum):
    """Bucket addressing style (https://host/bucket vs https://bucket.host)."""
    PATH = 'path'
    VIRTUAL_HOST = 'virtual-host'

    @property
    def addressing_style(self) -> str:
        """Value understood by botocore's s3 'addressing_style' option."""
        return 'path' if self is S3PathStyle.PATH else 'virtual'


@dataclass(frozen=True)
class Element:
    """One configured backup unit"""
    title: str
    remote_folder: str
    local_retention_days: int
    remote_retention_days: int
    target: Optional['BackupTarget'] = None

    def __repr__(self):
        target = self.target.type_name if self.target else None
        return f'<Element {self.title} target={target} folder={self.remote_folder}>'


@dataclass(frozen=True)
class Settings:
    """Object store connection parameters and the element list"""
    s3_region: str
    s3_bucket: str
    s3_access: str
    s3_secret: str
    backup_dir: str
    s3_endpoint: Optional[str] = None
    s3_path_style: S3PathStyle = S3PathStyle.PATH
    elements: List[Element] = field(default_factory=list)
    schedule_cron: str = '0 3 * * *'
    timezone: str = 'UTC'
    command_timeout: Optional[float] = None

    @property
    def restore_dir(self) -> str:
        return f"{self.backup_dir.rstrip('/')}/{RESTORE_DIR_NAME}"

    def staging_dir_for(self, element: Element) -> str:
        return f"{self.backup_dir.rstrip('/')}/{element.title}"

    def __repr__(self):
        return f'<Settings bucket={self.s3_bucket} region={self.s3_region} elements={len(self.elements)}>'
