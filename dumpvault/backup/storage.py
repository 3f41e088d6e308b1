"""
Remote storage for backup artifacts.

S3Storage talks to any S3-compatible object store. Objects live under
{folder}/{filename}; every listing goes to the store, nothing is cached.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from dumpvault.models import S3PathStyle, Settings
from .retention import is_expired

logger = logging.getLogger(__name__)

# Files above this size are sent as a multipart upload
MULTIPART_THRESHOLD = 100 * 1024 * 1024
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class BackupNotFoundError(StorageError):
    """Raised when a folder holds no backups."""
    pass


class RemoteObject(NamedTuple):
    key: str
    last_modified: Union[datetime, str]


def parse_last_modified(value: Union[datetime, str]) -> Optional[datetime]:
    """
    Normalize a store-reported last-modified value to an aware datetime.

    Args:
        value: datetime from boto3, or an RFC3339 string

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def dated_objects(objects: List[RemoteObject]):
    """
    Yield (key, last_modified) for every backup object with a usable timestamp.

    Folder markers (keys ending in '/') and unparseable timestamps are skipped.
    """
    for obj in objects:
        if obj.key.endswith('/'):
            continue
        last_modified = parse_last_modified(obj.last_modified)
        if last_modified is None:
            logger.warning(f"Failed to parse last_modified for object {obj.key}: {obj.last_modified}")
            continue
        yield obj.key, last_modified


def latest_key(objects: List[RemoteObject]) -> Optional[str]:
    """
    Key of the most recently modified object, or None if there is none.

    Objects sharing the newest timestamp are ordered by key and the greatest
    key wins, so the result is stable for a given listing.
    """
    candidates = [(last_modified, key) for key, last_modified in dated_objects(objects)]
    if not candidates:
        return None
    return max(candidates)[1]


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Gateway to an S3-compatible bucket.

    Operations are independent and never retried here beyond botocore's
    own transport retries.
    """

    def __init__(
        self,
        bucket_name: str,
        access_key: str,
        secret_key: str,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None,
        path_style: S3PathStyle = S3PathStyle.PATH
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: Bucket name
            access_key: Access key ID
            secret_key: Secret access key
            region: Region name (default: us-east-1)
            endpoint_url: Endpoint of a non-AWS store (None for AWS)
            path_style: Bucket addressing style
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url or None

        try:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                config=BotoConfig(s3={'addressing_style': path_style.addressing_style})
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def from_settings(cls, settings: Settings) -> 'S3Storage':
        return cls(
            bucket_name=settings.s3_bucket,
            access_key=settings.s3_access,
            secret_key=settings.s3_secret,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint,
            path_style=settings.s3_path_style
        )

    @staticmethod
    def _prefix(folder: str) -> str:
        return f"{folder.strip('/')}/"

    def upload(self, local_path: str, folder: str) -> str:
        """
        Upload an artifact, streaming it from disk.

        Args:
            local_path: Path to local artifact
            folder: Destination folder in the bucket

        Returns:
            Key of the uploaded object ({folder}/{filename})

        Raises:
            StorageError: If upload fails
        """
        if not os.path.isfile(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        s3_key = self._prefix(folder) + os.path.basename(local_path)

        try:
            file_size = os.path.getsize(local_path)

            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, s3_key)
            else:
                self._simple_upload(local_path, s3_key)

        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"Failed to upload to S3: {e}")

        logger.info(f"File uploaded successfully to {s3_key}")
        return s3_key

    def _simple_upload(self, local_path: str, s3_key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=f
            )

    def _multipart_upload(self, local_path: str, s3_key: str):
        """
        Upload a large file part by part; only one part is held in memory.

        Args:
            local_path: Path to local file
            s3_key: Object key
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=s3_key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=s3_key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=s3_key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except (ClientError, BotoCoreError, OSError):
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload of {s3_key}: {abort_error}")
            raise

    def delete(self, s3_key: str):
        """
        Delete an object.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self, folder: str) -> List[RemoteObject]:
        """
        List every object under {folder}/, merging all result pages.

        Args:
            folder: Folder in the bucket

        Returns:
            List of RemoteObject(key, last_modified)

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self._prefix(folder)):
                for obj in page.get('Contents', []):
                    objects.append(RemoteObject(key=obj['Key'], last_modified=obj['LastModified']))

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")

    def sweep(self, folder: str, retention_days: int, now: Optional[datetime] = None) -> List[str]:
        """
        Delete objects whose last-modified time is older than the retention period.

        Args:
            folder: Folder in the bucket
            retention_days: Days to keep objects
            now: Reference time (defaults to current UTC time)

        Returns:
            Keys of deleted objects

        Raises:
            StorageError: If listing or a deletion fails
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        deleted = []
        for key, last_modified in dated_objects(self.list_objects(folder)):
            if is_expired(last_modified, now, retention_days):
                self.delete(key)
                deleted.append(key)
                logger.info(f"Deleted outdated backup: {key}")

        logger.info(f"Remote retention sweep of {folder} completed ({len(deleted)} deleted)")
        return deleted

    def find_latest(self, folder: str) -> str:
        """
        Find the most recently modified object in a folder.

        Ties are resolved as in latest_key().

        Raises:
            BackupNotFoundError: If the folder holds no (datable) objects
            StorageError: If listing fails
        """
        key = latest_key(self.list_objects(folder))

        if key is None:
            raise BackupNotFoundError(f"No backups found in folder: {folder}")

        logger.info(f"Latest backup found: {key}")
        return key

    def download(self, folder: str, dest_dir: str) -> str:
        """
        Download the latest object of a folder to {dest_dir}/{key}.

        Args:
            folder: Folder in the bucket
            dest_dir: Local directory; missing parents are created

        Returns:
            Local path of the downloaded file

        Raises:
            BackupNotFoundError: If the folder is empty
            StorageError: If the download fails
        """
        s3_key = self.find_latest(folder)
        dest_path = Path(dest_dir) / s3_key

        dest_root = Path(dest_dir).resolve()
        if dest_root not in dest_path.resolve().parents:
            raise StorageError(f"Refusing to download {s3_key} outside {dest_dir}")

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create directory {dest_path.parent}: {e}")

        try:
            with open(dest_path, 'wb') as f:
                self.s3_client.download_fileobj(self.bucket_name, s3_key, f)
        except (ClientError, BotoCoreError, OSError) as e:
            if dest_path.exists():
                dest_path.unlink()
            raise StorageError(f"Failed to download {s3_key}: {e}")

        logger.info(f"File downloaded successfully: {s3_key}")
        return str(dest_path)

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Raises:
            StorageError: If connection test fails
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return True
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise StorageError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to connect to S3: {e}")
