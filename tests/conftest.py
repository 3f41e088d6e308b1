"""
Shared pytest fixtures for dumpvault tests.

This module provides fixtures for:
- Settings and elements for every target type
- Mocked S3 (moto) with a ready bucket and gateway
- Temporary source folders
"""

import json

import pytest
import boto3
from moto import mock_aws

from dumpvault.models import Element, S3PathStyle, Settings
from dumpvault.backup.storage import S3Storage
from dumpvault.backup.targets import FolderTarget, PostgresqlTarget


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Make sure no real AWS credentials or profile are picked up."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('AWS_PROFILE', raising=False)


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def storage(mock_s3):
    """S3Storage bound to the mocked 'test-bucket'."""
    return S3Storage(
        bucket_name='test-bucket',
        access_key='test_access_key',
        secret_key='test_secret_key',
        region='us-east-1'
    )


@pytest.fixture
def source_dir(tmp_path):
    """An empty directory to back up."""
    path = tmp_path / 'source'
    path.mkdir()
    return path


@pytest.fixture
def folder_element(source_dir):
    return Element(
        title='nightly-db',
        remote_folder='nightly',
        local_retention_days=7,
        remote_retention_days=30,
        target=FolderTarget(path=str(source_dir))
    )


@pytest.fixture
def postgres_element():
    return Element(
        title='app-db',
        remote_folder='postgres/app',
        local_retention_days=3,
        remote_retention_days=14,
        target=PostgresqlTarget(
            db_name='app',
            db_user='backup',
            db_password='s3cr3t',
            db_host='db.internal',
            db_port=5433
        )
    )


@pytest.fixture
def make_settings(tmp_path):
    """Factory building Settings around a temporary backup_dir."""
    def _make(elements, **overrides):
        values = dict(
            s3_region='us-east-1',
            s3_bucket='test-bucket',
            s3_access='test_access_key',
            s3_secret='test_secret_key',
            backup_dir=str(tmp_path / 'backups'),
            s3_path_style=S3PathStyle.PATH,
            elements=list(elements)
        )
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def settings_document(tmp_path):
    """A valid settings document, as decoded from JSON."""
    return {
        's3_endpoint': 'https://s3.example.com',
        's3_region': 'eu-central-1',
        's3_bucket': 'backups',
        's3_access': 'AKIA',
        's3_secret': 'SECRET',
        's3_path_style': 'virtual-host',
        'backup_dir': str(tmp_path / 'backups'),
        'elements': [
            {
                'element_title': 'app-db',
                's3_folder': 'postgres/app',
                'backup_retention_days': 3,
                's3_backup_retention_days': 30,
                'params': {
                    'type': 'postgresql',
                    'db_host': 'db.internal',
                    'db_port': 5432,
                    'db_name': 'app',
                    'db_user': 'backup',
                    'db_password': 'secret'
                }
            },
            {
                'element_title': 'uploads',
                's3_folder': 'files/uploads/',
                'backup_retention_days': 1,
                's3_backup_retention_days': 7,
                'params': {'type': 'folder', 'path': '/srv/uploads'}
            },
            {
                'element_title': 'legacy',
                's3_folder': 'legacy',
                'backup_retention_days': 0,
                's3_backup_retention_days': 0,
                'params': None
            }
        ]
    }


@pytest.fixture
def settings_file(tmp_path, settings_document):
    path = tmp_path / 'settings.json'
    path.write_text(json.dumps(settings_document))
    return path
