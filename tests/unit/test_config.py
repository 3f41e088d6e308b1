"""
Unit tests for settings loading (dumpvault/config.py).
"""

import json

import pytest

from dumpvault.config import MAX_RETENTION_DAYS, ConfigurationError, load_settings, parse_element, parse_settings
from dumpvault.models import S3PathStyle
from dumpvault.backup.targets import FolderTarget, PostgresqlTarget


def write(tmp_path, document):
    path = tmp_path / 'custom.json'
    path.write_text(json.dumps(document))
    return str(path)


class TestLoadSettings:
    """Test load_settings()."""

    def test_valid_file(self, settings_file):
        settings = load_settings(str(settings_file))

        assert settings.s3_endpoint == 'https://s3.example.com'
        assert settings.s3_bucket == 'backups'
        assert settings.s3_path_style is S3PathStyle.VIRTUAL_HOST
        assert [e.title for e in settings.elements] == ['app-db', 'uploads', 'legacy']

    def test_element_fields(self, settings_file):
        app_db, uploads, legacy = load_settings(str(settings_file)).elements

        assert app_db.remote_folder == 'postgres/app'
        assert app_db.local_retention_days == 3
        assert app_db.remote_retention_days == 30
        assert isinstance(app_db.target, PostgresqlTarget)
        assert app_db.target.db_port == 5432

        assert uploads.remote_folder == 'files/uploads'
        assert uploads.target == FolderTarget(path='/srv/uploads')

        assert legacy.target is None

    def test_defaults(self, tmp_path, settings_document):
        del settings_document['s3_endpoint']
        del settings_document['s3_path_style']

        settings = load_settings(write(tmp_path, settings_document))

        assert settings.s3_endpoint is None
        assert settings.s3_path_style is S3PathStyle.PATH
        assert settings.schedule_cron == '0 3 * * *'
        assert settings.timezone == 'UTC'
        assert settings.command_timeout is None

    def test_restore_dir_inside_backup_dir(self, settings_file, settings_document):
        settings = load_settings(str(settings_file))

        assert settings.restore_dir.startswith(settings_document['backup_dir'])
        assert settings.restore_dir.endswith('to_restore')

    def test_default_path_from_config(self, settings_file, monkeypatch):
        from dumpvault.config import Config
        monkeypatch.setattr(Config, 'CONFIG_PATH', str(settings_file))

        assert load_settings().s3_bucket == 'backups'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match='not found'):
            load_settings(str(tmp_path / 'nope.json'))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"s3_bucket": ')

        with pytest.raises(ConfigurationError, match='parsing'):
            load_settings(str(path))

    def test_secret_not_in_repr(self, settings_file):
        assert 'SECRET' not in repr(load_settings(str(settings_file)))


class TestParseSettings:
    """Test parse_settings() validation."""

    def test_duplicate_titles(self, settings_document):
        settings_document['elements'].append(dict(settings_document['elements'][0]))

        with pytest.raises(ConfigurationError, match='Duplicate'):
            parse_settings(settings_document)

    def test_invalid_path_style(self, settings_document):
        settings_document['s3_path_style'] = 'sideways'

        with pytest.raises(ConfigurationError, match='s3_path_style'):
            parse_settings(settings_document)

    @pytest.mark.parametrize('key', ['s3_region', 's3_bucket', 's3_access', 's3_secret', 'backup_dir'])
    def test_missing_required(self, settings_document, key):
        del settings_document[key]

        with pytest.raises(ConfigurationError, match=key):
            parse_settings(settings_document)

    @pytest.mark.parametrize('value', [0, -5, 'soon', True])
    def test_invalid_command_timeout(self, settings_document, value):
        settings_document['command_timeout'] = value

        with pytest.raises(ConfigurationError, match='command_timeout'):
            parse_settings(settings_document)

    def test_not_an_object(self):
        with pytest.raises(ConfigurationError):
            parse_settings(['elements'])


class TestParseElement:
    """Test parse_element() validation."""

    def entry(self, **overrides):
        data = {
            'element_title': 'db',
            's3_folder': 'db',
            'backup_retention_days': 1,
            's3_backup_retention_days': 2,
            'params': {'type': 'folder', 'path': '/data'}
        }
        data.update(overrides)
        return data

    def test_negative_retention(self):
        with pytest.raises(ConfigurationError, match='negative'):
            parse_element(self.entry(backup_retention_days=-1))

    def test_retention_upper_bound(self):
        assert parse_element(self.entry(backup_retention_days=MAX_RETENTION_DAYS)).local_retention_days == MAX_RETENTION_DAYS

        with pytest.raises(ConfigurationError, match='must not exceed'):
            parse_element(self.entry(backup_retention_days=10 ** 9))

    @pytest.mark.parametrize('value', ['7', 1.5, True])
    def test_retention_must_be_integer(self, value):
        with pytest.raises(ConfigurationError, match='s3_backup_retention_days'):
            parse_element(self.entry(s3_backup_retention_days=value))

    def test_missing_params_means_no_target(self):
        data = self.entry()
        del data['params']

        assert parse_element(data).target is None

    def test_unknown_target_type(self):
        with pytest.raises(ConfigurationError, match="element 'db'"):
            parse_element(self.entry(params={'type': 'oracle'}))

    def test_target_missing_field(self):
        with pytest.raises(ConfigurationError, match='db_password'):
            parse_element(self.entry(params={'type': 'postgresql', 'db_name': 'a', 'db_user': 'b'}))

    @pytest.mark.parametrize('title', ['', 'a/b', '.', '..', 'to_restore'])
    def test_invalid_title(self, title):
        with pytest.raises(ConfigurationError, match='element_title'):
            parse_element(self.entry(element_title=title))

    def test_empty_folder(self):
        with pytest.raises(ConfigurationError, match='s3_folder'):
            parse_element(self.entry(s3_folder='/'))
