"""
Unit tests for local retention (dumpvault/backup/retention.py).

Local artifacts are aged by the timestamp in their filename.
"""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from dumpvault.backup.artifacts import generate_artifact_filename, parse_artifact_timestamp
from dumpvault.backup.retention import RetentionError, is_expired, sweep_local

STAMP = datetime(2020, 1, 1, 0, 0, 0)


@pytest.fixture
def staging(tmp_path):
    path = tmp_path / 'title'
    path.mkdir()
    return path


class TestIsExpired:
    def test_exactly_retention_is_kept(self):
        assert not is_expired(STAMP, STAMP + timedelta(days=7), 7)

    def test_past_retention_is_expired(self):
        assert is_expired(STAMP, STAMP + timedelta(days=7, seconds=1), 7)

    def test_zero_retention(self):
        assert not is_expired(STAMP, STAMP, 0)
        assert is_expired(STAMP, STAMP + timedelta(seconds=1), 0)

    def test_retention_beyond_timedelta_never_expires(self):
        assert not is_expired(datetime(1, 1, 1), datetime(9999, 12, 31), 10 ** 9)


class TestArtifactNames:
    def test_generate(self):
        assert generate_artifact_filename('db', STAMP, 'sql') == 'db-2020-01-01_00-00-00.sql'

    def test_parse_multi_part_extension(self):
        assert parse_artifact_timestamp('db-2020-01-01_00-00-00.tar.gz', 'db') == STAMP

    def test_parse_foreign_title(self):
        assert parse_artifact_timestamp('other-2020-01-01_00-00-00.sql', 'db') is None

    def test_parse_title_prefix_of_another(self):
        # 'db-extra' files must not be read as belonging to 'db'
        assert parse_artifact_timestamp('db-extra-2020-01-01_00-00-00.sql', 'db') is None

    def test_parse_garbage(self):
        assert parse_artifact_timestamp('db-yesterday.sql', 'db') is None


class TestSweepLocal:
    """Test sweep_local() boundaries and filtering."""

    def test_deleted_past_retention(self, staging):
        artifact = staging / 'title-2020-01-01_00-00-00.sql'
        artifact.write_text('dump')

        deleted = sweep_local(str(staging), 'title', 7, now=datetime(2020, 1, 9))

        assert deleted == [str(artifact)]
        assert not artifact.exists()

    def test_exactly_retention_days_old_is_preserved(self, staging):
        artifact = staging / 'title-2020-01-01_00-00-00.sql'
        artifact.write_text('dump')

        deleted = sweep_local(str(staging), 'title', 7, now=datetime(2020, 1, 8))

        assert deleted == []
        assert artifact.exists()

    def test_retention_plus_one_day_is_deleted(self, staging):
        artifact = staging / 'title-2020-01-01_00-00-00.sql'
        artifact.write_text('dump')

        sweep_local(str(staging), 'title', 7, now=datetime(2020, 1, 9))

        assert not artifact.exists()

    def test_foreign_and_unparseable_files_are_kept(self, staging):
        kept = [
            staging / 'other-2020-01-01_00-00-00.sql',
            staging / 'title-not-a-date.sql',
            staging / 'title.sql',
            staging / 'notes.txt',
        ]
        for path in kept:
            path.write_text('x')

        deleted = sweep_local(str(staging), 'title', 0, now=datetime(2030, 1, 1))

        assert deleted == []
        assert all(path.exists() for path in kept)

    def test_directories_are_ignored(self, staging):
        (staging / 'title-2020-01-01_00-00-00.sql').mkdir()

        deleted = sweep_local(str(staging), 'title', 1, now=datetime(2030, 1, 1))

        assert deleted == []

    def test_mixed_ages(self, staging):
        old = staging / 'title-2020-01-01_00-00-00.gz'
        recent = staging / 'title-2020-01-05_12-00-00.gz'
        old.write_text('old')
        recent.write_text('recent')

        sweep_local(str(staging), 'title', 3, now=datetime(2020, 1, 6))

        assert not old.exists()
        assert recent.exists()

    @freeze_time('2020-01-09 00:00:00')
    def test_defaults_to_current_time(self, staging):
        artifact = staging / 'title-2020-01-01_00-00-00.sql'
        artifact.write_text('dump')

        sweep_local(str(staging), 'title', 7)

        assert not artifact.exists()

    def test_huge_retention_keeps_everything(self, staging):
        artifact = staging / 'title-2020-01-01_00-00-00.sql'
        artifact.write_text('dump')

        assert sweep_local(str(staging), 'title', 10 ** 9, now=datetime(2030, 1, 1)) == []
        assert artifact.exists()

    def test_missing_directory(self, tmp_path):
        with pytest.raises(RetentionError):
            sweep_local(str(tmp_path / 'missing'), 'title', 1)

    def test_delete_failure(self, staging):
        (staging / 'title-2020-01-01_00-00-00.sql').write_text('dump')

        with patch('dumpvault.backup.retention.os.remove', side_effect=PermissionError('read-only')):
            with pytest.raises(RetentionError, match='read-only'):
                sweep_local(str(staging), 'title', 1, now=datetime(2030, 1, 1))
