"""
Unit tests for retrieval (sitebackup/backup/retrieval.py).

Tests RetrievalManager resolution of explicit and latest artifacts.
"""

import io
import tarfile
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from sitebackup.models import BackupClass
from sitebackup.backup.archive import ArchiveBuilder
from sitebackup.backup.executor import run_backup
from sitebackup.backup.retrieval import EmptyBucket, RetrievalManager, normalize_identifier
from sitebackup.backup.storage import LocalObjectStore, StoredObject, create_store


@pytest.fixture
def site_store(tmp_path):
    return LocalObjectStore(str(tmp_path / 'store'), 'myblog_site')


class TestNormalizeIdentifier:

    def test_bare_timestamp(self):
        assert normalize_identifier(BackupClass.SITE, '20230105120000') == 'site.20230105120000'

    def test_full_key(self):
        assert normalize_identifier(BackupClass.SITE, 'site.20230105120000') == 'site.20230105120000'

    def test_other_class_rejected(self):
        with pytest.raises(ValueError, match="belongs to 'db'"):
            normalize_identifier(BackupClass.SITE, 'db.20230105120000')

    def test_malformed_rejected(self):
        with pytest.raises(ValueError, match="Invalid artifact identifier"):
            normalize_identifier(BackupClass.SITE, 'yesterday')


class TestRetrievalManager:
    """Test RetrievalManager.retrieve and latest."""

    def test_latest_is_max_identifier(self):
        store = MagicMock()
        store.list.return_value = [
            StoredObject('site.20230102000000', 2),
            StoredObject('site.20230105120000', 5),
            StoredObject('site.20230101000000', 1),
        ]

        latest = RetrievalManager(store).latest(BackupClass.SITE)

        assert latest.storage_path == 'site.20230105120000'

    def test_latest_on_empty_store(self, site_store):
        with pytest.raises(EmptyBucket, match="No 'site' artifacts"):
            RetrievalManager(site_store).latest(BackupClass.SITE)

    def test_retrieve_latest(self, site_store, seed, tmp_path):
        seed(site_store, ['site.20230101000000'], data=b'old')
        seed(site_store, ['site.20230102000000'], data=b'new')

        result = RetrievalManager(site_store).retrieve(BackupClass.SITE, destination=str(tmp_path / 'out.tar.gz'))

        assert result.artifact.storage_path == 'site.20230102000000'
        assert result.artifact.size_bytes == 3
        assert (tmp_path / 'out.tar.gz').read_bytes() == b'new'
        assert result.path == str(tmp_path / 'out.tar.gz')

    def test_retrieve_latest_on_empty_store(self, site_store, tmp_path):
        with pytest.raises(EmptyBucket):
            RetrievalManager(site_store).retrieve(BackupClass.SITE, destination=str(tmp_path / 'out'))

        assert not (tmp_path / 'out').exists()

    def test_retrieve_by_identifier(self, site_store, seed, tmp_path):
        seed(site_store, ['site.20230101000000'], data=b'old')
        seed(site_store, ['site.20230102000000'], data=b'new')

        result = RetrievalManager(site_store).retrieve(
            BackupClass.SITE, identifier='20230101000000', destination=str(tmp_path / 'out.tar.gz')
        )

        assert result.artifact.identifier == '20230101000000'
        assert (tmp_path / 'out.tar.gz').read_bytes() == b'old'

    def test_missing_identifier_returns_none_and_writes_nothing(self, site_store, seed, tmp_path):
        """Retrieving site.20230105120000 when it is absent reports not found."""
        seed(site_store, ['site.20230101000000'])
        destination = tmp_path / 'restore' / 'site.tar.gz'

        result = RetrievalManager(site_store).retrieve(
            BackupClass.SITE, identifier='site.20230105120000', destination=str(destination)
        )

        assert result is None
        assert not destination.exists()
        assert not destination.parent.exists()

    def test_missing_identifier_never_downloads(self):
        store = MagicMock()
        store.exists.return_value = False

        RetrievalManager(store).retrieve(BackupClass.SITE, identifier='site.20230105120000')

        store.get.assert_not_called()

    def test_destination_directory(self, site_store, seed, tmp_path):
        seed(site_store, ['site.20230101000000'])
        target = tmp_path / 'downloads'
        target.mkdir()

        result = RetrievalManager(site_store, compression_format='tar.xz').retrieve(
            BackupClass.SITE, destination=str(target)
        )

        assert result.path == str(target / 'site.20230101000000.tar.xz')

    def test_default_destination_is_cwd(self, site_store, seed, tmp_path, monkeypatch):
        seed(site_store, ['site.20230101000000'])
        monkeypatch.chdir(tmp_path)

        result = RetrievalManager(site_store).retrieve(BackupClass.SITE)

        assert result.path == str(tmp_path / 'site.20230101000000.tar.gz')


class TestRoundTrip:
    """Backup followed by retrieve returns what was staged and compressed."""

    def test_backup_then_retrieve_latest(self, config, working_runner, dump_content, tmp_path):
        builder = ArchiveBuilder(runner=working_runner)
        run_backup(
            config,
            [BackupClass.DATABASE],
            now=datetime(2023, 1, 1, tzinfo=timezone.utc),
            builder=builder
        )
        artifacts = run_backup(
            config,
            [BackupClass.DATABASE],
            now=datetime(2023, 1, 2, tzinfo=timezone.utc),
            builder=builder
        )

        store = create_store(config, BackupClass.DATABASE)
        result = RetrievalManager(store).retrieve(BackupClass.DATABASE, destination=str(tmp_path / 'restore'))

        assert result.artifact.storage_path == artifacts[0].storage_path
        assert (tmp_path / 'restore').read_bytes() == store.get(artifacts[0].storage_path)

        with tarfile.open(fileobj=io.BytesIO((tmp_path / 'restore').read_bytes()), mode='r:gz') as tar:
            assert tar.extractfile('db/myblog.sql').read().decode() == dump_content
