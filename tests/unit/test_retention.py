"""
Unit tests for retention policy management (sitebackup/backup/retention.py).

Tests RetentionManager for count-based cleanup of old artifacts.
"""

from unittest.mock import MagicMock

import pytest

from sitebackup.models import BackupClass
from sitebackup.backup.retention import (
    CleanupReport,
    PartialDeletionFailure,
    RetentionManager,
    enforce_retention_policies,
    list_artifacts
)
from sitebackup.backup.storage import StorageError, StoredObject, create_store


DB_KEYS = ['db.20230101000000', 'db.20230102000000', 'db.20230103000000']


class TestListArtifacts:
    """Test list_artifacts helper."""

    def test_sorted_by_identifier_not_listing_order(self):
        store = MagicMock()
        store.list.return_value = [
            StoredObject('db.20230103000000', 3),
            StoredObject('db.20230101000000', 1),
            StoredObject('db.20230102000000', 2),
        ]

        artifacts = list_artifacts(store, BackupClass.DATABASE)

        assert [a.storage_path for a in artifacts] == DB_KEYS
        assert [a.size_bytes for a in artifacts] == [1, 2, 3]
        store.list.assert_called_once_with(prefix='db.')

    def test_foreign_objects_are_ignored(self, local_store, seed):
        seed(local_store, DB_KEYS[:1] + ['db.latest', 'db.20230101000000.tar.gz'])

        artifacts = list_artifacts(local_store, BackupClass.DATABASE)

        assert [a.storage_path for a in artifacts] == ['db.20230101000000']


class TestRetentionManager:
    """Test RetentionManager.cleanup."""

    def test_cleanup_scenario_keep_two(self, local_store, seed):
        """myblog_db holds three artifacts; keeping 2 deletes only the oldest."""
        seed(local_store, DB_KEYS)

        report = RetentionManager(local_store).cleanup(BackupClass.DATABASE, keep_count=2)

        assert report.deleted == ['db.20230101000000']
        assert report.kept == ['db.20230102000000', 'db.20230103000000']
        assert report.ok
        assert [o.key for o in local_store.list()] == ['db.20230102000000', 'db.20230103000000']

    @pytest.mark.parametrize("original_count,keep_count", [
        (0, 0), (0, 3), (3, 0), (3, 1), (3, 3), (3, 10), (12, 10),
    ])
    def test_remaining_is_min_of_count_and_keep(self, local_store, seed, original_count, keep_count):
        keys = [f"db.202301{day:02d}000000" for day in range(1, original_count + 1)]
        seed(local_store, keys)

        RetentionManager(local_store).cleanup(BackupClass.DATABASE, keep_count)

        remaining = [o.key for o in local_store.list()]
        assert len(remaining) == min(original_count, keep_count)
        assert remaining == keys[len(keys) - len(remaining):]

    def test_no_excess_is_noop(self):
        store = MagicMock()
        store.list.return_value = [StoredObject(key, 1) for key in DB_KEYS]

        report = RetentionManager(store).cleanup(BackupClass.DATABASE, keep_count=3)

        store.delete.assert_not_called()
        assert report.deleted == []
        assert report.kept == DB_KEYS

    def test_deletes_oldest_even_when_listed_out_of_order(self):
        store = MagicMock()
        store.list.return_value = [StoredObject(key, 1) for key in reversed(DB_KEYS)]

        RetentionManager(store).cleanup(BackupClass.DATABASE, keep_count=1)

        assert [c.args[0] for c in store.delete.call_args_list] == DB_KEYS[:2]

    def test_partial_failure_continues(self, local_store, seed, flaky_store):
        seed(local_store, DB_KEYS)
        store = flaky_store(local_store, fail_delete=['db.20230101000000'])

        report = RetentionManager(store).cleanup(BackupClass.DATABASE, keep_count=1)

        assert report.deleted == ['db.20230102000000']
        assert list(report.failed) == ['db.20230101000000']
        assert 'AccessDenied' in report.failed['db.20230101000000']
        assert not report.ok
        assert local_store.exists('db.20230101000000')
        assert not local_store.exists('db.20230102000000')

    def test_raise_for_failures(self, local_store, seed, flaky_store):
        seed(local_store, DB_KEYS)
        store = flaky_store(local_store, fail_delete=DB_KEYS[:2])
        report = RetentionManager(store).cleanup(BackupClass.DATABASE, keep_count=1)

        with pytest.raises(PartialDeletionFailure) as exc_info:
            report.raise_for_failures()

        assert exc_info.value.failed_keys == DB_KEYS[:2]
        assert 'db.20230101000000' in str(exc_info.value)

    def test_raise_for_failures_when_clean(self):
        CleanupReport(backup_class=BackupClass.SITE).raise_for_failures()

    def test_negative_keep_count(self, local_store):
        with pytest.raises(ValueError):
            RetentionManager(local_store).cleanup(BackupClass.DATABASE, keep_count=-1)

    def test_listing_failure_propagates(self):
        store = MagicMock()
        store.list.side_effect = StorageError("S3 list failed (AccessDenied)")

        with pytest.raises(StorageError):
            RetentionManager(store).cleanup(BackupClass.DATABASE, keep_count=1)

    def test_only_touches_its_class(self, local_store, seed):
        seed(local_store, DB_KEYS + ['site.20230101000000'])

        RetentionManager(local_store).cleanup(BackupClass.DATABASE, keep_count=0)

        assert [o.key for o in local_store.list()] == ['site.20230101000000']


class TestEnforceRetentionPolicies:
    """Test enforce_retention_policies helper."""

    def test_uses_per_class_policy(self, config, seed):
        config.RETENTION_KEEP = 2
        config.RETENTION_KEEP_SITE = 1
        seed(create_store(config, BackupClass.DATABASE), DB_KEYS)
        seed(create_store(config, BackupClass.SITE), ['site.20230101000000', 'site.20230102000000'])

        reports = enforce_retention_policies(config, list(BackupClass))

        assert [r.backup_class for r in reports] == [BackupClass.DATABASE, BackupClass.SITE]
        assert reports[0].deleted == ['db.20230101000000']
        assert reports[1].deleted == ['site.20230101000000']

    def test_keep_count_override(self, config, seed):
        seed(create_store(config, BackupClass.DATABASE), DB_KEYS)

        reports = enforce_retention_policies(config, [BackupClass.DATABASE], keep_count=0)

        assert reports[0].deleted == DB_KEYS
        assert reports[0].kept == []

    def test_storage_failure_recorded_and_next_class_cleaned(self, config, seed):
        config.RETENTION_KEEP = 1
        failing = MagicMock()
        failing.list.side_effect = StorageError("S3 list failed (AccessDenied)")
        site_store = create_store(config, BackupClass.SITE)
        seed(site_store, ['site.20230101000000', 'site.20230102000000'])

        def stores(cfg, backup_class):
            return failing if backup_class is BackupClass.DATABASE else site_store

        reports = enforce_retention_policies(config, list(BackupClass), store_factory=stores)

        assert reports[0].error == "S3 list failed (AccessDenied)"
        assert not reports[0].ok
        assert reports[1].deleted == ['site.20230101000000']
        assert reports[1].ok
