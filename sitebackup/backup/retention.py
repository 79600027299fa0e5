"""
Retention policy enforcement for backups.

Keeps the N most recent artifacts per backup class and deletes the rest.
Recency is decided by the parsed artifact identifier, never by the order in
which the store lists objects.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sitebackup.models import BackupArtifact, BackupClass, RetentionPolicy, parse_artifact_key
from .errors import BackupError
from .storage import StorageError, create_store


logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """Outcome of a retention run for one class."""

    backup_class: BackupClass
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    # Set when the class could not be cleaned at all (e.g. listing failed)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.error is None

    def raise_for_failures(self):
        """
        Raises:
            PartialDeletionFailure: If any deletion failed
        """
        if self.failed:
            raise PartialDeletionFailure(self)


class PartialDeletionFailure(BackupError):
    """Raised when some retention deletions failed."""

    def __init__(self, report: CleanupReport):
        self.report = report
        super().__init__(
            f"Failed to delete {len(report.failed)} '{report.backup_class.value}' artifact(s): "
            f"{', '.join(sorted(report.failed))}"
        )

    @property
    def failed_keys(self) -> List[str]:
        return sorted(self.report.failed)


def list_artifacts(store, backup_class: BackupClass) -> List[BackupArtifact]:
    """
    List the artifacts of a class, oldest first.

    Objects whose key is not an artifact key of this class are ignored.

    Raises:
        StorageError: If listing fails
    """
    artifacts = []
    for obj in store.list(prefix=f"{backup_class.value}."):
        parsed = parse_artifact_key(obj.key)
        if parsed is None or parsed[0] is not backup_class:
            logger.warning(f"Ignoring unrecognized object in {store.namespace}: {obj.key}")
            continue

        artifacts.append(BackupArtifact(
            backup_class=backup_class,
            identifier=parsed[1],
            storage_path=obj.key,
            size_bytes=obj.size_bytes
        ))

    return sorted(artifacts, key=lambda a: a.identifier)


class RetentionManager:
    """
    Enforces count-based retention against an object store.
    """

    def __init__(self, store):
        """
        Initialize retention manager.

        Args:
            store: Object store of the class namespace
        """
        self.store = store

    def cleanup(self, backup_class: BackupClass, keep_count: int) -> CleanupReport:
        """
        Delete all but the keep_count most recent artifacts.

        Deletion is best-effort per artifact: a failed delete is recorded in
        the report and the remaining deletions still run.

        Args:
            backup_class: Class to clean up
            keep_count: Number of most recent artifacts to keep (>= 0)

        Returns:
            CleanupReport

        Raises:
            ValueError: If keep_count is negative
            StorageError: If listing fails
        """
        keep_count = RetentionPolicy(keep_count=keep_count).keep_count

        artifacts = list_artifacts(self.store, backup_class)
        excess = len(artifacts) - keep_count

        report = CleanupReport(backup_class=backup_class)

        if excess <= 0:
            report.kept = [a.storage_path for a in artifacts]
            logger.info(
                f"[{backup_class.value}] {len(artifacts)} artifact(s), keeping {keep_count}: nothing to delete"
            )
            return report

        to_delete, to_keep = artifacts[:excess], artifacts[excess:]
        report.kept = [a.storage_path for a in to_keep]

        for artifact in to_delete:
            try:
                self.store.delete(artifact.storage_path)
                report.deleted.append(artifact.storage_path)
                logger.info(f"[{backup_class.value}] Deleted {artifact.storage_path}")
            except StorageError as e:
                report.failed[artifact.storage_path] = str(e)
                logger.error(f"[{backup_class.value}] Failed to delete {artifact.storage_path}: {e}")

        logger.info(
            f"[{backup_class.value}] Retention complete. "
            f"Kept: {len(report.kept)}, "
            f"Deleted: {len(report.deleted)}, "
            f"Errors: {len(report.failed)}"
        )

        return report


def enforce_retention_policies(
    config,
    classes: Iterable[BackupClass],
    keep_count: Optional[int] = None,
    store_factory=None
) -> List[CleanupReport]:
    """
    Apply retention to each class.

    A storage failure for one class is recorded on that class's report and
    the remaining classes are still cleaned.

    Args:
        config: Config instance
        classes: Backup classes to clean up
        keep_count: Override for every class (default: per-class policy from config)
        store_factory: callable(config, backup_class) -> object store

    Returns:
        One CleanupReport per class

    Raises:
        ValueError: If a keep count is negative
    """
    store_factory = store_factory or create_store
    reports = []

    for backup_class in classes:
        keep = keep_count if keep_count is not None else config.retention_policy(backup_class).keep_count
        try:
            manager = RetentionManager(store_factory(config, backup_class))
            reports.append(manager.cleanup(backup_class, keep))
        except StorageError as e:
            logger.error(f"[{backup_class.value}] Retention failed: {e}")
            reports.append(CleanupReport(backup_class=backup_class, error=str(e)))

    return reports
