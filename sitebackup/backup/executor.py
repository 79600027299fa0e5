"""
Backup orchestrator - sequences the backup workflow for each class.

Workflow per class:
1. Stage producer output (dump or copy) into the run's staging directory
2. Compress the staging directory into one artifact
3. Upload the artifact as <classKey>.<identifier>
4. Cleanup staging files

All classes backed up in one run share the RunContext and therefore the
identifier, so a combined db+site run is correlated.
"""

import os
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from sitebackup.models import BackupArtifact, BackupClass, RunContext, artifact_key
from .archive import ArchiveBuilder
from .compression import get_archive_size
from .sources import create_source
from .storage import StorageError, create_store


logger = logging.getLogger(__name__)


class RunState(Enum):
    """Lifecycle of one class backup. DONE and FAILED are terminal."""

    IDLE = 'idle'
    STAGING = 'staging'
    COMPRESSING = 'compressing'
    UPLOADING = 'uploading'
    DONE = 'done'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.FAILED)


class BackupOrchestrator:
    """
    Orchestrates the complete backup workflow for one run.
    """

    def __init__(
        self,
        config,
        context: RunContext,
        builder: Optional[ArchiveBuilder] = None,
        store_factory: Optional[Callable] = None,
        source_factory: Optional[Callable] = None
    ):
        """
        Initialize backup orchestrator.

        Args:
            config: Config instance
            context: RunContext shared by every class in this run
            builder: ArchiveBuilder (default: built from config)
            store_factory: callable(config, backup_class) -> object store
            source_factory: callable(backup_class, config) -> producer
        """
        self.config = config
        self.context = context
        self.builder = builder or ArchiveBuilder(
            compression_format=config.COMPRESSION_FORMAT,
            producer_timeout=config.PRODUCER_TIMEOUT
        )
        self.store_factory = store_factory or create_store
        self.source_factory = source_factory or create_source
        self.states: Dict[BackupClass, RunState] = {}
        self.failures: Dict[BackupClass, str] = {}
        self.logs = []

    def state(self, backup_class: BackupClass) -> RunState:
        return self.states.get(backup_class, RunState.IDLE)

    def _transition(self, backup_class: BackupClass, state: RunState):
        self.states[backup_class] = state
        logger.debug(f"[{backup_class.value}] -> {state.value}")

    def _fail(self, backup_class: BackupClass, error: Exception):
        self._transition(backup_class, RunState.FAILED)
        self.failures[backup_class] = str(error)
        self._log(f"[{backup_class.value}] Backup failed: {error}", logging.ERROR)

    def backup(self, backup_class: BackupClass) -> BackupArtifact:
        """
        Back up one class.

        Returns:
            BackupArtifact describing the stored object

        Raises:
            ProducerFailure: If staging fails (nothing uploaded)
            CompressionFailure: If compression fails (nothing uploaded)
            StorageError: If upload fails; ``artifact_path`` names the kept artifact
            RuntimeError: If this class already ran in this run
        """
        if self.state(backup_class) is not RunState.IDLE:
            raise RuntimeError(
                f"Backup of '{backup_class.value}' already ran in run {self.context.identifier}"
            )

        key = artifact_key(backup_class, self.context.identifier)
        self._log(f"[{backup_class.value}] Starting backup {key}")

        staging_path = self.builder.staging_path(backup_class, self.context)
        artifact_path = None
        try:
            self._transition(backup_class, RunState.STAGING)
            producer = self.source_factory(backup_class, self.config)
            store = self.store_factory(self.config, backup_class)
            self.builder.stage(backup_class, producer, self.context)

            self._transition(backup_class, RunState.COMPRESSING)
            artifact_path = self.builder.compress(staging_path, self.context, backup_class)
            size_bytes = get_archive_size(artifact_path)
            self._log(
                f"[{backup_class.value}] Archive created: {os.path.basename(artifact_path)} "
                f"({size_bytes / 1024 / 1024:.2f} MB)"
            )

            self._transition(backup_class, RunState.UPLOADING)
            store.put_file(key, artifact_path)
            self._log(f"[{backup_class.value}] Uploaded {key} to {store.namespace}")

        except StorageError as e:
            if artifact_path and os.path.exists(artifact_path):
                e.artifact_path = artifact_path
                self._log(
                    f"[{backup_class.value}] Artifact kept for manual recovery: {artifact_path}",
                    logging.WARNING
                )
            self._fail(backup_class, e)
            self.builder.cleanup_staging([staging_path])
            raise

        except Exception as e:
            self._fail(backup_class, e)
            self.builder.cleanup_staging([staging_path, artifact_path])
            raise

        self._transition(backup_class, RunState.DONE)
        self.builder.cleanup_staging([staging_path, artifact_path])
        self._log(f"[{backup_class.value}] Backup completed successfully")

        return BackupArtifact(
            backup_class=backup_class,
            identifier=self.context.identifier,
            storage_path=key,
            size_bytes=size_bytes
        )

    def run(self, classes: Iterable[BackupClass]) -> List[BackupArtifact]:
        """
        Back up several classes in order, stopping at the first failure.

        The exception raised for the failing class carries the artifacts
        already stored in this run as ``completed_artifacts``.

        Returns:
            Artifacts for every class, in order
        """
        artifacts = []
        try:
            for backup_class in classes:
                artifacts.append(self.backup(backup_class))
        except Exception as e:
            e.completed_artifacts = list(artifacts)
            raise
        finally:
            self._remove_empty_staging_dir()
        return artifacts

    def _remove_empty_staging_dir(self):
        try:
            os.rmdir(self.context.staging_dir)
        except OSError:
            # Missing, or still holds an artifact kept for recovery
            pass

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a timestamped entry to the run log and emit it.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_backup(config, classes: Iterable[BackupClass], now: Optional[datetime] = None, **kwargs) -> List[BackupArtifact]:
    """
    Execute one backup run for the given classes.

    Args:
        config: Config instance
        classes: Backup classes to back up, in order
        now: Moment used for the shared identifier (default: current UTC time)
        **kwargs: Passed to BackupOrchestrator

    Returns:
        List of stored BackupArtifacts
    """
    context = RunContext.create(config.STAGING_ROOT, now=now)
    orchestrator = BackupOrchestrator(config, context, **kwargs)
    return orchestrator.run(classes)
