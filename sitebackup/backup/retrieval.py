"""
Retrieval of stored backups.

Resolves an artifact (explicit identifier or the latest one) and writes its
content to a local destination.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sitebackup.models import BackupArtifact, BackupClass, artifact_key, parse_artifact_key
from .compression import archive_extension
from .errors import BackupError
from .retention import list_artifacts


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievedArtifact:
    """An artifact written to a local file."""

    artifact: BackupArtifact
    path: str


class EmptyBucket(BackupError):
    """Raised when the latest artifact is requested but none exist."""

    def __init__(self, backup_class: BackupClass, namespace: str = ''):
        self.backup_class = backup_class
        where = f" in {namespace}" if namespace else ''
        super().__init__(f"No '{backup_class.value}' artifacts found{where}")


def normalize_identifier(backup_class: BackupClass, identifier: str) -> str:
    """
    Accept a bare timestamp or a full key and return the object key.

    Raises:
        ValueError: If the identifier is malformed or names another class
    """
    key = identifier if '.' in identifier else artifact_key(backup_class, identifier)
    parsed = parse_artifact_key(key)
    if parsed is None:
        raise ValueError(f"Invalid artifact identifier: {identifier}")
    if parsed[0] is not backup_class:
        raise ValueError(
            f"Artifact {identifier} belongs to '{parsed[0].value}', not '{backup_class.value}'"
        )
    return key


class RetrievalManager:
    """
    Downloads artifacts from an object store.
    """

    def __init__(self, store, compression_format: str = 'tar.gz'):
        """
        Initialize retrieval manager.

        Args:
            store: Object store of the class namespace
            compression_format: Format used to name downloaded files
        """
        self.store = store
        self.compression_format = compression_format

    def latest(self, backup_class: BackupClass) -> BackupArtifact:
        """
        Resolve the artifact with the greatest identifier.

        Raises:
            EmptyBucket: If the class has no artifacts
            StorageError: If listing fails
        """
        artifacts = list_artifacts(self.store, backup_class)
        if not artifacts:
            raise EmptyBucket(backup_class, self.store.namespace)
        return max(artifacts, key=lambda a: a.identifier)

    def retrieve(
        self,
        backup_class: BackupClass,
        identifier: Optional[str] = None,
        destination: Optional[str] = None
    ) -> Optional[RetrievedArtifact]:
        """
        Download an artifact.

        Args:
            backup_class: Class to retrieve from
            identifier: Timestamp or full key (None = latest)
            destination: File or directory to write to (default: current directory)

        Returns:
            RetrievedArtifact with the local path, or None if the requested
            identifier does not exist (nothing is written)

        Raises:
            EmptyBucket: If no identifier was given and the class has no artifacts
            StorageError: If the store cannot be reached
            ValueError: If identifier is malformed
        """
        if identifier is not None:
            key = normalize_identifier(backup_class, identifier)
            if not self.store.exists(key):
                logger.warning(f"[{backup_class.value}] Artifact not found: {key}")
                return None
            artifact = BackupArtifact(
                backup_class=backup_class,
                identifier=parse_artifact_key(key)[1],
                storage_path=key
            )
        else:
            artifact = self.latest(backup_class)
            logger.info(f"[{backup_class.value}] Latest artifact: {artifact.storage_path}")

        data = self.store.get(artifact.storage_path)
        path = self._destination_path(artifact, destination)

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"[{backup_class.value}] Retrieved {artifact.storage_path} to {path} ({len(data)} bytes)")

        return RetrievedArtifact(
            artifact=BackupArtifact(
                backup_class=artifact.backup_class,
                identifier=artifact.identifier,
                storage_path=artifact.storage_path,
                size_bytes=len(data)
            ),
            path=str(path)
        )

    def _destination_path(self, artifact: BackupArtifact, destination: Optional[str]) -> Path:
        filename = f"{artifact.storage_path}.{archive_extension(self.compression_format)}"
        if destination is None:
            return Path(os.getcwd()) / filename

        path = Path(destination).expanduser()
        if path.is_dir() or str(destination).endswith(os.sep):
            return path / filename
        return path
