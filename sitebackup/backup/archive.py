"""
Archive builder - stages a backup class and compresses it into one artifact.

Layout under the run's staging directory:
    <staging_dir>/<classKey>/                     producer output
    <staging_dir>/<classKey>.<identifier>.<ext>   compressed artifact
"""

import os
import shutil
import logging
from typing import Iterable, Optional

from sitebackup.models import BackupClass, RunContext, artifact_key
from .process import ProcessRunner, SubprocessRunner
from .sources import ProducerFailure
from .compression import CompressionFailure, archive_extension, compress_command


logger = logging.getLogger(__name__)


class ArchiveBuilder:
    """
    Runs producers and compression through a ProcessRunner.
    """

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        compression_format: str = 'tar.gz',
        producer_timeout: Optional[int] = None
    ):
        """
        Initialize archive builder.

        Args:
            runner: ProcessRunner for external commands (default: SubprocessRunner)
            compression_format: One of compression.FORMATS
            producer_timeout: Seconds before a producer is killed (None = no limit)
        """
        archive_extension(compression_format)
        self.runner = runner or SubprocessRunner()
        self.compression_format = compression_format
        self.producer_timeout = producer_timeout

    def staging_path(self, backup_class: BackupClass, context: RunContext) -> str:
        return os.path.join(context.staging_dir, backup_class.value)

    def stage(self, backup_class: BackupClass, producer, context: RunContext) -> str:
        """
        Run the producer into the class staging directory.

        Args:
            backup_class: Class being staged
            producer: DatabaseSource or SiteSource
            context: RunContext of the current run

        Returns:
            Path of the staging directory

        Raises:
            ProducerFailure: If the producer exits non-zero
        """
        staging_path = self.staging_path(backup_class, context)
        os.makedirs(staging_path, exist_ok=True)

        result = self.runner.run(
            producer.command(staging_path),
            env=producer.env(),
            timeout=self.producer_timeout
        )
        if not result.ok:
            raise ProducerFailure(backup_class, result.returncode, result.stderr)

        logger.debug(f"Staged {backup_class.value} into {staging_path}")
        return staging_path

    def compress(self, staging_path: str, context: RunContext, backup_class: BackupClass) -> str:
        """
        Compress a staging directory into a single artifact.

        Returns:
            Path of the artifact file

        Raises:
            CompressionFailure: If the compressor exits non-zero
        """
        extension = archive_extension(self.compression_format)
        filename = f"{artifact_key(backup_class, context.identifier)}.{extension}"
        artifact_path = os.path.join(context.staging_dir, filename)

        result = self.runner.run(compress_command(staging_path, artifact_path, self.compression_format))
        if not result.ok:
            # Clean up partial archive on failure
            self.cleanup_staging([artifact_path])
            raise CompressionFailure(
                f"Compression of {os.path.basename(staging_path)} failed with exit code {result.returncode}",
                exit_code=result.returncode,
                stderr=result.stderr
            )

        return artifact_path

    def cleanup_staging(self, paths: Iterable[Optional[str]]):
        """
        Best-effort removal of intermediate files and directories.

        Failures are logged and never raised.
        """
        for path in paths:
            if not path or not os.path.lexists(path):
                continue
            try:
                if os.path.isdir(path) and not os.path.islink(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)
                logger.debug(f"Removed staging path {path}")
            except OSError as e:
                logger.warning(f"Failed to cleanup staging path {path}: {e}")
