"""
Backup module for sitebackup.

This module handles the core backup functionality including:
- Producers (database dump and site copy)
- Staging and compression
- Object storage (S3 and local)
- Backup orchestration
- Retention and retrieval
"""

from .errors import BackupError
from .process import ProcessRunner, SubprocessRunner
from .sources import DatabaseSource, SiteSource, ProducerFailure
from .compression import CompressionFailure
from .archive import ArchiveBuilder
from .storage import S3ObjectStore, LocalObjectStore, StorageError, NotFound
from .executor import BackupOrchestrator, RunState, run_backup
from .retention import RetentionManager, PartialDeletionFailure
from .retrieval import RetrievalManager, EmptyBucket

__all__ = [
    'BackupError',
    'ProcessRunner',
    'SubprocessRunner',
    'DatabaseSource',
    'SiteSource',
    'ProducerFailure',
    'CompressionFailure',
    'ArchiveBuilder',
    'S3ObjectStore',
    'LocalObjectStore',
    'StorageError',
    'NotFound',
    'BackupOrchestrator',
    'RunState',
    'run_backup',
    'RetentionManager',
    'PartialDeletionFailure',
    'RetrievalManager',
    'EmptyBucket'
]
