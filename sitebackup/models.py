"""
Data model for backup runs and stored artifacts.

Artifacts are stored under keys of the form ``<classKey>.<identifier>``
(e.g. ``db.20230101000000``) where the identifier is a UTC timestamp.
Ordering of artifacts is always derived from the parsed identifier.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


IDENTIFIER_FORMAT = '%Y%m%d%H%M%S'

_KEY_PATTERN = re.compile(r'^(?P<class_key>[a-z]+)\.(?P<identifier>\d{14})$')


class BackupClass(Enum):
    """Logical category of backup. The value is the class key."""

    DATABASE = 'db'
    SITE = 'site'

    @classmethod
    def from_key(cls, key: str) -> 'BackupClass':
        """
        Look up a backup class by its key ('db' or 'site').

        Raises:
            ValueError: If the key is unknown
        """
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown backup class: {key}. Valid options: {[m.value for m in cls]}")


@dataclass(frozen=True)
class BackupArtifact:
    """A single compressed backup stored in the object store."""

    backup_class: BackupClass
    identifier: str
    storage_path: str
    size_bytes: Optional[int] = None

    @property
    def created_at(self) -> datetime:
        return parse_identifier(self.identifier)


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep only the ``keep_count`` most recent artifacts of a class."""

    DEFAULT_KEEP_COUNT = 10

    keep_count: int = DEFAULT_KEEP_COUNT

    def __post_init__(self):
        if self.keep_count is None or int(self.keep_count) < 0:
            raise ValueError(f"keep_count must be a non-negative integer, got {self.keep_count!r}")


@dataclass(frozen=True)
class RunContext:
    """
    Per-invocation values shared by every class backed up in the run.

    The staging directory is derived from the identifier so runs with
    different identifiers never touch the same local paths.
    """

    identifier: str
    started_at: datetime
    staging_dir: str = field(compare=False)

    @classmethod
    def create(cls, staging_root: str, now: Optional[datetime] = None) -> 'RunContext':
        started_at = now or datetime.now(timezone.utc)
        identifier = make_identifier(started_at)
        return cls(
            identifier=identifier,
            started_at=started_at,
            staging_dir=os.path.join(staging_root, identifier)
        )


def make_identifier(moment: datetime) -> str:
    """Format a moment as an artifact identifier (UTC, YYYYMMDDHHMMSS)."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(IDENTIFIER_FORMAT)


def parse_identifier(identifier: str) -> datetime:
    """
    Parse an identifier back into an aware UTC datetime.

    Raises:
        ValueError: If the identifier is not a valid timestamp
    """
    return datetime.strptime(identifier, IDENTIFIER_FORMAT).replace(tzinfo=timezone.utc)


def artifact_key(backup_class: BackupClass, identifier: str) -> str:
    """Object key for an artifact: <classKey>.<identifier>."""
    return f"{backup_class.value}.{identifier}"


def parse_artifact_key(key: str) -> Optional[Tuple[BackupClass, str]]:
    """
    Split an object key into (backup class, identifier).

    Returns:
        Tuple of (BackupClass, identifier), or None if the key is not an artifact key
    """
    match = _KEY_PATTERN.match(key)
    if not match:
        return None

    try:
        backup_class = BackupClass.from_key(match.group('class_key'))
        parse_identifier(match.group('identifier'))
    except ValueError:
        return None

    return backup_class, match.group('identifier')
