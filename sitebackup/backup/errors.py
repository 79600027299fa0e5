"""Common base for backup failures reported by the CLI."""


class BackupError(Exception):
    """Base class for every expected backup failure."""
    pass
