"""
Compression settings for backup archives.

Supports multiple formats, all produced by the external ``tar`` program:
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)
"""

import os
from typing import List

from .errors import BackupError


class CompressionFailure(BackupError):
    """Raised when archive creation fails."""

    def __init__(self, message: str, exit_code: int = None, stderr: str = ''):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


# format -> (extension, tar compression flag)
FORMATS = {
    'tar.gz': ('tar.gz', '-z'),
    'tar.bz2': ('tar.bz2', '-j'),
    'tar.xz': ('tar.xz', '-J'),
    'none': ('tar', None),
}


def archive_extension(compression_format: str) -> str:
    """
    Map a compression format to its file extension.

    Raises:
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMATS.keys())}"
        )
    return FORMATS[compression_format][0]


def compress_command(source_path: str, archive_path: str, compression_format: str = 'tar.gz') -> List[str]:
    """
    Build the tar argv archiving source_path into archive_path.

    The source is added by its basename (relative to its parent directory)
    to keep archives free of absolute staging paths.
    """
    archive_extension(compression_format)
    flag = FORMATS[compression_format][1]

    source = os.path.normpath(source_path)
    argv = ['tar', '-c']
    if flag:
        argv.append(flag)
    argv += ['-f', archive_path, '-C', os.path.dirname(source) or '.', os.path.basename(source)]
    return argv


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionFailure: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionFailure(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionFailure(f"Failed to get archive size: {e}")
