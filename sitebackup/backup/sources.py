"""
Producer handlers for backup classes.

Supports:
- DatabaseSource: Dump the database to a file (mysqldump or pg_dump)
- SiteSource: Recursively copy the site file tree

Producers only describe the external command. The ArchiveBuilder runs it.
"""

import os
from typing import Dict, List, Optional

from sitebackup.models import BackupClass
from .errors import BackupError


class ProducerFailure(BackupError):
    """Raised when an external producer (dump or copy) exits non-zero."""

    def __init__(self, backup_class: BackupClass, exit_code: int, stderr: str = ''):
        self.backup_class = backup_class
        self.exit_code = exit_code
        self.stderr = stderr
        detail = f": {stderr.strip()[:500]}" if stderr and stderr.strip() else ''
        super().__init__(
            f"Producer for '{backup_class.value}' failed with exit code {exit_code}{detail}"
        )


class DatabaseSource:
    """
    Dump-to-file producer for the application database.

    The password is passed through the environment, never on the command line.
    """

    backup_class = BackupClass.DATABASE

    # engine -> (dump program, password environment variable, default port)
    ENGINES = {
        'mysql': ('mysqldump', 'MYSQL_PWD', 3306),
        'postgres': ('pg_dump', 'PGPASSWORD', 5432),
    }

    def __init__(
        self,
        name: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        host: str = 'localhost',
        port: Optional[int] = None,
        engine: str = 'mysql'
    ):
        """
        Initialize database producer.

        Args:
            name: Database name
            user: Database user
            password: Database password (optional)
            host: Database host
            port: Database port (default depends on engine)
            engine: 'mysql' or 'postgres'

        Raises:
            ValueError: If engine is unknown or name is empty
        """
        if engine not in self.ENGINES:
            raise ValueError(
                f"Invalid database engine: {engine}. "
                f"Valid options: {list(self.ENGINES.keys())}"
            )
        if not name:
            raise ValueError("Database name is required")

        self.name = name
        self.user = user
        self.password = password
        self.host = host
        self.engine = engine
        self.port = port or self.ENGINES[engine][2]

    def output_path(self, dest_dir: str) -> str:
        return os.path.join(dest_dir, f"{self.name}.sql")

    def command(self, dest_dir: str) -> List[str]:
        """Build the dump argv writing into dest_dir."""
        program = self.ENGINES[self.engine][0]
        output = self.output_path(dest_dir)

        if self.engine == 'mysql':
            argv = [program, f"--host={self.host}", f"--port={self.port}"]
            if self.user:
                argv.append(f"--user={self.user}")
            argv += ['--single-transaction', f"--result-file={output}", self.name]
        else:
            argv = [program, '-h', self.host, '-p', str(self.port)]
            if self.user:
                argv += ['-U', self.user]
            argv += ['--no-owner', '--no-acl', '-f', output, self.name]

        return argv

    def env(self) -> Dict[str, str]:
        if not self.password:
            return {}
        return {self.ENGINES[self.engine][1]: self.password}


class SiteSource:
    """Recursive-copy producer for the site file tree."""

    backup_class = BackupClass.SITE

    def __init__(self, root: str):
        """
        Initialize site producer.

        Args:
            root: Directory holding the site's static files
        """
        if not root:
            raise ValueError("Site root is required")
        self.root = root

    def output_path(self, dest_dir: str) -> str:
        return os.path.join(dest_dir, os.path.basename(os.path.normpath(self.root)))

    def command(self, dest_dir: str) -> List[str]:
        return ['cp', '-a', os.path.normpath(self.root), dest_dir + os.sep]

    def env(self) -> Dict[str, str]:
        return {}


def create_source(backup_class: BackupClass, config):
    """
    Factory function to create the producer for a backup class.

    Args:
        backup_class: BackupClass to produce
        config: Config instance

    Returns:
        DatabaseSource or SiteSource instance

    Raises:
        ValueError: If the class is not configured
    """
    if backup_class is BackupClass.DATABASE:
        if not config.DB_NAME:
            raise ValueError("Database backup not configured (DB_NAME)")
        return DatabaseSource(
            name=config.DB_NAME,
            user=config.DB_USER,
            password=config.DB_PASSWORD,
            host=config.DB_HOST,
            port=config.DB_PORT,
            engine=config.DB_ENGINE
        )
    elif backup_class is BackupClass.SITE:
        if not config.SITE_ROOT:
            raise ValueError("Site backup not configured (SITE_ROOT)")
        return SiteSource(config.SITE_ROOT)
    else:
        raise ValueError(f"Invalid backup class: {backup_class}")
