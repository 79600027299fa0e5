"""
External process execution.

Producers and compression are opaque external programs. They are run through
a ProcessRunner so tests can substitute a fake that records argv and returns
scripted results instead of spawning processes.
"""

import os
import logging
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence


logger = logging.getLogger(__name__)

# Conventional shell exit codes
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class ProcessResult:
    """Outcome of an external process."""

    argv: List[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner:
    """Interface for running external commands."""

    def run(
        self,
        argv: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None
    ) -> ProcessResult:
        raise NotImplementedError


class SubprocessRunner(ProcessRunner):
    """
    Run commands with subprocess, without a shell.

    Failures to launch and timeouts are reported through the return code
    (127 and 124) so callers only ever check one success flag.
    """

    def run(
        self,
        argv: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None
    ) -> ProcessResult:
        """
        Run a command to completion.

        Args:
            argv: Program and arguments
            env: Extra environment variables, merged over the current environment
            timeout: Seconds before the process is killed (None = no limit)

        Returns:
            ProcessResult with decoded stdout/stderr
        """
        argv = [str(arg) for arg in argv]
        process_env = None
        if env:
            process_env = os.environ.copy()
            process_env.update(env)

        logger.debug(f"Running: {argv[0]} ({len(argv) - 1} args)")

        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                env=process_env,
                timeout=timeout
            )
        except FileNotFoundError as e:
            return ProcessResult(argv, EXIT_NOT_FOUND, stderr=f"Command not found: {e}")
        except PermissionError as e:
            return ProcessResult(argv, EXIT_NOT_FOUND, stderr=f"Command not executable: {e}")
        except subprocess.TimeoutExpired:
            return ProcessResult(argv, EXIT_TIMEOUT, stderr=f"Timed out after {timeout}s")

        return ProcessResult(
            argv,
            completed.returncode,
            stdout=completed.stdout.decode(errors='replace'),
            stderr=completed.stderr.decode(errors='replace')
        )
