"""
Runs git commands for the sync orchestrator.

Uses the native git CLI via subprocess. Every call is pushed to a worker
thread with asyncio.to_thread so slow remotes never block the event loop.

Security:
    - GIT_TERMINAL_PROMPT=0 so a bad credential fails instead of hanging on a prompt
    - Output and command lines attached to errors are passed through
      sanitize_error() so tokens embedded in remote URLs never reach logs
"""

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from gitsync.credentials import sanitize_error

logger = logging.getLogger(__name__)

__all__ = [
    'CommandRunner',
    'CommandResult',
    'CommandError',
    'GitNotAvailableError',
]


@dataclass
class CommandResult:
    """Captured result of a finished git command."""
    args: List[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stderr and stdout joined; git writes most progress and errors to stderr."""
        return '\n'.join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)


class CommandError(Exception):
    """Raised when a git command exits non-zero and the caller asked for check=True."""

    def __init__(self, args: List[str], exit_code: int, stderr: str = '', stdout: str = ''):
        self.command = sanitize_error(' '.join(['git'] + list(args)))
        self.exit_code = exit_code
        self.stderr = sanitize_error(stderr or '')
        self.stdout = sanitize_error(stdout or '')
        detail = self.stderr.strip() or self.stdout.strip() or f"exit code {exit_code}"
        super().__init__(f"{self.command} failed: {detail}")

    @property
    def output(self) -> str:
        return '\n'.join(part for part in (self.stderr.strip(), self.stdout.strip()) if part)


class GitNotAvailableError(RuntimeError):
    """Raised when git is not installed or not accessible."""
    pass


class CommandRunner:
    """
    Executes git commands in a working directory.

    No retries happen at this level. Callers decide what a failure means.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
        verify: bool = True
    ):
        """
        Args:
            timeout: Optional per-command timeout in seconds (None = wait forever)
            env: Extra environment variables for every command
            verify: Check that git is installed on construction

        Raises:
            GitNotAvailableError: If verify is set and git is missing
        """
        self.timeout = timeout
        self._extra_env = dict(env or {})
        if verify:
            self._verify_git_available()

    def _verify_git_available(self) -> None:
        try:
            result = subprocess.run(
                ['git', '--version'],
                capture_output=True,
                text=True,
                timeout=10
            )
            if result.returncode != 0:
                raise GitNotAvailableError("Git command failed")
            logger.info(f"Git available: {result.stdout.strip()}")
        except FileNotFoundError:
            raise GitNotAvailableError("Git not found. Install git and make sure it is on PATH")
        except subprocess.TimeoutExpired:
            raise GitNotAvailableError("Git command timed out")

    def _build_env(self, env: Optional[Dict[str, str]]) -> Dict[str, str]:
        return {
            **os.environ,
            'GIT_TERMINAL_PROMPT': '0',  # Disable interactive prompts
            **self._extra_env,
            **(env or {})
        }

    async def run(
        self,
        args: List[str],
        cwd: Union[str, Path],
        check: bool = True,
        env: Optional[Dict[str, str]] = None
    ) -> CommandResult:
        """
        Run a git command asynchronously.

        Args:
            args: Git command arguments (without 'git' prefix)
            cwd: Working directory
            check: Raise CommandError on non-zero exit
            env: Additional environment variables for this command

        Returns:
            CommandResult with stdout, stderr and returncode

        Raises:
            CommandError: Non-zero exit (with check=True), timeout, or missing cwd
            GitNotAvailableError: git binary disappeared
        """
        args = list(args)
        logger.debug(f"Running {sanitize_error(' '.join(['git'] + args))} in {cwd}")

        try:
            completed = await asyncio.to_thread(
                subprocess.run,
                ['git'] + args,
                cwd=str(cwd),
                env=self._build_env(env),
                capture_output=True,
                text=True,
                errors='replace',
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            raise CommandError(args, -1, stderr=f"Command timed out after {self.timeout} seconds")
        except FileNotFoundError:
            if not Path(cwd).is_dir():
                raise CommandError(args, -1, stderr=f"Working directory does not exist: {cwd}")
            raise GitNotAvailableError("Git not found. Install git and make sure it is on PATH")

        result = CommandResult(
            args=args,
            returncode=completed.returncode,
            stdout=completed.stdout or '',
            stderr=completed.stderr or '',
        )

        if check and not result.ok:
            raise CommandError(args, result.returncode, stderr=result.stderr, stdout=result.stdout)

        return result
