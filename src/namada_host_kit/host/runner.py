"""
Command runner - executes one OS command with an explicit privilege context.

Every mutation of the host goes through CommandRunner.run, which:
- prefixes the command for the requested identity (sudo / sudo -u / runuser)
- passes environment variables explicitly through env(1)
- turns failures into typed CommandError subclasses
"""

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..constants import EXIT_COMMAND_NOT_FOUND
from ..errors import CommandError, CommandFailedError, CommandNotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission denied", "operation not permitted", "must be run as root", "are you root")


@dataclass
class CommandResult:
    """Result of a single command execution."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def classify_failure(result: CommandResult) -> CommandError:
    """Map a failed command result to the matching error type."""
    stderr = result.stderr.strip()
    summary = f"{shlex.join(result.argv)} exited with {result.returncode}"
    if stderr:
        summary = f"{summary}: {stderr.splitlines()[-1]}"

    lowered = stderr.lower()
    if result.returncode == EXIT_COMMAND_NOT_FOUND or "command not found" in lowered:
        return CommandNotFoundError(result.argv, summary, result.returncode, stderr)
    if any(marker in lowered for marker in _PERMISSION_MARKERS):
        return PermissionDeniedError(result.argv, summary, result.returncode, stderr)
    return CommandFailedError(result.argv, summary, result.returncode, stderr)


class CommandRunner:
    """
    Runs OS commands on the local host.

    Commands run as root by default: directly when the process is already
    root, through sudo otherwise. Passing ``user`` runs the command as that
    account instead.
    """

    def __init__(self, dry_run: bool = False, euid: int | None = None):
        """
        Initialize the runner.

        Args:
            dry_run: If True, log mutating commands instead of executing them
            euid: Effective uid override (defaults to the current process)
        """
        self.dry_run = dry_run
        self.euid = os.geteuid() if euid is None else euid

    @property
    def is_root(self) -> bool:
        return self.euid == 0

    def build_argv(
        self,
        argv: list[str | Path],
        user: str | None = None,
        env: dict[str, str] | None = None,
    ) -> list[str]:
        """Build the full command line for an identity and environment."""
        if user is None:
            prefix = [] if self.is_root else ["sudo"]
        elif self.is_root:
            prefix = ["runuser", "-u", user, "--"]
        else:
            prefix = ["sudo", "-u", user]

        if env:
            prefix = [*prefix, "env", *(f"{key}={value}" for key, value in env.items())]

        return [*prefix, *(str(arg) for arg in argv)]

    def run(
        self,
        argv: list[str | Path],
        *,
        user: str | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
        cwd: Path | None = None,
        capture: bool = True,
    ) -> CommandResult:
        """
        Execute a mutating command.

        Args:
            argv: Command and arguments
            user: Run as this account (None = root)
            env: Environment variables passed explicitly to the command
            input: Text fed to stdin
            cwd: Working directory
            capture: Capture stdout/stderr (False streams to the terminal)

        Returns:
            CommandResult of a successful execution

        Raises:
            CommandNotFoundError, PermissionDeniedError, CommandFailedError
        """
        full = self.build_argv(argv, user, env)

        if self.dry_run:
            logger.info(f"[DRY RUN] Would run: {shlex.join(full)}")
            return CommandResult(argv=full, returncode=0)

        logger.debug(f"Running: {shlex.join(full)}")
        result = self._execute(full, input=input, cwd=cwd, capture=capture)
        if not result.ok:
            raise classify_failure(result)
        return result

    def probe(
        self,
        argv: list[str | Path],
        *,
        privileged: bool = False,
        user: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """
        Execute a read-only command and return its result without raising.

        Probes run even in dry-run mode. A missing executable yields exit
        status 127 instead of an exception.
        """
        if privileged or user is not None:
            full = self.build_argv(argv, user, env)
        elif env:
            full = ["env", *(f"{key}={value}" for key, value in env.items()), *(str(arg) for arg in argv)]
        else:
            full = [str(arg) for arg in argv]

        try:
            return self._execute(full)
        except CommandError as e:
            return CommandResult(argv=full, returncode=e.returncode or EXIT_COMMAND_NOT_FOUND, stderr=str(e))

    def _execute(
        self,
        full: list[str],
        input: str | None = None,
        cwd: Path | None = None,
        capture: bool = True,
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                full,
                input=input,
                cwd=cwd,
                capture_output=capture,
                text=True,
                check=False,
            )
        except FileNotFoundError as err:
            raise CommandNotFoundError(full, f"command not found: {full[0]}", EXIT_COMMAND_NOT_FOUND) from err
        except PermissionError as err:
            raise PermissionDeniedError(full, f"permission denied executing {full[0]}") from err

        return CommandResult(
            argv=full,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
