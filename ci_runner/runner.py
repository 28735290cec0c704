"""External process execution.

Usage:
    runner = CommandRunner()
    runner.run(["cargo", "build", "--verbose"], cwd=checkout, env=env)
    runner.run_script("cd repo\\ncargo test", cwd=workdir, env=env)

Every command either returns a CommandResult (exit code 0) or raises
CommandFailedError carrying the child's exit code.
"""

import logging
import shlex
import subprocess
import time
from collections.abc import Iterable, Mapping
from pathlib import Path

from ci_runner.models import CommandResult

logger = logging.getLogger(__name__)

REDACTED = "********"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RunnerError(Exception):
    """Base exception for process execution errors."""


class CommandFailedError(RunnerError):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, display: str | None = None) -> None:
        self.args_list = list(args)
        self.returncode = returncode
        shown = display if display is not None else shlex.join(args)
        super().__init__(f"Command '{shown}' exited with status {returncode}")


class ToolNotFoundError(RunnerError):
    """Raised when the executable for a command is not installed."""


class WorkdirNotFoundError(RunnerError):
    """Raised when a command's working directory does not exist."""


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret value in *text*."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class CommandRunner:
    """Runs commands one at a time, inheriting stdout/stderr.

    With ``dry_run=True`` commands are logged and recorded in ``history``
    but never executed.
    """

    def __init__(self, dry_run: bool = False) -> None:
        self.dry_run = dry_run
        self.history: list[CommandResult] = []

    def run(
        self,
        args: list[str],
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        secrets: Iterable[str] = (),
    ) -> CommandResult:
        """Run *args* and return its result.

        Raises:
            WorkdirNotFoundError: *cwd* is not a directory
            ToolNotFoundError:    the executable does not exist
            CommandFailedError:   non-zero exit status
        """
        args = [str(a) for a in args]
        secrets = tuple(secrets)
        display = redact(shlex.join(args), secrets)
        logger.info("+ %s", display)
        if cwd is not None:
            logger.debug("  (in %s)", cwd)

        if self.dry_run:
            result = CommandResult(args=args, returncode=0)
            self.history.append(result)
            return result

        if cwd is not None and not Path(cwd).is_dir():
            raise WorkdirNotFoundError(f"Working directory '{cwd}' does not exist")

        start = time.monotonic()
        try:
            completed = subprocess.run(
                args,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(
                f"'{args[0]}' was not found. Is it installed and on PATH?"
            ) from exc

        result = CommandResult(
            args=args,
            returncode=completed.returncode,
            duration=time.monotonic() - start,
        )
        self.history.append(result)

        if completed.returncode != 0:
            raise CommandFailedError(args, completed.returncode, display=display)
        return result

    def capture(
        self,
        args: list[str],
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        """Run a read-only query command and return its stripped stdout.

        Returns an empty string when the command is missing or fails; used
        for optional metadata such as the current commit.
        """
        if self.dry_run:
            return ""
        try:
            completed = subprocess.run(
                [str(a) for a in args],
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            logger.debug("'%s' not found, nothing captured", args[0])
            return ""
        if completed.returncode != 0:
            logger.debug("'%s' exited with %d, nothing captured", shlex.join(args), completed.returncode)
            return ""
        return completed.stdout.strip()

    def run_script(
        self,
        script: str,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        secrets: Iterable[str] = (),
    ) -> CommandResult:
        """Run a shell script with bash, stopping at the first failing line."""
        return self.run(["bash", "-e", "-x", "-c", script], cwd=cwd, env=env, secrets=secrets)
