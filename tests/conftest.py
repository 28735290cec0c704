"""Shared fixtures: a command runner that records instead of executing."""

import pytest

from ci_runner.models import CommandResult
from ci_runner.runner import CommandFailedError, CommandRunner


class RecordingRunner(CommandRunner):
    """Records every command; commands starting with a prefix in ``fail_on`` exit 1."""

    def __init__(self) -> None:
        super().__init__(dry_run=False)
        self.fail_on: list[tuple[str, ...]] = []
        self.calls: list[dict] = []
        self.captured = "deadbeef"

    def run(self, args, cwd=None, env=None, secrets=()):
        args = [str(a) for a in args]
        self.calls.append({"args": args, "cwd": cwd, "env": dict(env or {}), "secrets": tuple(secrets)})
        for prefix in self.fail_on:
            if tuple(args[:len(prefix)]) == tuple(prefix):
                self.history.append(CommandResult(args=args, returncode=1))
                raise CommandFailedError(args, 1)
        result = CommandResult(args=args, returncode=0)
        self.history.append(result)
        return result

    def capture(self, args, cwd=None, env=None):
        return self.captured

    @property
    def commands(self) -> list[list[str]]:
        return [c["args"] for c in self.calls]


@pytest.fixture
def recorder() -> RecordingRunner:
    return RecordingRunner()
