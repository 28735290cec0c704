"""Execution context handed to every task."""

from dataclasses import dataclass, field
from pathlib import Path

from ci_runner.models import CommandResult, Source
from ci_runner.runner import CommandRunner


@dataclass
class TaskContext:
    name: str
    cwd: Path
    env: dict[str, str]
    runner: CommandRunner
    credentials_path: Path
    source: Source | None = None
    secrets: list[str] = field(default_factory=list)

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def run(self, args: list[str], extra_env: dict[str, str] | None = None) -> CommandResult:
        """Run a command in the task's checkout with the task environment."""
        env = {**self.env, **(extra_env or {})}
        return self.runner.run(args, cwd=self.cwd, env=env, secrets=self.secrets)

    def capture(self, args: list[str]) -> str:
        return self.runner.capture(args, cwd=self.cwd, env=self.env)
