"""Data models for pipeline descriptors and run reports.

Contains dataclasses used to describe a pipeline and serialize its outcome:
    - Source
    - Task
    - Pipeline         (parsed .build.yml)
    - CommandResult
    - TaskResult
    - RunReport        (JSON output of `run`)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

TASK_BUILTIN = "builtin"
TASK_SCRIPT = "script"

STATUS_PASSED = "passed"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Descriptor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Source:
    url: str
    ref: str | None = None

    @property
    def name(self) -> str:
        """Directory name the source is cloned into (last path segment)."""
        tail = self.url.rstrip("/").rsplit("/", 1)[-1]
        if ":" in tail and "/" not in tail:
            tail = tail.rsplit(":", 1)[-1]
        return tail[:-4] if tail.endswith(".git") else tail

    @classmethod
    def parse(cls, value: str) -> "Source":
        """Parse ``url`` or ``url#ref``."""
        url, _, ref = value.partition("#")
        return cls(url=url.strip(), ref=ref.strip() or None)


@dataclass
class Task:
    name: str
    kind: str
    script: str = ""
    uses: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    directory: str | None = None


@dataclass
class Pipeline:
    tasks: list[Task]
    image: str | None = None
    packages: list[str] = field(default_factory=list)
    sources: list[Source] = field(default_factory=list)
    secrets: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)

    @property
    def task_names(self) -> list[str]:
        return [t.name for t in self.tasks]

    def get_task(self, name: str) -> Task | None:
        for task in self.tasks:
            if task.name == name:
                return task
        return None

    def default_directory(self) -> str | None:
        """The checkout tasks run in when they don't name one."""
        return self.sources[0].name if self.sources else None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "args": list(self.args),
            "returncode": self.returncode,
            "duration": round(self.duration, 3),
        }


@dataclass
class TaskResult:
    name: str
    status: str
    duration: float = 0.0
    commands: list[CommandResult] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "duration": round(self.duration, 3),
            "commands": [c.to_dict() for c in self.commands],
            "error": self.error,
        }


@dataclass
class RunReport:
    tasks: list[TaskResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return all(t.ok for t in self.tasks)

    def summary(self) -> dict[str, int]:
        counts = {STATUS_PASSED: 0, STATUS_FAILED: 0, STATUS_SKIPPED: 0}
        for t in self.tasks:
            counts[t.status] = counts.get(t.status, 0) + 1
        return counts

    def to_dict(self) -> dict:
        return {
            "report_type": "pipeline_run",
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
            "summary": self.summary(),
            "tasks": [t.to_dict() for t in self.tasks],
        }
