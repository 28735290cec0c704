"""Descriptor loading and validation.

Usage:
    pipeline = load(".build.yml")            # raises ConfigError on bad descriptor
    settings = Settings.resolve(workdir=None) # runner options + env overrides
    generate_template(".build.yml")          # writes example descriptor to disk
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from ci_runner.models import TASK_BUILTIN, TASK_SCRIPT, Pipeline, Source, Task

DEFAULT_DESCRIPTOR = ".build.yml"
DEFAULT_CREDENTIALS = "~/.code-cov"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigError(Exception):
    """Raised when the descriptor is missing or invalid."""


class UnknownTaskError(ConfigError):
    """Raised when a requested task is not declared in the descriptor."""


# ---------------------------------------------------------------------------
# Runner settings
# ---------------------------------------------------------------------------

@dataclass
class Settings:
    workdir: Path
    credentials_path: Path
    dry_run: bool = False
    keep_going: bool = False

    @classmethod
    def resolve(
        cls,
        workdir: str | None = None,
        credentials: str | None = None,
        dry_run: bool = False,
        keep_going: bool = False,
    ) -> "Settings":
        """Build settings from CLI values, falling back to the environment.

        CI_RUNNER_WORKDIR and CI_RUNNER_CREDENTIALS are used when the
        corresponding option is not given.
        """
        root = workdir or os.environ.get("CI_RUNNER_WORKDIR") or os.getcwd()
        creds = credentials or os.environ.get("CI_RUNNER_CREDENTIALS") or DEFAULT_CREDENTIALS
        return cls(
            workdir=Path(root).expanduser().resolve(),
            credentials_path=Path(creds).expanduser(),
            dry_run=dry_run,
            keep_going=keep_going,
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load(config_path: str = DEFAULT_DESCRIPTOR) -> Pipeline:
    """Load and validate a pipeline descriptor from a YAML file.

    Raises:
        ConfigError: if the file is missing, malformed, or declares no
                     usable tasks.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(
            f"Descriptor not found: '{config_path}'\n"
            "Run `python -m ci_runner init` to generate a template."
        )

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse '{config_path}': {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"'{config_path}' must be a YAML mapping at the top level.")

    return parse(raw)


def parse(raw: dict[str, Any]) -> Pipeline:
    """Turn an already-decoded descriptor mapping into a Pipeline."""
    environment = raw.get("environment") or {}
    if not isinstance(environment, dict):
        raise ConfigError("'environment' must be a mapping of variable names to values.")

    pipeline = Pipeline(
        tasks=[_parse_task(entry) for entry in _as_list(raw.get("tasks"), "tasks")],
        image=raw.get("image"),
        packages=[str(p) for p in _as_list(raw.get("packages"), "packages")],
        sources=[Source.parse(str(s)) for s in _as_list(raw.get("sources"), "sources")],
        secrets=[str(s) for s in _as_list(raw.get("secrets"), "secrets")],
        environment={str(k): "" if v is None else str(v) for k, v in environment.items()},
    )
    _validate(pipeline)
    return pipeline


def _as_list(value: Any, key: str) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list.")
    return value


def _parse_task(entry: Any) -> Task:
    """Parse one ``- name: <script | mapping>`` entry."""
    if not isinstance(entry, dict) or len(entry) != 1:
        raise ConfigError(
            f"Each task must be a single-key mapping 'name: script', got: {entry!r}"
        )
    name, body = next(iter(entry.items()))
    name = str(name)

    if isinstance(body, str):
        return Task(name=name, kind=TASK_SCRIPT, script=body)

    if isinstance(body, dict):
        if "script" in body:
            return Task(
                name=name,
                kind=TASK_SCRIPT,
                script=str(body["script"]),
                directory=body.get("directory"),
            )
        if "uses" in body:
            options = body.get("with") or {}
            if not isinstance(options, dict):
                raise ConfigError(f"Task '{name}': 'with' must be a mapping.")
            return Task(
                name=name,
                kind=TASK_BUILTIN,
                uses=str(body["uses"]),
                options=dict(options),
                directory=body.get("directory"),
            )

    raise ConfigError(
        f"Task '{name}' must be a shell script or a mapping with 'uses' or 'script'."
    )


def _validate(pipeline: Pipeline) -> None:
    """Raise ConfigError if the descriptor can't be run."""
    from ci_runner.tasks import BUILTINS

    errors: list[str] = []

    if not pipeline.tasks:
        errors.append("  - 'tasks' is empty; declare at least one task")

    seen: set[str] = set()
    for task in pipeline.tasks:
        if task.name in seen:
            errors.append(f"  - task '{task.name}' is declared more than once")
        seen.add(task.name)
        if task.kind == TASK_BUILTIN and task.uses not in BUILTINS:
            available = ", ".join(sorted(BUILTINS))
            errors.append(
                f"  - task '{task.name}' uses unknown built-in '{task.uses}' (available: {available})"
            )
        if task.kind == TASK_BUILTIN and not task.directory and not pipeline.sources:
            errors.append(
                f"  - task '{task.name}' has no 'directory' and no 'sources' are declared"
            )

    if errors:
        raise ConfigError("Invalid descriptor:\n" + "\n".join(errors))


def select_tasks(pipeline: Pipeline, names: list[str] | tuple[str, ...]) -> list[Task]:
    """Return the requested tasks in descriptor order (all tasks when *names* is empty).

    Raises:
        UnknownTaskError: if any name is not declared.
    """
    if not names:
        return list(pipeline.tasks)
    unknown = [n for n in names if pipeline.get_task(n) is None]
    if unknown:
        available = ", ".join(pipeline.task_names)
        raise UnknownTaskError(
            f"Unknown task(s): {', '.join(unknown)}. Available tasks: {available}"
        )
    wanted = set(names)
    return [t for t in pipeline.tasks if t.name in wanted]


# ---------------------------------------------------------------------------
# Template generator (used by `init` command)
# ---------------------------------------------------------------------------

TEMPLATE = """\
image: archlinux
packages:
  - rustup
sources:
  - https://github.com/Austin-Ray/recipe-book-backend
secrets:
  - 05c3a841-4367-4f6f-bd8a-79a4659554e7   # provides ~/.code-cov (CODECOV_TOKEN=...)
environment:
  RUSTFLAGS: -Zinstrument-coverage
  LLVM_PROFILE_FILE: "your_name-%p-%m.profraw"
tasks:
  - setup:
      uses: rust-setup
      with:
        channel: nightly
        components: [llvm-tools-preview]
  - build:
      uses: cargo-build
  - test:
      uses: cargo-test
  - qa:
      uses: cargo-clippy
"""


def generate_template(output_path: str = DEFAULT_DESCRIPTOR) -> None:
    """Write a template .build.yml to *output_path*.

    Raises:
        ConfigError: if the file already exists.
    """
    path = Path(output_path)
    if path.exists():
        raise ConfigError(
            f"'{output_path}' already exists. Remove it first or choose a different path."
        )
    path.write_text(TEMPLATE, encoding="utf-8")
