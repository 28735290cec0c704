"""Environment diagnostics for the `doctor` command."""

import shutil
from dataclasses import dataclass

from ci_runner.config import Settings
from ci_runner.models import TASK_BUILTIN, TASK_SCRIPT, Pipeline

CHECK_OK = "OK"
CHECK_FAIL = "FAIL"
CHECK_OPTIONAL = "OPTIONAL"

#: Executables each built-in shells out to
_BUILTIN_TOOLS: dict[str, tuple[str, ...]] = {
    "rust-setup": ("rustup",),
    "cargo-build": ("cargo",),
    "cargo-test": ("cargo",),
    "cargo-clippy": ("cargo",),
}


@dataclass
class Check:
    name: str
    status: str
    detail: str

    def to_dict(self) -> dict:
        return {"check": self.name, "status": self.status, "detail": self.detail}


def required_tools(pipeline: Pipeline) -> list[str]:
    """Executables the pipeline needs, in first-use order."""
    tools: list[str] = []
    if pipeline.sources:
        tools.append("git")
    for task in pipeline.tasks:
        if task.kind == TASK_SCRIPT:
            needed: tuple[str, ...] = ("bash",)
        elif task.kind == TASK_BUILTIN:
            needed = _BUILTIN_TOOLS.get(task.uses or "", ())
        else:
            needed = ()
        for tool in needed:
            if tool not in tools:
                tools.append(tool)
    return tools


def run_checks(pipeline: Pipeline, settings: Settings) -> list[Check]:
    checks: list[Check] = []

    for tool in required_tools(pipeline):
        path = shutil.which(tool)
        if path:
            checks.append(Check(f"tool: {tool}", CHECK_OK, path))
        else:
            checks.append(Check(f"tool: {tool}", CHECK_FAIL, "not found on PATH"))

    for package in pipeline.packages:
        found = shutil.which(package)
        checks.append(Check(
            f"package: {package}",
            CHECK_OK if found else CHECK_OPTIONAL,
            found or "no executable with this name; install it in the build image",
        ))

    if settings.credentials_path.is_file():
        checks.append(Check("credentials", CHECK_OK, str(settings.credentials_path)))
    else:
        checks.append(Check(
            "credentials",
            CHECK_OPTIONAL,
            f"{settings.credentials_path} missing -> coverage upload is skipped",
        ))

    for source in pipeline.sources:
        dest = settings.workdir / source.name
        checks.append(Check(
            f"checkout: {source.name}",
            CHECK_OK if dest.is_dir() else CHECK_OPTIONAL,
            str(dest) if dest.is_dir() else "not cloned yet -> run `checkout`",
        ))

    return checks
