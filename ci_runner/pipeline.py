"""Pipeline orchestration: checkout, then tasks in descriptor order.

Usage:
    runner = PipelineRunner(pipeline, settings)
    runner.checkout()
    report = runner.run(["build", "test"])   # RunReport
"""

import logging
import os
import time
from datetime import datetime, timezone

from ci_runner.codecov import CodecovError
from ci_runner.config import Settings, select_tasks
from ci_runner.context import TaskContext
from ci_runner.coverage import CoverageError
from ci_runner.models import (
    STATUS_FAILED,
    STATUS_PASSED,
    STATUS_SKIPPED,
    TASK_BUILTIN,
    Pipeline,
    RunReport,
    Source,
    Task,
    TaskResult,
)
from ci_runner.runner import CommandRunner, RunnerError, WorkdirNotFoundError
from ci_runner.tasks import BUILTINS
from ci_runner.tasks.rust import DownloadError

logger = logging.getLogger(__name__)


class PipelineRunner:
    """Executes a parsed descriptor against a workspace directory."""

    def __init__(
        self,
        pipeline: Pipeline,
        settings: Settings,
        runner: CommandRunner | None = None,
        environ: dict[str, str] | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.settings = settings
        self.runner = runner or CommandRunner(dry_run=settings.dry_run)
        self._environ = dict(os.environ if environ is None else environ)

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def task_environment(self) -> dict[str, str]:
        """Process environment overlaid with the descriptor's variables."""
        return {**self._environ, **self.pipeline.environment}

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def checkout(self) -> list[str]:
        """Clone every source that isn't already in the workspace.

        Returns the names of the sources that were cloned.
        """
        self.settings.workdir.mkdir(parents=True, exist_ok=True)
        cloned: list[str] = []
        for source in self.pipeline.sources:
            dest = self.settings.workdir / source.name
            if dest.exists():
                logger.info("Source '%s' already checked out at %s", source.name, dest)
                continue
            self._clone(source)
            cloned.append(source.name)
        return cloned

    def _clone(self, source: Source) -> None:
        env = self.task_environment()
        self.runner.run(["git", "clone", source.url, source.name], cwd=self.settings.workdir, env=env)
        if source.ref:
            self.runner.run(
                ["git", "checkout", "-q", source.ref],
                cwd=self.settings.workdir / source.name,
                env=env,
            )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def run(self, names: list[str] | tuple[str, ...] = ()) -> RunReport:
        """Run the selected tasks sequentially.

        The first failure stops the run and the remaining tasks are reported
        as skipped, unless ``settings.keep_going`` is set.

        Raises:
            UnknownTaskError: before anything runs, if a name is not declared.
        """
        tasks = select_tasks(self.pipeline, names)
        report = RunReport()
        failed = False

        if self.pipeline.image:
            logger.debug("Descriptor image: %s", self.pipeline.image)

        for task in tasks:
            if failed and not self.settings.keep_going:
                logger.info("Skipping task '%s'", task.name)
                report.tasks.append(TaskResult(name=task.name, status=STATUS_SKIPPED))
                continue
            result = self.run_task(task)
            report.tasks.append(result)
            failed = failed or not result.ok

        report.finished_at = datetime.now(timezone.utc)
        return report

    def run_task(self, task: Task) -> TaskResult:
        """Run one task and capture its outcome; never raises for task failures."""
        logger.info("==> %s", task.name)
        ctx = self._context(task)
        first_command = len(self.runner.history)
        start = time.monotonic()
        error: str | None = None

        try:
            if task.kind == TASK_BUILTIN:
                if not self.runner.dry_run and not ctx.cwd.is_dir():
                    raise WorkdirNotFoundError(
                        f"Checkout '{ctx.cwd}' is missing, run `checkout` first"
                    )
                BUILTINS[task.uses](ctx, task.options)
            else:
                self.runner.run_script(task.script, cwd=ctx.cwd, env=ctx.env, secrets=ctx.secrets)
        except (RunnerError, CoverageError, CodecovError, DownloadError) as exc:
            error = str(exc)
            logger.error("Task '%s' failed: %s", task.name, error)

        return TaskResult(
            name=task.name,
            status=STATUS_FAILED if error else STATUS_PASSED,
            duration=time.monotonic() - start,
            commands=list(self.runner.history[first_command:]),
            error=error,
        )

    def _context(self, task: Task) -> TaskContext:
        directory = task.directory
        if directory is None and task.kind == TASK_BUILTIN:
            directory = self.pipeline.default_directory()
        cwd = self.settings.workdir / directory if directory else self.settings.workdir

        source = None
        for candidate in self.pipeline.sources:
            if candidate.name == directory:
                source = candidate
                break

        return TaskContext(
            name=task.name,
            cwd=cwd,
            env=self.task_environment(),
            runner=self.runner,
            credentials_path=self.settings.credentials_path,
            source=source,
        )
