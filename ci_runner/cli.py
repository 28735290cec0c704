"""CLI entry point: command definitions using Click.

Commands:
    init          Generate a template .build.yml
    list          Show the declared tasks
    checkout      Clone the descriptor's sources into the workspace
    run           Run all (or the named) tasks in order
    setup/build/test/qa
                  Shortcuts for `run <task>`
    env           Show the CI identifiers handed to the coverage uploader
    doctor        Check that the tools the pipeline needs are available
"""

import functools
import json
import logging
import os
import sys
from typing import Any

import click

from ci_runner import __version__


# ---------------------------------------------------------------------------
# Helpers shared by all commands
# ---------------------------------------------------------------------------

def _load(ctx: click.Context):
    """Load the descriptor and settings. Exits on configuration errors."""
    from ci_runner.config import ConfigError, Settings, load

    obj = ctx.obj
    try:
        pipeline = load(obj["config_path"])
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    settings = Settings.resolve(
        workdir=obj["workdir"],
        credentials=obj["credentials"],
        dry_run=obj["dry_run"],
    )
    if obj["verbose"]:
        click.echo(f"[verbose] Workspace: {settings.workdir}", err=True)
    return pipeline, settings


def _emit_json(data: Any, ctx: click.Context) -> None:
    """Write JSON to stdout or to the file specified by --output."""
    obj = ctx.obj
    indent = 2 if obj["pretty"] else None
    text = json.dumps(data, indent=indent, ensure_ascii=False)

    output_path: str | None = obj["output_path"]
    if output_path:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Report written to '{output_path}'", err=True)
    else:
        click.echo(text)


def _handle_errors(func):
    """Decorator that turns runner exceptions into a message and exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        from ci_runner.config import ConfigError, UnknownTaskError
        from ci_runner.runner import CommandFailedError, RunnerError, ToolNotFoundError

        try:
            return func(*args, **kwargs)
        except UnknownTaskError as exc:
            click.echo(f"Task error: {exc}", err=True)
            sys.exit(1)
        except ConfigError as exc:
            click.echo(f"Configuration error: {exc}", err=True)
            sys.exit(1)
        except ToolNotFoundError as exc:
            click.echo(f"Missing tool: {exc}", err=True)
            sys.exit(1)
        except CommandFailedError as exc:
            click.echo(f"Command failed: {exc}", err=True)
            sys.exit(1)
        except RunnerError as exc:
            click.echo(f"Runner error: {exc}", err=True)
            sys.exit(1)

    return wrapper


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(stream=sys.stderr, format="%(message)s")
    logging.getLogger("ci_runner").setLevel(logging.DEBUG if verbose else logging.INFO)


def _run_tasks(ctx: click.Context, names: tuple[str, ...], checkout: bool, keep_going: bool) -> None:
    from ci_runner.models import STATUS_FAILED
    from ci_runner.pipeline import PipelineRunner

    pipeline, settings = _load(ctx)
    settings.keep_going = keep_going
    runner = PipelineRunner(pipeline, settings)

    if checkout:
        runner.checkout()

    report = runner.run(names)
    _emit_json(report.to_dict(), ctx)

    if not report.success:
        failed = [t for t in report.tasks if t.status == STATUS_FAILED]
        for task in failed:
            click.echo(f"Task '{task.name}' failed: {task.error}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "config_path", default=".build.yml", show_default=True,
              help="Path to the pipeline descriptor.")
@click.option("--workdir", default=None,
              help="Workspace root the sources are cloned into (default: $CI_RUNNER_WORKDIR or cwd).")
@click.option("--credentials", default=None,
              help="Coverage credentials file (default: $CI_RUNNER_CREDENTIALS or ~/.code-cov).")
@click.option("--output", "output_path", default=None,
              help="Write the JSON report to a file instead of stdout.")
@click.option("--pretty", is_flag=True, default=False,
              help="Pretty-print the JSON output.")
@click.option("--dry-run", is_flag=True, default=False,
              help="Print the commands without running them.")
@click.option("--verbose", is_flag=True, default=False,
              help="Enable verbose logging.")
@click.version_option(__version__, prog_name="ci-runner")
@click.pass_context
def cli(ctx: click.Context, config_path: str, workdir: str | None, credentials: str | None,
        output_path: str | None, pretty: bool, dry_run: bool, verbose: bool) -> None:
    """Run a .build.yml pipeline: setup, build, test (with coverage) and qa."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["workdir"] = workdir
    ctx.obj["credentials"] = credentials
    ctx.obj["output_path"] = output_path
    ctx.obj["pretty"] = pretty
    ctx.obj["dry_run"] = dry_run
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

@cli.command("init")
@click.option("--output", "output_path", default=".build.yml", show_default=True,
              help="Path where the template descriptor will be written.")
def init_command(output_path: str) -> None:
    """Generate a template .build.yml file."""
    from ci_runner.config import ConfigError, generate_template
    try:
        generate_template(output_path)
        click.echo(f"Template written to '{output_path}'.")
        click.echo("Edit its sources and tasks to match your project.")
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# list
# ---------------------------------------------------------------------------

@cli.command("list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """Show the tasks declared in the descriptor, in run order."""
    pipeline, _ = _load(ctx)
    for task in pipeline.tasks:
        kind = f"uses {task.uses}" if task.uses else "script"
        click.echo(f"{task.name}\t{kind}")


# ---------------------------------------------------------------------------
# checkout
# ---------------------------------------------------------------------------

@cli.command("checkout")
@click.pass_context
@_handle_errors
def checkout_command(ctx: click.Context) -> None:
    """Clone the descriptor's sources (existing checkouts are left alone)."""
    from ci_runner.pipeline import PipelineRunner

    pipeline, settings = _load(ctx)
    cloned = PipelineRunner(pipeline, settings).checkout()
    if cloned:
        click.echo(f"Cloned: {', '.join(cloned)}", err=True)
    else:
        click.echo("Nothing to clone.", err=True)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

@cli.command("run")
@click.argument("tasks", nargs=-1)
@click.option("--keep-going", is_flag=True, default=False,
              help="Run the remaining tasks after a failure.")
@click.option("--no-checkout", is_flag=True, default=False,
              help="Don't clone missing sources first.")
@click.pass_context
@_handle_errors
def run_command(ctx: click.Context, tasks: tuple[str, ...], keep_going: bool, no_checkout: bool) -> None:
    """Run TASKS (all declared tasks when none are given) in descriptor order."""
    _run_tasks(ctx, tasks, checkout=not no_checkout, keep_going=keep_going)


def _shortcut(task_name: str, help_text: str) -> None:
    @cli.command(task_name, help=help_text)
    @click.option("--no-checkout", is_flag=True, default=False,
                  help="Don't clone missing sources first.")
    @click.pass_context
    @_handle_errors
    def command(ctx: click.Context, no_checkout: bool) -> None:
        _run_tasks(ctx, (task_name,), checkout=not no_checkout, keep_going=False)


_shortcut("setup", "Run the 'setup' task (install grcov, select the toolchain).")
_shortcut("build", "Run the 'build' task.")
_shortcut("test", "Run the 'test' task (uploads coverage when credentials exist).")
_shortcut("qa", "Run the 'qa' task (lint gate).")


# ---------------------------------------------------------------------------
# env
# ---------------------------------------------------------------------------

@cli.command("env")
@click.pass_context
def env_command(ctx: click.Context) -> None:
    """Show the CI identifiers the coverage upload would use."""
    from ci_runner.coverage import ci_environment

    _emit_json(ci_environment(os.environ), ctx)


# ---------------------------------------------------------------------------
# doctor
# ---------------------------------------------------------------------------

@cli.command("doctor")
@click.pass_context
def doctor_command(ctx: click.Context) -> None:
    """Check tools, credentials and checkouts; exit 1 if a required tool is missing."""
    from ci_runner.doctor import CHECK_FAIL, run_checks

    pipeline, settings = _load(ctx)
    checks = run_checks(pipeline, settings)
    _emit_json([c.to_dict() for c in checks], ctx)
    if any(c.status == CHECK_FAIL for c in checks):
        sys.exit(1)
