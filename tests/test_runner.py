"""Tests for ci_runner/runner.py"""

import logging
import os
import sys

import pytest

from ci_runner.runner import (
    REDACTED,
    CommandFailedError,
    CommandRunner,
    ToolNotFoundError,
    WorkdirNotFoundError,
    redact,
)

PY = sys.executable


def _py(code: str) -> list[str]:
    return [PY, "-c", code]


# ---------------------------------------------------------------------------
# run()
# ---------------------------------------------------------------------------

def test_run_success_records_history():
    runner = CommandRunner()
    result = runner.run(_py("pass"))
    assert result.returncode == 0
    assert runner.history == [result]


def test_run_nonzero_raises_with_exit_code():
    runner = CommandRunner()
    with pytest.raises(CommandFailedError, match="status 3") as excinfo:
        runner.run(_py("import sys; sys.exit(3)"))
    assert excinfo.value.returncode == 3
    assert runner.history[-1].returncode == 3


def test_run_missing_tool_raises():
    with pytest.raises(ToolNotFoundError, match="no-such-tool-xyz"):
        CommandRunner().run(["no-such-tool-xyz", "--version"])


def test_run_uses_cwd_and_env(tmp_path):
    env = {**os.environ, "MARKER": "from-env"}
    code = "import os, pathlib; pathlib.Path('out.txt').write_text(os.environ['MARKER'])"
    CommandRunner().run(_py(code), cwd=tmp_path, env=env)
    assert (tmp_path / "out.txt").read_text() == "from-env"


def test_dry_run_does_not_execute(tmp_path):
    runner = CommandRunner(dry_run=True)
    code = "import pathlib; pathlib.Path('out.txt').write_text('x')"
    result = runner.run(_py(code), cwd=tmp_path)
    assert result.returncode == 0
    assert not (tmp_path / "out.txt").exists()
    assert runner.history[0].args == _py(code)


# ---------------------------------------------------------------------------
# Secret redaction
# ---------------------------------------------------------------------------

def test_redact_replaces_each_secret():
    assert redact("a tok b tok", ["tok"]) == f"a {REDACTED} b {REDACTED}"
    assert redact("nothing here", [""]) == "nothing here"


def test_logged_command_is_redacted(caplog):
    caplog.set_level(logging.INFO, logger="ci_runner.runner")
    CommandRunner(dry_run=True).run(["upload", "--token", "s3cr3t"], secrets=["s3cr3t"])
    assert "s3cr3t" not in caplog.text
    assert REDACTED in caplog.text


def test_failure_message_is_redacted():
    with pytest.raises(CommandFailedError) as excinfo:
        CommandRunner().run(_py("import sys; sys.exit(1)") + ["s3cr3t"], secrets=["s3cr3t"])
    assert "s3cr3t" not in str(excinfo.value)


# ---------------------------------------------------------------------------
# capture()
# ---------------------------------------------------------------------------

def test_capture_returns_stripped_stdout():
    assert CommandRunner().capture(_py("print('  abc  ')")) == "abc"


def test_capture_swallows_failure_and_missing_tool():
    runner = CommandRunner()
    assert runner.capture(_py("import sys; sys.exit(2)")) == ""
    assert runner.capture(["no-such-tool-xyz"]) == ""
    assert runner.history == []


def test_capture_in_dry_run_is_empty():
    assert CommandRunner(dry_run=True).capture(_py("print('abc')")) == ""


# ---------------------------------------------------------------------------
# run_script()
# ---------------------------------------------------------------------------

def test_run_script_uses_fail_fast_bash():
    runner = CommandRunner(dry_run=True)
    runner.run_script("cd repo\ncargo build")
    assert runner.history[0].args == ["bash", "-e", "-x", "-c", "cd repo\ncargo build"]


def test_missing_cwd_is_reported_as_such(tmp_path):
    missing = tmp_path / "no-checkout"
    with pytest.raises(WorkdirNotFoundError, match="Working directory .* does not exist") as excinfo:
        CommandRunner().run(_py("pass"), cwd=missing)
    assert not isinstance(excinfo.value, ToolNotFoundError)
    assert "PATH" not in str(excinfo.value)
