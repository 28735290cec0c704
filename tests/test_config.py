"""Tests for ci_runner/config.py"""

import textwrap
from pathlib import Path

import pytest

from ci_runner.config import (
    ConfigError,
    Settings,
    UnknownTaskError,
    generate_template,
    load,
    parse,
    select_tasks,
)
from ci_runner.models import TASK_BUILTIN, TASK_SCRIPT


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_descriptor(tmp_path: Path, content: str) -> Path:
    p = tmp_path / ".build.yml"
    p.write_text(textwrap.dedent(content), encoding="utf-8")
    return p


SCRIPT_YAML = """\
    image: archlinux
    packages:
      - rustup
    sources:
      - https://github.com/Austin-Ray/recipe-book-backend
    secrets:
      - 05c3a841-4367-4f6f-bd8a-79a4659554e7
    environment:
      RUSTFLAGS: -Zinstrument-coverage
      LLVM_PROFILE_FILE: "your_name-%p-%m.profraw"
    tasks:
      - build: |
          cd recipe-book-backend
          cargo build --verbose
      - qa: |
          cd recipe-book-backend
          cargo clippy -- -D warnings
    """


# ---------------------------------------------------------------------------
# load() - happy path
# ---------------------------------------------------------------------------

def test_load_script_descriptor(tmp_path):
    p = write_descriptor(tmp_path, SCRIPT_YAML)
    pipeline = load(str(p))
    assert pipeline.image == "archlinux"
    assert pipeline.packages == ["rustup"]
    assert pipeline.task_names == ["build", "qa"]
    assert pipeline.tasks[0].kind == TASK_SCRIPT
    assert "cargo build --verbose" in pipeline.tasks[0].script
    assert pipeline.environment == {
        "RUSTFLAGS": "-Zinstrument-coverage",
        "LLVM_PROFILE_FILE": "your_name-%p-%m.profraw",
    }


def test_source_name_derived_from_url(tmp_path):
    pipeline = load(str(write_descriptor(tmp_path, SCRIPT_YAML)))
    assert pipeline.sources[0].name == "recipe-book-backend"
    assert pipeline.default_directory() == "recipe-book-backend"


def test_source_ref_suffix():
    pipeline = parse({
        "sources": ["git@example.com:team/app.git#v1.2"],
        "tasks": [{"build": {"uses": "cargo-build"}}],
    })
    source = pipeline.sources[0]
    assert source.url == "git@example.com:team/app.git"
    assert source.ref == "v1.2"
    assert source.name == "app"


def test_builtin_task_with_options():
    pipeline = parse({
        "sources": ["https://example.com/app"],
        "tasks": [{"setup": {"uses": "rust-setup", "with": {"channel": "beta"}}}],
    })
    task = pipeline.tasks[0]
    assert task.kind == TASK_BUILTIN
    assert task.uses == "rust-setup"
    assert task.options == {"channel": "beta"}


def test_template_round_trips_through_loader(tmp_path):
    out = tmp_path / ".build.yml"
    generate_template(str(out))
    pipeline = load(str(out))
    assert pipeline.task_names == ["setup", "build", "test", "qa"]
    assert [t.uses for t in pipeline.tasks] == ["rust-setup", "cargo-build", "cargo-test", "cargo-clippy"]


# ---------------------------------------------------------------------------
# load() - invalid descriptors
# ---------------------------------------------------------------------------

def test_load_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load(str(tmp_path / "no-such-file.yml"))


def test_load_malformed_yaml(tmp_path):
    p = write_descriptor(tmp_path, "tasks: [unclosed\n")
    with pytest.raises(ConfigError, match="Failed to parse"):
        load(str(p))


def test_load_top_level_must_be_mapping(tmp_path):
    p = write_descriptor(tmp_path, "- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping"):
        load(str(p))


def test_no_tasks_rejected():
    with pytest.raises(ConfigError, match="tasks"):
        parse({"image": "archlinux"})


def test_duplicate_task_names_rejected():
    with pytest.raises(ConfigError, match="more than once"):
        parse({"tasks": [{"build": "make"}, {"build": "make again"}]})


def test_unknown_builtin_rejected():
    with pytest.raises(ConfigError, match="unknown built-in 'cargo-fly'"):
        parse({"sources": ["https://example.com/app"], "tasks": [{"x": {"uses": "cargo-fly"}}]})


def test_builtin_without_directory_or_sources_rejected():
    with pytest.raises(ConfigError, match="no 'directory'"):
        parse({"tasks": [{"build": {"uses": "cargo-build"}}]})


def test_task_entry_must_be_single_key_mapping():
    with pytest.raises(ConfigError, match="single-key"):
        parse({"tasks": ["cargo build"]})


def test_environment_must_be_mapping():
    with pytest.raises(ConfigError, match="environment"):
        parse({"environment": ["A=1"], "tasks": [{"build": "make"}]})


# ---------------------------------------------------------------------------
# select_tasks()
# ---------------------------------------------------------------------------

def test_select_keeps_descriptor_order(tmp_path):
    pipeline = load(str(write_descriptor(tmp_path, SCRIPT_YAML)))
    assert [t.name for t in select_tasks(pipeline, ("qa", "build"))] == ["build", "qa"]


def test_select_all_when_empty(tmp_path):
    pipeline = load(str(write_descriptor(tmp_path, SCRIPT_YAML)))
    assert [t.name for t in select_tasks(pipeline, ())] == ["build", "qa"]


def test_select_unknown_raises(tmp_path):
    pipeline = load(str(write_descriptor(tmp_path, SCRIPT_YAML)))
    with pytest.raises(UnknownTaskError, match="deploy"):
        select_tasks(pipeline, ("build", "deploy"))


# ---------------------------------------------------------------------------
# Settings - environment variable overrides
# ---------------------------------------------------------------------------

def test_settings_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("CI_RUNNER_WORKDIR", raising=False)
    monkeypatch.delenv("CI_RUNNER_CREDENTIALS", raising=False)
    monkeypatch.chdir(tmp_path)
    settings = Settings.resolve()
    assert settings.workdir == tmp_path.resolve()
    assert settings.credentials_path == Path("~/.code-cov").expanduser()


def test_settings_env_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("CI_RUNNER_WORKDIR", str(tmp_path))
    monkeypatch.setenv("CI_RUNNER_CREDENTIALS", str(tmp_path / "creds"))
    settings = Settings.resolve()
    assert settings.workdir == tmp_path.resolve()
    assert settings.credentials_path == tmp_path / "creds"


def test_settings_cli_values_beat_env(tmp_path, monkeypatch):
    monkeypatch.setenv("CI_RUNNER_WORKDIR", "/nowhere")
    settings = Settings.resolve(workdir=str(tmp_path))
    assert settings.workdir == tmp_path.resolve()


# ---------------------------------------------------------------------------
# generate_template()
# ---------------------------------------------------------------------------

def test_generate_template_creates_file(tmp_path):
    out = tmp_path / ".build.yml"
    generate_template(str(out))
    content = out.read_text()
    assert "tasks:" in content
    assert "RUSTFLAGS" in content


def test_generate_template_refuses_to_overwrite(tmp_path):
    out = tmp_path / ".build.yml"
    out.write_text("existing content")
    with pytest.raises(ConfigError, match="already exists"):
        generate_template(str(out))
