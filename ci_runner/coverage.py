"""Coverage report generation and upload.

Functions:
    load_credentials(path)      -> dict | None
    ci_environment(environ)     -> dict
    generate_lcov(ctx)          -> Path
    upload_params(ctx, ci_env)  -> dict
    collect_and_upload(ctx)     -> str | None

The whole block is gated on the credentials file: no file, no report and
no upload.
"""

import logging
import os
import shlex
import warnings
from collections.abc import Mapping
from pathlib import Path

from ci_runner.codecov import DEFAULT_URL, CodecovClient
from ci_runner.context import TaskContext

logger = logging.getLogger(__name__)

LCOV_REPORT = "lcov.info"
TOKEN_VARIABLE = "CODECOV_TOKEN"
URL_VARIABLE = "CODECOV_URL"
BRANCH_PREFIX = "refs/heads/"

#: grcov invocation; paths are relative to the checkout
GRCOV_ARGS: list[str] = [
    "./grcov", ".",
    "--binary-path", "./target/debug/",
    "-s", ".",
    "-t", "lcov",
    "--branch",
    "--ignore-not-existing",
    "--ignore", "/*",
    "-o", LCOV_REPORT,
]


class CoverageError(Exception):
    """Raised when coverage can't be collected or the credentials are unusable."""


# --------------------------------------------------------------------------- #
# Credentials
# --------------------------------------------------------------------------- #

def load_credentials(path: Path | str) -> dict[str, str] | None:
    """Read ``KEY=value`` bindings from a shell credentials file.

    Returns None when the file does not exist. Accepts ``export`` prefixes,
    quoted values and comments; anything else is ignored.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        return None

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise CoverageError(f"{path}: cannot read credentials: {exc}") from exc

    bindings: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            words = shlex.split(stripped, comments=True)
        except ValueError as exc:
            raise CoverageError(f"{path}:{lineno}: cannot parse line: {exc}") from exc
        if words and words[0] == "export":
            words = words[1:]
        for word in words:
            key, sep, value = word.partition("=")
            if sep and key.isidentifier():
                bindings[key] = value

    if not bindings:
        warnings.warn(
            f"Credentials file '{path}' exists but defines no variables.",
            UserWarning,
            stacklevel=2,
        )
    return bindings


# --------------------------------------------------------------------------- #
# CI identifiers
# --------------------------------------------------------------------------- #

def branch_name(ref: str) -> str:
    """``refs/heads/main`` -> ``main``; other refs are returned unchanged."""
    return ref[len(BRANCH_PREFIX):] if ref.startswith(BRANCH_PREFIX) else ref


def ci_environment(environ: Mapping[str, str]) -> dict[str, str]:
    """Map the CI runner's job variables onto the uploader's names."""
    job_url = environ.get("JOB_URL", "")
    job_id = environ.get("JOB_ID", "")
    return {
        "CI_BUILD_URL": job_url,
        "CI_BUILD_ID": job_id,
        "CI_JOB_ID": job_id,
        "VCS_BRANCH_NAME": branch_name(environ.get("GITHUB_REF", "")),
        "VCS_PULL_REQUEST": environ.get("GITHUB_PR_NUMBER", ""),
    }


def _slug(ctx: TaskContext) -> str:
    slug = ctx.env.get("VCS_SLUG") or ctx.env.get("GITHUB_REPOSITORY")
    if slug:
        return slug
    if ctx.source is None:
        return ""
    parts = ctx.source.url.rstrip("/").replace(":", "/").split("/")
    if len(parts) < 2:
        return ""
    repo = parts[-1][:-4] if parts[-1].endswith(".git") else parts[-1]
    return f"{parts[-2]}/{repo}"


def upload_params(ctx: TaskContext, ci_env: Mapping[str, str]) -> dict[str, str]:
    """Query parameters for the upload request."""
    commit = ctx.env.get("VCS_COMMIT_ID") or ctx.capture(["git", "rev-parse", "HEAD"])
    return {
        "commit": commit,
        "branch": ci_env["VCS_BRANCH_NAME"],
        "build": ci_env["CI_BUILD_ID"],
        "build_url": ci_env["CI_BUILD_URL"],
        "job": ci_env["CI_JOB_ID"],
        "pr": ci_env["VCS_PULL_REQUEST"],
        "slug": _slug(ctx),
        "service": "custom",
    }


# --------------------------------------------------------------------------- #
# Report + upload
# --------------------------------------------------------------------------- #

def generate_lcov(ctx: TaskContext) -> Path:
    """Run grcov in the checkout and return the lcov report path."""
    ctx.run(GRCOV_ARGS)
    return ctx.cwd / LCOV_REPORT


def collect_and_upload(ctx: TaskContext, client: CodecovClient | None = None) -> str | None:
    """Produce and upload a coverage report if the credentials file exists.

    Returns the Codecov result URL, or None when the block was skipped.
    """
    credentials = load_credentials(ctx.credentials_path)
    if credentials is None:
        logger.info("No credentials at %s, skipping coverage upload", ctx.credentials_path)
        return None

    # Credential values must never reach the log
    ctx.secrets.extend(v for v in credentials.values() if v)
    ctx.env.update(credentials)

    report = generate_lcov(ctx)

    token = credentials.get(TOKEN_VARIABLE) or os.environ.get(TOKEN_VARIABLE, "")
    if not token:
        raise CoverageError(
            f"{ctx.credentials_path} does not define {TOKEN_VARIABLE}"
        )

    ci_env = ci_environment(ctx.env)
    ctx.env.update(ci_env)
    params = upload_params(ctx, ci_env)

    if ctx.dry_run:
        logger.info("Dry run: would upload %s (branch=%r, pr=%r)", report, params["branch"], params["pr"])
        return None

    if not report.is_file():
        raise CoverageError(f"grcov did not produce {report}")

    if client is None:
        client = CodecovClient(token=token, url=ctx.env.get(URL_VARIABLE) or DEFAULT_URL)
    result_url = client.upload(report, params)
    logger.info("Coverage uploaded: %s", result_url)
    return result_url
