"""Rust toolchain tasks: setup, build, test, clippy.

Options accepted under ``with:`` in the descriptor:

    rust-setup    channel (nightly), components ([llvm-tools-preview]),
                  grcov_url, force_download (false)
    cargo-build   release (false), args ([])
    cargo-test    release (false), args ([]), coverage (true)
    cargo-clippy  lint_args (["-D", "warnings"]), args ([])
"""

import logging
import stat
import tarfile
from pathlib import Path
from typing import Any

import requests

from ci_runner.context import TaskContext
from ci_runner.coverage import collect_and_upload

logger = logging.getLogger(__name__)

GRCOV_URL = "https://github.com/mozilla/grcov/releases/latest/download/grcov-linux-x86_64.tar.bz2"
GRCOV_BINARY = "grcov"
DEFAULT_CHANNEL = "nightly"
DEFAULT_COMPONENTS = ("llvm-tools-preview",)
DEFAULT_LINT_ARGS = ("-D", "warnings")


class DownloadError(Exception):
    """Raised when a tool archive can't be fetched or unpacked."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _list_option(options: dict[str, Any], key: str, default=()) -> list[str]:
    value = options.get(key, default)
    if isinstance(value, str):
        return value.split()
    return [str(v) for v in value]


def _cargo_args(command: str, options: dict[str, Any]) -> list[str]:
    args = ["cargo", command, "--verbose"]
    if options.get("release"):
        args.append("--release")
    args.extend(_list_option(options, "args"))
    return args


def download_grcov(dest_dir: Path, url: str = GRCOV_URL, timeout: int = 60) -> Path:
    """Fetch the grcov release tarball and unpack the binary into *dest_dir*.

    Raises:
        DownloadError: network failure, non-2xx response, no grcov
                       binary inside the archive, or an unwritable
                       destination.
    """
    target = Path(dest_dir) / GRCOV_BINARY
    logger.info("Downloading grcov from %s", url)
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            if not response.ok:
                raise DownloadError(
                    f"Unexpected response {response.status_code} while downloading {url}"
                )
            response.raw.decode_content = True
            with tarfile.open(fileobj=response.raw, mode="r|bz2") as archive:
                for member in archive:
                    if member.isfile() and Path(member.name).name == GRCOV_BINARY:
                        extracted = archive.extractfile(member)
                        target.write_bytes(extracted.read())
                        break
                else:
                    raise DownloadError(f"No '{GRCOV_BINARY}' binary inside {url}")
    except requests.exceptions.RequestException as exc:
        raise DownloadError(f"Unable to download {url}: {exc}") from exc
    except tarfile.TarError as exc:
        raise DownloadError(f"Corrupt archive from {url}: {exc}") from exc
    except OSError as exc:
        raise DownloadError(f"Unable to write {target}: {exc}") from exc

    try:
        mode = target.stat().st_mode
        target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    except OSError as exc:
        raise DownloadError(f"Unable to make {target} executable: {exc}") from exc
    return target


# ---------------------------------------------------------------------------
# Built-ins
# ---------------------------------------------------------------------------

def rust_setup(ctx: TaskContext, options: dict[str, Any]) -> None:
    """Install grcov into the checkout and switch to the coverage toolchain."""
    grcov = ctx.cwd / GRCOV_BINARY
    if ctx.dry_run:
        logger.info("Dry run: would download grcov into %s", ctx.cwd)
    elif grcov.exists() and not options.get("force_download"):
        logger.info("grcov already present at %s", grcov)
    else:
        download_grcov(ctx.cwd, url=options.get("grcov_url", GRCOV_URL))

    channel = str(options.get("channel", DEFAULT_CHANNEL))
    ctx.run(["rustup", "default", channel])

    components = _list_option(options, "components", DEFAULT_COMPONENTS)
    if components:
        ctx.run(["rustup", "component", "add", *components])


def cargo_build(ctx: TaskContext, options: dict[str, Any]) -> None:
    ctx.run(_cargo_args("build", options))


def cargo_test(ctx: TaskContext, options: dict[str, Any]) -> None:
    """Run the test suite, then collect and upload coverage when credentials exist."""
    ctx.run(_cargo_args("test", options))
    if options.get("coverage", True):
        collect_and_upload(ctx)


def cargo_clippy(ctx: TaskContext, options: dict[str, Any]) -> None:
    """Lint gate: any warning fails the task."""
    args = ["cargo", "clippy", *_list_option(options, "args"), "--"]
    args.extend(_list_option(options, "lint_args", DEFAULT_LINT_ARGS))
    ctx.run(args)

