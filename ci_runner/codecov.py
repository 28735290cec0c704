"""Codecov upload client.

Usage:
    client = CodecovClient(token="xxxx-xxxx")
    url    = client.upload(Path("lcov.info"), {"commit": sha, "branch": "main"})

Speaks the v4 upload protocol used by the legacy bash uploader: a POST to
``/upload/v4`` returns two lines (the result page URL and a pre-signed
storage URL), then the report body is PUT to the storage URL.
"""

from pathlib import Path
from typing import Any

import requests

from ci_runner import __version__

DEFAULT_URL = "https://codecov.io"
UPLOAD_ENDPOINT = "/upload/v4"
EOF_MARKER = "<<<<<< EOF"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CodecovError(Exception):
    """Base exception for all upload errors."""


class AuthenticationError(CodecovError):
    """Raised on HTTP 401: invalid or missing upload token."""


class NetworkError(CodecovError):
    """Raised on connection timeout or unreachable server."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class CodecovClient:
    """Thin wrapper around the Codecov upload API."""

    def __init__(self, token: str, url: str = DEFAULT_URL, timeout: int = 30) -> None:
        self.base_url = url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["User-Agent"] = f"ci-runner/{__version__}"

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def upload(self, report_path: Path, params: dict[str, Any]) -> str:
        """Upload a coverage report and return the Codecov result URL.

        Empty parameter values are dropped from the query.

        Raises:
            AuthenticationError: HTTP 401
            CodecovError:        Any other non-2xx response, a malformed reply,
                                 or a request that could not be sent
            NetworkError:        Timeout or connection failure
        """
        report_path = Path(report_path)
        query = {k: v for k, v in params.items() if v not in (None, "")}
        query.setdefault("service", "custom")
        query["package"] = f"ci-runner-{__version__}"
        query["token"] = self._token

        response = self._send(
            "POST",
            f"{self.base_url}{UPLOAD_ENDPOINT}",
            params=query,
            headers={"Accept": "text/plain", "X-Reduced-Redundancy": "false"},
        )
        lines = [ln.strip() for ln in response.text.splitlines() if ln.strip()]
        if len(lines) < 2:
            raise CodecovError(
                f"Unexpected reply from {self.base_url}{UPLOAD_ENDPOINT}: {response.text[:200]}"
            )
        result_url, storage_url = lines[0], lines[1]
        if not storage_url.startswith(("http://", "https://")):
            raise CodecovError(
                f"Unexpected storage URL from {self.base_url}{UPLOAD_ENDPOINT}: {storage_url[:200]}"
            )

        self._send(
            "PUT",
            storage_url,
            data=build_payload(report_path).encode("utf-8"),
            headers={"Content-Type": "text/plain", "x-amz-acl": "public-read"},
        )
        return result_url

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        # Never echo the query string: it carries the token
        shown = url.split("?", 1)[0]
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{shown}'"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(f"Unable to reach '{shown}'") from exc
        except requests.exceptions.RequestException as exc:
            raise CodecovError(f"Request to '{shown}' failed: {exc}") from exc

        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication failed, check that CODECOV_TOKEN is valid."
            )
        if not response.ok:
            raise CodecovError(
                f"Unexpected response {response.status_code} from {shown}: {response.text[:200]}"
            )
        return response


def build_payload(report_path: Path) -> str:
    """Wrap a report file the way the upload endpoint expects it."""
    content = Path(report_path).read_text(encoding="utf-8")
    if not content.endswith("\n"):
        content += "\n"
    return f"# path={Path(report_path).name}\n{content}{EOF_MARKER}\n"
