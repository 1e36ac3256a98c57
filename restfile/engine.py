"""Request execution and response reporting.

Sends parsed requests with the ``requests`` library, prints a short
summary of each response and optionally stores the response body on
disk.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import time

import urllib3

import requests

from restfile.parser import ExecutableRequest

logger = logging.getLogger(__name__)

# Suppress InsecureRequestWarning when certificate checks are turned off
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

# Protocol hints that the requests transport cannot honour
HTTP2_PROTOCOLS = ("HTTP/2", "HTTP/2 (Prior Knowledge)")

SAVE_DIR = os.path.join(".idea", "httpRequests")
FALLBACK_EXTENSION = ".txt"

# Width of the label column in the summary table
LABEL_WIDTH = 20


class ExchangeResult:
    """Container for the response to a sent request."""

    __slots__ = (
        "status_code",
        "headers",
        "content_length",
        "body",
        "elapsed",
    )

    def __init__(
        self,
        status_code: int,
        headers: dict[str, str],
        content_length: int,
        body: bytes,
        elapsed: float,
    ) -> None:
        self.status_code = status_code
        self.headers = headers
        self.content_length = content_length
        self.body = body
        self.elapsed = elapsed

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value
        return ""


def send_request(
    request: ExecutableRequest,
    session: requests.Session | None = None,
    verify: bool = False,
    timeout: float = 30.0,
) -> ExchangeResult:
    """Send the request and read the whole response.

    Args:
        request: The parsed request.
        session: Session to send with (a fresh one by default).
        verify: Whether to verify TLS certificates.
        timeout: Request timeout in seconds.

    Returns:
        An ExchangeResult with the response and the time it took.
    """
    if request.protocol in HTTP2_PROTOCOLS:
        logger.warning(
            "Protocol %s is not supported by the transport, using HTTP/1.1",
            request.protocol,
        )

    owns_session = session is None
    if owns_session:
        session = requests.Session()

    try:
        prepared = request.prepare()
        start = time.perf_counter()
        response = session.send(
            prepared,
            verify=verify,
            timeout=timeout,
            allow_redirects=True,
        )
        body = response.content
        elapsed = time.perf_counter() - start
    finally:
        request.close()
        if owns_session:
            session.close()

    content_length = response.headers.get("Content-Length")

    return ExchangeResult(
        status_code=response.status_code,
        headers=dict(response.headers),
        content_length=int(content_length) if content_length else len(body),
        body=body,
        elapsed=elapsed,
    )


def format_duration(seconds: float) -> str:
    """Format a duration for humans, e.g. ``12.3ms`` or ``1.52s``."""
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    return f"{seconds:.2f}s"


def print_report(result: ExchangeResult, verbose: bool = False) -> None:
    """Print a summary table for the response to stdout.

    Args:
        result: The response to report on.
        verbose: Also print the response headers and body.
    """
    rows = (
        ("Status", str(result.status_code)),
        ("Duration", format_duration(result.elapsed)),
        ("Content-Length", str(result.content_length)),
    )

    print()
    for label, value in rows:
        print(f"{label:<{LABEL_WIDTH}}| {value}")

    if verbose:
        print("\n  Response Headers:")
        for key, value in result.headers.items():
            print(f"    {key}: {value}")
        text = result.body.decode("utf-8", errors="replace")
        print(f"\n  Response Body:\n{text}")


def find_save_dir(cwd: str | None = None) -> str:
    """Return the directory responses are saved to.

    Inside an ``.idea`` directory that directory is used as is; otherwise
    ``.idea/httpRequests`` below the working directory.
    """
    cwd = os.path.abspath(cwd or os.getcwd())

    parts = cwd.split(os.sep)
    if ".idea" in parts:
        return os.sep.join(parts[: parts.index(".idea") + 1]) or os.sep

    return os.path.join(cwd, SAVE_DIR)


def guess_extension(content_type: str) -> str:
    """Map a Content-Type to a file extension, ``.txt`` if unknown."""
    media_type = content_type.partition(";")[0].strip().lower()
    if not media_type:
        return FALLBACK_EXTENSION
    return mimetypes.guess_extension(media_type) or FALLBACK_EXTENSION


def save_response(result: ExchangeResult, directory: str | None = None) -> str:
    """Write the raw response body to disk.

    The file is named after the current time and the status code, with an
    extension derived from the response Content-Type.

    Returns:
        The path of the written file.
    """
    directory = directory or find_save_dir()
    os.makedirs(directory, exist_ok=True)

    filename = "{stamp}.{status}{ext}".format(
        stamp=time.strftime("%Y-%m-%dT%H%M%S"),
        status=result.status_code,
        ext=guess_extension(result.content_type),
    )
    path = os.path.join(directory, filename)

    with open(path, "wb") as fh:
        fh.write(result.body)

    logger.debug("Saved response body to %s", path)
    return path
