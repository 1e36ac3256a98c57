"""Header block parsing shared by requests and multipart parts."""

from __future__ import annotations

import logging

from urllib3 import HTTPHeaderDict

logger = logging.getLogger(__name__)


def parse_headers(raw: str) -> HTTPHeaderDict:
    """Parse ``Key: value`` lines into a case-insensitive multi-value mapping.

    Lines without a colon are skipped with a warning. A key seen more than
    once keeps all of its values in order.
    """
    headers = HTTPHeaderDict()

    for line in raw.split("\n"):
        line = line.strip()
        if not line:
            continue
        key, sep, value = line.partition(":")
        if not sep:
            logger.warning("Cannot parse header line: %r", line)
            continue
        headers.add(key.strip(), value.strip())

    return headers


def first_value(headers: HTTPHeaderDict, key: str) -> str:
    """Return the first value stored under *key*, or ``""``."""
    values = headers.getlist(key)
    return values[0] if values else ""


def split_content_type(content_type: str) -> tuple[str, str]:
    """Split a Content-Type value into its media type and boundary.

    >>> split_content_type("multipart/form-data; boundary=foo")
    ('multipart/form-data', 'foo')
    """
    media_type, _, params = content_type.partition(";")
    media_type = media_type.strip().lower()

    boundary = ""
    for param in params.split(";"):
        param = param.strip()
        if param.startswith("boundary="):
            boundary = param[len("boundary="):]
            break
    else:
        # A lone parameter without a name is taken as the boundary itself
        params = params.strip()
        if params and "=" not in params:
            boundary = params

    return media_type, boundary.strip().strip('"')
