"""Request document parsing.

Turns a plaintext request document into :class:`ExecutableRequest`
objects that the engine can send. A document holds one or more requests
separated by lines starting with ``###``; each request is an essentials
line (method, URL and protocol in any order), optional header lines, a
blank line and an optional body::

    ### Create a user
    POST https://{{host}}/users HTTP/1.1
    Content-Type: application/json
    Authorization: Basic alice secret

    {"name": "alice"}
"""

from __future__ import annotations

import io
import logging
import re
from typing import BinaryIO, Iterator, Mapping, NamedTuple

import requests
from requests.auth import HTTPBasicAuth
from urllib3 import HTTPHeaderDict
from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from restfile.env import replace_placeholders
from restfile.form import build_form_body
from restfile.headers import first_value, parse_headers, split_content_type

logger = logging.getLogger(__name__)

METHODS = frozenset(
    {
        "GET",
        "HEAD",
        "OPTIONS",
        "DELETE",
        "PATCH",
        "POST",
        "PUT",
        "CONNECT",
        "GRPC",
        "WEBSOCKET",
        "GRAPHQL",
    }
)

# Longest first: "HTTP/2 (Prior Knowledge)" must win over "HTTP/2"
PROTOCOLS = ("HTTP/2 (Prior Knowledge)", "HTTP/1.1", "HTTP/2")

DEFAULT_METHOD = "GET"

REQUEST_SEPARATOR = re.compile(r"^###.*$", re.MULTILINE)
CONTINUATION = "\n    "
COMMENT_PREFIXES = ("#", "//")


class ParseError(ValueError):
    """A request block is malformed and cannot be turned into a request."""

    def __init__(self, message: str, block: int | None = None) -> None:
        super().__init__(message)
        self.block = block


class Essentials(NamedTuple):
    method: str
    url: str
    protocol: str | None


class ExecutableRequest:
    """A fully parsed request, ready to be handed to the transport."""

    __slots__ = ("method", "url", "protocol", "headers", "body", "auth")

    def __init__(
        self,
        method: str,
        url: str,
        headers: HTTPHeaderDict | None = None,
        body: BinaryIO | None = None,
        protocol: str | None = None,
        auth: HTTPBasicAuth | None = None,
    ) -> None:
        self.method = method
        self.url = url
        self.protocol = protocol
        self.headers = headers if headers is not None else HTTPHeaderDict()
        self.body = body
        self.auth = auth

    def prepare(self) -> requests.PreparedRequest:
        """Build the ``requests`` representation of this request.

        Repeated header values are folded into one comma-separated value.
        """
        headers = {key: self.headers[key] for key in self.headers}
        return requests.Request(
            method=self.method,
            url=self.url,
            headers=headers,
            data=self.body,
            auth=self.auth,
        ).prepare()

    def close(self) -> None:
        """Release the body stream and any files it holds open."""
        if self.body is not None:
            self.body.close()

    def __repr__(self) -> str:
        return (
            f"ExecutableRequest(method={self.method!r}, url={self.url!r}, "
            f"protocol={self.protocol!r}, "
            f"headers=<{len(self.headers)} headers>, "
            f"auth={'<basic>' if self.auth else '<none>'}, "
            f"body={'<present>' if self.body is not None else '<none>'})"
        )


class ParseResult:
    """Outcome of parsing a whole document without stopping at errors."""

    __slots__ = ("requests", "failures")

    def __init__(
        self,
        requests: list[ExecutableRequest],
        failures: dict[int, Exception],
    ) -> None:
        self.requests = requests
        self.failures = failures

    @property
    def ok(self) -> bool:
        return not self.failures

    def __repr__(self) -> str:
        return (
            f"ParseResult(requests=<{len(self.requests)} requests>, "
            f"failures={sorted(self.failures)})"
        )


def split_requests(content: str) -> Iterator[str]:
    """Yield the stripped request blocks of a document, in order.

    The ``###`` separator line, including any title after the marker, is
    dropped. Empty blocks are yielded too; callers skip them.
    """
    start = 0
    for match in REQUEST_SEPARATOR.finditer(content):
        yield content[start:match.start()].strip()
        start = match.end()
    yield content[start:].strip()


def split_request(block: str) -> tuple[str, str, str]:
    """Split a block into its essentials line, header lines and body.

    Head lines indented by four spaces continue the previous line, and head
    lines starting with ``#`` or ``//`` are comments.
    """
    normalized = block.replace("\r\n", "\n")

    head, _, body = normalized.partition("\n\n")
    head = head.replace(CONTINUATION, "")

    lines = [
        line
        for line in head.split("\n")
        if not line.strip().startswith(COMMENT_PREFIXES)
    ]
    essentials = lines[0].strip() if lines else ""
    headers = "\n".join(lines[1:]).strip()

    return essentials, headers, body.strip()


def _is_method(token: str) -> bool:
    return token in METHODS


def _is_url(token: str) -> bool:
    try:
        parsed = parse_url(token)
    except LocationParseError:
        return False
    return bool(parsed.scheme and parsed.host)


def _match_protocol(tokens: list[str], index: int) -> str | None:
    for protocol in PROTOCOLS:
        words = protocol.split(" ")
        if tokens[index:index + len(words)] == words:
            return protocol
    return None


def parse_essentials(line: str) -> Essentials:
    """Parse method, URL and protocol from the first line of a request.

    The tokens may come in any order. Each category takes the first token
    that fits it; a URL that is spelled like a method name is therefore
    read as the method.

    Raises:
        ParseError: If the line holds no valid URL.
    """
    tokens = [token for token in line.strip().split(" ") if token]
    method = url = protocol = None

    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1

        if method is None and _is_method(token):
            method = token
            continue

        if url is None and _is_url(token):
            url = token
            continue

        if protocol is None:
            matched = _match_protocol(tokens, index - 1)
            if matched is not None:
                protocol = matched
                index += matched.count(" ")
                continue

        logger.debug("Ignoring token %r in request line %r", token, line)

    if url is None:
        raise ParseError(f"Could not parse a URL from request line: {line!r}")

    return Essentials(method or DEFAULT_METHOD, url, protocol)


def parse_body(content_type: str, raw: str, base_dir: str) -> BinaryIO | None:
    """Build the request body stream for the given Content-Type.

    Raises:
        ParseError: If a multipart body declares no boundary.
        OSError: If a file referenced by a multipart body cannot be opened.
    """
    if not content_type:
        return None

    media_type, boundary = split_content_type(content_type)

    if media_type == "application/json":
        return io.BytesIO(raw.encode("utf-8"))

    if media_type == "multipart/form-data":
        if not boundary:
            raise ParseError(f"Missing boundary in Content-Type: {content_type!r}")
        return build_form_body(boundary, raw, base_dir)

    logger.warning(
        "Unknown Content-Type %r, sending the request without a body", media_type
    )
    return None


def transfer_headers(
    headers: HTTPHeaderDict,
) -> tuple[HTTPHeaderDict, HTTPBasicAuth | None]:
    """Copy headers for sending, turning plaintext Basic auth into credentials.

    ``Authorization: Basic <user> [<password>]`` is consumed and returned as
    an :class:`HTTPBasicAuth`; every other header, including any other
    ``Authorization`` value, is copied unchanged.
    """
    outgoing = HTTPHeaderDict()
    auth = None

    for key, value in headers.iteritems():
        if key.lower() == "authorization":
            parts = value.split()
            if len(parts) >= 2 and parts[0].lower() == "basic":
                password = parts[2] if len(parts) > 2 else ""
                auth = HTTPBasicAuth(parts[1], password)
                continue
        outgoing.add(key, value)

    return outgoing, auth


def parse_request(block: str, base_dir: str) -> ExecutableRequest:
    """Parse a single request block.

    Args:
        block: The text of one request.
        base_dir: Directory that ``< path`` file references are relative to.

    Raises:
        ParseError: If the block is malformed.
        OSError: If a referenced file cannot be opened.
    """
    essentials_raw, headers_raw, body_raw = split_request(block)
    if not essentials_raw:
        raise ParseError("Request block has no request line")

    essentials = parse_essentials(essentials_raw)
    headers = parse_headers(headers_raw)
    body = parse_body(first_value(headers, "Content-Type"), body_raw, base_dir)
    outgoing, auth = transfer_headers(headers)

    return ExecutableRequest(
        method=essentials.method,
        url=essentials.url,
        protocol=essentials.protocol,
        headers=outgoing,
        body=body,
        auth=auth,
    )


def _numbered_blocks(content: str) -> Iterator[tuple[int, str]]:
    for number, block in enumerate(split_requests(content), start=1):
        if block:
            yield number, block


def parse_document(
    content: str,
    base_dir: str,
    environment: Mapping[str, object] | None = None,
) -> ParseResult:
    """Parse every request of a document, collecting failures per block.

    A malformed block or a missing attachment only fails its own block;
    failures are keyed by the 1-based position of the block in the
    document.
    """
    content = replace_placeholders(content, environment)
    parsed: list[ExecutableRequest] = []
    failures: dict[int, Exception] = {}

    for number, block in _numbered_blocks(content):
        try:
            parsed.append(parse_request(block, base_dir))
        except ParseError as exc:
            exc.block = number
            failures[number] = exc
        except OSError as exc:
            failures[number] = exc

    return ParseResult(parsed, failures)


def create_requests(
    content: str,
    base_dir: str,
    environment: Mapping[str, object] | None = None,
) -> list[ExecutableRequest]:
    """Parse every request of a document, stopping at the first failure.

    Raises:
        ParseError: If a block is malformed.
        OSError: If a referenced file cannot be opened.

        Either error carries the position of the failing block as ``block``.
    """
    content = replace_placeholders(content, environment)
    parsed: list[ExecutableRequest] = []

    try:
        for number, block in _numbered_blocks(content):
            try:
                parsed.append(parse_request(block, base_dir))
            except (ParseError, OSError) as exc:
                exc.block = number
                raise
    except (ParseError, OSError):
        for request in parsed:
            request.close()
        raise

    return parsed


def load_request_file(filepath: str) -> str:
    """Read and return the contents of a request document.

    Raises:
        FileNotFoundError: If the file does not exist.
        IOError: If the file cannot be read.
    """
    with open(filepath, "r", encoding="utf-8") as fh:
        return fh.read()
