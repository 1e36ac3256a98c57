"""Rebuild multipart/form-data bodies from the plaintext form syntax.

Inside a request document a form is written as a pseudo-multipart block::

    --foo
    Content-Disposition: form-data; name="title"

    test text
    --foo
    Content-Disposition: form-data; name="image"; filename="cat.png"
    Content-Type: image/png

    < ./cat.png
    --foo--

Lines starting with ``< `` inside a file part are references to files on
disk, resolved against the directory of the request document.

Parsing the block into :class:`FormField` values and encoding those
fields into wire bytes are separate steps.
"""

from __future__ import annotations

import io
import logging
import os
from typing import BinaryIO, Iterable

from urllib3 import HTTPHeaderDict

from restfile.headers import first_value, parse_headers

logger = logging.getLogger(__name__)

FILE_REFERENCE_PREFIX = "< "
FILE_SEPARATOR = b"\n"
CRLF = b"\r\n"


class ConcatenatedReader(io.RawIOBase):
    """Read-only binary stream over several streams, one after another.

    The total size is known before reading starts (``len(reader)``), so an
    HTTP client can announce a Content-Length while the data itself is only
    read chunk by chunk. The underlying streams stay open until the reader
    is closed, so the reader can be rewound with :meth:`seek` and sent
    again after a 307 or 308 redirect.
    """

    def __init__(self, streams: Iterable[BinaryIO]) -> None:
        super().__init__()
        self._streams = list(streams)
        self._starts = [stream.tell() for stream in self._streams]
        self._sizes = [_stream_length(stream) for stream in self._streams]
        self._length = sum(self._sizes)
        self._index = 0
        self._position = 0

    def __len__(self) -> int:
        return self._length

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return all(stream.seekable() for stream in self._streams)

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_CUR:
            offset += self._position
        elif whence == io.SEEK_END:
            offset += self._length
        elif whence != io.SEEK_SET:
            raise ValueError(f"Invalid whence: {whence!r}")
        if offset < 0:
            raise ValueError(f"Negative seek position: {offset}")

        # Streams before the target end up exhausted, later ones at their start.
        remaining = offset
        self._index = len(self._streams)
        for index, stream in enumerate(self._streams):
            skip = min(remaining, self._sizes[index])
            stream.seek(self._starts[index] + skip)
            remaining -= skip
            if skip < self._sizes[index] and self._index == len(self._streams):
                self._index = index

        self._position = offset - remaining
        return self._position

    def readinto(self, buffer) -> int:
        view = memoryview(buffer)
        while self._index < len(self._streams):
            count = self._streams[self._index].readinto(view)
            if count:
                self._position += count
                return count
            self._index += 1
        return 0

    def close(self) -> None:
        for stream in self._streams:
            stream.close()
        super().close()


def _stream_length(stream: BinaryIO) -> int:
    if isinstance(stream, ConcatenatedReader):
        return len(stream) - stream.tell()
    if isinstance(stream, io.BytesIO):
        return stream.getbuffer().nbytes - stream.tell()
    return os.fstat(stream.fileno()).st_size - stream.tell()


class FormField:
    """One part of a multipart/form-data body."""

    __slots__ = ("name", "filename", "headers", "content")

    def __init__(
        self,
        name: str,
        content: BinaryIO,
        filename: str | None = None,
        headers: HTTPHeaderDict | None = None,
    ) -> None:
        self.name = name
        self.filename = filename
        self.headers = headers if headers is not None else HTTPHeaderDict()
        self.content = content

    @property
    def is_file(self) -> bool:
        return self.filename is not None

    def close(self) -> None:
        self.content.close()

    def encode_head(self) -> bytes:
        """Return the header block of this part, including the blank line."""
        lines = []
        if "Content-Disposition" not in self.headers:
            lines.append(f'Content-Disposition: form-data; name="{self.name}"')
        for key, value in self.headers.iteritems():
            lines.append(f"{key}: {value}")

        return "".join(line + "\r\n" for line in lines).encode("utf-8") + CRLF

    def __repr__(self) -> str:
        return (
            f"FormField(name={self.name!r}, filename={self.filename!r}, "
            f"headers=<{len(self.headers)} headers>)"
        )


def parse_disposition(disposition: str) -> tuple[str | None, str | None]:
    """Extract ``name`` and ``filename`` from a Content-Disposition value."""
    name = filename = None

    for segment in disposition.split(";"):
        key, sep, value = segment.partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip().strip('"')
        if key == "name":
            name = value
        elif key == "filename":
            filename = value

    return name, filename


def open_file_references(body: str, base_dir: str) -> ConcatenatedReader:
    """Open every ``< path`` line of *body* as one chained stream.

    Consecutive files are separated by a single newline byte; lines that
    are not file references are ignored.

    Raises:
        OSError: If a referenced file cannot be opened, or its path
            is not a valid file name.
    """
    streams: list[BinaryIO] = []

    try:
        for line in body.split("\n"):
            if not line.startswith(FILE_REFERENCE_PREFIX):
                continue
            path = os.path.join(base_dir, line[len(FILE_REFERENCE_PREFIX):].strip())
            if streams:
                streams.append(io.BytesIO(FILE_SEPARATOR))
            try:
                streams.append(open(path, "rb"))
            except ValueError as exc:
                raise OSError(f"Cannot open attachment {path!r}: {exc}") from exc
            logger.debug("Attached file %s", path)
    except OSError:
        for stream in streams:
            stream.close()
        raise

    return ConcatenatedReader(streams)


def parse_form_field(fragment: str, position: int, base_dir: str) -> FormField:
    """Parse one boundary-delimited fragment into a :class:`FormField`."""
    head, _, body = fragment.strip().partition("\n\n")
    headers = parse_headers(head)

    disposition = first_value(headers, "Content-Disposition")
    if not disposition:
        return FormField(
            name=str(position),
            content=io.BytesIO(body.encode("utf-8")),
            headers=headers,
        )

    name, filename = parse_disposition(disposition)
    if name is None:
        name = str(position)

    if filename is None:
        content = io.BytesIO(body.encode("utf-8"))
    else:
        content = open_file_references(body, base_dir)

    return FormField(name=name, content=content, filename=filename, headers=headers)


def parse_form_fields(boundary: str, raw: str, base_dir: str) -> list[FormField]:
    """Parse a pseudo-multipart body into its fields, in document order.

    A field without a name is named after its index in the split on the
    boundary. The text before the first boundary is index 0, so the first
    part is "1".

    Raises:
        OSError: If a file referenced by a file field cannot be opened.
    """
    fields: list[FormField] = []

    try:
        for position, fragment in enumerate(raw.split("--" + boundary)):
            fragment = fragment.strip()
            if not fragment or fragment == "--":
                continue
            fields.append(parse_form_field(fragment, position, base_dir))
    except OSError:
        for field in fields:
            field.close()
        raise

    return fields


def encode_form(fields: Iterable[FormField], boundary: str) -> ConcatenatedReader:
    """Encode *fields* as a multipart/form-data payload with *boundary*.

    The result streams each field's content as it is read; nothing is
    buffered beyond the part headers.
    """
    delimiter = b"--" + boundary.encode("utf-8")
    streams: list[BinaryIO] = []

    for index, field in enumerate(fields):
        opening = delimiter + CRLF if index == 0 else CRLF + delimiter + CRLF
        streams.append(io.BytesIO(opening + field.encode_head()))
        streams.append(field.content)

    streams.append(io.BytesIO(CRLF + delimiter + b"--" + CRLF))

    return ConcatenatedReader(streams)


def build_form_body(boundary: str, raw: str, base_dir: str) -> ConcatenatedReader:
    """Parse a pseudo-multipart body and encode it for sending."""
    fields = parse_form_fields(boundary, raw, base_dir)
    logger.debug("Rebuilt form with %d field(s): %s", len(fields), fields)
    return encode_form(fields, boundary)
