"""Tests for the request document parser."""

import base64
import logging

import pytest

from restfile.parser import (
    Essentials,
    ExecutableRequest,
    ParseError,
    create_requests,
    load_request_file,
    parse_body,
    parse_document,
    parse_essentials,
    parse_request,
    split_request,
    split_requests,
    transfer_headers,
)
from restfile.headers import parse_headers

THREE_REQUESTS = (
    "GET https://localhost:8080/bearer\n"
    "Authorization: Bearer 42069\n"
    "\n"
    "###\n"
    "   \n"
    "### Second\n"
    "POST https://localhost:8080/json\n"
    "Content-Type: application/json\n"
    "\n"
    '{"key": "value"}\n'
)


def basic_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"


class TestSplitRequests:
    """Tests for split_requests."""

    def test_n_separators_yield_n_plus_one_blocks(self):
        blocks = list(split_requests(THREE_REQUESTS))
        assert len(blocks) == 3

    def test_blocks_are_stripped_and_ordered(self):
        content = "GET https://a\n###\n\n  GET https://b  \n###\nGET https://c"
        assert list(split_requests(content)) == [
            "GET https://a",
            "GET https://b",
            "GET https://c",
        ]

    def test_separator_line_title_is_dropped(self):
        content = "### Get users\nGET https://a/users"
        assert list(split_requests(content)) == ["", "GET https://a/users"]

    def test_marker_must_start_the_line(self):
        content = "GET https://a\nX-Note: not ### a separator"
        assert len(list(split_requests(content))) == 1

    def test_is_lazy(self):
        blocks = split_requests("a\n###\nb")
        assert next(blocks) == "a"
        assert next(blocks) == "b"
        with pytest.raises(StopIteration):
            next(blocks)


class TestSplitRequest:
    """Tests for split_request."""

    def test_essentials_headers_body(self):
        block = (
            "POST https://localhost:8080/form-data\n"
            "Content-Type: multipart/form-data; boundary=foo\n"
            "\n"
            "--foo\n"
            "Content-Disposition: form-data; name=\"title\"\n"
            "\n"
            "test text\n"
            "--foo--"
        )
        essentials, headers, body = split_request(block)
        assert essentials == "POST https://localhost:8080/form-data"
        assert headers == "Content-Type: multipart/form-data; boundary=foo"
        assert body.startswith("--foo\n")
        assert body.endswith("--foo--")

    def test_crlf_line_endings(self):
        essentials, headers, body = split_request(
            "POST https://h/p\r\nAccept: a\r\n\r\n{}"
        )
        assert essentials == "POST https://h/p"
        assert headers == "Accept: a"
        assert body == "{}"

    def test_indented_lines_continue_previous_line(self):
        essentials, _, _ = split_request(
            "GET https://h/p\n    ?page=1\n    &size=10\nAccept: a"
        )
        assert essentials == "GET https://h/p?page=1&size=10"

    def test_comment_lines_are_dropped(self):
        essentials, headers, _ = split_request(
            "# list users\n// second comment\nGET https://h/users\n# x\nAccept: a"
        )
        assert essentials == "GET https://h/users"
        assert headers == "Accept: a"

    def test_no_body(self):
        essentials, headers, body = split_request("GET https://h/p\nAccept: a")
        assert headers == "Accept: a"
        assert body == ""


class TestParseEssentials:
    """Tests for parse_essentials."""

    expected = Essentials("GET", "https://h/p", "HTTP/2")

    @pytest.mark.parametrize(
        "line",
        [
            "GET https://h/p HTTP/2",
            "https://h/p GET HTTP/2",
            "HTTP/2 https://h/p GET",
        ],
    )
    def test_order_insensitive(self, line):
        assert parse_essentials(line) == self.expected

    def test_method_defaults_to_get(self):
        assert parse_essentials("https://h/p") == Essentials("GET", "https://h/p", None)

    def test_custom_methods(self):
        assert parse_essentials("GRAPHQL https://h/graphql").method == "GRAPHQL"
        assert parse_essentials("WEBSOCKET wss://h/ws").url == "wss://h/ws"

    def test_method_is_case_sensitive(self):
        assert parse_essentials("post https://h/p").method == "GET"

    def test_protocol_with_space(self):
        result = parse_essentials("POST https://h/p HTTP/2 (Prior Knowledge)")
        assert result == Essentials("POST", "https://h/p", "HTTP/2 (Prior Knowledge)")

    def test_protocol_with_space_first(self):
        result = parse_essentials("HTTP/2 (Prior Knowledge) PUT https://h/p")
        assert result == Essentials("PUT", "https://h/p", "HTTP/2 (Prior Knowledge)")

    def test_http11(self):
        assert parse_essentials("GET https://h/p HTTP/1.1").protocol == "HTTP/1.1"

    def test_first_match_wins_per_category(self):
        result = parse_essentials("GET POST https://a/1 https://b/2 HTTP/1.1 HTTP/2")
        assert result == Essentials("GET", "https://a/1", "HTTP/1.1")

    def test_unknown_tokens_ignored(self):
        result = parse_essentials("GET  https://h/p  whatever")
        assert result == Essentials("GET", "https://h/p", None)

    def test_url_with_placeholders_and_query(self):
        result = parse_essentials(
            "GET https://localhost:8080/http2?{{param}}&query&param1=foobar HTTP/2"
        )
        assert result.url == "https://localhost:8080/http2?{{param}}&query&param1=foobar"
        assert result.protocol == "HTTP/2"

    def test_missing_url_raises(self):
        with pytest.raises(ParseError, match="Could not parse a URL"):
            parse_essentials("GET HTTP/1.1")

    def test_relative_url_is_not_a_url(self):
        with pytest.raises(ParseError):
            parse_essentials("GET /api/users")

    def test_url_spelled_like_method_is_read_as_method(self):
        with pytest.raises(ParseError):
            parse_essentials("DELETE GET")


class TestParseBody:
    """Tests for parse_body."""

    def test_no_content_type_no_body(self, tmp_path):
        assert parse_body("", '{"a": 1}', str(tmp_path)) is None

    def test_json_passed_through_verbatim(self, tmp_path):
        raw = '{\n  "name": "John",   "n": 1\n}'
        body = parse_body("application/json", raw, str(tmp_path))
        assert body.read() == raw.encode()

    def test_json_with_charset(self, tmp_path):
        body = parse_body("application/json; charset=utf-8", "[]", str(tmp_path))
        assert body.read() == b"[]"

    def test_unknown_content_type_warns(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            body = parse_body("text/plain", "hello", str(tmp_path))
        assert body is None
        assert "text/plain" in caplog.text

    def test_multipart_without_boundary_raises(self, tmp_path):
        with pytest.raises(ParseError, match="Missing boundary"):
            parse_body("multipart/form-data", "--foo--", str(tmp_path))

    def test_multipart(self, tmp_path):
        raw = '--foo\nContent-Disposition: form-data; name="a"\n\nvalue\n--foo--'
        body = parse_body("multipart/form-data; boundary=foo", raw, str(tmp_path))
        assert body.read() == (
            b"--foo\r\n"
            b'Content-Disposition: form-data; name="a"\r\n'
            b"\r\n"
            b"value"
            b"\r\n--foo--\r\n"
        )


class TestTransferHeaders:
    """Tests for transfer_headers."""

    def test_basic_auth_is_translated(self):
        headers = parse_headers("Authorization: Basic alice secret\nAccept: a")
        outgoing, auth = transfer_headers(headers)
        assert auth.username == "alice"
        assert auth.password == "secret"
        assert "Authorization" not in outgoing
        assert outgoing["Accept"] == "a"

    def test_basic_scheme_is_case_insensitive(self):
        outgoing, auth = transfer_headers(parse_headers("authorization: BASIC bob pw"))
        assert (auth.username, auth.password) == ("bob", "pw")
        assert len(outgoing) == 0

    def test_basic_without_password(self):
        _, auth = transfer_headers(parse_headers("Authorization: Basic bob"))
        assert (auth.username, auth.password) == ("bob", "")

    def test_bearer_passes_through(self):
        outgoing, auth = transfer_headers(parse_headers("Authorization: Bearer xyz"))
        assert auth is None
        assert outgoing.getlist("Authorization") == ["Bearer xyz"]

    def test_lone_basic_passes_through(self):
        outgoing, auth = transfer_headers(parse_headers("Authorization: Basic"))
        assert auth is None
        assert outgoing["Authorization"] == "Basic"

    def test_repeated_headers_are_kept(self):
        outgoing, _ = transfer_headers(parse_headers("X-A: 1\nX-A: 2"))
        assert outgoing.getlist("X-A") == ["1", "2"]


class TestParseRequest:
    """Tests for parse_request and ExecutableRequest."""

    def test_bearer_scenario(self, tmp_path):
        request = parse_request(
            "GET https://localhost:8080/bearer\nAuthorization: Bearer 42069\n",
            str(tmp_path),
        )
        assert request.method == "GET"
        assert request.url == "https://localhost:8080/bearer"
        assert request.headers.getlist("Authorization") == ["Bearer 42069"]
        assert request.auth is None
        assert request.body is None

    def test_basic_auth_effective_credentials(self, tmp_path):
        request = parse_request(
            "GET https://localhost:8080/basic-auth\nAuthorization: Basic alice secret",
            str(tmp_path),
        )
        prepared = request.prepare()
        assert prepared.headers["Authorization"] == basic_header("alice", "secret")

    def test_bearer_prepared_verbatim(self, tmp_path):
        request = parse_request(
            "GET https://h/p\nAuthorization: Bearer xyz", str(tmp_path)
        )
        assert request.prepare().headers["Authorization"] == "Bearer xyz"

    def test_json_request(self, tmp_path):
        request = parse_request(
            "POST https://h/json HTTP/1.1\n"
            "Content-Type: application/json\n"
            "\n"
            '{"key": "value"}',
            str(tmp_path),
        )
        assert request.protocol == "HTTP/1.1"
        prepared = request.prepare()
        assert prepared.method == "POST"
        assert prepared.headers["Content-Type"] == "application/json"
        assert prepared.headers["Content-Length"] == "16"
        assert prepared.body.read() == b'{"key": "value"}'

    def test_missing_content_type_no_body(self, tmp_path):
        request = parse_request("POST https://h/p\n\nsome body", str(tmp_path))
        assert request.body is None

    def test_repeated_headers_folded_when_prepared(self, tmp_path):
        request = parse_request("GET https://h/p\nAccept: a\nAccept: b", str(tmp_path))
        assert request.prepare().headers["Accept"] == "a, b"

    def test_multipart_content_length(self, tmp_path):
        (tmp_path / "file.bin").write_bytes(b"\x00\x01\x02")
        request = parse_request(
            "POST https://h/form-data\n"
            "Content-Type: multipart/form-data; boundary=foo\n"
            "\n"
            "--foo\n"
            'Content-Disposition: form-data; name="image"; filename="file.bin"\n'
            "\n"
            "< file.bin\n"
            "--foo--",
            str(tmp_path),
        )
        size = len(request.body)
        prepared = request.prepare()
        assert prepared.headers["Content-Length"] == str(size)
        assert prepared.headers["Content-Type"] == "multipart/form-data; boundary=foo"
        payload = prepared.body.read()
        assert len(payload) == size
        assert b"\x00\x01\x02" in payload
        request.close()

    def test_empty_head_raises(self, tmp_path):
        with pytest.raises(ParseError, match="no request line"):
            parse_request("# only a comment", str(tmp_path))

    def test_no_url_raises(self, tmp_path):
        with pytest.raises(ParseError):
            parse_request("GET\nAccept: a", str(tmp_path))

    def test_missing_attachment_raises(self, tmp_path):
        block = (
            "POST https://h/form\n"
            "Content-Type: multipart/form-data; boundary=foo\n"
            "\n"
            "--foo\n"
            'Content-Disposition: form-data; name="f"; filename="x.bin"\n'
            "\n"
            "< missing.bin\n"
            "--foo--"
        )
        with pytest.raises(FileNotFoundError):
            parse_request(block, str(tmp_path))

    def test_repr(self):
        request = ExecutableRequest("GET", "https://h/p")
        r = repr(request)
        assert "GET" in r
        assert "https://h/p" in r
        assert "body=<none>" in r


class TestParseDocument:
    """Tests for parse_document and create_requests."""

    def test_whitespace_block_is_skipped(self, tmp_path):
        result = parse_document(THREE_REQUESTS, str(tmp_path))
        assert result.ok
        assert [r.method for r in result.requests] == ["GET", "POST"]

    def test_environment_is_applied(self, tmp_path):
        result = parse_document(
            "GET https://{{host}}/users\nX-Token: {{token}}",
            str(tmp_path),
            {"host": "example.com", "token": 7},
        )
        request = result.requests[0]
        assert request.url == "https://example.com/users"
        assert request.headers["X-Token"] == "7"

    def test_failures_are_reported_per_block(self, tmp_path):
        content = (
            "GET https://h/1\n"
            "###\n"
            "GET not-a-url\n"
            "###\n"
            "POST https://h/form\n"
            "Content-Type: multipart/form-data; boundary=b\n"
            "\n"
            "--b\n"
            'Content-Disposition: form-data; name="f"; filename="x"\n'
            "\n"
            "< missing.bin\n"
            "--b--\n"
            "###\n"
            "GET https://h/4\n"
        )
        result = parse_document(content, str(tmp_path))
        assert not result.ok
        assert [r.url for r in result.requests] == ["https://h/1", "https://h/4"]
        assert sorted(result.failures) == [2, 3]
        assert isinstance(result.failures[2], ParseError)
        assert result.failures[2].block == 2
        assert isinstance(result.failures[3], FileNotFoundError)

    def test_invalid_attachment_path_fails_only_its_block(self, tmp_path):
        content = (
            "GET https://h/1\n"
            "###\n"
            "POST https://h/form\n"
            "Content-Type: multipart/form-data; boundary=b\n"
            "\n"
            "--b\n"
            'Content-Disposition: form-data; name="f"; filename="x"\n'
            "\n"
            "< a\x00b\n"
            "--b--\n"
            "###\n"
            "GET https://h/3\n"
        )
        result = parse_document(content, str(tmp_path))
        assert [r.url for r in result.requests] == ["https://h/1", "https://h/3"]
        assert list(result.failures) == [2]
        assert isinstance(result.failures[2], OSError)

    def test_create_requests(self, tmp_path):
        requests = create_requests(THREE_REQUESTS, str(tmp_path))
        assert len(requests) == 2
        assert requests[1].url == "https://localhost:8080/json"

    def test_create_requests_fails_fast(self, tmp_path):
        content = "GET https://h/1\n###\nGET nothing\n###\nGET https://h/3"
        with pytest.raises(ParseError) as excinfo:
            create_requests(content, str(tmp_path))
        assert excinfo.value.block == 2

    def test_create_requests_reports_block_of_missing_attachment(self, tmp_path):
        content = (
            "GET https://h/1\n"
            "###\n"
            "POST https://h/form\n"
            "Content-Type: multipart/form-data; boundary=b\n"
            "\n"
            "--b\n"
            'Content-Disposition: form-data; name="f"; filename="x"\n'
            "\n"
            "< missing.bin\n"
            "--b--\n"
        )
        with pytest.raises(FileNotFoundError) as excinfo:
            create_requests(content, str(tmp_path))
        assert excinfo.value.block == 2

    def test_empty_document(self, tmp_path):
        result = parse_document("  \n", str(tmp_path))
        assert result.requests == []
        assert result.ok


class TestLoadRequestFile:
    """Tests for load_request_file."""

    def test_load_valid_file(self, tmp_path):
        f = tmp_path / "req.http"
        f.write_text("GET https://h/test\n")
        assert "GET https://h/test" in load_request_file(str(f))

    def test_load_nonexistent_file(self):
        with pytest.raises(FileNotFoundError):
            load_request_file("/nonexistent/path/file.http")
