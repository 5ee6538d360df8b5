from __future__ import annotations

import json
import logging

import pytest

from dummyserver.server import get_closed_port, get_unreachable_address
from dummyserver.testcase import HTTPDummyServerTestCase
from pghttp import http_header
from pghttp._collections import HeaderEntry
from pghttp.connection import DEFAULT_USER_AGENT
from pghttp.exceptions import (
    DecodeError,
    NameResolutionError,
    NewConnectionError,
    TooManyRedirects,
    TranscodingError,
)
from pghttp.request import HTTPRequest


class TestSessionRequests(HTTPDummyServerTestCase):
    def test_get(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/")
        assert r.status == 200
        assert r.content == b"Dummy server!"
        assert r.content_type == "text/plain"
        assert r.charset is None
        assert r.getheader("Content-Length") == "13"

    def test_get_with_data(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/echo", {"q": "a b", "n": 1})
        assert r.content == b"q=a+b&n=1"

    def test_non_2xx_is_a_response(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/status?status=404%20Not%20Found")
        assert r.status == 404

    def test_scheme_less_url(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.host}:{self.port}/")
        assert r.content == b"Dummy server!"

    def test_post_text(self) -> None:
        with self.session() as session:
            r = session.http_post(f"{self.base_url}/echo", "hello", "text/plain")
        assert r.content == b"hello"

    def test_post_form(self) -> None:
        with self.session() as session:
            r = session.http_post(f"{self.base_url}/echo", {"a": "1", "b": "x y"})
        assert r.content == b"a=1&b=x+y"

    def test_post_content_type_is_sent(self) -> None:
        with self.session() as session:
            r = session.http_post(f"{self.base_url}/headers", "{}", "application/json")
        headers = r.json()
        assert headers["Content-Type"] == "application/json"
        assert headers["Content-Length"] == "2"

    def test_put(self) -> None:
        with self.session() as session:
            r = session.http_put(f"{self.base_url}/echo", b"\x00binary\xff", "application/octet-stream")
            assert r.content == b"\x00binary\xff"
            r = session.http_put(f"{self.base_url}/method", "x", "text/plain")
            assert r.content == b"PUT"

    def test_large_upload(self) -> None:
        body = b"0123456789" * 20000
        with self.session() as session:
            r = session.http_put(f"{self.base_url}/echo", body, "application/octet-stream")
        assert r.content == body

    def test_patch(self) -> None:
        with self.session() as session:
            r = session.http_patch(f"{self.base_url}/echo", "patched", "text/plain")
            assert r.content == b"patched"
            r = session.http_patch(f"{self.base_url}/method", "patched", "text/plain")
            assert r.content == b"PATCH"

    def test_patch_without_content(self) -> None:
        with self.session() as session:
            r = session.http(HTTPRequest("PATCH", f"{self.base_url}/headers"))
        assert r.json()["Content-Length"] == "0"

    def test_delete(self) -> None:
        with self.session() as session:
            r = session.http_delete(f"{self.base_url}/method")
            assert r.content == b"DELETE"
            r = session.http_delete(f"{self.base_url}/echo", "gone", "text/plain")
            assert r.content == b"gone"

    def test_get_with_content(self) -> None:
        request = HTTPRequest(
            "GET", f"{self.base_url}/echo", content_type="text/plain", content="body"
        )
        with self.session() as session:
            r = session.http(request)
        assert r.content == b"body"

    def test_head(self) -> None:
        with self.session() as session:
            r = session.http_head(f"{self.base_url}/")
        assert r.status == 200
        assert r.content is None
        assert r.getheader("Content-Length") == "13"

    def test_custom_verb(self) -> None:
        with self.session() as session:
            r = session.http(HTTPRequest("PROPFIND", f"{self.base_url}/method"))
        assert r.content == b"PROPFIND"

    def test_lower_case_verb(self) -> None:
        with self.session() as session:
            r = session.http(HTTPRequest("post", f"{self.base_url}/method", content_type="text/plain", content="x"))
        assert r.content == b"POST"


class TestSessionHeaders(HTTPDummyServerTestCase):
    def test_default_request_headers(self) -> None:
        with self.session() as session:
            headers = session.http_get(f"{self.base_url}/headers").json()
        assert headers["Connection"] == "close"
        assert headers["Charsets"] == "utf-8"
        assert headers["User-Agent"] == DEFAULT_USER_AGENT
        assert headers["Accept-Encoding"].startswith("gzip,deflate")
        assert headers["Host"] == f"{self.host}:{self.port}"

    def test_keep_alive_header(self) -> None:
        with self.session(keep_alive=True) as session:
            headers = session.http_get(f"{self.base_url}/headers").json()
        assert headers["Connection"] == "Keep-Alive"

    def test_caller_headers(self) -> None:
        request = HTTPRequest(
            "GET",
            f"{self.base_url}/multi_headers",
            headers=[http_header("X-Dup", "a"), http_header("X-Dup", "b")],
        )
        with self.session() as session:
            sent = session.http(request).json()["headers"]
        assert [h for h in sent if h[0] == "X-Dup"] == [["X-Dup", "a"], ["X-Dup", "b"]]

    def test_caller_content_type_is_ignored(self) -> None:
        request = HTTPRequest(
            "POST",
            f"{self.base_url}/headers",
            headers=[http_header("Content-Type", "text/html")],
            content_type="application/json",
            content="{}",
        )
        with self.session() as session:
            assert session.http(request).json()["Content-Type"] == "application/json"

    def test_user_agent_option(self) -> None:
        with self.session() as session:
            session.set_option("user_agent", "tester/2.0")
            headers = session.http_get(f"{self.base_url}/headers").json()
        assert headers["User-Agent"] == "tester/2.0"

    def test_userpwd_option(self) -> None:
        with self.session() as session:
            session.set_option("userpwd", "user:pass")
            headers = session.http_get(f"{self.base_url}/headers").json()
        assert headers["Authorization"] == "Basic dXNlcjpwYXNz"

    def test_response_headers_in_order(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/set_cookies")
        cookies = [e for e in r.headers or () if e.field == "Set-Cookie"]
        assert cookies == [HeaderEntry("Set-Cookie", "foo=1"), HeaderEntry("Set-Cookie", "bar=2")]
        assert r.getheader("set-cookie") == "bar=2"


class TestSessionRedirects(HTTPDummyServerTestCase):
    def test_redirect(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/redirect", {"target": "/echo_uri?x=1"})
        assert r.status == 200
        assert r.content == b"/echo_uri?x=1"

    def test_redirect_history_headers_are_kept(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/redirect", {"target": "/"})
        assert HeaderEntry("X-Redirect-Hop", "1") in (r.headers or ())
        assert r.getheader("Location") == "/"
        assert r.content == b"Dummy server!"

    def test_redirect_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="pghttp"):
            with self.session() as session:
                session.http_get(f"{self.base_url}/redirect", {"target": "/"})
        assert "Redirecting" in caplog.text

    def test_303_turns_post_into_get(self) -> None:
        with self.session() as session:
            r = session.http_post(
                f"{self.base_url}/redirect?status=303&target=/method", "x", "text/plain"
            )
        assert r.content == b"GET"

    def test_302_turns_post_into_get(self) -> None:
        with self.session() as session:
            r = session.http_post(
                f"{self.base_url}/redirect?status=302&target=/headers", "x", "text/plain"
            )
        assert "Content-Type" not in r.json()

    def test_307_keeps_post_body(self) -> None:
        with self.session() as session:
            r = session.http_post(
                f"{self.base_url}/redirect?status=307&target=/echo", "kept", "text/plain"
            )
        assert r.content == b"kept"

    def test_302_replays_put_body(self) -> None:
        with self.session() as session:
            r = session.http_put(
                f"{self.base_url}/redirect?status=302&target=/echo", "replayed", "text/plain"
            )
        assert r.content == b"replayed"

    def test_redirect_limit(self) -> None:
        with self.session() as session:
            codes = ",".join(["302"] * 5 + ["200"])
            r = session.http_get(f"{self.base_url}/multi_redirect?redirect_codes={codes}")
            assert r.content == b"Done redirecting"

            codes = ",".join(["302"] * 6 + ["200"])
            with pytest.raises(TooManyRedirects):
                session.http_get(f"{self.base_url}/multi_redirect?redirect_codes={codes}")
            assert session.transport is None

    def test_head_does_not_follow(self) -> None:
        with self.session() as session:
            r = session.http_head(f"{self.base_url}/redirect?target=/")
        assert r.status == 303
        assert r.getheader("Location") == "/"

    def test_cross_host_redirect_drops_authorization(self) -> None:
        request = HTTPRequest(
            "GET",
            f"{self.base_url}/redirect?target={self.base_url_alt}/headers",
            headers=[http_header("Authorization", "Bearer secret")],
        )
        with self.session() as session:
            headers = session.http(request).json()
        assert "Authorization" not in headers

    def test_same_host_redirect_keeps_authorization(self) -> None:
        request = HTTPRequest(
            "GET",
            f"{self.base_url}/redirect?target=/headers",
            headers=[http_header("Authorization", "Bearer secret")],
        )
        with self.session() as session:
            headers = session.http(request).json()
        assert headers["Authorization"] == "Bearer secret"


class TestSessionBodies(HTTPDummyServerTestCase):
    @pytest.mark.parametrize("encoding", ["gzip", "deflate"])
    def test_compressed(self, encoding: str) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/encodingrequest?encoding={encoding}")
        assert r.getheader("Content-Encoding") == encoding
        assert r.content == b"hello, world!"

    def test_bad_compression(self) -> None:
        with self.session() as session:
            with pytest.raises(DecodeError):
                session.http_get(f"{self.base_url}/encodingrequest?encoding=garbage-gzip")
            assert session.transport is None

    def test_chunked(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/chunked")
        assert r.content == b"123" * 4

    def test_transcoded_to_utf8(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/charset?charset=iso-8859-1&text=caf%C3%A9")
        assert r.charset == "iso8859-1"
        assert r.content == "café".encode()
        assert r.text == "café"

    def test_invalid_charset_body(self) -> None:
        with self.session() as session:
            with pytest.raises(TranscodingError):
                session.http_get(f"{self.base_url}/charset?charset=utf-8&bad=1")

    def test_binary_is_untouched(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/binary")
        assert r.content == bytes(range(256))
        assert r.charset is None

    def test_empty_body(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/empty")
        assert r.content is None
        assert r.getheader("X-Empty") == "yes"

    def test_large_body(self) -> None:
        with self.session() as session:
            r = session.http_get(f"{self.base_url}/nbytes?length=1000000")
        assert r.content == b"1" * 1000000


class TestSessionKeepAlive(HTTPDummyServerTestCase):
    def test_handle_discarded_without_keep_alive(self) -> None:
        with self.session() as session:
            session.http_get(f"{self.base_url}/")
            assert session.transport is None

    def test_connection_reused(self) -> None:
        with self.session(keep_alive=True) as session:
            session.http_get(f"{self.base_url}/keepalive")
            transport = session.transport
            assert transport is not None
            assert transport.is_connected
            conn = transport._conn

            session.http_get(f"{self.base_url}/keepalive")
            assert session.transport is transport
            assert transport._conn is conn

    def test_server_close_is_honoured(self) -> None:
        with self.session(keep_alive=True) as session:
            r = session.http_get(f"{self.base_url}/keepalive?close=1")
            assert r.content == b"Closing"
            assert session.transport is not None
            assert not session.transport.is_connected

            r = session.http_get(f"{self.base_url}/keepalive")
            assert r.content == b"Keeping alive"

    def test_new_connection_for_other_host(self) -> None:
        with self.session(keep_alive=True) as session:
            session.http_get(f"{self.base_url}/")
            transport = session.transport
            assert transport is not None
            conn = transport._conn
            session.http_get(f"{self.base_url_alt}/")
            assert transport._conn is not conn

    def test_options_survive_requests(self) -> None:
        with self.session(keep_alive=True) as session:
            session.set_option("user_agent", "sticky/1.0")
            for _ in range(2):
                headers = session.http_get(f"{self.base_url}/headers").json()
                assert headers["User-Agent"] == "sticky/1.0"

    def test_transfer_info(self) -> None:
        with self.session(keep_alive=True) as session:
            session.http_get(f"{self.base_url}/redirect", {"target": "/"})
            assert session.transport is not None
            info = session.transport.info
        assert info.status == 200
        assert info.redirect_count == 1
        assert info.effective_url == f"{self.base_url}/"
        assert info.total_time > 0


class TestSessionConnectErrors(HTTPDummyServerTestCase):
    def test_connection_refused(self) -> None:
        with self.session() as session:
            with pytest.raises(NewConnectionError):
                session.http_get(f"http://{self.host}:{get_closed_port()}/")
            assert session.transport is None

    def test_name_resolution(self) -> None:
        host, port = get_unreachable_address()
        with self.session() as session:
            with pytest.raises(NameResolutionError):
                session.http_get(f"http://{host}:{port}/")

    def test_json_body(self) -> None:
        with self.session() as session:
            r = session.http_post(
                f"{self.base_url}/echo", json.dumps({"k": "v"}), "application/json"
            )
        assert r.json() == {"k": "v"}
