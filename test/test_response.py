from __future__ import annotations

import json
import zlib

import pytest

from pghttp._collections import HeaderEntry
from pghttp.exceptions import DecodeError, TranscodingError
from pghttp.response import BodyDecoder, HTTPResponse, normalize_response, transcode

from . import brotli, onlyBrotli

ZLIB_PAYLOAD = zlib.compress(b"foo")


def _gzip(data: bytes) -> bytes:
    compress = zlib.compressobj(6, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
    return compress.compress(data) + compress.flush()


class TestBodyDecoder:
    def test_identity(self) -> None:
        decoder = BodyDecoder(None)
        assert decoder.decode(b"plain") == b"plain"
        assert decoder.decode(b"", flush=True) == b""

    def test_unknown_coding_passes_through(self) -> None:
        assert BodyDecoder("x-custom").decode(b"raw", flush=True) == b"raw"

    def test_deflate(self) -> None:
        decoder = BodyDecoder("deflate")
        assert decoder.decode(ZLIB_PAYLOAD, flush=True) == b"foo"

    def test_raw_deflate(self) -> None:
        compress = zlib.compressobj(6, zlib.DEFLATED, -zlib.MAX_WBITS)
        data = compress.compress(b"foo") + compress.flush()
        assert BodyDecoder("deflate").decode(data, flush=True) == b"foo"

    def test_gzip(self) -> None:
        assert BodyDecoder("GZIP").decode(_gzip(b"foo"), flush=True) == b"foo"

    def test_gzip_in_chunks(self) -> None:
        data = _gzip(b"foobar" * 100)
        decoder = BodyDecoder("gzip")
        out = b"".join(decoder.decode(data[i : i + 7]) for i in range(0, len(data), 7))
        out += decoder.decode(b"", flush=True)
        assert out == b"foobar" * 100

    def test_multiple_gzip_members(self) -> None:
        data = _gzip(b"foo") + _gzip(b"bar")
        assert BodyDecoder("gzip").decode(data, flush=True) == b"foobar"

    def test_multiple_codings(self) -> None:
        data = zlib.compress(_gzip(b"foo"))
        assert BodyDecoder("gzip, deflate").decode(data, flush=True) == b"foo"

    def test_garbage(self) -> None:
        with pytest.raises(DecodeError, match="content-encoding: gzip"):
            BodyDecoder("gzip").decode(b"garbage", flush=True)

    @onlyBrotli()
    def test_brotli(self) -> None:
        data = brotli.compress(b"foo")
        assert BodyDecoder("br").decode(data, flush=True) == b"foo"


class TestTranscode:
    def test_latin1_to_utf8(self) -> None:
        assert transcode(b"caf\xe9", "iso8859-1") == "café".encode()

    def test_utf8_is_kept(self) -> None:
        assert transcode("café".encode(), "utf-8") == "café".encode()

    def test_invalid(self) -> None:
        with pytest.raises(TranscodingError) as e:
            transcode(b"caf\xe9", "utf-8")
        assert e.value.charset == "utf-8"
        assert isinstance(e.value, ValueError)


class TestNormalizeResponse:
    def test_full(self) -> None:
        raw = b"HTTP/1.1 200 OK\r\nContent-Type: text/plain; charset=latin1\r\n\r\n"
        r = normalize_response(200, "text/plain; charset=latin1", raw, b"caf\xe9")
        assert r.status == 200
        assert r.content_type == "text/plain; charset=latin1"
        assert r.headers == [HeaderEntry("Content-Type", "text/plain; charset=latin1")]
        assert r.content == "café".encode()
        assert r.charset == "iso8859-1"

    def test_binary_without_charset(self) -> None:
        body = bytes(range(256))
        r = normalize_response(200, "application/octet-stream", b"", body)
        assert r.content == body
        assert r.charset is None
        assert r.headers is None

    def test_empty_body(self) -> None:
        r = normalize_response(204, None, b"HTTP/1.1 204 No Content\r\n\r\n", b"")
        assert r.content is None
        assert r.content_type is None
        assert r.headers == []

    def test_bad_charset_body(self) -> None:
        with pytest.raises(TranscodingError):
            normalize_response(200, "text/plain; charset=utf-8", b"", b"\xff\xfe")


class TestHTTPResponse:
    def test_getheader_last_match(self) -> None:
        r = HTTPResponse(
            200,
            headers=[
                HeaderEntry("Location", "/one"),
                HeaderEntry("X-Other", "x"),
                HeaderEntry("location", "/two"),
            ],
        )
        assert r.getheader("LOCATION") == "/two"
        assert r.getheader("missing") is None
        assert r.getheader("missing", "default") == "default"

    def test_getheader_without_headers(self) -> None:
        assert HTTPResponse(200).getheader("anything") is None

    def test_text(self) -> None:
        assert HTTPResponse(200, content="café".encode(), charset="utf-8").text == "café"
        assert HTTPResponse(200, content=b"\xffok").text == "�ok"
        assert HTTPResponse(200).text is None

    def test_json(self) -> None:
        r = HTTPResponse(200, content=json.dumps({"a": [1, 2]}).encode())
        assert r.json() == {"a": [1, 2]}

    def test_json_invalid(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            HTTPResponse(200, content=b"{not json").json()
