from __future__ import annotations

import typing

import pytest

from pghttp._collections import HeaderEntry
from pghttp.request import HTTPRequest, Method, RequestMethods, http_header
from pghttp.response import HTTPResponse


class RecordingMethods(RequestMethods):
    def __init__(self) -> None:
        self.requests: list[HTTPRequest] = []

    def urlopen(self, request: HTTPRequest, **kw: typing.Any) -> HTTPResponse:
        self.requests.append(request)
        return HTTPResponse(200)


@pytest.fixture()
def methods() -> RecordingMethods:
    return RecordingMethods()


class TestMethod:
    @pytest.mark.parametrize(
        "text, method",
        [
            ("GET", Method.GET),
            ("get", Method.GET),
            ("Post", Method.POST),
            ("PUT", Method.PUT),
            ("delete", Method.DELETE),
            ("HEAD", Method.HEAD),
            ("patch", Method.PATCH),
            ("PROPFIND", Method.UNKNOWN),
            ("unknown", Method.UNKNOWN),
            ("", Method.UNKNOWN),
        ],
    )
    def test_from_text(self, text: str, method: Method) -> None:
        assert Method.from_text(text) is method


class TestHTTPRequest:
    def test_defaults(self) -> None:
        request = HTTPRequest("GET", "http://example.com/")
        assert request.headers is None
        assert request.content_type is None
        assert request.content is None
        assert request.verb is Method.GET

    def test_http_header(self) -> None:
        assert http_header("Accept", "*/*") == HeaderEntry("Accept", "*/*")


class TestRequestMethods:
    def test_urlopen_is_abstract(self) -> None:
        with pytest.raises(NotImplementedError):
            RequestMethods().urlopen(HTTPRequest("GET", "http://example.com/"))

    def test_http(self, methods: RecordingMethods) -> None:
        request = HTTPRequest("OPTIONS", "http://example.com/")
        methods.http(request)
        assert methods.requests == [request]

    def test_http_get(self, methods: RecordingMethods) -> None:
        methods.http_get("http://example.com/")
        assert methods.requests == [HTTPRequest("GET", "http://example.com/")]

    @pytest.mark.parametrize(
        "uri, expected",
        [
            ("http://example.com/", "http://example.com/?q=a+b&n=1"),
            ("http://example.com/?x=1", "http://example.com/?x=1&q=a+b&n=1"),
        ],
    )
    def test_http_get_with_data(
        self, methods: RecordingMethods, uri: str, expected: str
    ) -> None:
        methods.http_get(uri, {"q": "a b", "n": 1})
        assert methods.requests[0].uri == expected

    def test_http_get_with_empty_data(self, methods: RecordingMethods) -> None:
        methods.http_get("http://example.com/", {})
        assert methods.requests[0].uri == "http://example.com/"

    def test_http_post(self, methods: RecordingMethods) -> None:
        methods.http_post("http://example.com/", "{}", "application/json")
        assert methods.requests == [
            HTTPRequest(
                "POST", "http://example.com/", content_type="application/json", content="{}"
            )
        ]

    def test_http_post_form(self, methods: RecordingMethods) -> None:
        methods.http_post("http://example.com/", {"a": "1", "b": "x y"})
        request = methods.requests[0]
        assert request.content == "a=1&b=x+y"
        assert request.content_type == "application/x-www-form-urlencoded"

    def test_http_post_form_keeps_content_type(self, methods: RecordingMethods) -> None:
        methods.http_post("http://example.com/", {"a": "1"}, "text/plain")
        assert methods.requests[0].content_type == "text/plain"

    def test_http_put(self, methods: RecordingMethods) -> None:
        methods.http_put("http://example.com/", b"data", "application/octet-stream")
        request = methods.requests[0]
        assert (request.method, request.content, request.content_type) == (
            "PUT",
            b"data",
            "application/octet-stream",
        )

    def test_http_patch(self, methods: RecordingMethods) -> None:
        methods.http_patch("http://example.com/", "data", "text/plain")
        assert methods.requests[0].method == "PATCH"

    def test_http_delete(self, methods: RecordingMethods) -> None:
        methods.http_delete("http://example.com/")
        methods.http_delete("http://example.com/", "data", "text/plain")
        assert methods.requests[0] == HTTPRequest("DELETE", "http://example.com/")
        assert methods.requests[1].content == "data"

    def test_http_head(self, methods: RecordingMethods) -> None:
        methods.http_head("http://example.com/")
        assert methods.requests == [HTTPRequest("HEAD", "http://example.com/")]
