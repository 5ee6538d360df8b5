from __future__ import annotations

import contextlib
import gzip
import json
import logging
import typing
import zlib
from http.client import responses
from io import BytesIO
from urllib.parse import urlsplit

from tornado import httputil
from tornado.web import RequestHandler

log = logging.getLogger(__name__)


class Response:
    def __init__(
        self,
        body: str | bytes | typing.Sequence[str | bytes] = "",
        status: str = "200 OK",
        headers: typing.Sequence[tuple[str, str | bytes]] | None = None,
        json: typing.Any | None = None,
    ) -> None:
        self.body = body
        self.status = status
        if json is not None:
            self.headers = headers or [("Content-type", "application/json")]
            self.body = json
        else:
            self.headers = headers or [("Content-type", "text/plain")]

    def __call__(self, request_handler: RequestHandler) -> None:
        status, reason = self.status.split(" ", 1)
        request_handler.set_status(int(status), reason)
        # Replace tornado's default of a header on first sight, add repeats.
        seen = set()
        for header, value in self.headers:
            if header.lower() in seen:
                request_handler.add_header(header, value)
            else:
                request_handler.set_header(header, value)
                seen.add(header.lower())

        if isinstance(self.body, str):
            request_handler.write(self.body.encode())
        elif isinstance(self.body, bytes):
            request_handler.write(self.body)
        # chunked
        else:
            for item in self.body:
                if not isinstance(item, bytes):
                    item = item.encode("utf8")
                request_handler.write(item)
                request_handler.flush()


def request_params(request: httputil.HTTPServerRequest) -> dict[str, bytes]:
    params = {}
    for k, v in request.query_arguments.items():
        params[k] = next(iter(v))
    return params


def _gzip(data: bytes) -> bytes:
    file_ = BytesIO()
    with contextlib.closing(gzip.GzipFile("", mode="w", fileobj=file_)) as zipfile:
        zipfile.write(data)
    return file_.getvalue()


class TestingApp(RequestHandler):
    """
    Simple app that performs various operations, useful for testing an HTTP
    client.

    Given any path, it will attempt to load a corresponding local method if
    it exists. Status code 200 indicates success, 400 indicates failure. Each
    method has its own conditions for success/failure.
    """

    SUPPORTED_METHODS = RequestHandler.SUPPORTED_METHODS + ("PROPFIND",)  # type: ignore[assignment]

    def get(self) -> None:
        """Handle GET requests"""
        self._call_method()

    def post(self) -> None:
        """Handle POST requests"""
        self._call_method()

    def put(self) -> None:
        """Handle PUT requests"""
        self._call_method()

    def patch(self) -> None:
        """Handle PATCH requests"""
        self._call_method()

    def delete(self) -> None:
        """Handle DELETE requests"""
        self._call_method()

    def options(self) -> None:
        """Handle OPTIONS requests"""
        self._call_method()

    def head(self) -> None:
        """Handle HEAD requests"""
        self._call_method()

    def propfind(self) -> None:
        """Handle PROPFIND requests, a verb outside the common set"""
        self._call_method()

    def _call_method(self) -> None:
        """Call the correct method in this class based on the incoming URI"""
        req = self.request

        path = req.path[:]
        if not path.startswith("/"):
            path = urlsplit(path).path

        target = path[1:].split("/", 1)[0]
        method = getattr(self, target, self.index)

        resp = method(req)
        resp(self)

    def index(self, _request: httputil.HTTPServerRequest) -> Response:
        "Render simple message"
        return Response("Dummy server!")

    def method(self, request: httputil.HTTPServerRequest) -> Response:
        "Name the verb the request arrived with"
        return Response(request.method or "")

    def echo(self, request: httputil.HTTPServerRequest) -> Response:
        "Echo back the query for GET without a body, the body otherwise"
        if request.method == "GET" and not request.body:
            return Response(request.query)

        return Response(request.body)

    def echo_uri(self, request: httputil.HTTPServerRequest) -> Response:
        "Echo back the requested URI"
        assert request.uri is not None
        return Response(request.uri)

    def headers(self, request: httputil.HTTPServerRequest) -> Response:
        return Response(json=json.dumps(dict(request.headers)))

    def multi_headers(self, request: httputil.HTTPServerRequest) -> Response:
        return Response(json=json.dumps({"headers": list(request.headers.get_all())}))

    def redirect(self, request: httputil.HTTPServerRequest) -> Response:  # type: ignore[override]
        "Perform a redirect to ``target``"
        params = request_params(request)
        target = params.get("target", b"/").decode("latin-1")
        status = params.get("status", b"303 See Other").decode("latin-1")
        if len(status) == 3:
            status = f"{status} Redirect"

        headers = [("Location", target), ("X-Redirect-Hop", "1")]
        return Response(status=status, headers=headers)

    def multi_redirect(self, request: httputil.HTTPServerRequest) -> Response:
        "Performs a redirect chain based on ``redirect_codes``"
        params = request_params(request)
        codes = params.get("redirect_codes", b"200").decode("utf-8")
        head, tail = codes.split(",", 1) if "," in codes else (codes, None)
        assert head is not None
        status = f"{head} {responses[int(head)]}"
        if not tail:
            return Response("Done redirecting", status=status)

        headers = [("Location", f"/multi_redirect?redirect_codes={tail}")]
        return Response(status=status, headers=headers)

    def keepalive(self, request: httputil.HTTPServerRequest) -> Response:
        params = request_params(request)
        if params.get("close", b"0") == b"1":
            headers = [("Connection", "close")]
            return Response("Closing", headers=headers)

        headers = [("Connection", "keep-alive")]
        return Response("Keeping alive", headers=headers)

    def encodingrequest(self, request: httputil.HTTPServerRequest) -> Response:
        "Compress the reply with the ``encoding`` asked for, if the client accepts it"
        params = request_params(request)
        data = b"hello, world!"
        encoding = params.get("encoding", b"gzip").decode("ascii")
        accepted = request.headers.get("Accept-Encoding", "")
        headers = None
        if encoding == "gzip" and "gzip" in accepted:
            headers = [("Content-Encoding", "gzip")]
            data = _gzip(data)
        elif encoding == "deflate" and "deflate" in accepted:
            headers = [("Content-Encoding", "deflate")]
            data = zlib.compress(data)
        elif encoding == "garbage-gzip":
            headers = [("Content-Encoding", "gzip")]
            data = b"garbage"
        return Response(data, headers=headers)

    def charset(self, request: httputil.HTTPServerRequest) -> Response:
        "Send ``text`` encoded in ``charset``, or invalid bytes with ``bad=1``"
        params = request_params(request)
        charset = params.get("charset", b"utf-8").decode("ascii")
        if params.get("bad", b"0") == b"1":
            body = b"caf\xe9 \xff\xfe"
        else:
            body = params.get("text", b"caf\xc3\xa9").decode("utf-8").encode(charset)
        headers = [("Content-Type", f"text/plain; charset={charset}")]
        return Response(body, headers=headers)

    def binary(self, request: httputil.HTTPServerRequest) -> Response:
        "Every byte value once, without a charset"
        return Response(
            bytes(range(256)), headers=[("Content-Type", "application/octet-stream")]
        )

    def empty(self, request: httputil.HTTPServerRequest) -> Response:
        return Response(headers=[("X-Empty", "yes")])

    def set_cookies(self, request: httputil.HTTPServerRequest) -> Response:
        headers = [
            ("Content-Type", "text/plain"),
            ("Set-Cookie", "foo=1"),
            ("Set-Cookie", "bar=2"),
        ]
        return Response("cookies", headers=headers)

    def chunked(self, request: httputil.HTTPServerRequest) -> Response:
        return Response(["123"] * 4)

    def nbytes(self, request: httputil.HTTPServerRequest) -> Response:
        params = request_params(request)
        length = int(params["length"])
        data = b"1" * length
        return Response(data, headers=[("Content-Type", "application/octet-stream")])

    def status(self, request: httputil.HTTPServerRequest) -> Response:
        params = request_params(request)
        status = params.get("status", b"200 OK").decode("latin-1")

        return Response(status=status)
