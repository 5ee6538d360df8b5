"""
The transport handle: one configured client that runs HTTP transactions
one at a time and can keep its connection open between them.

A :class:`Transport` is driven through options and callbacks rather than
return values. Options are plain attributes (set directly or through
:meth:`Transport.setopt`) and are restored by :meth:`Transport.reset`;
:meth:`Transport.perform` runs one transaction and reports through

* ``header_function(line)``: every raw header line of every hop, status
  line and blank separator included,
* ``write_function(chunk)``: the decoded body of the final response,
* ``upload.read(n)``: the outbound body for streamed uploads,
* ``progress_function(dltotal, dlnow, ultotal, ulnow)``: between I/O
  chunks and while the peer is silent; a truthy return aborts.

Afterwards :attr:`Transport.info` holds the transaction metadata.
"""
import logging
import ssl
from contextlib import contextmanager
from http.client import HTTPException, IncompleteRead
from http.client import HTTPResponse as _HTTPResponse
from socket import timeout as SocketTimeout
from typing import IO, Any, Callable, Dict, Generator, NamedTuple, Optional, Tuple
from urllib.parse import unquote, urljoin

from ._collections import HTTPHeaderDict
from .connection import HTTPConnection, HTTPSConnection
from .exceptions import (
    AbortedByCallback,
    InvalidInputError,
    LocationParseError,
    LocationValueError,
    NewConnectionError,
    ProtocolError,
    ProxyError,
    ReadTimeoutError,
    SSLError,
    TooManyRedirects,
    UnsupportedOptionError,
    URLSchemeUnknown,
    WriteError,
)
from .response import BodyDecoder
from .util.connection import is_connection_dropped, keepalive_socket_options
from .util.request import ACCEPT_ENCODING, make_headers, rewind_body, set_file_position
from .util.ssl_ import create_pghttp_context
from .util.timeout import Timeout
from .util.url import Url, parse_url, port_by_scheme
from .util.util import to_bytes

log = logging.getLogger(__name__)

_TYPE_WRITE_CALLBACK = Callable[[bytes], int]
_TYPE_PROGRESS_CALLBACK = Callable[[int, int, int, int], Any]

REDIRECT_STATUSES = frozenset((301, 302, 303, 307, 308))
SUPPORTED_PROTOCOLS = frozenset(("http", "https"))

#: Caller headers that are not forwarded once a redirect leaves the original host.
REMOVE_HEADERS_ON_REDIRECT = frozenset(("authorization", "proxy-authorization"))

DEFAULT_PROXY_PORT = 1080


class TransferInfo(NamedTuple):
    """Metadata of the last transaction run by a :class:`Transport`."""

    status: int = 0
    content_type: Optional[str] = None
    effective_url: Optional[str] = None
    redirect_count: int = 0
    total_time: float = 0.0


_OPTION_DEFAULTS: Dict[str, Any] = {
    "url": None,
    "method": None,
    "post_fields": None,
    "upload": None,
    "infile_size": None,
    "nobody": False,
    "headers": None,
    "follow_location": False,
    "max_redirects": 30,
    "accept_encoding": None,
    "protocols": None,
    "connect_timeout_ms": None,
    "timeout_ms": None,
    "user_agent": None,
    "proxy": None,
    "proxy_port": None,
    "proxy_userpwd": None,
    "userpwd": None,
    "ca_info": None,
    "ssl_cert": None,
    "ssl_key": None,
    "key_passwd": None,
    "ssl_verify_peer": True,
    "ssl_verify_host": True,
    "tcp_keepalive": False,
    "tcp_keepidle": None,
    "tcp_keepintvl": None,
    "forbid_reuse": False,
    "write_function": None,
    "header_function": None,
    "progress_function": None,
}

# Options given in seconds that set a millisecond attribute.
_SECONDS_OPTIONS = {"timeout": "timeout_ms", "connect_timeout": "connect_timeout_ms"}

_INT_OPTIONS = frozenset(
    (
        "infile_size",
        "max_redirects",
        "connect_timeout_ms",
        "timeout_ms",
        "proxy_port",
        "tcp_keepidle",
        "tcp_keepintvl",
    )
)
_BOOL_OPTIONS = frozenset(
    (
        "nobody",
        "follow_location",
        "ssl_verify_peer",
        "ssl_verify_host",
        "tcp_keepalive",
        "forbid_reuse",
    )
)


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(
            f"Option {name!r} expects an integer, got {value!r}"
        ) from None


def _split_target(raw: str) -> Tuple[str, str]:
    # Scheme-less targets are taken as http, like command line clients do.
    if "://" not in raw:
        raw = "http://" + raw
    return raw.split("://", 1)[0].lower(), raw


def _host_header(url: Url) -> str:
    host = f"[{url.host}]" if ":" in (url.host or "") else url.host
    if url.port is not None and url.port != port_by_scheme.get(url.scheme or "http"):
        return f"{host}:{url.port}"
    return host  # type: ignore[return-value]


def _origin(url: Url) -> Tuple[Optional[str], Optional[str], Optional[int]]:
    return url.scheme, url.host, url.effective_port


class Transport:
    """
    A reusable handle for running HTTP transactions.

    .. code-block:: python

        sink = ByteSink()
        transport = Transport()
        transport.setopt("url", "http://example.com/")
        transport.setopt("write_function", sink.write)
        transport.perform()
        print(transport.info.status, sink.getvalue())

    The handle is not safe to share between threads.
    """

    #: Read size for response bodies.
    blocksize = 16384

    url: Optional[str]
    method: Optional[str]
    post_fields: Optional[bytes]
    upload: Optional[IO[bytes]]
    infile_size: Optional[int]
    headers: Optional[HTTPHeaderDict]
    write_function: Optional[_TYPE_WRITE_CALLBACK]
    header_function: Optional[_TYPE_WRITE_CALLBACK]
    progress_function: Optional[_TYPE_PROGRESS_CALLBACK]

    def __init__(self) -> None:
        self._conn: Optional[HTTPConnection] = None
        self._conn_key: Optional[Tuple[Any, ...]] = None
        self._response: Optional[_HTTPResponse] = None
        self._timeout = Timeout()
        self._dltotal = self._dlnow = self._ultotal = self._ulnow = 0
        self.info = TransferInfo()
        self.reset()

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "idle"
        return f"<{type(self).__name__} {state} url={self.url!r}>"

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and self._conn.sock is not None

    def reset(self) -> None:
        """Restore every option to its default. A live connection stays open."""
        for name, value in _OPTION_DEFAULTS.items():
            setattr(self, name, value)
        self.info = TransferInfo()

    def setopt(self, name: str, value: Any) -> None:
        """
        Set one option by name.

        ``timeout`` and ``connect_timeout`` take seconds and set
        ``timeout_ms`` / ``connect_timeout_ms``.

        :raises UnsupportedOptionError: for an unknown option name.
        :raises InvalidInputError: for a value the transport cannot use.
        """
        key = name.lower()
        if key in _SECONDS_OPTIONS:
            key, value = _SECONDS_OPTIONS[key], _to_int(name, value) * 1000

        if key not in _OPTION_DEFAULTS:
            raise UnsupportedOptionError(name)

        if value is None:
            pass
        elif key in _INT_OPTIONS:
            value = _to_int(name, value)
        elif key in _BOOL_OPTIONS:
            value = bool(_to_int(name, value)) if isinstance(value, str) else bool(value)
        elif key == "protocols":
            if isinstance(value, str):
                value = value.split(",")
            value = frozenset(p.strip().lower() for p in value if p.strip())
        elif key == "proxy":
            self._parse_proxy(value)
        elif key == "headers" and not isinstance(value, HTTPHeaderDict):
            value = HTTPHeaderDict(value)

        setattr(self, key, value)

    def close(self) -> None:
        """Close the live connection, if any."""
        if self._conn is not None:
            log.debug("Closing connection to %s:%s", self._conn.host, self._conn.port)
            self._conn.close()
        self._conn = None
        self._conn_key = None

    def perform(self) -> None:
        """
        Run one transaction with the current options.

        Redirects are followed when ``follow_location`` is set. Failures are
        raised as :class:`~pghttp.exceptions.TransportError` subclasses; the
        connection is closed after any failure.
        """
        if not self.url:
            raise LocationValueError()

        self.info = TransferInfo()
        self._timeout = Timeout(connect=self.connect_timeout_ms, total=self.timeout_ms)
        self._timeout.start()
        self._dltotal = self._dlnow = self._ulnow = 0

        with self._error_catcher():
            url = self._parse_target(self.url)
            method = self._effective_method()
            body, body_size = self._request_body()
            self._ultotal = body_size or 0
            body_pos = set_file_position(body, None) if self.upload is not None else None
            headers = self._request_headers()
            origin = _origin(url)
            redirect_count = 0

            while True:
                response = self._send(url, method, body, body_size, headers, origin)

                location = None
                if response.status in REDIRECT_STATUSES:
                    location = response.getheader("Location")
                if not (self.follow_location and location):
                    break

                if 0 <= self.max_redirects <= redirect_count:
                    self._drain(response)
                    raise TooManyRedirects(self.max_redirects)

                # Support relative URLs for redirecting.
                redirect_url = self._parse_target(urljoin(url.url, location))

                # RFC 7231, Section 6.4.4
                if response.status == 303 and method != "HEAD":
                    method, body, body_size = "GET", None, None
                elif response.status in (301, 302) and method == "POST":
                    method, body, body_size = "GET", None, None
                elif body is not None and body_pos is not None:
                    rewind_body(body, body_pos)

                if body is None:
                    headers.discard("Content-Type")

                if _origin(redirect_url) != origin:
                    for header in list(headers):
                        if header.lower() in REMOVE_HEADERS_ON_REDIRECT:
                            headers.discard(header)

                log.info("Redirecting %s -> %s", url.url, redirect_url.url)
                self._drain(response)
                redirect_count += 1
                url = redirect_url

            self._read_body(response, self.write_function)

            if self.forbid_reuse or response.will_close:
                self.close()

        self.info = TransferInfo(
            status=response.status,
            content_type=response.getheader("Content-Type"),
            effective_url=url.url,
            redirect_count=redirect_count,
            total_time=self._timeout.get_elapsed(),
        )

    @contextmanager
    def _error_catcher(self) -> Generator[None, None, None]:
        """
        Catch low-level python exceptions, instead re-raising pghttp
        variants, so that low-level exceptions are not leaked in the
        high-level api.

        On an unclean exit the connection is thrown away.
        """
        clean_exit = False

        try:
            try:
                yield

            except SocketTimeout as e:
                raise ReadTimeoutError(self._timeout_message()) from e

            except ssl.SSLError as e:
                raise SSLError(e) from e

            except (HTTPException, OSError) as e:
                # This includes IncompleteRead.
                raise ProtocolError(f"Connection broken: {e!r}", e) from e

            clean_exit = True
        finally:
            if self._response is not None:
                if not clean_exit:
                    self._response.close()
                self._response = None
            if not clean_exit:
                self.close()

    def _timeout_message(self) -> str:
        elapsed = int(self._timeout.get_elapsed() * 1000)
        return (
            f"Operation timed out after {elapsed} milliseconds "
            f"with {self._dlnow} bytes received"
        )

    def _progress(self) -> None:
        if self._timeout.expired:
            raise ReadTimeoutError(self._timeout_message())
        if self.progress_function is not None and self.progress_function(
            self._dltotal, self._dlnow, self._ultotal, self._ulnow
        ):
            raise AbortedByCallback()

    def _uploaded(self, amount: int) -> None:
        self._ulnow += amount
        self._progress()

    def _deliver(self, callback: _TYPE_WRITE_CALLBACK, data: bytes) -> None:
        taken = callback(data)
        if taken != len(data):
            raise WriteError(
                f"Callback took {taken!r} of {len(data)} bytes, stopping the transfer"
            )

    def _parse_target(self, raw: str) -> Url:
        scheme, raw = _split_target(raw)
        allowed = SUPPORTED_PROTOCOLS
        if self.protocols is not None:
            allowed = allowed & self.protocols
        if scheme not in allowed:
            raise URLSchemeUnknown(scheme)
        return parse_url(raw)

    def _parse_proxy(self, proxy: str) -> Url:
        scheme, raw = _split_target(proxy)
        if scheme != "http":
            raise InvalidInputError(f"Proxy scheme {scheme!r} is not supported")
        try:
            return parse_url(raw)
        except LocationParseError as e:
            raise InvalidInputError(f"Invalid proxy URL {proxy!r}") from e

    def _proxy_url(self) -> Optional[Url]:
        if not self.proxy:
            return None
        proxy = self._parse_proxy(self.proxy)
        port = self.proxy_port or proxy.port or DEFAULT_PROXY_PORT
        return proxy._replace(port=port)

    def _effective_method(self) -> str:
        if self.method:
            return self.method  # type: ignore[no-any-return]
        if self.nobody:
            return "HEAD"
        if self.post_fields is not None:
            return "POST"
        if self.upload is not None:
            return "PUT"
        return "GET"

    def _request_body(self) -> Tuple[Any, Optional[int]]:
        if self.nobody:
            return None, None
        if self.post_fields is not None:
            data = to_bytes(self.post_fields)
            return data, len(data)
        if self.upload is not None:
            size = self.infile_size
            if size is None or size < 0:
                # Unknown length, sent chunked.
                return self.upload, None
            return self.upload, size
        return None, None

    def _request_headers(self) -> HTTPHeaderDict:
        headers = HTTPHeaderDict(self.headers)
        if self.user_agent and "user-agent" not in headers:
            headers["User-Agent"] = self.user_agent
        if self.accept_encoding is not None and "accept-encoding" not in headers:
            headers["Accept-Encoding"] = self.accept_encoding or ACCEPT_ENCODING
        if self.post_fields is not None and "content-type" not in headers:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        return headers

    def _credentials(self, url: Url) -> Optional[str]:
        if self.userpwd:
            return self.userpwd  # type: ignore[no-any-return]
        if url.auth:
            return unquote(url.auth)
        return None

    def _proxy_credentials(self, proxy: Url) -> Optional[str]:
        if self.proxy_userpwd:
            return self.proxy_userpwd  # type: ignore[no-any-return]
        if proxy.auth:
            return unquote(proxy.auth)
        return None

    def _get_conn(self, url: Url, proxy: Optional[Url]) -> HTTPConnection:
        if proxy is not None:
            key: Tuple[Any, ...] = (url.scheme, proxy.host, proxy.port)
            if url.scheme == "https":
                key += (url.host, url.effective_port)
        else:
            key = _origin(url)

        if self._conn is not None:
            if self._conn_key == key and not is_connection_dropped(self._conn):
                log.debug("Re-using existing connection to %s:%s", *key[1:3])
                return self._conn
            self.close()

        self._progress()
        conn = self._new_conn(url, proxy)
        log.debug(
            "Starting new %s connection: %s:%s",
            (url.scheme or "http").upper(),
            conn.host,
            conn.port or conn.default_port,
        )
        try:
            conn.connect()
        except NewConnectionError as e:
            conn.close()
            if proxy is not None:
                raise ProxyError("Unable to connect to proxy", e) from e
            raise
        except BaseException:
            conn.close()
            raise

        self._conn = conn
        self._conn_key = key
        return conn

    def _new_conn(self, url: Url, proxy: Optional[Url]) -> HTTPConnection:
        socket_options = HTTPConnection.default_socket_options + keepalive_socket_options(
            self.tcp_keepalive, self.tcp_keepidle, self.tcp_keepintvl
        )
        connect_timeout = self._timeout.connect_timeout
        host, port = url.host, url.effective_port
        if proxy is not None:
            host, port = proxy.host, proxy.port

        conn: HTTPConnection
        if url.scheme == "https":
            context = create_pghttp_context(
                cert_reqs=ssl.CERT_REQUIRED if self.ssl_verify_peer else ssl.CERT_NONE,
                check_hostname=bool(self.ssl_verify_host),
                ca_certs=self.ca_info,
                certfile=self.ssl_cert,
                keyfile=self.ssl_key,
                key_password=self.key_passwd,
            )
            conn = HTTPSConnection(
                host,  # type: ignore[arg-type]
                port,
                connect_timeout=connect_timeout,
                ssl_context=context,
                socket_options=socket_options,
            )
            if proxy is not None:
                tunnel_headers = {}
                credentials = self._proxy_credentials(proxy)
                if credentials:
                    tunnel_headers = make_headers(proxy_basic_auth=credentials)
                conn.set_tunnel(url.host, url.effective_port, headers=tunnel_headers)  # type: ignore[arg-type]
        else:
            conn = HTTPConnection(
                host,  # type: ignore[arg-type]
                port,
                connect_timeout=connect_timeout,
                socket_options=socket_options,
            )
        conn.on_idle = self._progress
        return conn

    def _send(
        self,
        url: Url,
        method: str,
        body: Any,
        body_size: Optional[int],
        headers: HTTPHeaderDict,
        origin: Tuple[Optional[str], Optional[str], Optional[int]],
    ) -> _HTTPResponse:
        proxy = self._proxy_url()
        conn = self._get_conn(url, proxy)

        hop_headers = headers.copy()
        if "host" not in hop_headers:
            hop_headers["Host"] = _host_header(url)

        credentials = self._credentials(url)
        if credentials and _origin(url) == origin and "authorization" not in hop_headers:
            hop_headers.update(make_headers(basic_auth=credentials))

        target = url.request_uri
        if proxy is not None and url.scheme == "http":
            # Forwarded through the proxy: absolute-form target.
            target = Url(
                scheme=url.scheme,
                host=url.host,
                port=url.port,
                path=url.path or "/",
                query=url.query,
            ).url
            proxy_credentials = self._proxy_credentials(proxy)
            if proxy_credentials and "proxy-authorization" not in hop_headers:
                hop_headers.update(make_headers(proxy_basic_auth=proxy_credentials))

        chunked = False
        if body is not None:
            if body_size is not None:
                hop_headers["Content-Length"] = str(body_size)
            else:
                chunked = True
        elif method in ("POST", "PUT", "PATCH"):
            hop_headers["Content-Length"] = "0"

        log.debug("%s %s", method, url.url)
        self._progress()
        conn.set_timeout(self._timeout.read_timeout)
        conn.request_streaming(
            method,
            target,
            body=body,
            headers=hop_headers,
            chunked=chunked,
            on_chunk=self._uploaded,
        )
        conn.set_timeout(self._timeout.read_timeout)
        response = conn.getresponse()
        self._response = response

        log.debug(
            '%s://%s:%s "%s %s" %s',
            url.scheme,
            url.host,
            url.effective_port,
            method,
            target,
            response.status,
        )
        self._emit_headers(response)
        return response

    def _emit_headers(self, response: _HTTPResponse) -> None:
        if self.header_function is None:
            return

        version = "HTTP/1.0" if response.version == 10 else "HTTP/1.1"
        lines = [f"{version} {response.status} {response.reason}\r\n"]
        lines.extend(f"{field}: {value}\r\n" for field, value in response.msg.items())
        lines.append("\r\n")
        for line in lines:
            # Header octets are latin-1 on the wire.
            self._deliver(self.header_function, line.encode("iso-8859-1"))

    def _read_body(
        self, response: _HTTPResponse, sink: Optional[_TYPE_WRITE_CALLBACK]
    ) -> None:
        content_encoding = None
        if self.accept_encoding is not None and sink is not None:
            content_encoding = response.getheader("Content-Encoding")
        decoder = BodyDecoder(content_encoding)

        length = response.getheader("Content-Length", "")
        self._dltotal = int(length) if length.isdigit() else 0
        self._dlnow = 0

        while True:
            self._progress()
            data = response.read1(self.blocksize)
            if not data:
                break
            self._dlnow += len(data)
            data = decoder.decode(data)
            if data and sink is not None:
                self._deliver(sink, data)

        if response.length:
            # The peer closed before Content-Length was reached.
            raise IncompleteRead(b"", response.length)

        data = decoder.decode(b"", flush=True)
        if data and sink is not None:
            self._deliver(sink, data)
        response.close()

    def _drain(self, response: _HTTPResponse) -> None:
        """Read and discard a response body so the connection can be reused."""
        self._read_body(response, None)
