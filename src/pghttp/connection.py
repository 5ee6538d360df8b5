import io
import logging
import socket
import ssl
from http.client import HTTPConnection as _HTTPConnection
from http.client import HTTPException
from http.client import HTTPResponse as _HTTPResponse
from socket import timeout as SocketTimeout
from typing import IO, Any, Callable, Iterable, Optional, Union

from ._collections import HTTPHeaderDict
from ._version import __version__
from .exceptions import (
    ConnectTimeoutError,
    InvalidInputError,
    NameResolutionError,
    NewConnectionError,
    ProxyError,
)
from .util import connection
from .util.request import is_token
from .util.ssl_ import create_pghttp_context, ssl_wrap_socket
from .util.url import port_by_scheme
from .util.wait import wait_for_read, wait_for_write

log = logging.getLogger(__name__)

_TYPE_BODY = Union[bytes, IO[Any], Iterable[bytes]]
_TYPE_IDLE_HOOK = Callable[[], None]


DEFAULT_USER_AGENT = f"pghttp/{__version__}"


class _PollingSocketReader(io.RawIOBase):
    """
    Raw reader over a connected socket that never blocks longer than
    ``interval`` without calling ``on_idle``.

    ``on_idle`` may raise to abandon the read; the transport uses that to
    honour cancellation and the overall deadline while the peer is silent.
    """

    def __init__(
        self, sock: socket.socket, on_idle: Optional[_TYPE_IDLE_HOOK], interval: float
    ) -> None:
        super().__init__()
        self._sock = sock
        # Holds a reference on the socket so it survives the connection closing it.
        self._raw = sock.makefile("rb", buffering=0)
        self._on_idle = on_idle
        self._interval = interval

    def readable(self) -> bool:
        return True

    def _pending(self) -> bool:
        # TLS records already decrypted but not yet read.
        pending = getattr(self._sock, "pending", None)
        return pending is not None and pending() > 0

    def readinto(self, b: bytearray) -> Optional[int]:  # type: ignore[override]
        if self._on_idle is not None:
            while not (self._pending() or wait_for_read(self._sock, self._interval)):
                self._on_idle()
        return self._raw.readinto(b)

    def close(self) -> None:
        if not self.closed:
            self._raw.close()
        super().close()


class _PollingSocket:
    # http.client.HTTPResponse only ever calls makefile() on its socket.
    def __init__(
        self, sock: socket.socket, on_idle: Optional[_TYPE_IDLE_HOOK], interval: float
    ) -> None:
        self._sock = sock
        self._on_idle = on_idle
        self._interval = interval

    def makefile(self, mode: str, *args: Any, **kwargs: Any) -> io.BufferedReader:
        return io.BufferedReader(
            _PollingSocketReader(self._sock, self._on_idle, self._interval)
        )


class HTTPConnection(_HTTPConnection):
    """
    Based on :class:`http.client.HTTPConnection` with the socket handling
    the transport needs.

    Additional keyword parameters are used to configure attributes of the connection.
    Accepted parameters include:

    - ``socket_options``: Set specific options on the underlying socket. If not specified, then
      defaults are loaded from ``HTTPConnection.default_socket_options`` which includes disabling
      Nagle's algorithm (sets TCP_NODELAY to 1).

      For example, if you wish to enable TCP Keep Alive in addition to the defaults,
      you might pass:

      .. code-block:: python

         HTTPConnection.default_socket_options + [
             (socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1),
         ]

    - ``connect_timeout``: seconds allowed for establishing the TCP connection.

    While a request body is sent or a response is read, :attr:`on_idle`
    (when set) is called every :attr:`idle_interval` seconds that the peer
    stays blocked or silent.
    """

    default_port: int = port_by_scheme["http"]

    #: Disable Nagle's algorithm by default.
    #: ``[(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)]``
    default_socket_options: connection._TYPE_SOCKET_OPTIONS = [
        (socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    ]

    idle_interval: float = 0.25

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        connect_timeout: Optional[float] = None,
        blocksize: int = 16384,
        socket_options: Optional[
            connection._TYPE_SOCKET_OPTIONS
        ] = default_socket_options,
    ) -> None:
        self.socket_options = socket_options
        self.connect_timeout = connect_timeout
        self.on_idle: Optional[_TYPE_IDLE_HOOK] = None

        super().__init__(host=host, port=port, timeout=None, blocksize=blocksize)

    def response_class(self, sock: socket.socket, *args: Any, **kwargs: Any) -> _HTTPResponse:  # type: ignore[override]
        return _HTTPResponse(
            _PollingSocket(sock, self.on_idle, self.idle_interval),  # type: ignore[arg-type]
            *args,
            **kwargs,
        )

    def _new_conn(self) -> socket.socket:
        """Establish a socket connection and set nodelay settings on it.

        :return: New socket connection.
        """

        try:
            conn = connection.create_connection(
                (self.host, self.port),
                self.connect_timeout,
                socket_options=self.socket_options,
            )
        except socket.gaierror as e:
            raise NameResolutionError(self.host, self, e) from e
        except SocketTimeout as e:
            raise ConnectTimeoutError(
                f"Connection to {self.host} timed out. (connect timeout={self.connect_timeout})"
            ) from e

        except OSError as e:
            raise NewConnectionError(
                self, f"Failed to establish a new connection: {e}"
            ) from e

        return conn

    def _is_using_tunnel(self) -> Optional[str]:
        return self._tunnel_host

    def _open_tunnel(self) -> None:
        try:
            self._tunnel()
        except (OSError, HTTPException) as e:
            self.close()
            raise ProxyError("Unable to tunnel through the proxy", e) from e

    def connect(self) -> None:
        self.sock = self._new_conn()
        if self._is_using_tunnel():
            self._open_tunnel()

    def set_timeout(self, timeout: Optional[float]) -> None:
        """Timeout for the next socket operation on an open connection."""
        if self.sock is not None:
            # Zero would switch the socket to non-blocking mode.
            if timeout is not None:
                timeout = max(timeout, 0.001)
            self.sock.settimeout(timeout)

    def putrequest(
        self,
        method: str,
        url: str,
        skip_host: bool = False,
        skip_accept_encoding: bool = False,
    ) -> None:
        """"""
        # Empty docstring because the indentation of CPython's implementation
        # is broken but we don't want this method in our documentation.
        if not is_token(method):
            raise InvalidInputError(
                f"Method cannot contain non-token characters {method!r}"
            )

        return super().putrequest(
            method, url, skip_host=skip_host, skip_accept_encoding=skip_accept_encoding
        )

    def request_streaming(
        self,
        method: str,
        url: str,
        body: Optional[_TYPE_BODY] = None,
        headers: Optional[HTTPHeaderDict] = None,
        chunked: bool = False,
        on_chunk: Optional[Callable[[int], None]] = None,
    ) -> None:
        """
        Send one request, calling ``on_chunk(n)`` after every body chunk.

        ``body`` is sent as given; framing headers are the caller's business
        unless ``chunked`` is set, in which case every chunk is sent with
        chunked transfer-coding framing. A file-like body is read
        ``blocksize`` bytes at a time until it returns an empty chunk.
        """
        if headers is None:
            headers = HTTPHeaderDict()
        header_keys = {k.lower() for k in headers}
        self.putrequest(
            method,
            url,
            skip_host="host" in header_keys,
            skip_accept_encoding=True,
        )
        if "user-agent" not in header_keys:
            self.putheader("User-Agent", DEFAULT_USER_AGENT)
        for header, value in headers.iteritems():
            self.putheader(header, value)
        if chunked and "transfer-encoding" not in header_keys:
            self.putheader("Transfer-Encoding", "chunked")
        self.endheaders()

        if body is None:
            if chunked:
                self._send_body(b"0\r\n\r\n")
            return

        if isinstance(body, (bytes, bytearray)):
            view = memoryview(body)
            chunks: Iterable[bytes] = (
                view[i : i + self.blocksize] for i in range(0, len(view), self.blocksize)
            )
        elif hasattr(body, "read"):
            chunks = iter(lambda: body.read(self.blocksize), b"")  # type: ignore[union-attr]
        else:
            chunks = body

        for chunk in chunks:
            if not chunk:
                continue
            if chunked:
                to_send = bytearray(hex(len(chunk))[2:].encode())
                to_send += b"\r\n"
                to_send += chunk
                to_send += b"\r\n"
                self._send_body(to_send)
            else:
                self._send_body(chunk)
            if on_chunk is not None:
                on_chunk(len(chunk))

        # After the loop, to always have a closed body
        if chunked:
            self._send_body(b"0\r\n\r\n")

    def _send_body(self, data: Union[bytes, bytearray, memoryview]) -> None:
        """
        Send ``data`` without blocking longer than :attr:`idle_interval`
        between :attr:`on_idle` calls while the peer is not reading.
        """
        if self.on_idle is None or self.sock is None:
            self.send(data)
            return

        sock = self.sock
        view = memoryview(data)
        timeout = sock.gettimeout()
        sock.settimeout(0.0)
        try:
            while view:
                if not wait_for_write(sock, self.idle_interval):
                    self.on_idle()
                    continue
                try:
                    sent = sock.send(view)
                except (BlockingIOError, ssl.SSLWantWriteError, ssl.SSLWantReadError):
                    continue
                view = view[sent:]
        finally:
            sock.settimeout(timeout)


class HTTPSConnection(HTTPConnection):
    """
    TLS flavour of :class:`HTTPConnection`. The socket is wrapped with a
    context from :func:`pghttp.util.ssl_.create_pghttp_context` unless one
    is given.
    """

    default_port = port_by_scheme["https"]

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        connect_timeout: Optional[float] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        blocksize: int = 16384,
        socket_options: Optional[
            connection._TYPE_SOCKET_OPTIONS
        ] = HTTPConnection.default_socket_options,
    ) -> None:
        super().__init__(
            host,
            port=port,
            connect_timeout=connect_timeout,
            blocksize=blocksize,
            socket_options=socket_options,
        )
        self.ssl_context = ssl_context

    def connect(self) -> None:
        conn = self._new_conn()
        hostname: str = self.host

        if self._is_using_tunnel():
            self.sock = conn
            self._open_tunnel()
            conn = self.sock
            # Override the host with the one we're requesting data from.
            hostname = self._tunnel_host  # type: ignore[assignment]

        if self.ssl_context is None:
            self.ssl_context = create_pghttp_context()

        try:
            self.sock = ssl_wrap_socket(
                sock=conn, ssl_context=self.ssl_context, server_hostname=hostname
            )
        except BaseException:
            conn.close()
            raise
