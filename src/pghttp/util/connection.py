import socket
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple, Union

from ..exceptions import LocationParseError
from .wait import wait_for_read

_TYPE_SOCKET_OPTIONS = Sequence[Tuple[int, int, Union[int, bytes]]]

if TYPE_CHECKING:
    from ..connection import HTTPConnection


def is_connection_dropped(conn: "HTTPConnection") -> bool:  # Platform-specific
    """
    Returns True if the connection is dropped and should be closed.

    An idle keep-alive socket that polls readable has either been closed by
    the peer or holds unsolicited bytes; neither is safe to send a new
    request on.

    :param conn:
        :class:`pghttp.connection.HTTPConnection` object.
    """
    sock = conn.sock
    if sock is None:  # Connection already closed (such as by http.client).
        return True

    try:
        return wait_for_read(sock, timeout=0.0)
    except OSError:
        return True


# This function is copied from socket.py in the Python 2.7 standard
# library test suite. Added to its signature is only `socket_options`.
# One additional modification is that we avoid binding to IPv6 servers
# discovered in DNS if the system doesn't have IPv6 functionality.
def create_connection(
    address: Tuple[str, int],
    timeout: Optional[float] = None,
    socket_options: Optional[_TYPE_SOCKET_OPTIONS] = None,
) -> socket.socket:
    """Connect to *address* and return the socket object.

    Convenience function.  Connect to *address* (a 2-tuple ``(host,
    port)``) and return the socket object.  The optional *timeout* is set on
    the socket instance before attempting to connect; ``None`` leaves the
    socket blocking.
    """

    host, port = address
    if host.startswith("["):
        host = host.strip("[]")
    err = None

    # Using the value from allowed_gai_family() in the context of getaddrinfo lets
    # us select whether to work with IPv4 DNS records, IPv6 records, or both.
    # The original create_connection function always returns all records.
    family = allowed_gai_family()

    try:
        host.encode("idna")
    except UnicodeError:
        raise LocationParseError(f"'{host}', label empty or too long") from None

    for res in socket.getaddrinfo(host, port, family, socket.SOCK_STREAM):
        af, socktype, proto, canonname, sa = res
        sock = None
        try:
            sock = socket.socket(af, socktype, proto)

            # If provided, set socket level options before connecting.
            _set_socket_options(sock, socket_options)

            sock.settimeout(timeout)
            sock.connect(sa)
            # Break explicitly a reference cycle
            err = None
            return sock

        except OSError as _:
            err = _
            if sock is not None:
                sock.close()

    if err is not None:
        try:
            raise err
        finally:
            # Break explicitly a reference cycle
            err = None
    else:
        raise OSError("getaddrinfo returns an empty list")


def _set_socket_options(
    sock: socket.socket, options: Optional[_TYPE_SOCKET_OPTIONS]
) -> None:
    if options is None:
        return

    for opt in options:
        sock.setsockopt(*opt)


def keepalive_socket_options(
    enabled: bool, idle: Optional[int] = None, interval: Optional[int] = None
) -> List[Tuple[int, int, int]]:
    """
    Socket options for TCP keep-alive probing.

    ``idle`` and ``interval`` are seconds and are only applied where the
    platform exposes ``TCP_KEEPIDLE`` / ``TCP_KEEPINTVL``.
    """
    if not enabled:
        return []

    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if idle and hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, idle))
    if interval and hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, interval))
    return options


def allowed_gai_family() -> socket.AddressFamily:
    """This function is designed to work in the context of
    getaddrinfo, where family=socket.AF_UNSPEC is the default and
    will perform a DNS search for both IPv6 and IPv4 records."""

    family = socket.AF_INET
    if HAS_IPV6:
        family = socket.AF_UNSPEC
    return family


def _has_ipv6(host: str) -> bool:
    """Returns True if the system can bind an IPv6 address."""
    sock = None
    has_ipv6 = False

    if socket.has_ipv6:
        # has_ipv6 returns true if cPython was compiled with IPv6 support.
        # It does not tell us if the system has IPv6 support enabled. To
        # determine that we must bind to an IPv6 address.
        try:
            sock = socket.socket(socket.AF_INET6)
            sock.bind((host, 0))
            has_ipv6 = True
        except OSError:
            pass

    if sock:
        sock.close()
    return has_ipv6


HAS_IPV6 = _has_ipv6("::1")
