import socket
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .connection import HTTPConnection

# Base Exceptions


class HTTPError(Exception):
    """Base exception used by this module."""

    pass


class InvalidInputError(ValueError, HTTPError):
    """Raised when a request, option value or encoder argument is malformed."""

    pass


class ConfigurationError(HTTPError):
    """Raised when the session or transport cannot be configured as asked."""

    pass


class UnsupportedOptionError(ConfigurationError):
    """Raised for runtime option names that are not on the allow-list."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Option {name!r} is not supported")
        self.name = name


class TranscodingError(ValueError, HTTPError):
    """Raised when a response body does not match its declared charset."""

    def __init__(self, charset: str, reason: UnicodeError) -> None:
        super().__init__(f"Response body is not valid {charset}: {reason}")
        self.charset = charset
        self.reason = reason


class RequestCancelled(HTTPError):
    """Raised when an in-flight request is cancelled by the host."""

    def __init__(self, message: str = "HTTP request cancelled") -> None:
        super().__init__(message)


class TransportError(HTTPError):
    """Base exception for failures of a single HTTP transaction.

    Subclasses carry a generic ``description`` which is used as the message
    when the failure has no more specific text attached.
    """

    description = "Transfer failed"

    def __str__(self) -> str:
        message = super().__str__()
        return message or self.description


# Leaf Exceptions


class LocationValueError(TransportError):
    """Raised when there is something wrong with a given URL input."""

    description = "URL using bad/illegal format or missing URL"


class LocationParseError(LocationValueError):
    """Raised when parse_url or similar fails to parse the URL input."""

    def __init__(self, location: str) -> None:
        message = f"Failed to parse: {location}"
        super().__init__(message)

        self.location = location


class URLSchemeUnknown(LocationValueError):
    """Raised when a URL input has a scheme outside the allowed protocols."""

    description = "Unsupported protocol"

    def __init__(self, scheme: Optional[str]) -> None:
        message = f"Protocol {scheme!r} not supported or disabled"
        super().__init__(message)

        self.scheme = scheme


class TimeoutError(TransportError):
    """Raised when a socket timeout error occurs.

    Catching this error will catch both :exc:`ReadTimeoutErrors
    <ReadTimeoutError>` and :exc:`ConnectTimeoutErrors <ConnectTimeoutError>`.
    """

    description = "Timeout was reached"


class ReadTimeoutError(TimeoutError):
    """Raised when the overall timeout expires while the transfer is running"""

    pass


class ConnectTimeoutError(TimeoutError):
    """Raised when a socket timeout occurs while connecting to a server"""

    pass


class NewConnectionError(ConnectTimeoutError):
    """Raised when we fail to establish a new connection. Usually ECONNREFUSED."""

    description = "Couldn't connect to server"

    def __init__(self, conn: "HTTPConnection", message: str) -> None:
        self.conn = conn
        super().__init__(message)


class NameResolutionError(NewConnectionError):
    """Raised when host name resolution fails."""

    description = "Couldn't resolve host name"

    def __init__(self, host: str, conn: "HTTPConnection", reason: socket.gaierror):
        message = f"Failed to resolve '{host}' ({reason})"
        super().__init__(conn, message)


class SSLError(TransportError):
    """Raised when the TLS handshake or certificate verification fails."""

    description = "SSL connect error"


class ProxyError(TransportError):
    """Raised when the connection to a proxy fails."""

    description = "Couldn't connect to proxy"

    # The original error is also available as __cause__.
    original_error: Exception

    def __init__(self, message: str, error: Exception) -> None:
        super().__init__(message, error)
        self.original_error = error

    def __str__(self) -> str:
        return f"{self.args[0]}: {self.original_error}"


class ProtocolError(TransportError):
    """Raised when something unexpected happens mid-request/response."""

    description = "Failure when receiving data from the peer"


class DecodeError(TransportError):
    """Raised when content-encoding based decoding of the body fails."""

    description = "Unrecognized or bad HTTP Content or Transfer-Encoding"


class TooManyRedirects(TransportError):
    """Raised when a redirect chain is longer than the configured maximum."""

    description = "Number of redirects hit maximum amount"

    def __init__(self, max_redirects: int) -> None:
        super().__init__(f"Maximum ({max_redirects}) redirects followed")
        self.max_redirects = max_redirects


class AbortedByCallback(TransportError):
    """Raised when the progress callback asks for the transfer to stop."""

    description = "Operation was aborted by an application callback"


class WriteError(TransportError):
    """Raised when a write or header callback does not take all the data it was given."""

    description = "Failed writing received data to disk/application"
