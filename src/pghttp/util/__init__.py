# For convenience, allow you to access the helpers from here.
from .connection import is_connection_dropped
from .request import headers_to_wire, make_headers
from .response import get_charset, parse_headers
from .ssl_ import create_pghttp_context, resolve_cert_reqs, ssl_wrap_socket
from .timeout import Timeout
from .url import Url, parse_url, url_encode, url_encode_map
from .util import bytes_to_text, text_to_bytes
from .wait import wait_for_read, wait_for_write

__all__ = (
    "Timeout",
    "Url",
    "bytes_to_text",
    "create_pghttp_context",
    "get_charset",
    "headers_to_wire",
    "is_connection_dropped",
    "make_headers",
    "parse_headers",
    "parse_url",
    "resolve_cert_reqs",
    "ssl_wrap_socket",
    "text_to_bytes",
    "url_encode",
    "url_encode_map",
    "wait_for_read",
    "wait_for_write",
)
