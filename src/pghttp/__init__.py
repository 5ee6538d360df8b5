"""
Synchronous HTTP requests as structured values: one request record in, one
response record out, with persistent session options and cooperative
cancellation.
"""

# Set default logging handler to avoid "No handler found" warnings.
import atexit
import logging
from logging import NullHandler
from typing import Any, List, Mapping, Optional, TextIO, Tuple, Union

from . import exceptions
from ._collections import HeaderEntry, HTTPHeaderDict
from ._version import __version__
from .cancel import CancellationToken, interrupt_bridge
from .config import Config
from .request import HTTPRequest, Method, RequestMethods, http_header
from .response import HTTPResponse
from .sessionmanager import Session
from .transport import Transport, TransferInfo
from .util.response import parse_headers
from .util.url import url_encode, url_encode_map
from .util.util import bytes_to_text, text_to_bytes

__version__ = __version__

__all__ = (
    "CancellationToken",
    "Config",
    "HTTPHeaderDict",
    "HTTPRequest",
    "HTTPResponse",
    "HeaderEntry",
    "Method",
    "RequestMethods",
    "Session",
    "TransferInfo",
    "Transport",
    "add_stderr_logger",
    "bytes_to_text",
    "exceptions",
    "http",
    "http_delete",
    "http_get",
    "http_head",
    "http_header",
    "http_patch",
    "http_post",
    "http_put",
    "interrupt_bridge",
    "list_options",
    "parse_headers",
    "reset_options",
    "set_option",
    "text_to_bytes",
    "url_encode",
    "url_encode_map",
)

logging.getLogger(__name__).addHandler(NullHandler())


def add_stderr_logger(level: int = logging.DEBUG) -> "logging.StreamHandler[TextIO]":
    """
    Helper for quickly adding a StreamHandler to the logger. Useful for
    debugging.

    Returns the handler after adding it.
    """
    # This method needs to be in this __init__.py to get the __name__ correct
    # even if pghttp is vendored within another package.
    logger = logging.getLogger(__name__)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.debug("Added a stderr logging handler to logger: %s", __name__)
    return handler


# ... Clean up.
del NullHandler


_DEFAULT_SESSION: Optional[Session] = None


def _default_session() -> Session:
    # Created on first use so a bad environment only fails the first request.
    global _DEFAULT_SESSION
    if _DEFAULT_SESSION is None:
        _DEFAULT_SESSION = Session(handle_interrupts=True)
    return _DEFAULT_SESSION


@atexit.register
def _teardown() -> None:
    if _DEFAULT_SESSION is not None:
        _DEFAULT_SESSION.close()


def http(request: HTTPRequest) -> HTTPResponse:
    """
    A convenience, top-level request method. It uses a module-global ``Session`` instance.
    Therefore, its options and connection are shared across everything in the process
    relying on it. To avoid side effects create a new ``Session`` instance and use it instead.
    """
    return _default_session().http(request)


def http_get(uri: str, data: Optional[Mapping[str, Any]] = None) -> HTTPResponse:
    return _default_session().http_get(uri, data)


def http_post(
    uri: str, content: Union[bytes, str, Mapping[str, Any]], content_type: Optional[str] = None
) -> HTTPResponse:
    return _default_session().http_post(uri, content, content_type)


def http_put(uri: str, content: Union[bytes, str], content_type: str) -> HTTPResponse:
    return _default_session().http_put(uri, content, content_type)


def http_patch(uri: str, content: Union[bytes, str], content_type: str) -> HTTPResponse:
    return _default_session().http_patch(uri, content, content_type)


def http_delete(
    uri: str,
    content: Optional[Union[bytes, str]] = None,
    content_type: Optional[str] = None,
) -> HTTPResponse:
    return _default_session().http_delete(uri, content, content_type)


def http_head(uri: str) -> HTTPResponse:
    return _default_session().http_head(uri)


def set_option(name: str, value: Any) -> bool:
    return _default_session().set_option(name, value)


def list_options() -> List[Tuple[str, str]]:
    return _default_session().list_options()


def reset_options() -> bool:
    return _default_session().reset_options()
