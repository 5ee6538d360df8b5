import logging
import re
from base64 import b64encode
from enum import Enum
from typing import IO, TYPE_CHECKING, Any, AnyStr, Dict, Iterable, Optional, Tuple, Union

from .._collections import HeaderEntry, HTTPHeaderDict
from ..exceptions import InvalidInputError, ProtocolError

if TYPE_CHECKING:
    from typing_extensions import Final

log = logging.getLogger(__name__)

ACCEPT_ENCODING = "gzip,deflate"
try:
    try:
        import brotlicffi as _unused_module_brotli  # type: ignore[import] # noqa: F401
    except ImportError:
        import brotli as _unused_module_brotli  # type: ignore[import] # noqa: F401
except ImportError:
    pass
else:
    ACCEPT_ENCODING += ",br"

# RFC 7230 token characters; used for header field names and verbs.
_CONTAINS_NON_TOKEN_CHAR_RE = re.compile(r"[^-!#$%&'*+.^_`|~0-9a-zA-Z]")
_CONTAINS_LINE_BREAK_RE = re.compile(r"[\r\n\x00]")

# Set only through the dedicated request attribute.
RESERVED_HEADER = "content-type"

# Always sent once, ahead of the caller's entries.
BUILTIN_HEADERS = frozenset(("connection", "charsets"))

_TYPE_HEADER_SOURCE = Iterable[Union[HeaderEntry, Tuple[str, str]]]


class _TYPE_FAILEDTELL(Enum):
    token = 0


_FAILEDTELL: "Final[_TYPE_FAILEDTELL]" = _TYPE_FAILEDTELL.token

_TYPE_BODY_POSITION = Union[int, _TYPE_FAILEDTELL]


def is_token(value: str) -> bool:
    return bool(value) and not _CONTAINS_NON_TOKEN_CHAR_RE.search(value)


def make_headers(
    keep_alive: Optional[bool] = None,
    basic_auth: Optional[str] = None,
    proxy_basic_auth: Optional[str] = None,
) -> Dict[str, str]:
    """
    Shortcuts for generating request headers.

    :param keep_alive:
        ``True`` adds 'Connection: Keep-Alive', ``False`` adds
        'Connection: close'. ``None`` leaves the header out.

    :param basic_auth:
        Colon-separated username:password string for 'authorization: basic ...'
        auth header.

    :param proxy_basic_auth:
        Colon-separated username:password string for 'proxy-authorization: basic ...'
        auth header.

    Example:

    .. code-block:: python

        import pghttp

        print(pghttp.util.make_headers(keep_alive=True, basic_auth="user:pass"))
        # {'Connection': 'Keep-Alive', 'Authorization': 'Basic dXNlcjpwYXNz'}
    """
    headers: Dict[str, str] = {}
    if keep_alive is not None:
        headers["Connection"] = "Keep-Alive" if keep_alive else "close"

    if basic_auth:
        headers[
            "Authorization"
        ] = f"Basic {b64encode(basic_auth.encode('latin-1')).decode()}"

    if proxy_basic_auth:
        headers[
            "Proxy-Authorization"
        ] = f"Basic {b64encode(proxy_basic_auth.encode('latin-1')).decode()}"

    return headers


def headers_to_wire(
    entries: Optional[_TYPE_HEADER_SOURCE], keep_alive: bool = False
) -> HTTPHeaderDict:
    """
    Turn a caller's header list into the header set handed to the transport.

    ``Connection`` (following ``keep_alive``) and ``Charsets: utf-8`` always
    come first and appear exactly once. Caller entries follow in their own
    order; entries with an empty field, a ``Content-Type`` field (the content
    type is only taken from the request's own attribute) or a field naming
    one of those two built-in headers are skipped with a warning.

    :raises InvalidInputError:
        if a field is not an RFC 7230 token or a value contains a line break.
    """
    wire = HTTPHeaderDict(make_headers(keep_alive=keep_alive))
    wire.add("Charsets", "utf-8")

    for entry in entries or ():
        field, value = entry
        if not field:
            log.warning("Skipping header entry with an empty field name")
            continue
        if field.lower() == RESERVED_HEADER:
            log.warning(
                "Skipping %r header entry, set the request content_type instead",
                field,
            )
            continue
        if field.lower() in BUILTIN_HEADERS:
            log.warning("Skipping %r header entry, it is always set by pghttp", field)
            continue
        if not is_token(field):
            raise InvalidInputError(f"Header field {field!r} is not a valid token")
        if value is None:
            value = ""
        if _CONTAINS_LINE_BREAK_RE.search(value):
            raise InvalidInputError(
                f"Header value for {field!r} must not contain line breaks"
            )
        wire.add(field, value)

    return wire


def set_file_position(
    body: Any, pos: Optional[_TYPE_BODY_POSITION]
) -> Optional[_TYPE_BODY_POSITION]:
    """
    If a position is provided, move file to that point.
    Otherwise, we'll attempt to record a position for future use.
    """
    if pos is not None:
        rewind_body(body, pos)
    elif getattr(body, "tell", None) is not None:
        try:
            pos = body.tell()
        except OSError:
            # This differentiates from None, allowing us to catch
            # a failed `tell()` later when trying to rewind the body.
            pos = _FAILEDTELL

    return pos


def rewind_body(body: IO[AnyStr], body_pos: _TYPE_BODY_POSITION) -> None:
    """
    Attempt to rewind body to a certain position.
    Used to replay a streamed request body on a redirect.

    :param body:
        File-like object that supports seek.

    :param int pos:
        Position to seek to in file.
    """
    body_seek = getattr(body, "seek", None)
    if body_seek is not None and isinstance(body_pos, int):
        try:
            body_seek(body_pos)
        except OSError as e:
            raise ProtocolError(
                "An error occurred when rewinding request body for redirect."
            ) from e
    elif body_pos is _FAILEDTELL:
        raise ProtocolError(
            "Unable to record file position for rewinding "
            "request body during a redirect."
        )
    else:
        raise ValueError(
            f"body_pos must be of type integer, instead it was {type(body_pos)}."
        )
