import json
import logging
from decimal import Decimal
from typing import Any, Mapping, NamedTuple, Optional, Union
from urllib.parse import quote_plus, urlsplit

from ..exceptions import InvalidInputError, LocationParseError
from .util import to_bytes

log = logging.getLogger(__name__)

port_by_scheme = {"http": 80, "https": 443}


class Url(NamedTuple):
    """
    Datastructure for representing an HTTP URL. Used as a return value for
    :func:`parse_url`. Both the scheme and host are normalized as they are
    both case-insensitive according to RFC 3986.
    """

    scheme: Optional[str] = None
    auth: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    path: Optional[str] = None
    query: Optional[str] = None
    fragment: Optional[str] = None

    @property
    def request_uri(self) -> str:
        """Absolute path including the query string."""
        uri = self.path or "/"

        if self.query is not None:
            uri += "?" + self.query

        return uri

    @property
    def effective_port(self) -> Optional[int]:
        """Port to connect to, falling back to the scheme's default."""
        if self.port is not None:
            return self.port
        return port_by_scheme.get(self.scheme or "http")

    @property
    def netloc(self) -> Optional[str]:
        """Network location including host and port"""
        if self.host is None:
            return None
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port:
            return f"{host}:{self.port}"
        return host

    @property
    def url(self) -> str:
        """
        Convert self into a url

        This function should more or less round-trip with :func:`.parse_url`. The
        returned url may not be exactly the same as the url inputted to
        :func:`.parse_url`, but it should be equivalent by the RFC (e.g., urls
        with a blank port will have : removed).
        """
        url = ""

        # We use "is not None" we want things to happen with empty strings (or 0 port)
        if self.scheme is not None:
            url += self.scheme + "://"
        if self.auth is not None:
            url += self.auth + "@"
        if self.host is not None:
            url += self.netloc  # type: ignore[operator]
        if self.path is not None:
            url += self.path
        if self.query is not None:
            url += "?" + self.query
        if self.fragment is not None:
            url += "#" + self.fragment

        return url

    def __str__(self) -> str:
        return self.url


def parse_url(url: str) -> Url:
    """
    Given a url, return a parsed :class:`.Url` namedtuple. Missing parts are
    ``None``. The scheme and host are lower-cased, the path keeps its case.

    >>> parse_url('http://example.com/mail/?q=1')
    Url(scheme='http', auth=None, host='example.com', port=None, path='/mail/', query='q=1', fragment=None)
    """
    if not url:
        raise LocationParseError(url)

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise LocationParseError(url) from e

    scheme = parts.scheme.lower() or None
    host = parts.hostname
    if host is None:
        raise LocationParseError(url)
    auth = None
    if "@" in parts.netloc:
        auth = parts.netloc.rpartition("@")[0]

    return Url(
        scheme=scheme,
        auth=auth,
        host=host,
        port=port,
        path=parts.path or None,
        query=parts.query or None,
        fragment=parts.fragment or None,
    )


def url_encode(text: Union[str, bytes]) -> str:
    """
    Percent-encode ``text`` for use in a query string or form body.

    Space becomes ``+``, the unreserved characters ``A-Z a-z 0-9 - . _ ~``
    pass through and every other byte of the UTF-8 form becomes ``%XX``
    with upper-case hex digits.

    >>> url_encode("a b/c")
    'a+b%2Fc'
    """
    return quote_plus(to_bytes(text), safe="")


def _value_to_text(key: str, value: Any) -> Optional[str]:
    if value is None:
        return ""
    # bool before int: True is an int too
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    log.warning("Skipping key %r, composite values cannot be url-encoded", key)
    return None


def url_encode_map(data: Union[Mapping[str, Any], str, bytes]) -> Optional[str]:
    """
    Flatten a key/value map into a ``key=value&key=value`` form body.

    ``data`` is a mapping or the JSON text of an object. Entries are emitted
    in the map's own order; empty keys and composite values (lists, nested
    objects) are skipped. Returns ``None`` when nothing was emitted.

    :raises InvalidInputError: if ``data`` is not a key/value map.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise InvalidInputError(f"Cannot url-encode invalid JSON: {e}") from e

    if not isinstance(data, Mapping):
        raise InvalidInputError(
            f"Can only url-encode a key/value map, not {type(data).__name__}"
        )

    pairs = []
    for key, value in data.items():
        if not key:
            continue
        key = str(key)
        text = _value_to_text(key, value)
        if text is None:
            continue
        pairs.append(f"{url_encode(key)}={url_encode(text)}")

    if not pairs:
        return None
    return "&".join(pairs)
