from enum import Enum
from typing import TYPE_CHECKING, Any, List, Mapping, NamedTuple, Optional, Union

from ._collections import HeaderEntry
from .util.url import url_encode_map

if TYPE_CHECKING:
    from .response import HTTPResponse

__all__ = ["HTTPRequest", "Method", "RequestMethods", "http_header"]

_TYPE_CONTENT = Union[bytes, str]

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class Method(Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    HEAD = "HEAD"
    PATCH = "PATCH"
    #: Any other verb; the request's own text is sent verbatim.
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_text(cls, text: str) -> "Method":
        """
        Case-insensitive lookup of a verb.

        >>> Method.from_text("post")
        <Method.POST: 'POST'>
        >>> Method.from_text("PROPFIND")
        <Method.UNKNOWN: 'UNKNOWN'>
        """
        upper = text.upper()
        if upper != cls.UNKNOWN.value:
            for member in cls:
                if member.value == upper:
                    return member
        return cls.UNKNOWN


class HTTPRequest(NamedTuple):
    """
    The structured input of one request.

    ``content`` requires ``content_type``; ``str`` content is sent as UTF-8.
    ``headers`` must not carry ``Content-Type``, it is taken from
    ``content_type`` only.
    """

    method: str
    uri: str
    headers: Optional[List[HeaderEntry]] = None
    content_type: Optional[str] = None
    content: Optional[_TYPE_CONTENT] = None

    @property
    def verb(self) -> Method:
        return Method.from_text(self.method)


def http_header(field: str, value: str) -> HeaderEntry:
    """Build one header entry for :attr:`HTTPRequest.headers`."""
    return HeaderEntry(field, value)


def _append_query(uri: str, query: Optional[str]) -> str:
    if not query:
        return uri
    return f"{uri}{'&' if '?' in uri else '?'}{query}"


class RequestMethods:
    """
    Convenience mixin for classes who implement a :meth:`urlopen` method, such
    as :class:`~pghttp.sessionmanager.Session`.

    Provides one helper per verb. Key/value ``data`` maps are flattened with
    :func:`~pghttp.util.url.url_encode_map`: into the query string for
    :meth:`http_get`, into a form body for :meth:`http_post`.
    """

    def urlopen(self, request: HTTPRequest, **kw: Any) -> "HTTPResponse":  # Abstract
        raise NotImplementedError(
            "Classes extending RequestMethods must implement "
            "their own ``urlopen`` method."
        )

    def http(self, request: HTTPRequest, **kw: Any) -> "HTTPResponse":
        return self.urlopen(request, **kw)

    def http_get(
        self, uri: str, data: Optional[Mapping[str, Any]] = None, **kw: Any
    ) -> "HTTPResponse":
        if data is not None:
            uri = _append_query(uri, url_encode_map(data))
        return self.urlopen(HTTPRequest("GET", uri), **kw)

    def http_post(
        self,
        uri: str,
        content: Union[_TYPE_CONTENT, Mapping[str, Any]],
        content_type: Optional[str] = None,
        **kw: Any,
    ) -> "HTTPResponse":
        """
        POST ``content``. A key/value map is sent as a form body, in which
        case ``content_type`` defaults to
        ``application/x-www-form-urlencoded``.
        """
        if isinstance(content, Mapping):
            content = url_encode_map(content) or ""
            content_type = content_type or FORM_CONTENT_TYPE
        return self.urlopen(
            HTTPRequest("POST", uri, content_type=content_type, content=content), **kw
        )

    def http_put(
        self, uri: str, content: _TYPE_CONTENT, content_type: str, **kw: Any
    ) -> "HTTPResponse":
        return self.urlopen(
            HTTPRequest("PUT", uri, content_type=content_type, content=content), **kw
        )

    def http_patch(
        self, uri: str, content: _TYPE_CONTENT, content_type: str, **kw: Any
    ) -> "HTTPResponse":
        return self.urlopen(
            HTTPRequest("PATCH", uri, content_type=content_type, content=content), **kw
        )

    def http_delete(
        self,
        uri: str,
        content: Optional[_TYPE_CONTENT] = None,
        content_type: Optional[str] = None,
        **kw: Any,
    ) -> "HTTPResponse":
        return self.urlopen(
            HTTPRequest("DELETE", uri, content_type=content_type, content=content),
            **kw,
        )

    def http_head(self, uri: str, **kw: Any) -> "HTTPResponse":
        return self.urlopen(HTTPRequest("HEAD", uri), **kw)
