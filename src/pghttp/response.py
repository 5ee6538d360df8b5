import json as _json
import logging
import zlib
from typing import Any, List, NamedTuple, Optional, Tuple, Type

try:
    try:
        import brotlicffi as brotli  # type: ignore[import]
    except ImportError:
        import brotli  # type: ignore[import]
except ImportError:
    brotli = None

from ._collections import HeaderEntry
from .exceptions import DecodeError, TranscodingError
from .util.response import get_charset, parse_headers
from .util.util import CANONICAL_ENCODING

log = logging.getLogger(__name__)


class ContentDecoder:
    def decompress(self, data: bytes) -> bytes:
        raise NotImplementedError()

    def flush(self) -> bytes:
        raise NotImplementedError()


class DeflateDecoder(ContentDecoder):
    # Servers send both zlib-wrapped and raw deflate streams for "deflate".
    def __init__(self) -> None:
        self._first_try = True
        self._data = b""
        self._obj = zlib.decompressobj()

    def decompress(self, data: bytes) -> bytes:
        if not data:
            return data

        if not self._first_try:
            return self._obj.decompress(data)

        self._data += data
        try:
            decompressed = self._obj.decompress(data)
            if decompressed:
                self._first_try = False
                self._data = None  # type: ignore[assignment]
            return decompressed
        except zlib.error:
            self._first_try = False
            self._obj = zlib.decompressobj(-zlib.MAX_WBITS)
            try:
                return self.decompress(self._data)
            finally:
                self._data = None  # type: ignore[assignment]

    def flush(self) -> bytes:
        return self._obj.flush()


class GzipDecoderState:

    FIRST_MEMBER = 0
    OTHER_MEMBERS = 1
    SWALLOW_DATA = 2


class GzipDecoder(ContentDecoder):
    def __init__(self) -> None:
        self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)
        self._state = GzipDecoderState.FIRST_MEMBER

    def decompress(self, data: bytes) -> bytes:
        ret = bytearray()
        if self._state == GzipDecoderState.SWALLOW_DATA or not data:
            return bytes(ret)
        while True:
            try:
                ret += self._obj.decompress(data)
            except zlib.error:
                previous_state = self._state
                # Ignore data after the first error
                self._state = GzipDecoderState.SWALLOW_DATA
                if previous_state == GzipDecoderState.OTHER_MEMBERS:
                    # Allow trailing garbage acceptable in other gzip clients
                    return bytes(ret)
                raise
            data = self._obj.unused_data
            if not data:
                return bytes(ret)
            self._state = GzipDecoderState.OTHER_MEMBERS
            self._obj = zlib.decompressobj(16 + zlib.MAX_WBITS)

    def flush(self) -> bytes:
        return self._obj.flush()


if brotli is not None:

    class BrotliDecoder(ContentDecoder):
        # Supports both 'brotlicffi' and 'Brotli' packages
        # since they share an import name.
        def __init__(self) -> None:
            self._obj = brotli.Decompressor()
            if hasattr(self._obj, "decompress"):
                setattr(self, "decompress", self._obj.decompress)
            else:
                setattr(self, "decompress", self._obj.process)

        def flush(self) -> bytes:
            if hasattr(self._obj, "flush"):
                return self._obj.flush()  # type: ignore[no-any-return]
            return b""


class MultiDecoder(ContentDecoder):
    """
    From RFC7231:
        If one or more encodings have been applied to a representation, the
        sender that applied the encodings MUST generate a Content-Encoding
        header field that lists the content codings in the order in which
        they were applied.
    """

    def __init__(self, modes: str) -> None:
        self._decoders = [_get_decoder(m.strip()) for m in modes.split(",")]

    def flush(self) -> bytes:
        return self._decoders[0].flush()

    def decompress(self, data: bytes) -> bytes:
        for d in reversed(self._decoders):
            data = d.decompress(data)
        return data


def _get_decoder(mode: str) -> ContentDecoder:
    if "," in mode:
        return MultiDecoder(mode)

    if mode == "gzip":
        return GzipDecoder()

    if brotli is not None and mode == "br":
        return BrotliDecoder()

    return DeflateDecoder()


CONTENT_DECODERS = ["gzip", "deflate"]
if brotli is not None:
    CONTENT_DECODERS += ["br"]

DECODER_ERROR_CLASSES: Tuple[Type[Exception], ...] = (IOError, zlib.error)
if brotli is not None:
    DECODER_ERROR_CLASSES += (brotli.error,)


class BodyDecoder:
    """
    Undo the ``Content-Encoding`` of a response body chunk by chunk.

    Unknown codings pass through untouched, the same as a response without
    a ``Content-Encoding`` header.
    """

    def __init__(self, content_encoding: Optional[str]) -> None:
        self.content_encoding = (content_encoding or "").lower()
        self._decoder: Optional[ContentDecoder] = None

        if self.content_encoding in CONTENT_DECODERS:
            self._decoder = _get_decoder(self.content_encoding)
        elif "," in self.content_encoding:
            encodings = [
                e.strip()
                for e in self.content_encoding.split(",")
                if e.strip() in CONTENT_DECODERS
            ]
            if encodings:
                self._decoder = _get_decoder(self.content_encoding)

    def decode(self, data: bytes, flush: bool = False) -> bytes:
        if self._decoder is None:
            return data

        try:
            if data:
                data = self._decoder.decompress(data)
            if flush:
                data += self._decoder.flush()
        except DECODER_ERROR_CLASSES as e:
            raise DecodeError(
                "Received response with content-encoding: %s, but "
                "failed to decode it." % self.content_encoding,
                e,
            ) from e
        return data


class HTTPResponse(NamedTuple):
    """
    The structured result of one request.

    ``headers`` holds every header line the transaction received, redirect
    hops included, in arrival order; ``None`` when there were none.
    ``content`` is ``None`` for an empty body. When the response declared a
    charset the body has already been transcoded to UTF-8 and ``charset``
    names the declared encoding.
    """

    status: int
    content_type: Optional[str] = None
    headers: Optional[List[HeaderEntry]] = None
    content: Optional[bytes] = None
    charset: Optional[str] = None

    def getheader(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Value of the last ``name`` header received, matched case-insensitively."""
        name = name.lower()
        for entry in reversed(self.headers or ()):
            if entry.field.lower() == name:
                return entry.value
        return default

    @property
    def text(self) -> Optional[str]:
        if self.content is None:
            return None
        if self.charset is not None:
            return self.content.decode(CANONICAL_ENCODING)
        return self.content.decode(CANONICAL_ENCODING, "replace")

    def json(self) -> Any:
        """
        Parses the body of the HTTP response as JSON.

        This method can raise either `UnicodeDecodeError` or `json.JSONDecodeError`.
        """
        data = (self.content or b"").decode(CANONICAL_ENCODING)
        return _json.loads(data)


def transcode(body: bytes, charset: str) -> bytes:
    """
    Re-encode ``body`` from ``charset`` to UTF-8.

    :raises TranscodingError: if ``body`` is not valid ``charset`` text.
    """
    try:
        text = body.decode(charset)
    except UnicodeDecodeError as e:
        raise TranscodingError(charset, e) from e
    return text.encode(CANONICAL_ENCODING)


def normalize_response(
    status: int,
    content_type: Optional[str],
    raw_headers: bytes,
    body: bytes,
) -> HTTPResponse:
    """
    Assemble the :class:`HTTPResponse` from what one transaction collected.

    :param raw_headers:
        the header callback output, every header block of the transaction.
    :param body:
        the decoded response body exactly as received.
    """
    charset = get_charset(content_type)
    headers = parse_headers(raw_headers) if raw_headers else None

    content: Optional[bytes] = None
    if body:
        content = transcode(body, charset) if charset is not None else body

    log.debug(
        "Normalized response: status=%s content_type=%r charset=%s length=%d",
        status,
        content_type,
        charset,
        len(content or b""),
    )
    return HTTPResponse(
        status=status,
        content_type=content_type,
        headers=headers,
        content=content,
        charset=charset,
    )
