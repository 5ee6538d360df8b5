import logging
from contextlib import nullcontext
from types import TracebackType
from typing import Any, ContextManager, Dict, List, NamedTuple, Optional, Tuple, Type

from ._collections import HTTPHeaderDict
from .buffer import ByteSink, ReadBuffer
from .cancel import CancellationToken, interrupt_bridge
from .config import Config
from .connection import DEFAULT_USER_AGENT
from .exceptions import (
    AbortedByCallback,
    ConfigurationError,
    InvalidInputError,
    RequestCancelled,
    UnsupportedOptionError,
)
from .request import HTTPRequest, Method, RequestMethods
from .response import HTTPResponse, normalize_response
from .transport import SUPPORTED_PROTOCOLS, Transport
from .util.request import _CONTAINS_LINE_BREAK_RE, headers_to_wire, is_token
from .util.util import to_bytes

__all__ = ["ALLOWED_OPTIONS", "OptionSpec", "Session"]

log = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_MS = 1000
DEFAULT_TIMEOUT_MS = 5000

#: Redirect hops followed for every verb but HEAD.
MAX_REDIRECTS = 5

# Verbs whose content is sent as a form payload.
_FORM_VERBS = frozenset((Method.GET, Method.POST, Method.DELETE))
_CONTENT_REQUIRED = frozenset((Method.PUT, Method.POST))


class OptionSpec(NamedTuple):
    name: str
    type: type


ALLOWED_OPTIONS: Dict[str, OptionSpec] = {
    spec.name: spec
    for spec in (
        OptionSpec("proxy", str),
        OptionSpec("proxy_port", int),
        OptionSpec("proxy_userpwd", str),
        OptionSpec("userpwd", str),
        OptionSpec("user_agent", str),
        OptionSpec("timeout", int),
        OptionSpec("timeout_ms", int),
        OptionSpec("connect_timeout", int),
        OptionSpec("connect_timeout_ms", int),
        OptionSpec("ca_info", str),
        OptionSpec("ssl_cert", str),
        OptionSpec("ssl_key", str),
        OptionSpec("key_passwd", str),
        OptionSpec("ssl_verify_peer", int),
        OptionSpec("ssl_verify_host", int),
        OptionSpec("tcp_keepalive", int),
        OptionSpec("tcp_keepidle", int),
        OptionSpec("tcp_keepintvl", int),
    )
}


def _lookup_option(name: str) -> OptionSpec:
    try:
        return ALLOWED_OPTIONS[name.lower()]
    except (KeyError, AttributeError):
        raise UnsupportedOptionError(name) from None


def _typed_value(spec: OptionSpec, text: str) -> Any:
    if spec.type is int:
        try:
            return int(text)
        except ValueError:
            raise InvalidInputError(
                f"Option {spec.name!r} expects an integer, got {text!r}"
            ) from None
    return text


class Session(RequestMethods):
    """
    Runs requests on one reusable :class:`~pghttp.transport.Transport`.

    The session owns the transport handle and the runtime option table.
    Options set with :meth:`set_option` persist across requests and are
    replayed on the handle every time it is acquired. With
    ``config.keep_alive`` the handle and its connection survive between
    successful requests; any failure discards them.

    :param config:
        Runtime switches. Read from the environment when not given.

    :param handle_interrupts:
        Route ``SIGINT`` into the session's cancellation token while a
        request runs (main thread only), then hand the signal on to the
        previous handler.

    Example::

        >>> with Session() as session:
        ...     session.set_option("timeout_ms", "2000")
        ...     r = session.http_get("http://example.com/")
        >>> r.status
        200

    Not safe to share between threads; give every thread its own session.
    """

    def __init__(
        self, config: Optional[Config] = None, handle_interrupts: bool = False
    ) -> None:
        self.config = config if config is not None else Config.from_env()
        self.handle_interrupts = handle_interrupts
        self.cancellation = CancellationToken()
        self._transport: Optional[Transport] = None
        self._options: Dict[str, str] = {}

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} keep_alive={self.config.keep_alive} "
            f"options={len(self._options)}>"
        )

    def __enter__(self) -> "Session":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.close()

    @property
    def transport(self) -> Optional[Transport]:
        """The live transport handle, ``None`` before the first request or after a failure."""
        return self._transport

    def close(self) -> None:
        """Destroy the transport handle. Stored options are kept."""
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            log.debug("Destroyed transport handle")

    def cancel(self) -> None:
        """Ask the request running on this session to stop."""
        self.cancellation.cancel()

    # Transport handle lifecycle

    def acquire(self) -> Transport:
        """
        Get the transport handle ready for a request: create it or reset it,
        apply the baseline settings, then replay the option table.

        :raises ConfigurationError: if a stored option is rejected.
        """
        if self._transport is None:
            self._transport = Transport()
            log.debug("Created transport handle")
        else:
            self._transport.reset()
            log.debug("Reset transport handle")

        transport = self._transport
        self._apply_baseline(transport)
        for name, text in self.list_options():
            try:
                transport.setopt(name, _typed_value(ALLOWED_OPTIONS[name], text))
            except InvalidInputError as e:
                self.release(transport, keep_alive=False)
                raise ConfigurationError(
                    f"Cannot apply option {name!r}={text!r}: {e}"
                ) from e
        return transport

    def release(self, transport: Transport, keep_alive: bool) -> None:
        """
        Hand the handle back after a transaction. Without ``keep_alive`` it is
        destroyed so the next request starts from a fresh one.
        """
        if keep_alive:
            return
        transport.close()
        if transport is self._transport:
            self._transport = None
            log.debug("Destroyed transport handle")

    def _apply_baseline(self, transport: Transport) -> None:
        transport.connect_timeout_ms = DEFAULT_CONNECT_TIMEOUT_MS
        transport.timeout_ms = DEFAULT_TIMEOUT_MS
        if self.config.timeout_msec is not None:
            transport.timeout_ms = self.config.timeout_msec
        transport.user_agent = DEFAULT_USER_AGENT

    # Runtime option table

    def set_option(self, name: str, value: Any) -> bool:
        """
        Store an allow-listed option and apply it to the live handle.

        :raises UnsupportedOptionError: if ``name`` is not on the allow-list.
        :raises InvalidInputError: if ``value`` does not fit the option's type.
        """
        spec = _lookup_option(name)
        text = str(value)
        typed = _typed_value(spec, text)
        if self._transport is not None:
            self._transport.setopt(spec.name, typed)
        self._options[spec.name] = text
        log.debug("Set option %s=%r", spec.name, text)
        return True

    def list_options(self) -> List[Tuple[str, str]]:
        """Stored ``(name, value)`` pairs in allow-list order."""
        return [(name, self._options[name]) for name in ALLOWED_OPTIONS if name in self._options]

    def reset_options(self) -> bool:
        """Forget every stored option and put the live handle back on the baseline."""
        self._options.clear()
        if self._transport is not None:
            self._transport.reset()
            self._apply_baseline(self._transport)
        return True

    # Request dispatch

    def urlopen(  # type: ignore[override]
        self, request: HTTPRequest, cancel: Optional[CancellationToken] = None
    ) -> HTTPResponse:
        """
        Run one request and return its response.

        Non-2xx statuses are returned like any other response. Exactly one
        attempt is made.

        :param cancel:
            Token checked while the request runs. The session's own
            :attr:`cancellation` token is used (and cleared first) when not given.
        :raises InvalidInputError: before any network activity, for a malformed request.
        :raises RequestCancelled: if the token was set while the request ran.
        :raises TransportError: if the transaction failed.
        :raises TranscodingError: if the body does not match its declared charset.
        """
        verb, content, headers = self._validate(request)

        token = cancel
        if token is None:
            token = self.cancellation
            token.clear()

        transport = self.acquire()
        body_sink = ByteSink()
        header_sink = ByteSink()
        try:
            self._configure(transport, request, verb, content, headers)
            transport.write_function = body_sink.write
            transport.header_function = header_sink.write
            transport.progress_function = lambda *_: token.cancelled  # type: ignore[union-attr]

            with self._interrupts(token):
                try:
                    transport.perform()
                except AbortedByCallback as e:
                    log.info("Request cancelled: %s %s", request.method, request.uri)
                    raise RequestCancelled() from e
        except BaseException:
            self.release(transport, keep_alive=False)
            raise
        finally:
            # The buffers belong to this request only.
            transport.write_function = None
            transport.header_function = None
            transport.progress_function = None
            transport.upload = None
            transport.post_fields = None

        self.release(transport, keep_alive=self.config.keep_alive)

        info = transport.info
        return normalize_response(
            info.status, info.content_type, header_sink.getvalue(), body_sink.getvalue()
        )

    def _interrupts(self, token: CancellationToken) -> ContextManager[Any]:
        if self.handle_interrupts:
            return interrupt_bridge(token)
        return nullcontext(token)

    def _validate(
        self, request: HTTPRequest
    ) -> Tuple[Method, Optional[bytes], HTTPHeaderDict]:
        if request.method is None:
            raise InvalidInputError("HTTP request method is required")
        if request.uri is None:
            raise InvalidInputError("HTTP request uri is required")

        verb = Method.from_text(request.method)
        if verb is Method.UNKNOWN and not is_token(request.method):
            raise InvalidInputError(
                f"Method cannot contain non-token characters {request.method!r}"
            )

        content = None
        if request.content is not None:
            content = to_bytes(request.content)
            if not request.content_type:
                raise InvalidInputError(
                    "Content type is required when the request has content"
                )
            if _CONTAINS_LINE_BREAK_RE.search(request.content_type):
                raise InvalidInputError("Content type must not contain line breaks")
        elif verb in _CONTENT_REQUIRED:
            raise InvalidInputError(
                f"Content is required for the {verb.value} method"
            )

        headers = headers_to_wire(request.headers, keep_alive=self.config.keep_alive)
        return verb, content, headers

    def _configure(
        self,
        transport: Transport,
        request: HTTPRequest,
        verb: Method,
        content: Optional[bytes],
        headers: HTTPHeaderDict,
    ) -> None:
        transport.setopt("url", request.uri)
        transport.protocols = SUPPORTED_PROTOCOLS
        if verb is not Method.HEAD:
            transport.follow_location = True
            transport.max_redirects = MAX_REDIRECTS
        # Any supported compression, decoded transparently.
        transport.accept_encoding = ""
        transport.forbid_reuse = not self.config.keep_alive

        method = request.method if verb is Method.UNKNOWN else verb.value
        if content is not None:
            headers["Content-Type"] = request.content_type  # type: ignore[assignment]
            if verb in _FORM_VERBS:
                transport.post_fields = content
                transport.method = method
            else:
                upload = ReadBuffer(content)
                transport.upload = upload
                transport.infile_size = len(upload)
                transport.method = method
        elif verb is Method.HEAD:
            transport.nobody = True
        elif verb is not Method.GET:
            transport.method = method

        transport.headers = headers
        log.debug("Configured %s %s (content=%s)", method, request.uri, content is not None)
