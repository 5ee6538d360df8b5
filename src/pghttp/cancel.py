"""
Cooperative cancellation of in-flight requests.

A request polls its :class:`CancellationToken` between I/O chunks and while
it waits on a silent peer. Anything may set the token: another thread, a
host event loop or, through :func:`interrupt_bridge`, the process's
``SIGINT``.
"""
import logging
import signal
import threading
from contextlib import contextmanager
from types import FrameType
from typing import Any, Generator, List, Optional, Tuple

log = logging.getLogger(__name__)


class CancellationToken:
    """A flag that asks a running request to stop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} cancelled={self.cancelled}>"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()


def _redeliver(handler: Any, signum: int, frame: Optional[FrameType]) -> None:
    if callable(handler):
        handler(signum, frame)
    elif handler == signal.SIG_DFL:
        signal.raise_signal(signum)
    # SIG_IGN, or a handler not installed from Python: nothing to forward.


@contextmanager
def interrupt_bridge(
    token: CancellationToken, signum: int = signal.SIGINT
) -> Generator[CancellationToken, None, None]:
    """
    Route ``signum`` into ``token`` for the duration of the block.

    The previous handler is restored on exit. If the signal arrived while
    the block ran, it is then handed to that previous handler, so an outer
    ``KeyboardInterrupt`` (or whatever the host does) still happens.

    Signal handlers can only be installed from the main thread; elsewhere
    the block runs with the token alone.
    """
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    caught: List[Tuple[int, Optional[FrameType]]] = []

    def handler(sig: int, frame: Optional[FrameType]) -> None:
        caught.append((sig, frame))
        token.cancel()

    previous = signal.signal(signum, handler)
    try:
        yield token
    finally:
        signal.signal(signum, previous)
        if caught:
            log.debug("Forwarding signal %s to the previous handler", signum)
            _redeliver(previous, *caught[0])
