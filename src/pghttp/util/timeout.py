import time
from typing import Optional

from ..exceptions import InvalidInputError

# Tests mock this.
current_time = time.monotonic


class Timeout:
    """Timeout bookkeeping for one transaction.

    Both limits are in milliseconds; ``None`` or ``0`` means no limit.

    :param connect:
        The maximum amount of time to wait for a connection attempt to a
        server to succeed.

    :param total:
        The maximum amount of time the whole transaction may take, from the
        first connection attempt until the last body byte, redirects
        included. The connect timeout is clamped to what is left of it.

    .. code-block:: python

        timeout = Timeout(connect=1000, total=5000)
        timeout.start()
        sock.settimeout(timeout.connect_timeout)
    """

    def __init__(self, connect: Optional[int] = None, total: Optional[int] = None) -> None:
        self._connect = self._validate_timeout(connect, "connect")
        self.total = self._validate_timeout(total, "total")
        self._start: Optional[float] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(connect={self._connect!r}, total={self.total!r})"

    @classmethod
    def _validate_timeout(cls, value: Optional[int], name: str) -> Optional[int]:
        if value is None:
            return None

        if isinstance(value, bool):
            raise InvalidInputError(
                "Timeout cannot be a boolean value. It must be an int or None."
            )
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise InvalidInputError(
                f"Timeout value {name} was {value!r}, but it must be an int or None."
            ) from None

        if value < 0:
            raise InvalidInputError(
                f"Attempted to set {name} timeout to {value}, but the "
                "timeout cannot be set to a value less than 0."
            )
        return value or None

    def start(self) -> float:
        """Start the clock for the transaction."""
        self._start = current_time()
        return self._start

    def get_elapsed(self) -> float:
        """Seconds since :meth:`start`, or ``0.0`` if it was never called."""
        if self._start is None:
            return 0.0
        return current_time() - self._start

    @property
    def remaining(self) -> Optional[float]:
        """Seconds left of the total budget, ``None`` if there is none."""
        if self.total is None:
            return None
        return max(self.total / 1000.0 - self.get_elapsed(), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining
        return remaining is not None and remaining <= 0

    @property
    def connect_timeout(self) -> Optional[float]:
        """Socket timeout for a connection attempt, in seconds."""
        remaining = self.remaining
        if self._connect is None:
            return remaining
        connect = self._connect / 1000.0
        if remaining is None:
            return connect
        return min(connect, remaining)

    @property
    def read_timeout(self) -> Optional[float]:
        """Socket timeout for the next send or receive, in seconds."""
        return self.remaining
