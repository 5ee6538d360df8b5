import os
from typing import Mapping, NamedTuple, Optional

from .exceptions import ConfigurationError

KEEPALIVE_ENV = "PGHTTP_KEEPALIVE"
TIMEOUT_ENV = "PGHTTP_TIMEOUT_MSEC"

_BOOLEAN_STATES = {
    "1": True,
    "yes": True,
    "true": True,
    "on": True,
    "0": False,
    "no": False,
    "false": False,
    "off": False,
}


class Config(NamedTuple):
    """
    Runtime switches of a :class:`~pghttp.sessionmanager.Session`.

    :param keep_alive:
        Keep the connection open for the next request instead of closing it
        after every transaction. Also selects the ``Connection:`` header.

    :param timeout_msec:
        Overall timeout per request in milliseconds. ``None`` keeps the
        session's baseline timeout.
    """

    keep_alive: bool = False
    timeout_msec: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Read ``PGHTTP_KEEPALIVE`` and ``PGHTTP_TIMEOUT_MSEC``.

        :raises ConfigurationError: if either variable holds a malformed value.
        """
        if environ is None:
            environ = os.environ

        keep_alive = False
        raw = environ.get(KEEPALIVE_ENV, "").strip()
        if raw:
            try:
                keep_alive = _BOOLEAN_STATES[raw.lower()]
            except KeyError:
                raise ConfigurationError(
                    f"{KEEPALIVE_ENV} must be a boolean, not {raw!r}"
                ) from None

        timeout_msec = None
        raw = environ.get(TIMEOUT_ENV, "").strip()
        if raw:
            try:
                timeout_msec = int(raw)
            except ValueError:
                raise ConfigurationError(
                    f"{TIMEOUT_ENV} must be an integer, not {raw!r}"
                ) from None
            if timeout_msec < 0:
                raise ConfigurationError(f"{TIMEOUT_ENV} cannot be negative")

        return cls(keep_alive=keep_alive, timeout_msec=timeout_msec)
