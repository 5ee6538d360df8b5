from __future__ import annotations

import functools
import os
import platform
import signal
import threading
import typing

import pytest

try:
    try:
        import brotlicffi as brotli  # type: ignore[import]
    except ImportError:
        import brotli  # type: ignore[import]
except ImportError:
    brotli = None

# We use timeouts in two different ways in our tests
#
# 1. To make sure that the operation times out, we use a short timeout.
# 2. To make sure that the test does not hang even if the operation should
#    succeed, we use a long timeout, even more so on CI where tests can be
#    really slow.
SHORT_TIMEOUT_MS = 200
LONG_TIMEOUT_MS = 5000
if os.environ.get("CI") or os.environ.get("GITHUB_ACTIONS") == "true":
    LONG_TIMEOUT_MS = 20000


def notWindows(test: typing.Callable[..., None]) -> typing.Callable[..., None]:
    """Skips this test on Windows"""

    @functools.wraps(test)
    def wrapper(*args: typing.Any, **kwargs: typing.Any) -> None:
        msg = f"{test.__name__} does not run on Windows"
        if platform.system() == "Windows":
            pytest.skip(msg)
        return test(*args, **kwargs)

    return wrapper


def onlyBrotli() -> pytest.MarkDecorator:
    return pytest.mark.skipif(
        brotli is None, reason="only run if brotli library is present"
    )


def notBrotli() -> pytest.MarkDecorator:
    return pytest.mark.skipif(
        brotli is not None, reason="only run if a brotli library is absent"
    )


def onlyMainThreadSignals() -> pytest.MarkDecorator:
    return pytest.mark.skipif(
        threading.current_thread() is not threading.main_thread()
        or not hasattr(signal, "raise_signal"),
        reason="signal handlers can only be installed from the main thread",
    )
