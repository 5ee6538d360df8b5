from __future__ import annotations

import typing

import pytest

from pghttp.config import KEEPALIVE_ENV, TIMEOUT_ENV, Config
from pghttp.sessionmanager import Session


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    # Sessions built without a config read these.
    monkeypatch.delenv(KEEPALIVE_ENV, raising=False)
    monkeypatch.delenv(TIMEOUT_ENV, raising=False)


@pytest.fixture()
def session() -> typing.Generator[Session, None, None]:
    with Session(Config()) as s:
        yield s


@pytest.fixture()
def keepalive_session() -> typing.Generator[Session, None, None]:
    with Session(Config(keep_alive=True)) as s:
        yield s
