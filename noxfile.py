from __future__ import annotations

import nox

nox.options.error_on_missing_interpreters = True


def tests_impl(
    session: nox.Session,
    extras: str = "test,brotli",
    byte_string_comparisons: bool = False,
    pytest_extra_args: list[str] = [],
) -> None:
    # Install deps and the package itself.
    session.install(f".[{extras}]")
    # Print the Python version and bytesize.
    session.run("python", "--version")
    session.run("python", "-c", "import struct; print(struct.calcsize('P') * 8)")

    # Environment variables being passed to the pytest run.
    pytest_session_envvars = {
        "PYTHONWARNINGS": "always::DeprecationWarning",
    }

    # We use parallel mode and then combine in a later CI step
    session.run(
        "python",
        *(("-bb",) if byte_string_comparisons else ()),
        "-m",
        "coverage",
        "run",
        "--parallel-mode",
        "-m",
        "pytest",
        "-v",
        "-ra",
        "--tb=native",
        "--durations=10",
        "--strict-config",
        "--strict-markers",
        *pytest_extra_args,
        *(session.posargs or ("test/",)),
        env=pytest_session_envvars,
    )


@nox.session(python=["3.9", "3.10", "3.11", "3.12", "3.13", "pypy3.10"])
def test(session: nox.Session) -> None:
    tests_impl(session)


@nox.session(python="3")
def test_without_brotli(session: nox.Session) -> None:
    """Check that responses still decode gzip and deflate when no brotli
    package is installed and ``br`` is never advertised.
    """
    tests_impl(session, extras="test")


@nox.session(python="3")
def coverage(session: nox.Session) -> None:
    session.install("coverage>=7.2.7")
    session.run("coverage", "combine")
    session.run("coverage", "report", "-m")


@nox.session(python="3.12")
def mypy(session: nox.Session) -> None:
    """Run mypy."""
    session.install("mypy", ".[test]")
    session.run("mypy", "--version")
    session.run(
        "mypy",
        "-p",
        "dummyserver",
        "-m",
        "noxfile",
        "-p",
        "pghttp",
        "-p",
        "test",
    )
