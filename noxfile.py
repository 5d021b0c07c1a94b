import nox

PYTHON_VERSIONS = ["3.10", "3.11", "3.12", "3.13"]


def _install(session: nox.Session) -> None:
    """Install the project with the test extra into the nox virtualenv."""
    session.install("-e", ".[test]")


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Run full test suite across Python versions."""
    _install(session)
    session.run("pytest")


@nox.session(python=PYTHON_VERSIONS)
def tests_core(session: nox.Session) -> None:
    """Run store and checkout tests only (no HTTP layer)."""
    _install(session)
    session.run("pytest", "tests/test_database.py", "tests/test_checkout.py")
