"""Nox sessions for the royale giveaway bot."""

import nox

nox.options.sessions = ["tests", "lint"]
PYTHON = "3.11"
COVERAGE_TARGETS = ("--cov=royale_bot", "--cov=royalebot")
LINT_PATHS = ("royale_bot", "royalebot.py", "scripts", "tests", "noxfile.py")


@nox.session(python=PYTHON)
def tests(session):
    """Run the test suite with coverage."""
    session.install("-e", ".[dev]")
    session.run(
        "pytest",
        *COVERAGE_TARGETS,
        "--cov-report=term-missing",
        "--cov-report=xml:coverage.xml",
        "--cov-fail-under=80",
        *session.posargs,
    )


@nox.session(python=PYTHON)
def lint(session):
    """Check style with ruff."""
    session.install("ruff>=0.1.0")
    session.run("ruff", "check", *LINT_PATHS)
    session.run("ruff", "format", "--check", *LINT_PATHS)


@nox.session(python=PYTHON)
def format_code(session):
    """Apply ruff formatting and autofixes."""
    session.install("ruff>=0.1.0")
    session.run("ruff", "format", *LINT_PATHS)
    session.run("ruff", "check", "--fix", *LINT_PATHS)


@nox.session(python=PYTHON)
def test_single(session):
    """Run one test file or node id, e.g. ``nox -s test_single -- tests/test_engine.py``."""
    if not session.posargs:
        session.error("Please provide a test file or function to run")
    session.install("-e", ".[dev]")
    session.run("pytest", "-v", *session.posargs)
