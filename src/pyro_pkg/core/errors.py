"""Core exception types for pyro-pkg."""
from typing import Iterable, Optional


class PyroError(Exception):
    """Base exception for all pyro-pkg errors.

    ``stage`` names the step of a package command that failed; the CLI
    reports it next to the message.
    """

    stage = "runtime"

    def __init__(self, message: str, locator: Optional[str] = None):
        super().__init__(message)
        self.locator = locator


class InvalidLocatorError(PyroError):
    """Raised when a dependency locator is empty or malformed."""

    stage = "fetch"


class ConfigError(PyroError):
    """Raised when environment configuration is invalid."""

    stage = "config"


class ManifestNotFoundError(PyroError):
    """Raised when pyro.mod is missing from the project directory."""

    stage = "load"


class ParseError(PyroError):
    """Raised when manifest or lockfile text is malformed."""

    stage = "parse"


class FetchError(PyroError):
    """Raised when a source cannot be cloned, checked out or read."""

    stage = "fetch"


class HashError(PyroError):
    """Raised when a source tree cannot be hashed."""

    stage = "hash"


class WriteError(PyroError):
    """Raised when manifest, lockfile or cache metadata cannot be written."""

    stage = "write"


class IntegrityError(PyroError):
    """Raised when a tree's checksum disagrees with the lockfile."""

    stage = "verify"

    def __init__(self, locator: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for {locator}: lockfile says {expected}, found {actual}",
            locator=locator,
        )
        self.expected = expected
        self.actual = actual


class InconsistentLockError(PyroError):
    """Raised when pyro.mod and pyro.lock list different locators."""

    stage = "verify"

    def __init__(self, missing: Iterable[str], stale: Iterable[str]):
        self.missing = sorted(missing)
        self.stale = sorted(stale)
        parts = []
        if self.missing:
            parts.append(f"not locked: {', '.join(self.missing)}")
        if self.stale:
            parts.append(f"locked but not in pyro.mod: {', '.join(self.stale)}")
        super().__init__(
            "pyro.lock does not match pyro.mod ("
            + "; ".join(parts)
            + "). Run 'pyro get <locator>' to re-resolve."
        )


class SyncError(PyroError):
    """Raised when one or more dependencies failed to fetch or verify."""

    stage = "sync"

    def __init__(self, report):
        self.report = report
        failed = ", ".join(outcome.locator for outcome in report.failures)
        super().__init__(f"{len(report.failures)} dependencies failed: {failed}")


class OperationCancelledError(PyroError):
    """Raised when an operation observes a cancelled token."""

    stage = "cancelled"
