"""
Structured error types for croncmd.

Every error raised or reported by the scheduler carries a category, a small
context dict and an optional chained cause, so that it can be rendered as a
single structured log line.

Propagation:
    Registration-time errors (``SchedulingError``, ``ConfigError``) stop the
    program before the run loop starts. Run-time errors (``ExecutionError``
    and its subclasses) never propagate: the executor returns them inside a
    ``JobRun`` and they surface only as log lines.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                       CroncmdError                           │
        │              (category, context, cause)                      │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  SchedulingError        ExecutionError        ConfigError    │
        │  (SCHEDULE, fatal)      (EXECUTION)           (CONFIG, fatal)│
        │       │                      │                     │         │
        │  ParseError             TokenizeError         CrontabError   │
        │                         SpawnError                           │
        │                         NonZeroExit                          │
        │                         SignalTermination                    │
        │                         RuntimeFault                         │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ParseError("expected exactly 5 fields, found 4", spec="* * * *")
    >>> error.category
    <ErrorCategory.PARSE: 'PARSE'>
    >>> error.context["spec"]
    '* * * *'
    >>> is_fatal(error)
    True
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for classification in log output."""

    PARSE = "PARSE"
    SCHEDULE = "SCHEDULE"
    EXECUTION = "EXECUTION"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


class CroncmdError(Exception):
    """
    Base exception for all croncmd errors.

    Subclasses set ``default_category`` and ``fatal``; instances carry the
    human-readable ``message``, a ``context`` dict of structured fields and
    the underlying ``cause`` (also chained as ``__cause__``).

    Examples:
        >>> try:
        ...     raise FileNotFoundError("no such file")
        ... except FileNotFoundError as e:
        ...     error = SpawnError("cannot start 'backup'", cause=e)
        >>> error.cause
        FileNotFoundError('no such file')
        >>> error.to_dict()["category"]
        'EXECUTION'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    # Whether this error must abort startup
    fatal: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        cause: BaseException | None = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context)
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CroncmdError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for structured logging."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# Registration errors (fatal)
# =============================================================================


class SchedulingError(CroncmdError):
    """A job could not be registered with the scheduler."""

    default_category = ErrorCategory.SCHEDULE
    fatal = True


class ParseError(SchedulingError):
    """A schedule expression is malformed.

    ``reason`` describes what is wrong; the offending expression, when known,
    is available as ``spec``.
    """

    default_category = ErrorCategory.PARSE

    def __init__(self, reason: str, *, spec: str | None = None, **kwargs: Any):
        if spec is not None:
            kwargs["spec"] = spec
        super().__init__(reason, **kwargs)
        self.reason = reason
        self.spec = spec

    def __str__(self) -> str:
        if self.spec is not None:
            return f"{self.reason} (spec: {self.spec!r})"
        return self.reason


class ConfigError(CroncmdError):
    """Invalid or unreadable configuration."""

    default_category = ErrorCategory.CONFIG
    fatal = True


class CrontabError(ConfigError):
    """A crontab file or positional instruction list cannot be used."""


# =============================================================================
# Run-time errors (contained to a single run)
# =============================================================================


class ExecutionError(CroncmdError):
    """A single job run failed. Never escalated past its own dispatch."""

    default_category = ErrorCategory.EXECUTION


class TokenizeError(ExecutionError):
    """The command string cannot be split into an argument vector."""


class SpawnError(ExecutionError):
    """The subprocess could not be started (not found, permission denied)."""


class NonZeroExit(ExecutionError):
    """The subprocess exited with a non-zero status."""

    def __init__(self, returncode: int, **kwargs: Any):
        super().__init__(f"exit status {returncode}", returncode=returncode, **kwargs)
        self.returncode = returncode


class SignalTermination(ExecutionError):
    """The subprocess was terminated by a signal."""

    def __init__(self, signum: int, signame: str | None = None, **kwargs: Any):
        label = signame or f"signal {signum}"
        super().__init__(f"terminated by {label}", signal=signum, **kwargs)
        self.signum = signum
        self.signame = signame


class RuntimeFault(ExecutionError):
    """An unexpected exception escaped a dispatch and was contained."""

    default_category = ErrorCategory.INTERNAL


# =============================================================================
# Helpers
# =============================================================================


def is_fatal(error: BaseException) -> bool:
    """Return True when ``error`` must abort startup."""
    if isinstance(error, CroncmdError):
        return error.fatal
    return False


def categorize_error(error: BaseException) -> ErrorCategory:
    """Best-effort category for any exception."""
    if isinstance(error, CroncmdError):
        return error.category
    if isinstance(error, OSError):
        return ErrorCategory.EXECUTION
    return ErrorCategory.INTERNAL


__all__ = [
    "ErrorCategory",
    "CroncmdError",
    "SchedulingError",
    "ParseError",
    "ConfigError",
    "CrontabError",
    "ExecutionError",
    "TokenizeError",
    "SpawnError",
    "NonZeroExit",
    "SignalTermination",
    "RuntimeFault",
    "is_fatal",
    "categorize_error",
]
