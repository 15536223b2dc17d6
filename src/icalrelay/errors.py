"""Error taxonomy for the module execution engine.

Every error carries a ``delta``: the signed event count already applied to the
document before the error was raised (non-zero only for multi-source
aggregation that fails part-way through).
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all recoverable module errors."""

    def __init__(self, message: str, *, delta: int = 0) -> None:
        super().__init__(message)
        self.delta = delta


class MissingParameter(RelayError):
    """A mandatory module parameter is absent."""

    def __init__(self, name: str, *, module: str | None = None, message: str | None = None) -> None:
        where = f" for module '{module}'" if module else ""
        super().__init__(message or f"missing mandatory parameter '{name}'{where}")
        self.parameter = name
        self.module = module


class InvalidParameter(RelayError, ValueError):
    """A parameter is malformed or conflicts with another parameter.

    Also a ``ValueError`` so that pydantic validators can raise it directly.
    """


class UnknownModule(InvalidParameter):
    """A pipeline entry names a module that does not exist."""


class NotFound(RelayError):
    """A referenced id, profile or file does not exist."""


class SourceUnavailable(RelayError):
    """A calendar source could not be fetched."""


class SourceNotFound(SourceUnavailable, NotFound):
    """A local calendar file does not exist."""


class PersistenceFailure(RelayError):
    """Writing a calendar to disk failed."""


class InvariantViolation(Exception):
    """A module returned a delta outside of its effect class.

    Deliberately not a :class:`RelayError`: the engine never collects it as a
    per-module failure, it always propagates.
    """
