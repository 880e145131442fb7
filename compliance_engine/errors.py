"""
Error taxonomy and the calculation result type.

Calculations never raise for an expected business failure (missing rule,
bounds violation). They return a ``Result`` carrying either the value or
one of the errors below, so callers can show the practitioner the exact
reason a figure could not be produced.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ComplianceEngineError(Exception):
    """Base class for every error raised or carried by the engine."""


class RuleNotFound(ComplianceEngineError):
    """No penalty rule (configured or default) matches the request."""


class ValidationFailure(ComplianceEngineError):
    """A computed figure violates its own rule's bounds."""


class ConfigurationFallback(ComplianceEngineError):
    """A rate table was missing and built-in defaults were used."""


class ItemNotFound(ComplianceEngineError):
    """A monitoring item id is unknown to the store."""


class InvalidTransition(ComplianceEngineError):
    """A monitoring item cannot move to the requested status."""


class ConcurrencyConflict(ComplianceEngineError):
    """Another writer saved the item since it was read."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a calculation: a value or a typed error, never both."""

    value: Optional[T] = None
    error: Optional[ComplianceEngineError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ComplianceEngineError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return str(self.error) if self.error is not None else ""

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
