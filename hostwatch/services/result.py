"""
Explicit error handling for expected failures.

Metric reads and host probes fail routinely (permissions, sleeping hosts,
missing counters). Those paths return a ``Result`` instead of raising so the
caller decides on the fallback value in one place.
"""

from typing import Generic, TypeVar, cast

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


class Result(Generic[ValueT, ErrorT]):
    """
    Either a value or an error, never both.

    When to use: failure is an expected outcome, not an exceptional one.
    """

    def __init__(self, value: ValueT | None = None, error: ErrorT | None = None) -> None:
        if value is not None and error is not None:
            raise ValueError("Result cannot have both value and error")
        if value is None and error is None:
            raise ValueError("Result must have either value or error")
        self._value: ValueT | None = value
        self._error: ErrorT | None = error

    @classmethod
    def ok(cls, value: ValueT) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self._error is None

    def is_err(self) -> bool:
        return self._error is not None

    def unwrap(self) -> ValueT:
        if self._error is not None:
            raise self._error
        return cast(ValueT, self._value)

    def unwrap_or(self, default: ValueT) -> ValueT:
        """The value, or ``default`` when this holds an error."""
        if self._error is not None:
            return default
        return cast(ValueT, self._value)

    def unwrap_err(self) -> ErrorT:
        if self._error is None:
            raise ValueError("Called unwrap_err() on an Ok value")
        return self._error
