"""Result — explicit success/failure values for expected failure paths."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, cast

from .exceptions import ResultError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation that can fail without raising.

    Usage::

        result = Result.success(b"payload")
        result = Result.failure(PayloadEncodingError("bad payload"))

        if result.is_ok:
            send(result.value)
    """

    value: T | None = None
    error: Any = None
    is_ok: bool = True

    # ── Factory methods ──────────────────────────────────────────

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value, is_ok=True)

    @classmethod
    def failure(cls, error: Any) -> Result[T]:
        return cls(error=error, is_ok=False)

    # ── Accessors ────────────────────────────────────────────────

    @property
    def is_error(self) -> bool:
        return not self.is_ok

    def unwrap(self) -> T:
        """Return the value, raising the carried error on failure."""
        if self.is_ok:
            return cast("T", self.value)
        if isinstance(self.error, BaseException):
            raise self.error
        raise ResultError(self.error)

    def __bool__(self) -> bool:
        return self.is_ok
