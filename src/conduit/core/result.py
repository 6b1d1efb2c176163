"""
Result values for request handlers.

A handler may report an expected failure by returning ``Err`` instead of
raising.  The transaction behavior treats ``Err`` exactly like an exception
for commit purposes: the transaction is rolled back and the ``Err`` is handed
back to the caller unchanged.

Examples:
    >>> Ok(3).unwrap()
    3
    >>> Err(ValueError("bad")).is_err()
    True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result wrapping a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[T]):
    """Failed result wrapping an exception."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise self.error


Result = Ok[T] | Err[T]


def is_fault(value: object) -> bool:
    """True when *value* is an ``Err`` result."""
    return isinstance(value, Err)
