from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    SYSTEM = "system"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an orchestrator call.

    Expected failures (missing rows, invalid requests, conflicts) come back as
    a failed result instead of an exception so callers can branch on ``kind``.
    """

    value: T | None = None
    error: ErrorKind | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T, message: str = "") -> "Result[T]":
        return cls(value=value, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Result[T]":
        return cls(error=error, message=message)

    @classmethod
    def not_found(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.NOT_FOUND, message)

    @classmethod
    def invalid(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.VALIDATION, message)

    @classmethod
    def conflict(cls, message: str) -> "Result[T]":
        return cls.failure(ErrorKind.CONFLICT, message)

    @classmethod
    def system_error(cls, message: str = "Unexpected error, see logs for details.") -> "Result[T]":
        return cls.failure(ErrorKind.SYSTEM, message)
