from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from relay.services.errors import RelayError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a relay step.

    A failed result is either fatal (the invocation must report an error to
    its caller) or logged-and-continued (the caller still acknowledges).
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    fatal: bool = False

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown", fatal: bool = False) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code, fatal=fatal)

    @staticmethod
    def from_error(exc: RelayError, code: str, fatal: bool) -> "Result[T]":
        return Result.failure(exc.message, code, fatal=fatal)

    @property
    def is_fatal(self) -> bool:
        return not self.ok and self.fatal
