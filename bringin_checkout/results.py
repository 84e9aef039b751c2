from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ResultError:
    code: str
    message: str

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either `data` (success) or `error` (failure), never both."""

    data: Optional[T] = None
    error: Optional[ResultError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def success(data: T) -> Result[T]:
    return Result(data=data)


def failure(code: str, message: str) -> Result:
    return Result(error=ResultError(code=code, message=message))
