from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def map(self, func: Callable[[T], U]) -> "Result[U]":
        if not self.ok:
            return Result(ok=False, error=self.error, error_code=self.error_code)
        return Result.success(func(self.value))

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"success": True, "data": self.value}
        return {"success": False, "error": {"message": self.error, "code": self.error_code}}
