from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

from travelbook_auth.service.errors import ServiceError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a public auth-core operation.

    Public operations return a ``Result`` instead of raising so callers can
    show ``message`` to the user as-is.
    """

    success: bool
    value: Optional[T] = None
    message: Optional[str] = None
    error_code: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, value: Optional[T] = None, message: Optional[str] = None) -> "Result[T]":
        return cls(success=True, value=value, message=message)

    @classmethod
    def fail(cls, error: ServiceError) -> "Result[T]":
        return cls(
            success=False,
            message=error.message,
            error_code=error.error_code,
            detail=dict(error.detail),
        )

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            payload["message"] = self.message
        if not self.success:
            payload["error_code"] = self.error_code
            if self.detail:
                payload["detail"] = self.detail
        elif self.value is not None:
            payload["result"] = _serialize(self.value)
        return payload


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value
