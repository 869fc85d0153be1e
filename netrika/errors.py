from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILURE = "failure"


class WorkflowError(Exception):
    """Expected workflow failure; entry points turn it into a failed WorkflowResult."""

    kind = "WorkflowError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(WorkflowError):
    kind = "NotFoundError"


class InvalidTransitionError(WorkflowError):
    kind = "InvalidTransitionError"


class UnsupportedEntityTypeError(WorkflowError):
    kind = "UnsupportedEntityTypeError"


class MissingDataError(WorkflowError):
    kind = "MissingDataError"


class MissingAttributionError(WorkflowError):
    kind = "MissingAttributionError"


class PersistenceError(WorkflowError):
    kind = "PersistenceError"


class MalformedRecordError(PersistenceError):
    """A stored JSON column could not be decoded."""


class AuthorizationError(WorkflowError):
    kind = "AuthorizationError"


@dataclass(frozen=True)
class WorkflowResult:
    status: str
    message: str
    kind: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def is_partial(self) -> bool:
        return self.status == STATUS_PARTIAL

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.ok,
            "status": self.status,
            "kind": self.kind,
            "message": self.message,
            **self.data,
        }

    @classmethod
    def success(cls, message: str, **data: Any) -> "WorkflowResult":
        return cls(status=STATUS_SUCCESS, message=message, data=data)

    @classmethod
    def partial(cls, message: str, *, kind: str, **data: Any) -> "WorkflowResult":
        return cls(status=STATUS_PARTIAL, message=message, kind=kind, data=data)

    @classmethod
    def failure(cls, error: WorkflowError, **data: Any) -> "WorkflowResult":
        return cls(status=STATUS_FAILURE, message=error.message, kind=error.kind, data=data)
