"""
DocGovern - Custom exceptions for error handling.
"""

from typing import Any, Optional


class DocGovernError(Exception):
    """Base exception for all DocGovern errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.details}


class ValidationError(DocGovernError):
    """Raised when input is malformed or an operation is not valid in the current state."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        if field is not None:
            self.details.setdefault("field", field)


class NotFoundError(DocGovernError):
    """Raised when a requested document is not found."""

    status_code = 404

    def __init__(self, message: str, document_id: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.document_id = document_id
        if document_id is not None:
            self.details.setdefault("document_id", document_id)


class ForbiddenError(DocGovernError):
    """Raised on a role or ownership violation."""

    status_code = 403


class LeaseConflictError(DocGovernError):
    """Raised when another user holds an active edit lease."""

    status_code = 409

    def __init__(
        self,
        message: str,
        holder: Optional[str] = None,
        age_seconds: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.holder = holder
        self.age_seconds = age_seconds
        self.details.update({"holder": holder, "age_seconds": age_seconds})


class VersionConflictError(DocGovernError):
    """Raised when the expected version no longer matches the stored version."""

    status_code = 409

    def __init__(self, message: str, current_version: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.current_version = current_version
        self.details["current_version"] = current_version


class ExternalSinkError(DocGovernError):
    """A fan-out sink failed. Logged at the fan-out boundary, never surfaced to callers."""

    status_code = 502

    def __init__(self, sink: str, cause: BaseException) -> None:
        super().__init__(f"{sink} failed: {cause}", details={"sink": sink})
        self.sink = sink
        self.cause = cause
