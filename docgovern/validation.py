"""
DocGovern - Input validation helpers.

Validation runs before any store access so malformed input never reaches a
conditional write.
"""

from typing import Any, Optional

from .exceptions import ForbiddenError, ValidationError
from .models import Actor, DocumentKind


def validate_required(value: Any, field_name: str) -> None:
    """Validate that a required field is not None or empty."""
    if value is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{field_name} cannot be empty", field=field_name, value=value)


def validate_string_length(
    value: str,
    field_name: str,
    min_length: Optional[int] = None,
    max_length: Optional[int] = None,
) -> None:
    """Validate string length constraints."""
    if value is None:
        return

    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string", field=field_name, value=value)

    if min_length is not None and len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} characters",
            field=field_name,
            value=value,
        )

    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
            value=value,
        )


def validate_positive_int(value: int, field_name: str) -> None:
    """Validate that a number is a positive integer."""
    if value is None:
        return

    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer", field=field_name, value=value)

    if value <= 0:
        raise ValidationError(f"{field_name} must be positive", field=field_name, value=value)


def validate_dict(value: Any, field_name: str) -> None:
    """Validate that a value is a dictionary."""
    if value is None:
        return

    if not isinstance(value, dict):
        raise ValidationError(f"{field_name} must be a dictionary", field=field_name, value=value)


def validate_user_id(value: str, field_name: str = "user_id") -> None:
    """Validate a user reference."""
    validate_required(value, field_name)
    validate_string_length(value, field_name, max_length=255)


def validate_kind(value: Any, field_name: str = "kind") -> DocumentKind:
    """Validate and coerce a document kind."""
    validate_required(value, field_name)
    try:
        return DocumentKind(value)
    except ValueError:
        allowed = ", ".join(k.value for k in DocumentKind)
        raise ValidationError(
            f"{field_name} must be one of: {allowed}", field=field_name, value=value
        )


def validate_expected_version(value: Any, field_name: str = "expected_version") -> int:
    """An expected version is required and must be a positive integer."""
    validate_required(value, field_name)
    validate_positive_int(value, field_name)
    return value


def validate_document_create(
    kind: Any,
    title: str,
    created_by: str,
    content: Optional[dict] = None,
    scope: Optional[str] = None,
    batch_id: Optional[str] = None,
) -> DocumentKind:
    """Validate parameters for document creation."""
    document_kind = validate_kind(kind)
    validate_required(title, "title")
    validate_string_length(title, "title", min_length=1, max_length=500)
    validate_user_id(created_by, "created_by")
    validate_dict(content, "content")
    validate_string_length(scope, "scope", min_length=1, max_length=255)
    validate_string_length(batch_id, "batch_id", min_length=1, max_length=64)
    return document_kind


def validate_document_update(
    title: Optional[str] = None,
    content: Optional[dict] = None,
    artifact_ref: Optional[str] = None,
) -> None:
    """Validate parameters for a content edit. At least one field must change."""
    if title is None and content is None and artifact_ref is None:
        raise ValidationError("update must change title, content or artifact_ref")
    if title is not None:
        validate_required(title, "title")
        validate_string_length(title, "title", min_length=1, max_length=500)
    validate_dict(content, "content")
    validate_string_length(artifact_ref, "artifact_ref", max_length=1024)


def validate_rejection_reason(reason: Optional[str]) -> None:
    validate_string_length(reason, "reason", max_length=2000)


def require_editor(actor: Actor) -> None:
    validate_user_id(getattr(actor, "id", None), "actor.id")
    if not actor.can_edit:
        raise ForbiddenError("Only editors and moderators can change documents")


def require_moderator(actor: Actor) -> None:
    validate_user_id(getattr(actor, "id", None), "actor.id")
    if not actor.is_moderator:
        raise ForbiddenError("Only moderators can perform this action")
