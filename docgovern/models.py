"""
DocGovern - Data models for governed documents, leases and operation results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class DocumentKind(str, Enum):
    """Concrete kinds of governed content."""

    HANDBOOK_PAGE = "handbook-page"
    MEMORANDUM = "memorandum"
    POLICY_SECTION = "policy-section"


class DocumentStatus(str, Enum):
    """Moderation status of a document. Orthogonal to the archived flag."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActorRole(str, Enum):
    """Role of the already-authenticated caller."""

    VIEWER = "viewer"
    EDITOR = "editor"
    MODERATOR = "moderator"


class OutcomeKind(str, Enum):
    """Outcome tag attached to every upward-facing operation result."""

    OK = "ok"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID = "invalid"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    DOCUMENT_CREATED = "document_created"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_SUBMITTED = "document_submitted"
    DOCUMENT_APPROVED = "document_approved"
    DOCUMENT_REJECTED = "document_rejected"
    DOCUMENT_SUPERSEDED = "document_superseded"
    DOCUMENT_ARCHIVED = "document_archived"
    DOCUMENT_RESTORED = "document_restored"
    DOCUMENT_PURGED = "document_purged"


class RealtimeEvent(str, Enum):
    """Event names emitted to realtime listeners."""

    APPROVED = "document_approved"
    REJECTED = "document_rejected"
    WITHDRAWN = "document_withdrawn"
    ARCHIVED = "document_archived"
    RESTORED = "document_restored"
    PURGED = "document_purged"


_HTTP_STATUS = {
    OutcomeKind.OK: 200,
    OutcomeKind.CONFLICT: 409,
    OutcomeKind.FORBIDDEN: 403,
    OutcomeKind.NOT_FOUND: 404,
    OutcomeKind.INVALID: 400,
}


def derive_group_key(
    kind: DocumentKind,
    created_by: str,
    scope: Optional[str] = None,
    batch_id: Optional[str] = None,
    document_id: Optional[str] = None,
) -> str:
    """
    Supersession scope of a document.

    Handbook pages replace the author's earlier handbook, so their scope
    defaults to the author. Memoranda and policy sections are published side
    by side: their scope defaults to the publication batch, or to the document
    itself when it was uploaded alone. An explicit ``scope`` always wins.
    """
    document_kind = DocumentKind(kind)
    if not scope:
        if document_kind == DocumentKind.HANDBOOK_PAGE:
            scope = created_by
        elif batch_id:
            scope = f"batch:{batch_id}"
        elif document_id:
            scope = f"doc:{document_id}"
        else:
            raise ValueError(f"{document_kind.value} needs a scope, batch_id or document_id")
    return f"{document_kind.value}:{scope}"


@dataclass(frozen=True)
class Actor:
    """An already-resolved caller identity."""

    id: str
    role: ActorRole = ActorRole.EDITOR

    @property
    def can_edit(self) -> bool:
        return self.role in (ActorRole.EDITOR, ActorRole.MODERATOR)

    @property
    def is_moderator(self) -> bool:
        return self.role == ActorRole.MODERATOR


@dataclass
class GovernedDocument:
    """
    Snapshot of a governed document as read from the store.

    Snapshots are detached from the session; mutate documents only through
    the lifecycle operations.
    """

    id: str
    kind: DocumentKind
    title: str
    content: dict[str, Any]
    status: DocumentStatus
    version: int
    group_key: str
    created_by: str
    batch_id: Optional[str] = None
    lease_holder: Optional[str] = None
    lease_started_at: Optional[datetime] = None
    archived: bool = False
    archived_at: Optional[datetime] = None
    artifact_ref: Optional[str] = None
    rejection_reason: Optional[str] = None
    updated_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_leased(self) -> bool:
        return self.lease_holder is not None

    @property
    def is_approved(self) -> bool:
        return self.status == DocumentStatus.APPROVED

    @classmethod
    def from_model(cls, model: Any) -> "GovernedDocument":
        return cls(
            id=model.id,
            kind=DocumentKind(model.kind),
            title=model.title,
            content=dict(model.content or {}),
            status=DocumentStatus(model.status),
            version=model.version,
            group_key=model.group_key,
            created_by=model.created_by,
            batch_id=model.batch_id,
            lease_holder=model.lease_holder,
            lease_started_at=model.lease_started_at,
            archived=bool(model.archived),
            archived_at=model.archived_at,
            artifact_ref=model.artifact_ref,
            rejection_reason=model.rejection_reason,
            updated_by=model.updated_by,
            approved_by=model.approved_by,
            approved_at=model.approved_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def to_dict(self) -> dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "content": self.content,
            "status": self.status.value,
            "version": self.version,
            "group_key": self.group_key,
            "batch_id": self.batch_id,
            "created_by": self.created_by,
            "lease_holder": self.lease_holder,
            "lease_started_at": _iso(self.lease_started_at),
            "archived": self.archived,
            "archived_at": _iso(self.archived_at),
            "artifact_ref": self.artifact_ref,
            "rejection_reason": self.rejection_reason,
            "updated_by": self.updated_by,
            "approved_by": self.approved_by,
            "approved_at": _iso(self.approved_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class LeaseGrant:
    """Result of a lease acquire or renew attempt."""

    granted: bool
    holder: Optional[str]
    age_seconds: float = 0.0
    started_at: Optional[datetime] = None
    reclaimed_from: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "granted": self.granted,
            "holder": self.holder,
            "age_seconds": self.age_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "reclaimed_from": self.reclaimed_from,
        }


@dataclass
class VersionResult:
    """Result of a version-guarded write."""

    ok: bool
    version: int
    document: Optional[GovernedDocument] = None

    @property
    def conflict(self) -> bool:
        return not self.ok


@dataclass
class ApprovalSummary:
    """Everything an approve call changed: the published unit and the superseded documents."""

    document: GovernedDocument
    published: list[GovernedDocument] = field(default_factory=list)
    superseded: list[GovernedDocument] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "published": [doc.id for doc in self.published],
            "superseded": [doc.id for doc in self.superseded],
        }


@dataclass
class AuditEntry:
    """Immutable entry in the audit trail."""

    id: str
    actor_id: str
    action: str
    description: str
    document_id: Optional[str]
    details: dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model: Any) -> "AuditEntry":
        return cls(
            id=model.id,
            actor_id=model.actor_id,
            action=model.action,
            description=model.description,
            document_id=model.document_id,
            details=dict(model.details or {}),
            created_at=model.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "actor_id": self.actor_id,
            "action": self.action,
            "description": self.description,
            "document_id": self.document_id,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class OperationResult:
    """
    Outcome-tagged result returned by every upward-facing operation.

    The boundary layer maps ``kind`` to a transport status without inspecting
    the engine's internals.
    """

    kind: OutcomeKind
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.OK

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"outcome": self.kind.value}
        if isinstance(self.value, list):
            result["value"] = [
                item.to_dict() if hasattr(item, "to_dict") else item for item in self.value
            ]
        elif self.value is not None:
            result["value"] = self.value.to_dict() if hasattr(self.value, "to_dict") else self.value
        if self.error is not None:
            to_dict = getattr(self.error, "to_dict", None)
            result["error"] = to_dict() if to_dict else {"message": str(self.error)}
        return result
