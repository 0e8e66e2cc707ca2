"""
DocGovern - Document lifecycle state machine.

    draft|rejected --submit--> pending --approve--> approved
                                       --reject---> rejected

Archiving is orthogonal and handled by ArchiveStore. Every transition is a
single conditional write; audit entries and the publication fan-out run after
the write commits and can never undo or fail it.

Approving a document publishes its whole publication unit (the document plus
its batch siblings) and demotes every other approved document in the same
group to ``rejected``. That cascade is a sequence of independent conditional
writes, not a transaction: a crash part-way can leave a group with a stale
approved sibling until the next approval in that group.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from sqlalchemy import or_

from .archive import ArchiveStore
from .config import GovernanceConfig
from .database import Database, DocumentModel, utcnow
from .exceptions import (
    ForbiddenError,
    LeaseConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from .fanout import PublicationFanout, record_audit
from .leases import LeaseManager
from .models import (
    Actor,
    ApprovalSummary,
    AuditAction,
    AuditEntry,
    DocumentStatus,
    GovernedDocument,
    RealtimeEvent,
    derive_group_key,
)
from .sinks import AuditLog
from .validation import (
    require_editor,
    require_moderator,
    validate_document_create,
    validate_document_update,
    validate_expected_version,
    validate_positive_int,
    validate_rejection_reason,
    validate_required,
)
from .versioning import VersionGuard

logger = logging.getLogger("docgovern.lifecycle")

SUBMITTABLE = (DocumentStatus.DRAFT.value, DocumentStatus.REJECTED.value)


class LifecycleStateMachine:
    """Owns every status transition of governed documents."""

    def __init__(
        self,
        db: Database,
        leases: LeaseManager,
        guard: VersionGuard,
        fanout: PublicationFanout,
        archive_store: ArchiveStore,
        audit: Optional[AuditLog] = None,
        config: Optional[GovernanceConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.leases = leases
        self.guard = guard
        self.fanout = fanout
        self.archive_store = archive_store
        self.audit = audit
        self.config = config or GovernanceConfig()
        self.clock = clock

    # ==================== Reads ====================

    def _load(self, session, document_id: str) -> DocumentModel:
        validate_required(document_id, "document_id")
        document = self.db.get_document(session, document_id)
        if document is None:
            raise NotFoundError("Document not found", document_id=document_id)
        return document

    def get(self, document_id: str) -> GovernedDocument:
        with self.db.get_session() as session:
            return GovernedDocument.from_model(self._load(session, document_id))

    def list_documents(
        self,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[GovernedDocument]:
        with self.db.get_session() as session:
            documents = self.db.list_documents(
                session,
                kind=kind,
                status=status,
                include_archived=include_archived,
                limit=limit,
                offset=offset,
            )
            return [GovernedDocument.from_model(d) for d in documents]

    def audit_trail(self, document_id: str, limit: int = 100, offset: int = 0) -> List[AuditEntry]:
        """Audit entries for one document, newest first. Purged documents keep theirs."""
        validate_required(document_id, "document_id")
        with self.db.get_session() as session:
            entries = self.db.get_audit_entries(
                session, document_id=document_id, limit=limit, offset=offset
            )
            return [AuditEntry.from_model(e) for e in entries]

    # ==================== Authoring ====================

    def create(
        self,
        actor: Actor,
        kind: Any,
        title: str,
        content: Optional[Dict[str, Any]] = None,
        scope: Optional[str] = None,
        batch_id: Optional[str] = None,
        artifact_ref: Optional[str] = None,
    ) -> GovernedDocument:
        """Create a draft owned by ``actor``."""
        require_editor(actor)
        document_kind = validate_document_create(
            kind, title, actor.id, content=content, scope=scope, batch_id=batch_id
        )

        document_id = str(uuid4())
        with self.db.get_session() as session:
            model = self.db.create_document(
                session,
                id=document_id,
                kind=document_kind.value,
                title=title,
                content=content or {},
                status=DocumentStatus.DRAFT.value,
                version=1,
                group_key=derive_group_key(
                    document_kind, actor.id, scope, batch_id=batch_id, document_id=document_id
                ),
                batch_id=batch_id,
                artifact_ref=artifact_ref,
                created_by=actor.id,
                updated_by=actor.id,
                created_at=self.clock(),
                updated_at=self.clock(),
            )
            document = GovernedDocument.from_model(model)

        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_CREATED,
            f'Created {document.kind.value} "{document.title}"',
            document_id=document.id,
            batch_id=batch_id,
        )
        return document

    def update_with_version(
        self,
        actor: Actor,
        document_id: str,
        expected_version: int,
        title: Optional[str] = None,
        content: Optional[Dict[str, Any]] = None,
        artifact_ref: Optional[str] = None,
    ) -> GovernedDocument:
        """
        Save an edit made under the caller's lease.

        The edit returns the document to ``draft`` and releases the lease. An
        approved document that is edited leaves the search index until it is
        approved again.
        """
        require_editor(actor)
        validate_expected_version(expected_version)
        validate_document_update(title=title, content=content, artifact_ref=artifact_ref)

        changes: Dict[str, Any] = {
            "status": DocumentStatus.DRAFT.value,
            "rejection_reason": None,
        }
        if title is not None:
            changes["title"] = title
        if content is not None:
            changes["content"] = content
        if artifact_ref is not None:
            changes["artifact_ref"] = artifact_ref

        previous = self.get(document_id)
        result = self.guard.check_and_bump(document_id, expected_version, actor.id, changes)
        if not result.ok:
            raise VersionConflictError(
                "Document has been modified. Refresh and try again.",
                current_version=result.version,
            )
        document = result.document

        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_UPDATED,
            f'Updated "{document.title}"',
            document_id=document.id,
            version=document.version,
        )
        # A snapshot read at another version cannot say what the write replaced.
        if previous.is_approved or previous.version != expected_version:
            self.fanout.withdrawn(document)
        return document

    def submit(self, actor: Actor, document_id: str, expected_version: int) -> GovernedDocument:
        """Send a draft or rejected document to moderation. Author only."""
        require_editor(actor)
        validate_expected_version(expected_version)

        with self.db.get_session() as session:
            current = self._load(session, document_id)
            if current.created_by != actor.id:
                raise ForbiddenError("Only the author can submit this document")
            self._check_transition(current, SUBMITTABLE, "submit")
            self._check_foreign_lease(current, actor.id)

            cutoff = self.clock() - timedelta(seconds=self.config.lease_ttl_seconds)
            written = self.guard.bump(
                session,
                document_id,
                [
                    DocumentModel.status.in_(SUBMITTABLE),
                    DocumentModel.archived.is_(False),
                    DocumentModel.created_by == actor.id,
                    or_(
                        DocumentModel.lease_holder.is_(None),
                        DocumentModel.lease_holder == actor.id,
                        DocumentModel.lease_started_at < cutoff,
                    ),
                ],
                {
                    "status": DocumentStatus.PENDING.value,
                    "rejection_reason": None,
                    "updated_by": actor.id,
                },
                expected_version=expected_version,
            )
            if not written:
                latest = self._load(session, document_id)
                self._raise_for(latest, expected_version, SUBMITTABLE, "submit")
                self._check_foreign_lease(latest, actor.id)
                raise VersionConflictError(
                    "Document changed while submitting", current_version=latest.version
                )
            document = GovernedDocument.from_model(self._load(session, document_id))

        logger.info("Submitted %s for moderation (v%d)", document.id, document.version)
        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_SUBMITTED,
            f'Submitted "{document.title}" for approval',
            document_id=document.id,
            version=document.version,
        )
        return document

    # ==================== Moderation ====================

    def approve(
        self,
        actor: Actor,
        document_id: str,
        expected_version: Optional[int] = None,
        notify: bool = True,
    ) -> ApprovalSummary:
        """
        Approve a pending document together with its publication unit.

        Non-approved siblings of the same batch are approved alongside it, and
        every other approved document in the unit's groups is superseded
        (demoted to ``rejected``). Search and realtime listeners are updated
        afterwards, best-effort. Subscribers are notified only on the unit's
        first approval, not when an edited member is approved again.
        """
        require_moderator(actor)
        validate_positive_int(expected_version, "expected_version")
        pending = (DocumentStatus.PENDING.value,)

        with self.db.get_session() as session:
            target = self._load(session, document_id)
            self._check_transition(target, pending, "approve")

            now = self.clock()
            approval_values = {
                "status": DocumentStatus.APPROVED.value,
                "approved_by": actor.id,
                "approved_at": now,
                "rejection_reason": None,
                "updated_by": actor.id,
            }
            written = self.guard.bump(
                session,
                document_id,
                [
                    DocumentModel.status == DocumentStatus.PENDING.value,
                    DocumentModel.archived.is_(False),
                ],
                approval_values,
                expected_version=expected_version,
            )
            if not written:
                latest = self._load(session, document_id)
                self._raise_for(latest, expected_version, pending, "approve")
                raise VersionConflictError(
                    "Document changed while approving", current_version=latest.version
                )

            approved = GovernedDocument.from_model(self._load(session, document_id))
            self._audit_approval(actor, approved, document_id)
            published = [approved]
            unit_ids: Set[str] = {approved.id}

            # Each write commits and expires loaded rows, so take plain values first.
            siblings = [
                (s.id, s.status, s.version, bool(s.archived))
                for s in self._siblings(session, approved)
            ]
            # The unit was announced when it was first approved.
            announced = any(status == DocumentStatus.APPROVED.value for _, status, _, _ in siblings)
            for sibling_id, status, version, archived in siblings:
                unit_ids.add(sibling_id)
                if archived or status == DocumentStatus.APPROVED.value:
                    continue
                if self.guard.bump(
                    session,
                    sibling_id,
                    [
                        DocumentModel.status == status,
                        DocumentModel.archived.is_(False),
                    ],
                    approval_values,
                    expected_version=version,
                ):
                    snapshot = GovernedDocument.from_model(self._load(session, sibling_id))
                    self._audit_approval(actor, snapshot, document_id)
                    published.append(snapshot)
                else:
                    logger.warning(
                        "Batch sibling %s changed during approval of %s; left unpublished",
                        sibling_id,
                        document_id,
                    )

            superseded = self._supersede(
                session, actor, {doc.group_key for doc in published}, unit_ids, document_id
            )

        logger.info(
            "Approved %s: %d published, %d superseded",
            document_id,
            len(published),
            len(superseded),
        )
        for document in superseded:
            self.fanout.withdrawn(document, RealtimeEvent.REJECTED)
        self.fanout.published(published, notify=notify and not announced)
        return ApprovalSummary(document=approved, published=published, superseded=superseded)

    def reject(
        self,
        actor: Actor,
        document_id: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> GovernedDocument:
        """Reject a pending document. No other document is touched."""
        require_moderator(actor)
        validate_positive_int(expected_version, "expected_version")
        validate_rejection_reason(reason)
        pending = (DocumentStatus.PENDING.value,)

        with self.db.get_session() as session:
            current = self._load(session, document_id)
            self._check_transition(current, pending, "reject")
            written = self.guard.bump(
                session,
                document_id,
                [
                    DocumentModel.status == DocumentStatus.PENDING.value,
                    DocumentModel.archived.is_(False),
                ],
                {
                    "status": DocumentStatus.REJECTED.value,
                    "rejection_reason": reason or "Rejected by moderator",
                    "updated_by": actor.id,
                },
                expected_version=expected_version,
            )
            if not written:
                latest = self._load(session, document_id)
                self._raise_for(latest, expected_version, pending, "reject")
                raise VersionConflictError(
                    "Document changed while rejecting", current_version=latest.version
                )
            document = GovernedDocument.from_model(self._load(session, document_id))

        logger.info("Rejected %s", document.id)
        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_REJECTED,
            f'Rejected "{document.title}"',
            document_id=document.id,
            reason=document.rejection_reason,
            version=document.version,
        )
        return document

    # ==================== Archive ====================

    def archive(
        self, actor: Actor, document_id: str, expected_version: Optional[int] = None
    ) -> GovernedDocument:
        return self.archive_store.archive(actor, document_id, expected_version)

    def restore(
        self, actor: Actor, document_id: str, expected_version: Optional[int] = None
    ) -> GovernedDocument:
        return self.archive_store.restore(actor, document_id, expected_version)

    def purge(self, actor: Actor, document_id: str) -> GovernedDocument:
        return self.archive_store.purge(actor, document_id)

    # ==================== Internals ====================

    def _siblings(self, session, document: GovernedDocument) -> List[DocumentModel]:
        """Other members of the document's publication batch."""
        if document.batch_id:
            members = self.db.get_batch_members(session, document.batch_id)
        elif (
            self.config.batch_window_seconds > 0
            and document.kind.value in self.config.batch_window_kinds
            and document.created_at is not None
        ):
            # Legacy inference: same author, same kind, created within the window.
            window = timedelta(seconds=self.config.batch_window_seconds)
            members = self.db.get_window_siblings(
                session,
                document.kind.value,
                document.created_by,
                document.created_at - window,
                document.created_at + window,
            )
        else:
            return []
        return [member for member in members if member.id != document.id]

    def _supersede(
        self,
        session,
        actor: Actor,
        group_keys: Iterable[str],
        unit_ids: Set[str],
        approved_id: str,
    ) -> List[GovernedDocument]:
        superseded: List[GovernedDocument] = []
        for group_key in sorted(group_keys):
            stale_ids = [
                other.id
                for other in self.db.get_approved_in_group(session, group_key, exclude_ids=unit_ids)
            ]
            for other_id in stale_ids:
                written = self.guard.bump(
                    session,
                    other_id,
                    [DocumentModel.status == DocumentStatus.APPROVED.value],
                    {
                        "status": DocumentStatus.REJECTED.value,
                        "rejection_reason": f"Superseded by {approved_id}",
                        "updated_by": actor.id,
                    },
                )
                if not written:
                    continue
                snapshot = GovernedDocument.from_model(self._load(session, other_id))
                superseded.append(snapshot)
                record_audit(
                    self.audit,
                    actor.id,
                    AuditAction.DOCUMENT_SUPERSEDED,
                    f'"{snapshot.title}" superseded',
                    document_id=snapshot.id,
                    superseded_by=approved_id,
                    group_key=group_key,
                    version=snapshot.version,
                )
        return superseded

    def _audit_approval(self, actor: Actor, document: GovernedDocument, target_id: str) -> None:
        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_APPROVED,
            f'Approved "{document.title}"',
            document_id=document.id,
            approved_with=target_id if target_id != document.id else None,
            version=document.version,
        )

    def _check_transition(self, document: DocumentModel, allowed: Iterable[str], action: str) -> None:
        if document.archived:
            raise ValidationError(f"Cannot {action} an archived document", field="archived")
        if document.status not in allowed:
            raise ValidationError(
                f"Cannot {action} a document in status '{document.status}'",
                field="status",
                value=document.status,
            )

    def _check_foreign_lease(self, document: DocumentModel, user_id: str) -> None:
        """Refuse while another user holds a lease younger than the TTL."""
        if document.lease_holder is None or document.lease_holder == user_id:
            return
        age = (self.clock() - document.lease_started_at).total_seconds()
        if age <= self.config.lease_ttl_seconds:
            raise LeaseConflictError(
                "Another user is editing this document",
                holder=document.lease_holder,
                age_seconds=max(age, 0.0),
            )

    def _raise_for(
        self,
        document: DocumentModel,
        expected_version: Optional[int],
        allowed: Iterable[str],
        action: str,
    ) -> None:
        """Explain a failed transition write from a fresh read."""
        if expected_version is not None and document.version != expected_version:
            raise VersionConflictError(
                "Document has been modified. Refresh and try again.",
                current_version=document.version,
            )
        self._check_transition(document, allowed, action)
