"""
DocGovern - Soft archive, restore and purge.

Archiving is a flag layered on top of the moderation status: an archived
document keeps its status and history, drops out of default listings and the
search index, and comes back unchanged on restore. Purge is the only hard
delete and is reachable only from the archived state.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from .database import Database, DocumentModel, utcnow
from .exceptions import ExternalSinkError, NotFoundError, ValidationError, VersionConflictError
from .fanout import PublicationFanout, record_audit
from .models import Actor, AuditAction, GovernedDocument
from .sinks import ArtifactStore, AuditLog, NullArtifactStore
from .validation import require_moderator, validate_positive_int, validate_required
from .versioning import VersionGuard

logger = logging.getLogger("docgovern.archive")


class ArchiveStore:
    def __init__(
        self,
        db: Database,
        guard: VersionGuard,
        fanout: PublicationFanout,
        audit: Optional[AuditLog] = None,
        artifacts: Optional[ArtifactStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.guard = guard
        self.fanout = fanout
        self.audit = audit
        self.artifacts = artifacts or NullArtifactStore()
        self.clock = clock

    def _load(self, session, document_id: str) -> DocumentModel:
        validate_required(document_id, "document_id")
        document = self.db.get_document(session, document_id)
        if document is None:
            raise NotFoundError("Document not found", document_id=document_id)
        return document

    def _set_archived(
        self,
        actor: Actor,
        document_id: str,
        archived: bool,
        expected_version: Optional[int],
    ) -> GovernedDocument:
        require_moderator(actor)
        validate_positive_int(expected_version, "expected_version")

        with self.db.get_session() as session:
            current = self._load(session, document_id)
            if bool(current.archived) == archived:
                state = "archived" if archived else "not archived"
                raise ValidationError(f"Document is already {state}", field="archived")

            version = expected_version if expected_version is not None else current.version
            values = {
                "archived": archived,
                "archived_at": self.clock() if archived else None,
                "updated_by": actor.id,
            }
            if archived:
                values.update(lease_holder=None, lease_started_at=None)

            written = self.guard.bump(
                session,
                document_id,
                [DocumentModel.archived.is_(not archived)],
                values,
                expected_version=version,
            )
            if not written:
                latest = self._load(session, document_id)
                if bool(latest.archived) == archived:
                    raise ValidationError("Document archive state changed concurrently", field="archived")
                raise VersionConflictError(
                    "Document has been modified. Refresh and try again.",
                    current_version=latest.version,
                )
            return GovernedDocument.from_model(self._load(session, document_id))

    def archive(
        self, actor: Actor, document_id: str, expected_version: Optional[int] = None
    ) -> GovernedDocument:
        """Hide a document from listings and search while keeping the record."""
        document = self._set_archived(actor, document_id, True, expected_version)
        logger.info("Archived %s (%s)", document_id, document.status.value)
        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_ARCHIVED,
            f'Archived "{document.title}"',
            document_id=document.id,
            status=document.status.value,
            version=document.version,
        )
        self.fanout.archived(document)
        return document

    def restore(
        self, actor: Actor, document_id: str, expected_version: Optional[int] = None
    ) -> GovernedDocument:
        """Bring an archived document back with the status it had."""
        document = self._set_archived(actor, document_id, False, expected_version)
        logger.info("Restored %s (%s)", document_id, document.status.value)
        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_RESTORED,
            f'Restored "{document.title}"',
            document_id=document.id,
            status=document.status.value,
            version=document.version,
        )
        self.fanout.restored(document)
        return document

    def purge(self, actor: Actor, document_id: str) -> GovernedDocument:
        """
        Permanently delete an archived document and its external artifact.

        Returns the last snapshot of the deleted record.
        """
        require_moderator(actor)

        with self.db.get_session() as session:
            current = self._load(session, document_id)
            if not current.archived:
                raise ValidationError("Only archived documents can be purged", field="archived")
            snapshot = GovernedDocument.from_model(current)
            if not self.db.conditional_delete(
                session, document_id, [DocumentModel.archived.is_(True)]
            ):
                self._load(session, document_id)
                raise ValidationError("Document was restored before it could be purged", field="archived")

        logger.info("Purged %s", document_id)
        if snapshot.artifact_ref:
            try:
                self.artifacts.delete(snapshot.artifact_ref)
            except Exception as e:
                error = ExternalSinkError("artifacts.delete", e)
                logger.warning("%s", error.message, exc_info=True)
        record_audit(
            self.audit,
            actor.id,
            AuditAction.DOCUMENT_PURGED,
            f'Purged "{snapshot.title}"',
            document_id=snapshot.id,
            kind=snapshot.kind.value,
            artifact_ref=snapshot.artifact_ref,
        )
        self.fanout.purged(snapshot)
        return snapshot
