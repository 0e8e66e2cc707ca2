"""
DocGovern - Optimistic concurrency.

The guard compares a caller-supplied expected version with the stored one
inside the WHERE clause of the write itself, so the comparison, the content
change, the version bump and the lease release land together or not at all.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from .database import Database, DocumentModel, utcnow
from .exceptions import LeaseConflictError, NotFoundError, ValidationError
from .models import GovernedDocument, VersionResult
from .validation import validate_expected_version, validate_user_id

logger = logging.getLogger("docgovern.versioning")


class VersionGuard:
    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def check_and_bump(
        self,
        document_id: str,
        expected_version: int,
        user_id: str,
        changes: Dict[str, Any],
        require_lease: bool = True,
    ) -> VersionResult:
        """
        Apply ``changes`` if the stored version equals ``expected_version``.

        On success the version is incremented by one and the caller's lease is
        released in the same write. A stale version returns a conflict result
        carrying the current version. A missing document, an archived document,
        or a lease held by someone else (or by nobody) raise instead.
        """
        validate_expected_version(expected_version)
        validate_user_id(user_id)

        conditions = [
            DocumentModel.version == expected_version,
            DocumentModel.archived.is_(False),
        ]
        if require_lease:
            conditions.append(DocumentModel.lease_holder == user_id)

        values = dict(changes)
        values.update(
            version=DocumentModel.version + 1,
            lease_holder=None,
            lease_started_at=None,
            updated_by=user_id,
        )

        with self.db.get_session() as session:
            if self.db.conditional_update(session, document_id, conditions, values):
                document = GovernedDocument.from_model(self.db.get_document(session, document_id))
                return VersionResult(ok=True, version=document.version, document=document)
            return self._diagnose(session, document_id, expected_version, user_id, require_lease)

    def bump(
        self,
        session,
        document_id: str,
        conditions: Iterable[Any],
        values: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> bool:
        """Conditional write that also increments the version. Used by status transitions."""
        conditions = list(conditions)
        if expected_version is not None:
            conditions.append(DocumentModel.version == expected_version)
        values = dict(values)
        values["version"] = DocumentModel.version + 1
        return self.db.conditional_update(session, document_id, conditions, values)

    def _diagnose(
        self,
        session,
        document_id: str,
        expected_version: int,
        user_id: str,
        require_lease: bool,
    ) -> VersionResult:
        current = self.db.get_document(session, document_id)
        if current is None:
            raise NotFoundError("Document not found", document_id=document_id)
        if current.archived:
            raise ValidationError("Archived documents cannot be edited", field="archived")
        if current.version != expected_version:
            logger.info(
                "Stale write on %s: expected v%s, stored v%s",
                document_id,
                expected_version,
                current.version,
            )
            return VersionResult(
                ok=False, version=current.version, document=GovernedDocument.from_model(current)
            )
        if require_lease and current.lease_holder != user_id:
            age = None
            if current.lease_started_at is not None:
                age = max((self.clock() - current.lease_started_at).total_seconds(), 0.0)
            if current.lease_holder is None:
                message = "Acquire the edit lease before saving"
            else:
                message = "Another user holds the edit lease on this document"
            raise LeaseConflictError(message, holder=current.lease_holder, age_seconds=age)
        # Conditions hold again on re-read; the caller retries against the stored version.
        return VersionResult(
            ok=False, version=current.version, document=GovernedDocument.from_model(current)
        )
