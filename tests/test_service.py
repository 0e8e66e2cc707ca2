"""
Tests for the GovernanceService facade and its outcome mapping.
"""

from docgovern.exceptions import LeaseConflictError, VersionConflictError
from docgovern.models import (
    Actor,
    ActorRole,
    ApprovalSummary,
    DocumentStatus,
    LeaseGrant,
    OutcomeKind,
)

ALICE = Actor("alice", ActorRole.EDITOR)
BOB = Actor("bob", ActorRole.EDITOR)
MODERATOR = Actor("mod", ActorRole.MODERATOR)
VIEWER = Actor("vic", ActorRole.VIEWER)


def _create(engine, actor=ALICE, title="Memo"):
    result = engine.service.create(actor, "memorandum", title, content={"text": title})
    assert result.ok
    return result.value


class TestOutcomes:
    """Every engine failure comes back as a tagged result."""

    def test_create_ok(self, engine):
        doc = _create(engine)
        assert doc.status == DocumentStatus.DRAFT

    def test_forbidden(self, engine):
        result = engine.service.create(VIEWER, "memorandum", "Memo")
        assert result.kind == OutcomeKind.FORBIDDEN
        assert result.http_status == 403

    def test_invalid(self, engine):
        result = engine.service.create(ALICE, "poster", "Memo")
        assert result.kind == OutcomeKind.INVALID
        assert result.to_dict()["error"]["field"] == "kind"

    def test_not_found(self, engine):
        result = engine.service.get("missing")
        assert result.kind == OutcomeKind.NOT_FOUND
        assert result.to_dict()["error"]["document_id"] == "missing"

    def test_version_conflict(self, engine):
        doc = _create(engine)
        engine.service.acquire_lease(ALICE, doc.id)
        result = engine.service.update_with_version(ALICE, doc.id, 9, title="Stale")
        assert result.kind == OutcomeKind.CONFLICT
        assert isinstance(result.error, VersionConflictError)
        assert result.error.current_version == 1

    def test_unleased_update_is_conflict(self, engine):
        doc = _create(engine)
        result = engine.service.update_with_version(ALICE, doc.id, 1, title="No lease")
        assert result.kind == OutcomeKind.CONFLICT
        assert isinstance(result.error, LeaseConflictError)


class TestLeaseOperations:
    """Lease calls through the facade."""

    def test_denied_acquire_is_conflict_with_grant(self, engine):
        doc = _create(engine)
        assert engine.service.acquire_lease(ALICE, doc.id).ok

        result = engine.service.acquire_lease(BOB, doc.id)

        assert result.kind == OutcomeKind.CONFLICT
        assert isinstance(result.value, LeaseGrant)
        assert result.value.holder == "alice"
        assert result.error.holder == "alice"
        data = result.to_dict()
        assert data["value"]["granted"] is False
        assert data["error"]["holder"] == "alice"

    def test_viewer_cannot_lease(self, engine):
        doc = _create(engine)
        assert engine.service.acquire_lease(VIEWER, doc.id).kind == OutcomeKind.FORBIDDEN

    def test_renew_and_release(self, engine):
        doc = _create(engine)
        engine.service.acquire_lease(ALICE, doc.id)
        assert engine.service.renew_lease(ALICE, doc.id).ok
        assert engine.service.renew_lease(BOB, doc.id).kind == OutcomeKind.CONFLICT
        assert engine.service.release_lease(BOB, doc.id).value is False
        assert engine.service.release_lease(ALICE, doc.id).value is True


class TestWorkflow:
    """End-to-end flow through the facade."""

    def test_edit_submit_approve(self, engine):
        doc = _create(engine)
        engine.service.acquire_lease(ALICE, doc.id)
        saved = engine.service.update_with_version(
            ALICE, doc.id, doc.version, content={"text": "Final"}
        ).value
        submitted = engine.service.submit(ALICE, doc.id, saved.version).value

        result = engine.service.approve(MODERATOR, doc.id, submitted.version)

        assert result.ok
        assert isinstance(result.value, ApprovalSummary)
        assert result.value.document.version == submitted.version + 1
        assert doc.id in engine.search

    def test_reject_archive_restore_purge(self, engine):
        doc = _create(engine)
        submitted = engine.service.submit(ALICE, doc.id, doc.version).value
        rejected = engine.service.reject(MODERATOR, doc.id, "Off topic").value
        assert rejected.version == submitted.version + 1

        assert engine.service.archive(MODERATOR, doc.id).ok
        assert engine.service.restore(MODERATOR, doc.id).ok
        assert engine.service.purge(MODERATOR, doc.id).kind == OutcomeKind.INVALID
        assert engine.service.archive(MODERATOR, doc.id).ok
        assert engine.service.purge(MODERATOR, doc.id).ok
        assert engine.service.get(doc.id).kind == OutcomeKind.NOT_FOUND

    def test_list_and_audit_trail(self, engine):
        first = _create(engine, title="One")
        _create(engine, title="Two")
        listed = engine.service.list_documents()
        assert len(listed.value) == 2

        trail = engine.service.audit_trail(first.id)
        assert trail.ok
        assert [e.action for e in trail.value] == ["document_created"]

    def test_build_uses_http_index_when_configured(self, db):
        from docgovern.config import GovernanceConfig
        from docgovern.service import GovernanceService
        from docgovern.sinks import HttpSearchIndex

        config = GovernanceConfig(
            search_app_id="APP", search_api_key="key", search_index_name="docs"
        )
        service = GovernanceService.build(db, config)
        search_index = service.lifecycle.fanout.search_index
        assert isinstance(search_index, HttpSearchIndex)
        search_index.close()
