"""
Tests for DocGovern data models, result types and exceptions.
"""

from datetime import datetime

import pytest

from docgovern.exceptions import (
    ExternalSinkError,
    LeaseConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from docgovern.models import (
    Actor,
    ActorRole,
    ApprovalSummary,
    DocumentKind,
    DocumentStatus,
    GovernedDocument,
    LeaseGrant,
    OperationResult,
    OutcomeKind,
    derive_group_key,
)


def _document(**overrides):
    values = dict(
        id="doc-1",
        kind=DocumentKind.MEMORANDUM,
        title="Leave policy",
        content={"text": "Twenty days"},
        status=DocumentStatus.DRAFT,
        version=1,
        group_key="memorandum:alice",
        created_by="alice",
    )
    values.update(overrides)
    return GovernedDocument(**values)


class TestGroupKey:
    """Tests for supersession scope derivation."""

    def test_handbook_defaults_to_author(self):
        assert derive_group_key(DocumentKind.HANDBOOK_PAGE, "alice") == "handbook-page:alice"

    def test_handbook_ignores_batch(self):
        key = derive_group_key("handbook-page", "alice", batch_id="upload-1", document_id="d1")
        assert key == "handbook-page:alice"

    def test_memorandum_defaults_to_itself(self):
        assert derive_group_key("memorandum", "alice", document_id="d1") == "memorandum:doc:d1"

    def test_policy_section_defaults_to_batch(self):
        key = derive_group_key("policy-section", "alice", batch_id="upload-1", document_id="d1")
        assert key == "policy-section:batch:upload-1"

    def test_memorandum_needs_something_to_scope_by(self):
        with pytest.raises(ValueError):
            derive_group_key("memorandum", "alice")

    def test_explicit_scope_wins(self):
        assert derive_group_key("policy-section", "alice", "hr", batch_id="b") == "policy-section:hr"
        assert derive_group_key("handbook-page", "alice", "hr") == "handbook-page:hr"

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            derive_group_key("poster", "alice")


class TestActor:
    """Tests for Actor role helpers."""

    def test_default_role_is_editor(self):
        actor = Actor("alice")
        assert actor.role == ActorRole.EDITOR
        assert actor.can_edit
        assert not actor.is_moderator

    def test_moderator_can_edit(self):
        actor = Actor("mod", ActorRole.MODERATOR)
        assert actor.can_edit
        assert actor.is_moderator

    def test_viewer_cannot_edit(self):
        assert not Actor("vic", ActorRole.VIEWER).can_edit


class TestGovernedDocument:
    """Tests for the document snapshot."""

    def test_flags(self):
        doc = _document(status=DocumentStatus.APPROVED, lease_holder="alice")
        assert doc.is_approved
        assert doc.is_leased

    def test_to_dict_serializes_enums_and_dates(self):
        stamp = datetime(2024, 3, 1, 9, 30)
        data = _document(lease_holder="alice", lease_started_at=stamp).to_dict()
        assert data["kind"] == "memorandum"
        assert data["status"] == "draft"
        assert data["lease_started_at"] == "2024-03-01T09:30:00"
        assert data["archived_at"] is None


class TestOperationResult:
    """Tests for outcome-tagged results."""

    @pytest.mark.parametrize(
        "kind,status",
        [
            (OutcomeKind.OK, 200),
            (OutcomeKind.CONFLICT, 409),
            (OutcomeKind.FORBIDDEN, 403),
            (OutcomeKind.NOT_FOUND, 404),
            (OutcomeKind.INVALID, 400),
        ],
    )
    def test_http_status(self, kind, status):
        assert OperationResult(kind=kind).http_status == status

    def test_ok_with_document(self):
        result = OperationResult(kind=OutcomeKind.OK, value=_document())
        data = result.to_dict()
        assert result.ok
        assert data["outcome"] == "ok"
        assert data["value"]["id"] == "doc-1"
        assert "error" not in data

    def test_list_values(self):
        result = OperationResult(kind=OutcomeKind.OK, value=[_document(), _document(id="doc-2")])
        assert [item["id"] for item in result.to_dict()["value"]] == ["doc-1", "doc-2"]

    def test_conflict_carries_error_details(self):
        error = VersionConflictError("stale", current_version=4)
        data = OperationResult(kind=OutcomeKind.CONFLICT, error=error).to_dict()
        assert data["error"]["error"] == "VersionConflictError"
        assert data["error"]["current_version"] == 4

    def test_plain_exception_error(self):
        data = OperationResult(kind=OutcomeKind.INVALID, error=RuntimeError("bad")).to_dict()
        assert data["error"] == {"message": "bad"}

    def test_lease_grant_value(self):
        grant = LeaseGrant(granted=False, holder="alice", age_seconds=12.5)
        data = OperationResult(kind=OutcomeKind.CONFLICT, value=grant).to_dict()
        assert data["value"]["holder"] == "alice"
        assert data["value"]["age_seconds"] == 12.5

    def test_approval_summary(self):
        summary = ApprovalSummary(
            document=_document(),
            published=[_document(), _document(id="doc-2")],
            superseded=[_document(id="doc-0")],
        )
        data = summary.to_dict()
        assert data["published"] == ["doc-1", "doc-2"]
        assert data["superseded"] == ["doc-0"]


class TestExceptions:
    """Tests for the error taxonomy."""

    def test_status_codes(self):
        assert ValidationError("x").status_code == 400
        assert NotFoundError("x").status_code == 404
        assert LeaseConflictError("x").status_code == 409
        assert VersionConflictError("x").status_code == 409

    def test_validation_error_field(self):
        error = ValidationError("title is required", field="title")
        assert error.field == "title"
        assert error.to_dict()["field"] == "title"

    def test_lease_conflict_details(self):
        error = LeaseConflictError("busy", holder="bob", age_seconds=30.0)
        assert error.to_dict() == {
            "error": "LeaseConflictError",
            "message": "busy",
            "holder": "bob",
            "age_seconds": 30.0,
        }

    def test_not_found_document_id(self):
        assert NotFoundError("gone", document_id="doc-9").to_dict()["document_id"] == "doc-9"

    def test_external_sink_error_wraps_cause(self):
        cause = ConnectionError("timeout")
        error = ExternalSinkError("search_index.upsert", cause)
        assert error.sink == "search_index.upsert"
        assert error.cause is cause
        assert "timeout" in error.message
