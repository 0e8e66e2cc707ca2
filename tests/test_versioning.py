"""
Tests for optimistic versioning.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from docgovern.exceptions import (
    LeaseConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from docgovern.models import Actor, ActorRole, DocumentStatus
from docgovern.versioning import VersionGuard

ALICE = Actor("alice", ActorRole.EDITOR)
MODERATOR = Actor("mod", ActorRole.MODERATOR)


@pytest.fixture
def doc(engine):
    return engine.lifecycle.create(ALICE, "policy-section", "Travel", content={"text": "v1"})


@pytest.fixture
def guard(engine):
    return VersionGuard(engine.db, clock=engine.clock)


class TestCheckAndBump:
    """Tests for VersionGuard.check_and_bump."""

    def test_match_bumps_and_releases_lease(self, engine, guard, doc):
        engine.leases.acquire(doc.id, "alice")
        result = guard.check_and_bump(doc.id, 1, "alice", {"content": {"text": "v2"}})
        assert result.ok
        assert result.version == 2
        assert result.document.content == {"text": "v2"}
        assert result.document.lease_holder is None
        assert result.document.updated_by == "alice"

    def test_mismatch_is_a_conflict_without_mutation(self, engine, guard, doc):
        engine.leases.acquire(doc.id, "alice")
        result = guard.check_and_bump(doc.id, 7, "alice", {"content": {"text": "stale"}})
        assert result.conflict
        assert result.version == 1
        current = engine.lifecycle.get(doc.id)
        assert current.content == {"text": "v1"}
        assert current.lease_holder == "alice"

    def test_unleased_write_is_refused(self, guard, doc):
        with pytest.raises(LeaseConflictError) as exc:
            guard.check_and_bump(doc.id, 1, "alice", {"title": "New"})
        assert exc.value.holder is None
        assert "Acquire the edit lease" in exc.value.message

    def test_foreign_lease_is_refused(self, engine, guard, doc):
        engine.leases.acquire(doc.id, "bob")
        engine.clock.advance(seconds=45)
        with pytest.raises(LeaseConflictError) as exc:
            guard.check_and_bump(doc.id, 1, "alice", {"title": "New"})
        assert exc.value.holder == "bob"
        assert exc.value.age_seconds == pytest.approx(45.0)

    def test_lease_can_be_waived(self, engine, guard, doc):
        result = guard.check_and_bump(doc.id, 1, "alice", {"title": "New"}, require_lease=False)
        assert result.ok
        assert engine.lifecycle.get(doc.id).title == "New"

    def test_version_checked_before_lease(self, engine, guard, doc):
        engine.leases.acquire(doc.id, "bob")
        result = guard.check_and_bump(doc.id, 5, "alice", {"title": "New"})
        assert result.conflict

    def test_archived(self, engine, guard, doc):
        engine.lifecycle.archive(MODERATOR, doc.id)
        with pytest.raises(ValidationError):
            guard.check_and_bump(doc.id, 2, "alice", {"title": "New"})

    def test_missing(self, guard):
        with pytest.raises(NotFoundError):
            guard.check_and_bump("missing", 1, "alice", {"title": "New"})

    def test_expected_version_required(self, guard, doc):
        with pytest.raises(ValidationError):
            guard.check_and_bump(doc.id, None, "alice", {"title": "New"})


class TestConcurrentUpdates:
    """N concurrent saves with the same expected version produce one winner."""

    def test_exactly_one_winner(self, engine, doc):
        engine.leases.acquire(doc.id, "alice")

        def save(n):
            try:
                return engine.lifecycle.update_with_version(
                    ALICE, doc.id, 1, content={"text": f"edit {n}"}
                )
            except VersionConflictError as e:
                return e

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(save, range(6)))

        winners = [o for o in outcomes if not isinstance(o, VersionConflictError)]
        conflicts = [o for o in outcomes if isinstance(o, VersionConflictError)]
        assert len(winners) == 1
        assert len(conflicts) == 5
        assert winners[0].version == 2
        assert all(c.current_version == 2 for c in conflicts)

        current = engine.lifecycle.get(doc.id)
        assert current.version == 2
        assert current.content == winners[0].content
        assert current.status == DocumentStatus.DRAFT
