"""
Tests for edit leases and the background sweeper.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from docgovern.exceptions import LeaseConflictError, NotFoundError, ValidationError
from docgovern.leases import LeaseManager, LeaseSweeper
from docgovern.models import Actor, ActorRole

ALICE = Actor("alice", ActorRole.EDITOR)
MODERATOR = Actor("mod", ActorRole.MODERATOR)


def _create(engine, title="Leave policy"):
    return engine.lifecycle.create(ALICE, "memorandum", title, content={"text": "v1"})


class TestAcquire:
    """Tests for LeaseManager.acquire."""

    def test_trace(self, engine):
        """A acquires, B is denied, A saves, B acquires the cleared lease."""
        doc = _create(engine)
        assert doc.version == 1
        assert doc.lease_holder is None

        grant = engine.leases.acquire(doc.id, "alice")
        assert grant.granted
        assert grant.holder == "alice"

        denied = engine.leases.acquire(doc.id, "bob")
        assert not denied.granted
        assert denied.holder == "alice"
        assert denied.age_seconds == pytest.approx(0.0)

        saved = engine.lifecycle.update_with_version(ALICE, doc.id, 1, content={"text": "v2"})
        assert saved.version == 2
        assert saved.lease_holder is None

        retry = engine.leases.acquire(doc.id, "bob")
        assert retry.granted
        assert retry.holder == "bob"
        assert retry.reclaimed_from is None

    def test_own_lease_is_refreshed(self, engine):
        doc = _create(engine)
        first = engine.leases.acquire(doc.id, "alice")
        engine.clock.advance(minutes=5)
        second = engine.leases.acquire(doc.id, "alice")
        assert second.granted
        assert second.started_at > first.started_at
        assert engine.lifecycle.get(doc.id).lease_started_at == second.started_at

    def test_denial_reports_age(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        engine.clock.advance(minutes=29)
        denied = engine.leases.acquire(doc.id, "bob")
        assert not denied.granted
        assert denied.age_seconds == pytest.approx(29 * 60)

    def test_expired_lease_is_reclaimed(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        engine.clock.advance(minutes=31)

        grant = engine.leases.acquire(doc.id, "bob")
        assert grant.granted
        assert grant.holder == "bob"
        assert grant.reclaimed_from == "alice"

    def test_save_with_reclaimed_lease_fails(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        engine.clock.advance(minutes=31)
        engine.leases.acquire(doc.id, "bob")

        with pytest.raises(LeaseConflictError) as exc:
            engine.lifecycle.update_with_version(ALICE, doc.id, 1, content={"text": "late"})
        assert exc.value.holder == "bob"
        assert engine.lifecycle.get(doc.id).version == 1

    def test_acquire_does_not_bump_version(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        engine.leases.release(doc.id, "alice")
        assert engine.lifecycle.get(doc.id).version == 1

    def test_missing_document(self, engine):
        with pytest.raises(NotFoundError):
            engine.leases.acquire("missing", "alice")

    def test_archived_document(self, engine):
        doc = _create(engine)
        engine.lifecycle.archive(MODERATOR, doc.id)
        with pytest.raises(ValidationError):
            engine.leases.acquire(doc.id, "alice")

    def test_concurrent_acquire_has_one_winner(self, engine):
        doc = _create(engine)
        users = [f"user-{i}" for i in range(8)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            grants = list(pool.map(lambda user: engine.leases.acquire(doc.id, user), users))

        winners = [g for g in grants if g.granted]
        assert len(winners) == 1
        holder = engine.lifecycle.get(doc.id).lease_holder
        assert holder == winners[0].holder
        assert all(g.holder == holder for g in grants)


class TestRenewAndRelease:
    """Tests for renew and release."""

    def test_renew_by_holder(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        engine.clock.advance(minutes=20)
        grant = engine.leases.renew(doc.id, "alice")
        assert grant.granted
        assert grant.started_at == engine.clock()

    def test_renew_by_other_user(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        with pytest.raises(LeaseConflictError) as exc:
            engine.leases.renew(doc.id, "bob")
        assert exc.value.holder == "alice"

    def test_renew_without_lease(self, engine):
        doc = _create(engine)
        with pytest.raises(LeaseConflictError) as exc:
            engine.leases.renew(doc.id, "alice")
        assert exc.value.holder is None

    def test_release_by_holder(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        assert engine.leases.release(doc.id, "alice") is True
        current = engine.lifecycle.get(doc.id)
        assert current.lease_holder is None
        assert current.lease_started_at is None

    def test_release_by_non_holder_is_noop(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        assert engine.leases.release(doc.id, "bob") is False
        assert engine.lifecycle.get(doc.id).lease_holder == "alice"

    def test_release_missing_document(self, engine):
        with pytest.raises(NotFoundError):
            engine.leases.release("missing", "alice")


class TestSweep:
    """Tests for the abandoned-lease sweep."""

    def test_sweep_clears_only_old_leases(self, engine):
        old = _create(engine, "Old")
        fresh = _create(engine, "Fresh")
        engine.leases.acquire(old.id, "alice")
        engine.clock.advance(minutes=6)
        engine.leases.acquire(fresh.id, "bob")
        engine.clock.advance(minutes=5)

        assert engine.leases.sweep() == 1
        assert engine.lifecycle.get(old.id).lease_holder is None
        assert engine.lifecycle.get(fresh.id).lease_holder == "bob"

    def test_sweep_with_nothing_to_clear(self, engine):
        _create(engine)
        assert engine.leases.sweep() == 0

    def test_sweeper_runs_on_start(self, engine):
        doc = _create(engine)
        engine.leases.acquire(doc.id, "alice")
        engine.clock.advance(minutes=11)

        sweeper = LeaseSweeper(engine.leases, interval_seconds=3600)
        with sweeper:
            assert sweeper.running
        assert not sweeper.running
        assert engine.lifecycle.get(doc.id).lease_holder is None

    def test_sweeper_uses_configured_interval(self, engine):
        assert LeaseSweeper(engine.leases).interval_seconds == 600

    def test_sweeper_survives_errors(self, db):
        class BrokenManager(LeaseManager):
            def sweep(self, now=None):
                raise RuntimeError("store unavailable")

        sweeper = LeaseSweeper(BrokenManager(db), interval_seconds=3600)
        assert sweeper.run_once() == 0
