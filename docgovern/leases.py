"""
DocGovern - Edit leases.

A lease is a time-bounded, exclusive edit permission stored as two columns on
the document (``lease_holder``, ``lease_started_at``). The columns are only
ever written by a single conditional UPDATE, so concurrent acquire, release
and sweep calls are resolved by the store, not by in-process locks.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import or_

from .config import GovernanceConfig
from .database import Database, DocumentModel, utcnow
from .exceptions import LeaseConflictError, NotFoundError, ValidationError
from .models import LeaseGrant
from .validation import validate_required, validate_user_id

logger = logging.getLogger("docgovern.leases")

# Attempts before an acquire gives up on a lease that keeps changing hands.
MAX_ACQUIRE_ATTEMPTS = 3


class LeaseManager:
    """Grants, renews, releases and sweeps edit leases."""

    def __init__(
        self,
        db: Database,
        config: Optional[GovernanceConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.config = config or GovernanceConfig()
        self.clock = clock

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.config.lease_ttl_seconds)

    def _load(self, session, document_id: str) -> DocumentModel:
        document = self.db.get_document(session, document_id)
        if document is None:
            raise NotFoundError("Document not found", document_id=document_id)
        if document.archived:
            raise ValidationError("Archived documents cannot be edited", field="archived")
        return document

    def acquire(self, document_id: str, user_id: str) -> LeaseGrant:
        """
        Grant the edit lease on a document to ``user_id``.

        Free leases and the requester's own lease are granted (the latter is
        refreshed). A lease held by someone else is reassigned only once it is
        older than the TTL; otherwise the current holder and its age are
        returned with ``granted=False``.
        """
        validate_required(document_id, "document_id")
        validate_user_id(user_id)

        with self.db.get_session() as session:
            for _ in range(MAX_ACQUIRE_ATTEMPTS):
                now = self.clock()
                cutoff = now - self.ttl
                previous = self._load(session, document_id)
                previous_holder = previous.lease_holder

                granted = self.db.conditional_update(
                    session,
                    document_id,
                    [
                        DocumentModel.archived.is_(False),
                        or_(
                            DocumentModel.lease_holder.is_(None),
                            DocumentModel.lease_holder == user_id,
                            DocumentModel.lease_started_at < cutoff,
                        ),
                    ],
                    {"lease_holder": user_id, "lease_started_at": now},
                )
                if granted:
                    reclaimed_from = (
                        previous_holder if previous_holder not in (None, user_id) else None
                    )
                    if reclaimed_from:
                        logger.info(
                            "Lease on %s reclaimed from %s by %s",
                            document_id,
                            reclaimed_from,
                            user_id,
                        )
                    return LeaseGrant(
                        granted=True,
                        holder=user_id,
                        age_seconds=0.0,
                        started_at=now,
                        reclaimed_from=reclaimed_from,
                    )

                current = self._load(session, document_id)
                holder = current.lease_holder
                started_at = current.lease_started_at
                if holder is None or holder == user_id or started_at < cutoff:
                    # The lease changed hands between our write and this read.
                    continue
                return LeaseGrant(
                    granted=False,
                    holder=holder,
                    age_seconds=max((now - started_at).total_seconds(), 0.0),
                    started_at=started_at,
                )

        raise LeaseConflictError(
            "Lease is changing hands too quickly, retry shortly", holder=None
        )

    def renew(self, document_id: str, user_id: str) -> LeaseGrant:
        """Refresh the start time of a lease the caller already holds."""
        validate_required(document_id, "document_id")
        validate_user_id(user_id)

        now = self.clock()
        with self.db.get_session() as session:
            renewed = self.db.conditional_update(
                session,
                document_id,
                [
                    DocumentModel.archived.is_(False),
                    DocumentModel.lease_holder == user_id,
                ],
                {"lease_holder": user_id, "lease_started_at": now},
            )
            if renewed:
                return LeaseGrant(granted=True, holder=user_id, started_at=now)

            current = self._load(session, document_id)
            age = (
                max((now - current.lease_started_at).total_seconds(), 0.0)
                if current.lease_started_at
                else None
            )
            raise LeaseConflictError(
                "You do not hold the edit lease on this document",
                holder=current.lease_holder,
                age_seconds=age,
            )

    def release(self, document_id: str, user_id: str) -> bool:
        """
        Clear the lease if ``user_id`` holds it.

        Returns False (no-op) when someone else, or nobody, holds the lease.
        """
        validate_required(document_id, "document_id")
        validate_user_id(user_id)

        with self.db.get_session() as session:
            released = self.db.conditional_update(
                session,
                document_id,
                [DocumentModel.lease_holder == user_id],
                {"lease_holder": None, "lease_started_at": None},
            )
            if released:
                return True
            if self.db.get_document(session, document_id) is None:
                raise NotFoundError("Document not found", document_id=document_id)
            return False

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Clear every lease older than the sweep max age. Returns the count cleared."""
        now = now or self.clock()
        cutoff = now - timedelta(seconds=self.config.sweep_max_age_seconds)
        with self.db.get_session() as session:
            cleared = self.db.clear_stale_leases(session, cutoff)
        if cleared:
            logger.info("Lease sweep cleared %d abandoned lease(s)", cleared)
        return cleared


class LeaseSweeper:
    """
    Runs ``LeaseManager.sweep`` on a fixed interval in a daemon thread.

    Usage:
        with LeaseSweeper(manager, interval_seconds=600):
            serve()
    """

    def __init__(self, manager: LeaseManager, interval_seconds: Optional[float] = None):
        self.manager = manager
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else manager.config.sweep_interval_seconds
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        try:
            return self.manager.sweep()
        except Exception:
            logger.exception("Lease sweep failed")
            return 0

    def _run(self) -> None:
        self.run_once()
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    def start(self) -> None:
        """Start sweeping in the background. The first sweep runs immediately."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="docgovern-lease-sweeper", daemon=True)
        self._thread.start()
        logger.info("Lease sweeper started (every %ss)", self.interval_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None

    def __enter__(self) -> "LeaseSweeper":
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
