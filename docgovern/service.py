"""
DocGovern - Upward-facing facade.

Wires the engine together and converts its typed errors into
outcome-tagged results (ok, conflict, forbidden, not_found, invalid) so a
transport layer can map them without inspecting engine internals.
"""

import functools
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .archive import ArchiveStore
from .config import GovernanceConfig
from .database import Database, utcnow
from .exceptions import (
    ForbiddenError,
    LeaseConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from .fanout import PublicationFanout
from .leases import LeaseManager, LeaseSweeper
from .lifecycle import LifecycleStateMachine
from .models import Actor, OperationResult, OutcomeKind
from .sinks import (
    ArtifactStore,
    AuditLog,
    DatabaseAuditLog,
    HttpSearchIndex,
    NotificationDispatcher,
    RealtimeBroadcaster,
    SearchIndex,
    StaticSubscriberDirectory,
    SubscriberDirectory,
)
from .validation import validate_user_id
from .versioning import VersionGuard

logger = logging.getLogger("docgovern.service")

_OUTCOMES = (
    (ValidationError, OutcomeKind.INVALID),
    (NotFoundError, OutcomeKind.NOT_FOUND),
    (ForbiddenError, OutcomeKind.FORBIDDEN),
    (LeaseConflictError, OutcomeKind.CONFLICT),
    (VersionConflictError, OutcomeKind.CONFLICT),
)


def outcome(func: Callable[..., Any]) -> Callable[..., OperationResult]:
    """Run an engine call and tag its result or expected failure with an outcome kind."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> OperationResult:
        try:
            value = func(*args, **kwargs)
        except tuple(exc for exc, _ in _OUTCOMES) as e:
            kind = next(kind for exc, kind in _OUTCOMES if isinstance(e, exc))
            logger.debug("%s -> %s: %s", func.__name__, kind.value, e)
            return OperationResult(kind=kind, error=e)
        if isinstance(value, OperationResult):
            return value
        return OperationResult(kind=OutcomeKind.OK, value=value)

    return wrapper


class GovernanceService:
    """
    Entry point for callers of the document lifecycle engine.

    Example:
        ```python
        service = GovernanceService.build(Database("sqlite:///docs.db"))
        editor = Actor("alice", ActorRole.EDITOR)

        doc = service.create(editor, "memorandum", "Leave policy").value
        service.acquire_lease(editor, doc.id)
        saved = service.update_with_version(editor, doc.id, doc.version, content={...})
        ```
    """

    def __init__(
        self,
        lifecycle: LifecycleStateMachine,
        leases: LeaseManager,
        config: Optional[GovernanceConfig] = None,
    ):
        self.lifecycle = lifecycle
        self.leases = leases
        self.config = config or lifecycle.config

    @classmethod
    def build(
        cls,
        db: Database,
        config: Optional[GovernanceConfig] = None,
        search_index: Optional[SearchIndex] = None,
        notifier: Optional[NotificationDispatcher] = None,
        broadcaster: Optional[RealtimeBroadcaster] = None,
        subscribers: Optional[SubscriberDirectory] = None,
        audit: Optional[AuditLog] = None,
        artifacts: Optional[ArtifactStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "GovernanceService":
        """Build the engine from a store, a config and optional sink implementations."""
        config = config or GovernanceConfig()
        if search_index is None and config.search_configured:
            search_index = HttpSearchIndex(
                config.search_app_id,
                config.search_api_key,
                config.search_index_name,
                timeout=config.search_timeout_seconds,
            )
        fanout = PublicationFanout(
            search_index=search_index,
            notifier=notifier,
            broadcaster=broadcaster,
            subscribers=subscribers or StaticSubscriberDirectory(config.notification_recipients),
        )
        audit = audit if audit is not None else DatabaseAuditLog(db)
        leases = LeaseManager(db, config, clock=clock)
        guard = VersionGuard(db, clock=clock)
        archive_store = ArchiveStore(db, guard, fanout, audit=audit, artifacts=artifacts, clock=clock)
        lifecycle = LifecycleStateMachine(
            db,
            leases,
            guard,
            fanout,
            archive_store,
            audit=audit,
            config=config,
            clock=clock,
        )
        return cls(lifecycle, leases, config)

    def sweeper(self, interval_seconds: Optional[float] = None) -> LeaseSweeper:
        return LeaseSweeper(self.leases, interval_seconds)

    # ==================== Leases ====================

    @outcome
    def acquire_lease(self, actor: Actor, document_id: str) -> OperationResult:
        validate_user_id(getattr(actor, "id", None), "actor.id")
        if not actor.can_edit:
            raise ForbiddenError("Only editors and moderators can edit documents")
        grant = self.leases.acquire(document_id, actor.id)
        if grant.granted:
            return OperationResult(kind=OutcomeKind.OK, value=grant)
        error = LeaseConflictError(
            f"{grant.holder} is editing this document",
            holder=grant.holder,
            age_seconds=grant.age_seconds,
        )
        return OperationResult(kind=OutcomeKind.CONFLICT, value=grant, error=error)

    @outcome
    def renew_lease(self, actor: Actor, document_id: str):
        return self.leases.renew(document_id, actor.id)

    @outcome
    def release_lease(self, actor: Actor, document_id: str):
        return self.leases.release(document_id, actor.id)

    # ==================== Documents ====================

    @outcome
    def create(self, actor: Actor, kind: Any, title: str, **kwargs: Any):
        return self.lifecycle.create(actor, kind, title, **kwargs)

    @outcome
    def get(self, document_id: str):
        return self.lifecycle.get(document_id)

    @outcome
    def list_documents(self, **filters: Any):
        return self.lifecycle.list_documents(**filters)

    @outcome
    def audit_trail(self, document_id: str, limit: int = 100, offset: int = 0):
        return self.lifecycle.audit_trail(document_id, limit=limit, offset=offset)

    @outcome
    def update_with_version(
        self, actor: Actor, document_id: str, expected_version: int, **changes: Any
    ):
        return self.lifecycle.update_with_version(actor, document_id, expected_version, **changes)

    @outcome
    def submit(self, actor: Actor, document_id: str, expected_version: int):
        return self.lifecycle.submit(actor, document_id, expected_version)

    @outcome
    def approve(self, actor: Actor, document_id: str, expected_version: Optional[int] = None):
        return self.lifecycle.approve(actor, document_id, expected_version)

    @outcome
    def reject(
        self,
        actor: Actor,
        document_id: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ):
        return self.lifecycle.reject(actor, document_id, reason, expected_version)

    @outcome
    def archive(self, actor: Actor, document_id: str, expected_version: Optional[int] = None):
        return self.lifecycle.archive(actor, document_id, expected_version)

    @outcome
    def restore(self, actor: Actor, document_id: str, expected_version: Optional[int] = None):
        return self.lifecycle.restore(actor, document_id, expected_version)

    @outcome
    def purge(self, actor: Actor, document_id: str):
        return self.lifecycle.purge(actor, document_id)
