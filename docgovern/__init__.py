"""
DocGovern - Lifecycle and concurrency-control engine for moderated documents.

Single-writer edit leases, optimistic versioning, a moderation state machine
with group supersession, soft archive, and best-effort publication fan-out.
"""

from .archive import ArchiveStore
from .config import GovernanceConfig
from .database import Database, get_database
from .exceptions import (
    DocGovernError,
    ExternalSinkError,
    ForbiddenError,
    LeaseConflictError,
    NotFoundError,
    ValidationError,
    VersionConflictError,
)
from .fanout import PublicationFanout
from .leases import LeaseManager, LeaseSweeper
from .lifecycle import LifecycleStateMachine
from .models import (
    Actor,
    ActorRole,
    ApprovalSummary,
    AuditAction,
    AuditEntry,
    DocumentKind,
    DocumentStatus,
    GovernedDocument,
    LeaseGrant,
    OperationResult,
    OutcomeKind,
    RealtimeEvent,
    VersionResult,
    derive_group_key,
)
from .service import GovernanceService
from .sinks import (
    ArtifactStore,
    AuditLog,
    DatabaseAuditLog,
    HttpSearchIndex,
    InMemorySearchIndex,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NullArtifactStore,
    QueueBroadcaster,
    RealtimeBroadcaster,
    SearchIndex,
    StaticSubscriberDirectory,
    SubscriberDirectory,
)
from .versioning import VersionGuard


def get_server():
    """Lazy import for server components (requires server extras)."""
    try:
        from .server import DocGovernServer, ServerConfig, create_app

        return DocGovernServer, ServerConfig, create_app
    except ImportError:
        raise ImportError(
            "Server components require the 'server' extras. "
            "Install with: pip install docgovern[server]"
        )


__version__ = "0.1.0"
__all__ = [
    "GovernanceService",
    "GovernanceConfig",
    "Database",
    "get_database",
    "LifecycleStateMachine",
    "LeaseManager",
    "LeaseSweeper",
    "VersionGuard",
    "PublicationFanout",
    "ArchiveStore",
    "Actor",
    "ActorRole",
    "ApprovalSummary",
    "AuditAction",
    "AuditEntry",
    "DocumentKind",
    "DocumentStatus",
    "GovernedDocument",
    "LeaseGrant",
    "OperationResult",
    "OutcomeKind",
    "RealtimeEvent",
    "VersionResult",
    "derive_group_key",
    "DocGovernError",
    "ValidationError",
    "NotFoundError",
    "ForbiddenError",
    "LeaseConflictError",
    "VersionConflictError",
    "ExternalSinkError",
    "SearchIndex",
    "InMemorySearchIndex",
    "HttpSearchIndex",
    "NotificationDispatcher",
    "LoggingNotificationDispatcher",
    "SubscriberDirectory",
    "StaticSubscriberDirectory",
    "RealtimeBroadcaster",
    "QueueBroadcaster",
    "AuditLog",
    "DatabaseAuditLog",
    "ArtifactStore",
    "NullArtifactStore",
    "get_server",
]
