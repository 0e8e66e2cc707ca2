"""
DocGovern - Publication fan-out.

Propagates a committed transition to the search index, the notification
dispatcher and realtime listeners. Each sink call is isolated: a failure is
wrapped in ExternalSinkError, logged and returned to the caller for
inspection, and never stops the remaining sinks.
"""

import logging
from html import escape
from typing import Any, Callable, Dict, List, Optional, Sequence

from .exceptions import ExternalSinkError
from .models import AuditAction, DocumentKind, GovernedDocument, RealtimeEvent
from .sinks import (
    AuditLog,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    RealtimeBroadcaster,
    SearchIndex,
    StaticSubscriberDirectory,
    SubscriberDirectory,
)

logger = logging.getLogger("docgovern.fanout")

_KIND_LABELS = {
    DocumentKind.HANDBOOK_PAGE: "Handbook",
    DocumentKind.MEMORANDUM: "Memorandum",
    DocumentKind.POLICY_SECTION: "Policy section",
}


def record_audit(
    audit: Optional[AuditLog],
    actor_id: str,
    action: AuditAction,
    description: str,
    **metadata: Any,
) -> bool:
    """Append to the audit trail after a committed transition. Failures are logged only."""
    if audit is None:
        return False
    try:
        audit.append(actor_id, action.value, description, metadata)
        return True
    except Exception as e:
        logger.warning("Audit append for %s failed: %s", action.value, e, exc_info=True)
        return False


def realtime_payload(document: GovernedDocument) -> Dict[str, Any]:
    return {
        "document_id": document.id,
        "kind": document.kind.value,
        "status": document.status.value,
        "version": document.version,
        "archived": document.archived,
        "group_key": document.group_key,
        "batch_id": document.batch_id,
    }


class PublicationFanout:
    """Best-effort propagation of lifecycle transitions to downstream sinks."""

    def __init__(
        self,
        search_index: Optional[SearchIndex] = None,
        notifier: Optional[NotificationDispatcher] = None,
        broadcaster: Optional[RealtimeBroadcaster] = None,
        subscribers: Optional[SubscriberDirectory] = None,
    ):
        self.search_index = search_index
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.broadcaster = broadcaster
        self.subscribers = subscribers or StaticSubscriberDirectory()

    def _call(
        self,
        sink: str,
        func: Callable[..., Any],
        *args: Any,
        errors: List[ExternalSinkError],
    ) -> None:
        try:
            func(*args)
        except Exception as e:
            error = ExternalSinkError(sink, e)
            logger.warning("Fan-out sink %s failed: %s", sink, e, exc_info=True)
            errors.append(error)

    def _index_upsert(self, document: GovernedDocument, errors: List[ExternalSinkError]) -> None:
        if self.search_index is not None:
            self._call("search_index.upsert", self.search_index.upsert, document, errors=errors)

    def _index_remove(self, document_id: str, errors: List[ExternalSinkError]) -> None:
        if self.search_index is not None:
            self._call("search_index.remove", self.search_index.remove, document_id, errors=errors)

    def _emit(self, event: RealtimeEvent, payload: Dict[str, Any], errors: List[ExternalSinkError]) -> None:
        if self.broadcaster is not None:
            self._call("realtime.emit", self.broadcaster.emit, event.value, payload, errors=errors)

    def published(
        self, documents: Sequence[GovernedDocument], notify: bool = True
    ) -> List[ExternalSinkError]:
        """Documents entered ``approved`` as one publication unit."""
        errors: List[ExternalSinkError] = []
        for document in documents:
            self._index_upsert(document, errors)
            self._emit(RealtimeEvent.APPROVED, realtime_payload(document), errors)

        if notify and documents:
            title, body, html = self._announcement(documents)
            self._call("notifications.push", self.notifier.push_to_all, title, body, errors=errors)
            recipients: List[str] = []
            self._call(
                "subscribers.email_recipients",
                lambda: recipients.extend(self.subscribers.email_recipients()),
                errors=errors,
            )
            if recipients:
                self._call(
                    "notifications.email",
                    self.notifier.email_broadcast,
                    title,
                    html,
                    recipients,
                    errors=errors,
                )
        return errors

    def withdrawn(
        self, document: GovernedDocument, event: RealtimeEvent = RealtimeEvent.WITHDRAWN
    ) -> List[ExternalSinkError]:
        """Document left ``approved`` (superseded, rejected or edited back to draft)."""
        errors: List[ExternalSinkError] = []
        self._index_remove(document.id, errors)
        self._emit(event, realtime_payload(document), errors)
        return errors

    def archived(self, document: GovernedDocument) -> List[ExternalSinkError]:
        errors: List[ExternalSinkError] = []
        if document.is_approved:
            self._index_remove(document.id, errors)
        self._emit(RealtimeEvent.ARCHIVED, realtime_payload(document), errors)
        return errors

    def restored(self, document: GovernedDocument) -> List[ExternalSinkError]:
        errors: List[ExternalSinkError] = []
        if document.is_approved:
            self._index_upsert(document, errors)
        self._emit(RealtimeEvent.RESTORED, realtime_payload(document), errors)
        return errors

    def purged(self, document: GovernedDocument) -> List[ExternalSinkError]:
        errors: List[ExternalSinkError] = []
        self._index_remove(document.id, errors)
        self._emit(RealtimeEvent.PURGED, {"document_id": document.id, "kind": document.kind.value}, errors)
        return errors

    def _announcement(self, documents: Sequence[GovernedDocument]):
        lead = documents[0]
        label = _KIND_LABELS.get(lead.kind, "Document")
        title = f"{label} published"
        if len(documents) == 1:
            body = f'"{lead.title}" is now available.'
        else:
            body = f'"{lead.title}" and {len(documents) - 1} related page(s) are now available.'
        items = "".join(f"<li>{escape(doc.title)}</li>" for doc in documents)
        html = f"<h2>{escape(title)}</h2><p>{escape(body)}</p><ul>{items}</ul>"
        return title, body, html
