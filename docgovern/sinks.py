"""
DocGovern - External collaborator interfaces and default implementations.

The lifecycle engine only talks to these base classes. Search, notifications,
realtime listeners, the audit trail and binary artifact storage are all
independent systems; concrete deployments swap in their own subclasses.
"""

import logging
import queue
import threading
from typing import Any, Dict, List, Optional

import httpx

from .database import Database
from .models import GovernedDocument

logger = logging.getLogger("docgovern.sinks")


# ==================== Search index ====================


def build_search_record(document: GovernedDocument) -> Dict[str, Any]:
    """The record stored in the search index for an approved document."""
    content = document.content or {}
    searchable = [document.title]
    for key in ("text", "body", "summary", "file_name"):
        value = content.get(key)
        if isinstance(value, str) and value:
            searchable.append(value)
    return {
        "objectID": document.id,
        "type": document.kind.value,
        "title": document.title,
        "content": " ".join(searchable).strip(),
        "status": document.status.value,
        "group_key": document.group_key,
        "batch_id": document.batch_id,
        "version": document.version,
        "created_at": document.created_at.isoformat() if document.created_at else None,
        "approved_at": document.approved_at.isoformat() if document.approved_at else None,
    }


class SearchIndex:
    """Keyed by document id. Both operations must be idempotent."""

    def upsert(self, document: GovernedDocument) -> None:
        raise NotImplementedError

    def remove(self, document_id: str) -> None:
        raise NotImplementedError


class InMemorySearchIndex(SearchIndex):
    """Process-local index, used for development and tests."""

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def upsert(self, document: GovernedDocument) -> None:
        record = build_search_record(document)
        with self._lock:
            self._records[document.id] = record

    def remove(self, document_id: str) -> None:
        with self._lock:
            self._records.pop(document_id, None)

    def get(self, document_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._records.get(document_id)

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(self._records)

    def __contains__(self, document_id: object) -> bool:
        with self._lock:
            return document_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class HttpSearchIndex(SearchIndex):
    """
    Search index backed by an Algolia-compatible REST API.

    ``PUT /1/indexes/{index}/{objectID}`` replaces a record and
    ``DELETE /1/indexes/{index}/{objectID}`` removes it; a 404 on delete means
    the record is already gone.
    """

    def __init__(
        self,
        app_id: str,
        api_key: str,
        index_name: str,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.index_name = index_name
        self._client = httpx.Client(
            base_url=(base_url or f"https://{app_id}.algolia.net").rstrip("/"),
            headers={
                "X-Algolia-Application-Id": app_id,
                "X-Algolia-API-Key": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _path(self, document_id: str) -> str:
        return f"/1/indexes/{self.index_name}/{document_id}"

    def upsert(self, document: GovernedDocument) -> None:
        if not document.is_approved or document.archived:
            self.remove(document.id)
            return
        response = self._client.put(self._path(document.id), json=build_search_record(document))
        response.raise_for_status()

    def remove(self, document_id: str) -> None:
        response = self._client.delete(self._path(document_id))
        if response.status_code == 404:
            return
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()


# ==================== Notifications ====================


class NotificationDispatcher:
    def push_to_all(self, title: str, body: str) -> None:
        raise NotImplementedError

    def email_broadcast(self, subject: str, html: str, recipients: List[str]) -> None:
        raise NotImplementedError


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Records notifications in the log instead of delivering them."""

    def push_to_all(self, title: str, body: str) -> None:
        logger.info("Push to all subscribers: %s - %s", title, body)

    def email_broadcast(self, subject: str, html: str, recipients: List[str]) -> None:
        logger.info("Email broadcast '%s' to %d recipient(s)", subject, len(recipients))


class SubscriberDirectory:
    def email_recipients(self) -> List[str]:
        raise NotImplementedError


class StaticSubscriberDirectory(SubscriberDirectory):
    def __init__(self, recipients: Optional[List[str]] = None):
        self._recipients = list(recipients or [])

    def email_recipients(self) -> List[str]:
        return list(self._recipients)


# ==================== Realtime ====================


class RealtimeBroadcaster:
    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError


class QueueBroadcaster(RealtimeBroadcaster):
    """
    Fans events out to per-listener bounded queues.

    Emitting never blocks: a listener whose queue is full misses the event.
    """

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._listeners: List[queue.Queue] = []
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        listener: queue.Queue = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: queue.Queue) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def emit(self, event_name: str, payload: Dict[str, Any]) -> None:
        event = {"type": event_name, "data": payload}
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener.put_nowait(event)
            except queue.Full:
                logger.debug("Dropping %s for a slow listener", event_name)


# ==================== Audit trail ====================


class AuditLog:
    def append(
        self,
        actor_id: str,
        action: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        raise NotImplementedError


class DatabaseAuditLog(AuditLog):
    """Writes audit entries to the ``audit_entries`` table."""

    def __init__(self, db: Database):
        self.db = db

    def append(
        self,
        actor_id: str,
        action: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        metadata = dict(metadata or {})
        session = self.db.get_session()
        try:
            self.db.create_audit_entry(
                session,
                actor_id=actor_id,
                action=action,
                description=description,
                document_id=metadata.get("document_id"),
                details=metadata,
            )
        finally:
            session.close()


# ==================== Artifacts ====================


class ArtifactStore:
    """Owner of the binary blobs (PDFs, uploads) referenced by documents."""

    def delete(self, artifact_ref: str) -> None:
        raise NotImplementedError


class NullArtifactStore(ArtifactStore):
    def delete(self, artifact_ref: str) -> None:
        logger.info("No artifact store configured; leaving %s in place", artifact_ref)
