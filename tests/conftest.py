"""
Shared fixtures: a temp-file SQLite store, a controllable clock and
recording sinks wired into a GovernanceService.
"""

import os
import tempfile
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from docgovern.config import GovernanceConfig
from docgovern.database import Database
from docgovern.service import GovernanceService
from docgovern.sinks import (
    ArtifactStore,
    InMemorySearchIndex,
    NotificationDispatcher,
    RealtimeBroadcaster,
    StaticSubscriberDirectory,
)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 1, 9, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSearchIndex(InMemorySearchIndex):
    def __init__(self):
        super().__init__()
        self.calls = []

    def upsert(self, document):
        self.calls.append(("upsert", document.id))
        super().upsert(document)

    def remove(self, document_id):
        self.calls.append(("remove", document_id))
        super().remove(document_id)


class RecordingNotifier(NotificationDispatcher):
    def __init__(self):
        self.pushes = []
        self.emails = []

    def push_to_all(self, title, body):
        self.pushes.append((title, body))

    def email_broadcast(self, subject, html, recipients):
        self.emails.append((subject, html, list(recipients)))


class RecordingBroadcaster(RealtimeBroadcaster):
    def __init__(self):
        self.events = []

    def emit(self, event_name, payload):
        self.events.append((event_name, payload))

    def names(self):
        return [name for name, _ in self.events]


class RecordingArtifactStore(ArtifactStore):
    def __init__(self):
        self.deleted = []

    def delete(self, artifact_ref):
        self.deleted.append(artifact_ref)


@pytest.fixture
def db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    database = Database(f"sqlite:///{db_path}")
    database.create_tables()
    yield database

    database.engine.dispose()
    os.unlink(db_path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return GovernanceConfig()


@pytest.fixture
def engine(db, clock, config):
    """A GovernanceService with recording sinks, plus handles on each sink."""
    search = RecordingSearchIndex()
    notifier = RecordingNotifier()
    broadcaster = RecordingBroadcaster()
    artifacts = RecordingArtifactStore()
    service = GovernanceService.build(
        db,
        config,
        search_index=search,
        notifier=notifier,
        broadcaster=broadcaster,
        subscribers=StaticSubscriberDirectory(["staff@example.org"]),
        artifacts=artifacts,
        clock=clock,
    )
    return SimpleNamespace(
        db=db,
        clock=clock,
        config=config,
        service=service,
        lifecycle=service.lifecycle,
        leases=service.leases,
        search=search,
        notifier=notifier,
        broadcaster=broadcaster,
        artifacts=artifacts,
    )


@pytest.fixture
def sinks():
    """Fresh recording sinks for exercising the fan-out directly."""
    return SimpleNamespace(
        search=RecordingSearchIndex(),
        notifier=RecordingNotifier(),
        broadcaster=RecordingBroadcaster(),
    )
