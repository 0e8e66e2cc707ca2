"""
Database layer for DocGovern using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.

Every document mutation goes through ``conditional_update`` or
``conditional_delete``: a single ``UPDATE``/``DELETE ... WHERE`` whose
``rowcount`` tells the caller whether the expected state still held.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    desc,
    text,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the DateTime columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentModel(Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    kind = Column(String(32), nullable=False)
    title = Column(String(500), nullable=False)
    content = Column(JSON, default=dict)
    status = Column(String(16), nullable=False, default="draft")
    version = Column(Integer, nullable=False, default=1)
    group_key = Column(String(300), nullable=False)
    batch_id = Column(String(64), nullable=True)
    lease_holder = Column(String(255), nullable=True)
    lease_started_at = Column(DateTime, nullable=True)
    archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime, nullable=True)
    artifact_ref = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=False)
    updated_by = Column(String(255), nullable=True)
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("idx_documents_group_status", "group_key", "status"),
        Index("idx_documents_batch_id", "batch_id"),
        Index("idx_documents_created_by_kind", "created_by", "kind"),
        Index("idx_documents_lease_started_at", "lease_started_at"),
    )


class AuditEntryModel(Base):
    __tablename__ = "audit_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    actor_id = Column(String(255), nullable=False)
    action = Column(String(100), nullable=False)
    description = Column(Text, default="")
    document_id = Column(String(36), nullable=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_audit_entries_document_id", "document_id"),)


class Database:
    """Database interface for DocGovern."""

    def __init__(self, database_url: str):
        self.database_url = database_url

        connect_args: Dict[str, Any] = {}
        engine_kwargs: Dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Concurrent writers wait on SQLite's file lock instead of failing.
            connect_args["timeout"] = 30
            if ":memory:" in database_url or database_url == "sqlite://":
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, connect_args=connect_args, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def is_connected(self) -> bool:
        """Ask the driver whether the store answers right now."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    # ==================== Documents ====================

    def create_document(self, session: Session, **kwargs) -> DocumentModel:
        now = utcnow()
        kwargs.setdefault("created_at", now)
        kwargs.setdefault("updated_at", now)
        document = DocumentModel(**kwargs)
        session.add(document)
        session.commit()
        session.refresh(document)
        return document

    def get_document(self, session: Session, document_id: str) -> Optional[DocumentModel]:
        # populate_existing so a re-read after a conditional write sees fresh columns
        return (
            session.query(DocumentModel)
            .populate_existing()
            .filter(DocumentModel.id == document_id)
            .first()
        )

    def list_documents(
        self,
        session: Session,
        kind: Optional[str] = None,
        status: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[DocumentModel]:
        query = session.query(DocumentModel)
        if kind:
            query = query.filter(DocumentModel.kind == kind)
        if status:
            query = query.filter(DocumentModel.status == status)
        if not include_archived:
            query = query.filter(DocumentModel.archived.is_(False))
        return (
            query.order_by(desc(DocumentModel.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def conditional_update(
        self,
        session: Session,
        document_id: str,
        conditions: Iterable[Any],
        values: Dict[str, Any],
    ) -> bool:
        """
        Apply ``values`` to one document only if every condition still holds.

        Executes and commits a single ``UPDATE ... WHERE id = :id AND ...``.
        Returns True when exactly that row was written.
        """
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        statement = (
            update(DocumentModel)
            .where(DocumentModel.id == document_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            rowcount = session.execute(statement).rowcount
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return rowcount == 1

    def conditional_delete(
        self, session: Session, document_id: str, conditions: Iterable[Any]
    ) -> bool:
        statement = (
            delete(DocumentModel)
            .where(DocumentModel.id == document_id, *conditions)
            .execution_options(synchronize_session=False)
        )
        try:
            rowcount = session.execute(statement).rowcount
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return rowcount == 1

    def clear_stale_leases(self, session: Session, cutoff: datetime) -> int:
        """Clear every lease that started before ``cutoff`` in one statement."""
        statement = (
            update(DocumentModel)
            .where(
                DocumentModel.lease_holder.is_not(None),
                DocumentModel.lease_started_at < cutoff,
            )
            .values(lease_holder=None, lease_started_at=None)
            .execution_options(synchronize_session=False)
        )
        try:
            rowcount = session.execute(statement).rowcount
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        return rowcount or 0

    def get_approved_in_group(
        self, session: Session, group_key: str, exclude_ids: Iterable[str] = ()
    ) -> List[DocumentModel]:
        query = session.query(DocumentModel).filter(
            DocumentModel.group_key == group_key,
            DocumentModel.status == "approved",
        )
        exclude = list(exclude_ids)
        if exclude:
            query = query.filter(DocumentModel.id.not_in(exclude))
        return query.all()

    def get_batch_members(self, session: Session, batch_id: str) -> List[DocumentModel]:
        return (
            session.query(DocumentModel)
            .filter(DocumentModel.batch_id == batch_id)
            .order_by(DocumentModel.created_at)
            .all()
        )

    def get_window_siblings(
        self,
        session: Session,
        kind: str,
        created_by: str,
        start: datetime,
        end: datetime,
    ) -> List[DocumentModel]:
        """Unbatched documents of one author and kind created inside [start, end]."""
        return (
            session.query(DocumentModel)
            .filter(
                DocumentModel.kind == kind,
                DocumentModel.created_by == created_by,
                DocumentModel.batch_id.is_(None),
                DocumentModel.created_at >= start,
                DocumentModel.created_at <= end,
            )
            .order_by(DocumentModel.created_at)
            .all()
        )

    # ==================== Audit trail ====================

    def create_audit_entry(self, session: Session, **kwargs) -> AuditEntryModel:
        entry = AuditEntryModel(**kwargs)
        session.add(entry)
        session.commit()
        session.refresh(entry)
        return entry

    def get_audit_entries(
        self,
        session: Session,
        document_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditEntryModel]:
        query = session.query(AuditEntryModel)
        if document_id:
            query = query.filter(AuditEntryModel.document_id == document_id)
        return (
            query.order_by(desc(AuditEntryModel.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )


_database: Optional[Database] = None


def get_database(database_url: str = "sqlite:///./docgovern.db") -> Database:
    """Get or create the database instance."""
    global _database
    if _database is None:
        _database = Database(database_url)
        _database.create_tables()
    return _database
