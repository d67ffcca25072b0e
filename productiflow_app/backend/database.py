# backend/database.py
"""
Database models and the Persistent Store for ProductiFlow.
Supports SQLite (local/dev) and any other SQLAlchemy backend via DATABASE_URL.

The Store is the only place data is durably written. Every operation runs
inside a transaction; cross-collection writes share one StoreTransaction so
they either all land or none do.
"""
import os
import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable, Iterator

from sqlalchemy import create_engine, Column, String, Integer, Boolean, DateTime, JSON, Text, Float
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError

from .errors import NotFound, StoreIOError, ValidationError
from .logging_setup import get_logger

logger = get_logger('store')

# Base class for all models
Base = declarative_base()


def empty_linked_items() -> Dict[str, List[str]]:
    return {'tasks': [], 'goals': [], 'reminders': [], 'events': []}


# ============================================================================
# SQLAlchemy Models
# ============================================================================

class RecordMixin:
    """Shared id/timestamp columns and dict conversion."""

    id = Column(String, primary_key=True)
    created_at = Column(DateTime, default=datetime.now, index=True)
    updated_at = Column(DateTime, default=datetime.now)

    def to_dict(self) -> dict:
        """Convert model instance to a plain record. JSON values are copied."""
        return {
            column.name: copy.deepcopy(getattr(self, column.name))
            for column in self.__table__.columns
        }


class Task(RecordMixin, Base):
    __tablename__ = 'tasks'

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    completed = Column(Boolean, default=False, index=True)
    priority = Column(String, default='P3', index=True)  # P1..P4
    due_date = Column(DateTime, nullable=True, index=True)
    start_date = Column(DateTime, nullable=True)
    project = Column(String, nullable=True, index=True)  # Project id
    tags = Column(JSON, default=list)
    location = Column(String, nullable=True)
    recurrence = Column(JSON, nullable=True)
    subtasks = Column(JSON, default=list)  # [{id, title, completed}]
    linked_items = Column(JSON, default=empty_linked_items)

    def __repr__(self):
        return f"<Task(id='{self.id}', title='{self.title}', completed={self.completed})>"


class Project(RecordMixin, Base):
    __tablename__ = 'projects'

    name = Column(String, nullable=False, index=True)
    color = Column(String, default='#6b7280')
    description = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Project(id='{self.id}', name='{self.name}')>"


class Goal(RecordMixin, Base):
    __tablename__ = 'goals'

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, index=True)
    target_value = Column(Float, nullable=True)
    current_value = Column(Float, default=0)
    unit = Column(String, nullable=True)
    deadline = Column(DateTime, nullable=True, index=True)
    start_date = Column(DateTime, nullable=True)
    priority = Column(String, default='P3')
    tags = Column(JSON, default=list)
    location = Column(String, nullable=True)
    is_habit = Column(Boolean, default=False, index=True)
    streak_count = Column(Integer, default=0)
    last_completed_date = Column(DateTime, nullable=True)
    recurrence = Column(JSON, nullable=True)
    milestones = Column(JSON, default=list)  # [{id, title, target_value, completed, completed_at}]
    linked_items = Column(JSON, default=empty_linked_items)

    def __repr__(self):
        return f"<Goal(id='{self.id}', title='{self.title}', is_habit={self.is_habit})>"


class Reminder(RecordMixin, Base):
    __tablename__ = 'reminders'

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=True)
    completed = Column(Boolean, default=False, index=True)
    priority = Column(String, default='P3')
    tags = Column(JSON, default=list)
    location = Column(String, nullable=True)
    recurrence = Column(JSON, nullable=True)
    linked_items = Column(JSON, default=empty_linked_items)

    def __repr__(self):
        return f"<Reminder(id='{self.id}', title='{self.title}', due_date={self.due_date})>"


class CalendarEvent(RecordMixin, Base):
    __tablename__ = 'calendar_events'

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False, index=True)
    end_date = Column(DateTime, nullable=False)
    is_all_day = Column(Boolean, default=False)
    color = Column(String, default='#3b82f6')
    priority = Column(String, default='P3')
    tags = Column(JSON, default=list)
    location = Column(String, nullable=True)
    recurrence = Column(JSON, nullable=True)
    linked_items = Column(JSON, default=empty_linked_items)

    def __repr__(self):
        return f"<CalendarEvent(id='{self.id}', title='{self.title}', start_date={self.start_date})>"


class Settings(RecordMixin, Base):
    """Singleton row (id '1') holding user preferences."""
    __tablename__ = 'settings'

    theme = Column(String, default='system')  # light, dark, system
    language = Column(String, default='en')
    date_format = Column(String, default='MM/dd/yyyy')
    time_format = Column(String, default='12h')  # 12h, 24h
    first_day_of_week = Column(Integer, default=0)
    notifications = Column(JSON, default=dict)
    privacy = Column(JSON, default=dict)

    def __repr__(self):
        return f"<Settings(id='{self.id}', theme='{self.theme}', language='{self.language}')>"


COLLECTIONS = {
    'tasks': Task,
    'projects': Project,
    'goals': Goal,
    'reminders': Reminder,
    'calendarEvents': CalendarEvent,
    'settings': Settings,
}

ENTITY_COLLECTIONS = ('tasks', 'projects', 'goals', 'reminders', 'calendarEvents')


def model_for(collection: str):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection '{collection}'") from None


def column_names(collection: str) -> List[str]:
    return [column.name for column in model_for(collection).__table__.columns]


def datetime_columns(collection: str) -> List[str]:
    return [
        column.name for column in model_for(collection).__table__.columns
        if isinstance(column.type, DateTime)
    ]


# ============================================================================
# Store
# ============================================================================

class StoreTransaction:
    """Store operations bound to a single session. Created by Store.transaction()."""

    def __init__(self, session):
        self.session = session

    def _check_fields(self, collection: str, record: Dict[str, Any]):
        unknown = set(record) - set(column_names(collection))
        if unknown:
            raise ValidationError(f"Unknown field(s) for {collection}: {', '.join(sorted(unknown))}")

    def add(self, collection: str, record: Dict[str, Any]) -> dict:
        model = model_for(collection)
        self._check_fields(collection, record)
        row = model(**copy.deepcopy(record))
        self.session.add(row)
        self.session.flush()
        return row.to_dict()

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        row = self.session.get(model_for(collection), record_id)
        return row.to_dict() if row else None

    def update(self, collection: str, record_id: str, partial: Dict[str, Any]) -> dict:
        model = model_for(collection)
        self._check_fields(collection, partial)
        row = self.session.get(model, record_id)
        if row is None:
            raise NotFound(collection, record_id)
        for key, value in partial.items():
            if key == 'id':
                continue
            setattr(row, key, copy.deepcopy(value))
        if row.created_at and row.updated_at and row.updated_at < row.created_at:
            row.updated_at = row.created_at
        self.session.flush()
        return row.to_dict()

    def delete(self, collection: str, record_id: str) -> bool:
        row = self.session.get(model_for(collection), record_id)
        if row is None:
            return False
        self.session.delete(row)
        self.session.flush()
        return True

    def list(self, collection: str, order_by: Optional[str] = None, descending: bool = False) -> List[dict]:
        model = model_for(collection)
        query = self.session.query(model)
        if order_by:
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc(), model.id.asc())
        return [row.to_dict() for row in query.all()]

    def bulk_add(self, collection: str, records: Iterable[Dict[str, Any]]) -> int:
        model = model_for(collection)
        rows = []
        for record in records:
            self._check_fields(collection, record)
            rows.append(model(**copy.deepcopy(record)))
        self.session.add_all(rows)
        self.session.flush()
        return len(rows)

    def clear(self, collection: str) -> int:
        removed = self.session.query(model_for(collection)).delete()
        self.session.flush()
        return removed

    def count(self, collection: str) -> int:
        return self.session.query(model_for(collection)).count()


class Store:
    """
    Persistent key-indexed store over SQLAlchemy.

    Transactions are serialized with a process-wide lock so a user edit and
    a background sync never interleave their writes.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        if database_url.startswith('sqlite'):
            connect_args = {'check_same_thread': False}  # Sync thread shares the store
            if database_url in ('sqlite://', 'sqlite:///:memory:'):
                self.engine = create_engine(database_url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
            else:
                self._ensure_sqlite_dir(database_url)
                self.engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        else:
            self.engine = create_engine(database_url, echo=echo, pool_pre_ping=True, pool_size=5, max_overflow=10)
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)
        self._lock = threading.RLock()

    @staticmethod
    def _ensure_sqlite_dir(database_url: str):
        db_path = database_url.replace('sqlite:///', '', 1)
        db_dir = os.path.dirname(db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    def init_db(self):
        """Create all tables if they do not exist."""
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreIOError(f"Failed to initialize database at {self.database_url}: {e}") from e
        logger.info(f"[Store] Initialized database at {self.database_url}")

    def dispose(self):
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """All-or-nothing batch: commit on success, roll back on any exception."""
        with self._lock:
            session = self.SessionLocal()
            try:
                yield StoreTransaction(session)
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"[Store] Transaction rolled back: {e}")
                raise StoreIOError(f"Store operation failed: {e}") from e
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    # Single-operation conveniences, each in its own transaction.

    def add(self, collection: str, record: Dict[str, Any]) -> dict:
        with self.transaction() as tx:
            return tx.add(collection, record)

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        with self.transaction() as tx:
            return tx.get(collection, record_id)

    def update(self, collection: str, record_id: str, partial: Dict[str, Any]) -> dict:
        with self.transaction() as tx:
            return tx.update(collection, record_id, partial)

    def delete(self, collection: str, record_id: str) -> bool:
        with self.transaction() as tx:
            return tx.delete(collection, record_id)

    def list(self, collection: str, order_by: Optional[str] = None, descending: bool = False) -> List[dict]:
        with self.transaction() as tx:
            return tx.list(collection, order_by, descending)

    def bulk_add(self, collection: str, records: Iterable[Dict[str, Any]]) -> int:
        with self.transaction() as tx:
            return tx.bulk_add(collection, records)

    def clear(self, collection: str) -> int:
        with self.transaction() as tx:
            return tx.clear(collection)

    def count(self, collection: str) -> int:
        with self.transaction() as tx:
            return tx.count(collection)
