# backend/repository.py
"""
Entity Repository: CRUD for tasks, projects, goals, reminders, calendar
events and the settings singleton.

Assigns ids and timestamps, validates payloads before any write, and
applies the per-collection list ordering. Every method takes an optional
`tx` so callers can group several writes into one Store transaction.
"""
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, Dict, Any, List, Callable, Union, Iterator

from .database import Store, StoreTransaction, ENTITY_COLLECTIONS
from .errors import NotFound, ValidationError
from .logging_setup import get_logger
from .validation import validate_payload

logger = get_logger('repository')

SETTINGS_ID = '1'
INBOX_PROJECT_ID = 'inbox'

# collection -> (order_by column, descending)
LIST_ORDERING = {
    'tasks': ('created_at', True),
    'projects': ('name', False),
    'goals': ('created_at', True),
    'reminders': ('due_date', False),
    'calendarEvents': ('start_date', False),
    'settings': ('id', False),
}

RecordFilter = Union[Dict[str, Any], Callable[[Dict[str, Any]], bool], None]


def _matches(record: Dict[str, Any], record_filter: RecordFilter) -> bool:
    if record_filter is None:
        return True
    if callable(record_filter):
        return bool(record_filter(record))
    return all(record.get(key) == value for key, value in record_filter.items())


class EntityRepository:
    """CRUD operations per entity type. No side effects beyond the Store."""

    def __init__(self, store: Store, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or datetime.now

    def _now(self) -> datetime:
        return self.clock()

    def _next_id(self) -> str:
        return str(uuid.uuid4())

    @contextmanager
    def _tx(self, tx: Optional[StoreTransaction]) -> Iterator[StoreTransaction]:
        if tx is not None:
            yield tx
        else:
            with self.store.transaction() as new_tx:
                yield new_tx

    # -----------------------------
    # Generic CRUD
    # -----------------------------
    def create(self, collection: str, data: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        """Validate, assign id + timestamps, write, and return the full record."""
        if collection == 'settings':
            raise ValidationError("settings is a singleton; use update_settings()")
        payload = validate_payload(collection, data)
        now = self._now()
        record = {**payload, 'id': self._next_id(), 'created_at': now, 'updated_at': now}
        with self._tx(tx) as t:
            created = t.add(collection, record)
        logger.debug(f"[Repository] Created {collection} record {created['id']}")
        return created

    def update(self, collection: str, record_id: str, partial: Dict[str, Any],
               tx: Optional[StoreTransaction] = None) -> dict:
        """Merge partial fields and refresh updated_at.

        Raises:
            NotFound: If no record has this id
            ValidationError: If the partial payload is malformed
        """
        with self._tx(tx) as t:
            current = t.get(collection, record_id)
            if current is None:
                raise NotFound(collection, record_id)
            payload = validate_payload(collection, partial, partial=True, current=current)
            payload['updated_at'] = self._now()
            updated = t.update(collection, record_id, payload)
        logger.debug(f"[Repository] Updated {collection} record {record_id}: {sorted(partial)}")
        return updated

    def delete(self, collection: str, record_id: str, tx: Optional[StoreTransaction] = None) -> bool:
        """Remove a record. Deleting an absent id is a no-op and returns False."""
        if collection == 'settings':
            raise ValidationError("settings singleton cannot be deleted")
        if collection == 'projects' and record_id == INBOX_PROJECT_ID:
            # Tasks without a project fall back to the Inbox
            raise ValidationError("the default Inbox project cannot be deleted")
        with self._tx(tx) as t:
            removed = t.delete(collection, record_id)
        if removed:
            logger.debug(f"[Repository] Deleted {collection} record {record_id}")
        return removed

    def get(self, collection: str, record_id: str, tx: Optional[StoreTransaction] = None) -> Optional[dict]:
        with self._tx(tx) as t:
            return t.get(collection, record_id)

    def require(self, collection: str, record_id: str, tx: Optional[StoreTransaction] = None) -> dict:
        record = self.get(collection, record_id, tx=tx)
        if record is None:
            raise NotFound(collection, record_id)
        return record

    def list(self, collection: str, record_filter: RecordFilter = None,
             tx: Optional[StoreTransaction] = None) -> List[dict]:
        """
        List records in the collection's canonical order.

        Tasks and goals: newest first. Projects: by name. Reminders: by due
        date. Calendar events: by start date.

        Args:
            record_filter: Mapping of field -> value (equality) or a predicate
        """
        order_by, descending = LIST_ORDERING[collection]
        with self._tx(tx) as t:
            records = t.list(collection, order_by, descending)
        return [record for record in records if _matches(record, record_filter)]

    # -----------------------------
    # Defaults
    # -----------------------------
    def ensure_defaults(self, tx: Optional[StoreTransaction] = None) -> Dict[str, bool]:
        """Create the settings singleton and the Inbox project when absent."""
        created = {'settings': False, 'inbox': False}
        with self._tx(tx) as t:
            now = self._now()
            if t.get('settings', SETTINGS_ID) is None:
                settings = validate_payload('settings', {})
                t.add('settings', {**settings, 'id': SETTINGS_ID, 'created_at': now, 'updated_at': now})
                created['settings'] = True
            if t.get('projects', INBOX_PROJECT_ID) is None:
                t.add('projects', {
                    'id': INBOX_PROJECT_ID,
                    'name': 'Inbox',
                    'color': '#6b7280',
                    'description': 'Default project for tasks',
                    'created_at': now,
                    'updated_at': now,
                })
                created['inbox'] = True
        if any(created.values()):
            logger.info(f"[Repository] Created defaults: {[k for k, v in created.items() if v]}")
        return created

    # -----------------------------
    # Typed helpers
    # -----------------------------
    def create_task(self, data: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.create('tasks', data, tx=tx)

    def update_task(self, task_id: str, partial: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.update('tasks', task_id, partial, tx=tx)

    def toggle_task_completion(self, task_id: str, tx: Optional[StoreTransaction] = None) -> dict:
        with self._tx(tx) as t:
            task = self.require('tasks', task_id, tx=t)
            return self.update('tasks', task_id, {'completed': not task['completed']}, tx=t)

    def toggle_subtask(self, task_id: str, subtask_id: str, tx: Optional[StoreTransaction] = None) -> dict:
        with self._tx(tx) as t:
            task = self.require('tasks', task_id, tx=t)
            subtasks = [dict(s) for s in task['subtasks'] or []]
            for subtask in subtasks:
                if subtask['id'] == subtask_id:
                    subtask['completed'] = not subtask['completed']
                    break
            else:
                raise NotFound('subtasks', subtask_id)
            return self.update('tasks', task_id, {'subtasks': subtasks}, tx=t)

    def create_project(self, data: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.create('projects', data, tx=tx)

    def create_goal(self, data: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.create('goals', data, tx=tx)

    def update_goal(self, goal_id: str, partial: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.update('goals', goal_id, partial, tx=tx)

    def create_reminder(self, data: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.create('reminders', data, tx=tx)

    def create_calendar_event(self, data: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        return self.create('calendarEvents', data, tx=tx)

    def get_settings(self, tx: Optional[StoreTransaction] = None) -> Optional[dict]:
        return self.get('settings', SETTINGS_ID, tx=tx)

    def update_settings(self, partial: Dict[str, Any], tx: Optional[StoreTransaction] = None) -> dict:
        """Update preferences; notification/privacy blocks are merged, not replaced."""
        with self._tx(tx) as t:
            current = self.get_settings(tx=t)
            if current is None:
                self.ensure_defaults(tx=t)
                current = self.get_settings(tx=t)
            merged = dict(partial)
            for block in ('notifications', 'privacy'):
                if isinstance(partial.get(block), dict):
                    merged[block] = {**(current.get(block) or {}), **partial[block]}
            return self.update('settings', SETTINGS_ID, merged, tx=t)

    def load_all(self, tx: Optional[StoreTransaction] = None) -> Dict[str, Any]:
        """Read every collection (ordered) plus settings in one transaction."""
        with self._tx(tx) as t:
            data = {collection: self.list(collection, tx=t) for collection in ENTITY_COLLECTIONS}
            data['settings'] = self.get_settings(tx=t)
        return data
