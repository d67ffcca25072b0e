# backend/app_store.py
"""
Application state container.

AppStore is the single entry point the host application uses. Every
mutation writes through the EntityRepository and runs the derivation pass
in the same Store transaction, then runs a blocking sync and returns the
new Snapshot. The record touched by the last mutation is kept in
`last_result` (e.g. the created task with its assigned id).
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable, Union

from .config import Config, get_config
from .data_transfer import export_data as export_json, parse_import, write_import, clear_entities
from .database import Store, StoreTransaction
from .date_utils import parse_natural_date
from .derivation import DerivationEngine, DEFAULT_EVENT_COLOR
from .errors import ValidationError
from .logging_setup import get_logger, setup_logging
from .repository import EntityRepository, INBOX_PROJECT_ID
from .sync_coordinator import SyncCoordinator, Snapshot

logger = get_logger('app_store')

QUICK_ADD_KINDS = ('task', 'event', 'goal', 'reminder')
QUICK_ADD_EVENT_DURATION = timedelta(hours=1)
QUICK_ADD_GOAL_CATEGORY = 'personal'

# Goal fields that, when given explicitly, bypass the streak logic
STREAK_FIELDS = ('streak_count', 'last_completed_date')

DateInput = Union[datetime, str, None]


class AppStore:
    """Facade over repository, derivation engine and sync coordinator."""

    def __init__(self, store: Store, repository: EntityRepository, engine: DerivationEngine,
                 coordinator: SyncCoordinator):
        self.store = store
        self.repository = repository
        self.engine = engine
        self.coordinator = coordinator
        self.last_result: Any = None

    @property
    def snapshot(self) -> Snapshot:
        return self.coordinator.snapshot

    def subscribe(self, callback) -> Callable[[], None]:
        return self.coordinator.subscribe(callback)

    def subscribe_errors(self, callback) -> Callable[[], None]:
        return self.coordinator.subscribe_errors(callback)

    def _mutate(self, operation: Callable[[StoreTransaction], Any]) -> Snapshot:
        """Run a write plus the derivation pass atomically, then sync."""
        with self.store.transaction() as tx:
            result = operation(tx)
            self.engine.reconcile(tx)
        self.last_result = result
        return self.coordinator.sync(blocking=True)

    # -----------------------------
    # Tasks
    # -----------------------------
    def create_task(self, data: Dict[str, Any]) -> Snapshot:
        payload = dict(data)
        payload.setdefault('project', INBOX_PROJECT_ID)
        return self._mutate(lambda tx: self.repository.create_task(payload, tx=tx))

    def update_task(self, task_id: str, partial: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.update_task(task_id, partial, tx=tx))

    def delete_task(self, task_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.delete('tasks', task_id, tx=tx))

    def toggle_task_completion(self, task_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.toggle_task_completion(task_id, tx=tx))

    def toggle_subtask(self, task_id: str, subtask_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.toggle_subtask(task_id, subtask_id, tx=tx))

    # -----------------------------
    # Projects
    # -----------------------------
    def create_project(self, data: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.create_project(data, tx=tx))

    def update_project(self, project_id: str, partial: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.update('projects', project_id, partial, tx=tx))

    def delete_project(self, project_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.delete('projects', project_id, tx=tx))

    # -----------------------------
    # Goals
    # -----------------------------
    def create_goal(self, data: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.create_goal(data, tx=tx))

    def update_goal(self, goal_id: str, partial: Dict[str, Any]) -> Snapshot:
        """Partial goal update. A new current_value goes through the streak logic
        unless the caller sets streak fields explicitly."""
        def operation(tx):
            updates = dict(partial)
            if 'current_value' in updates and not any(name in updates for name in STREAK_FIELDS):
                goal = self.repository.require('goals', goal_id, tx=tx)
                updates.update(self.engine.progress_updates(goal, updates['current_value']))
            return self.repository.update_goal(goal_id, updates, tx=tx)
        return self._mutate(operation)

    def delete_goal(self, goal_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.delete('goals', goal_id, tx=tx))

    def update_goal_progress(self, goal_id: str, value: float) -> Snapshot:
        """Set a goal's absolute progress value."""
        return self._mutate(lambda tx: self.engine.apply_goal_progress(goal_id, value, tx))

    def increment_goal_progress(self, goal_id: str, delta: float = 1) -> Snapshot:
        def operation(tx):
            goal = self.repository.require('goals', goal_id, tx=tx)
            return self.engine.apply_goal_progress(goal_id, (goal['current_value'] or 0) + delta, tx)
        return self._mutate(operation)

    # -----------------------------
    # Reminders
    # -----------------------------
    def create_reminder(self, data: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.create_reminder(data, tx=tx))

    def update_reminder(self, reminder_id: str, partial: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.update('reminders', reminder_id, partial, tx=tx))

    def delete_reminder(self, reminder_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.delete('reminders', reminder_id, tx=tx))

    # -----------------------------
    # Calendar events
    # -----------------------------
    def create_calendar_event(self, data: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.create_calendar_event(data, tx=tx))

    def update_calendar_event(self, event_id: str, partial: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.update('calendarEvents', event_id, partial, tx=tx))

    def delete_calendar_event(self, event_id: str) -> Snapshot:
        return self._mutate(lambda tx: self.repository.delete('calendarEvents', event_id, tx=tx))

    # -----------------------------
    # Settings
    # -----------------------------
    def update_settings(self, partial: Dict[str, Any]) -> Snapshot:
        return self._mutate(lambda tx: self.repository.update_settings(partial, tx=tx))

    # -----------------------------
    # Quick add
    # -----------------------------
    def _resolve_due(self, due_date: DateInput) -> Optional[datetime]:
        if due_date is None or isinstance(due_date, datetime):
            return due_date
        parsed = parse_natural_date(due_date, self.repository.clock())
        if parsed is None:
            raise ValidationError(f"Could not understand due date '{due_date}'")
        return parsed

    def quick_add(self, kind: str, title: str, due_date: DateInput = None,
                  project: Optional[str] = None, priority: Optional[str] = None) -> Snapshot:
        """
        Create a task, event, goal or reminder from a one-line entry.

        Args:
            kind: 'task', 'event', 'goal' or 'reminder'
            title: Entry text
            due_date: datetime, natural phrase ('tomorrow', 'in 3 days') or ISO date
            project: Project id for tasks (defaults to the Inbox)
            priority: P1..P4 for tasks (defaults to P3)
        """
        if kind not in QUICK_ADD_KINDS:
            raise ValidationError(f"Unknown quick add type '{kind}' (expected one of {', '.join(QUICK_ADD_KINDS)})")
        due = self._resolve_due(due_date)
        now = self.repository.clock()

        if kind == 'task':
            payload = {'title': title, 'due_date': due, 'project': project or INBOX_PROJECT_ID}
            if priority:
                payload['priority'] = priority
            snapshot = self._mutate(lambda tx: self.repository.create_task(payload, tx=tx))
        elif kind == 'event':
            start = due or now
            snapshot = self._mutate(lambda tx: self.repository.create_calendar_event({
                'title': title,
                'start_date': start,
                'end_date': start + QUICK_ADD_EVENT_DURATION,
                'is_all_day': False,
                'color': DEFAULT_EVENT_COLOR,
            }, tx=tx))
        elif kind == 'goal':
            snapshot = self._mutate(lambda tx: self.repository.create_goal({
                'title': title,
                'category': QUICK_ADD_GOAL_CATEGORY,
                'deadline': due,
            }, tx=tx))
        else:
            snapshot = self._mutate(lambda tx: self.repository.create_reminder({
                'title': title,
                'due_date': due or now,
            }, tx=tx))
        logger.info(f"[AppStore] Quick add {kind}: {self.last_result['id']}")
        return snapshot

    # -----------------------------
    # Export / import / reset
    # -----------------------------
    def export_data(self) -> str:
        return export_json(self.store, now=self.repository.clock())

    def import_data(self, text: str) -> Snapshot:
        """Import a JSON export. Nothing is written if the document is rejected."""
        rows = parse_import(text)
        snapshot = self._mutate(lambda tx: write_import(tx, rows))
        logger.info(f"[AppStore] Imported {self.last_result}")
        return snapshot

    def reset_data(self) -> Snapshot:
        """Clear all entity collections, then recreate the default Inbox."""
        def operation(tx):
            removed = clear_entities(tx)
            self.repository.ensure_defaults(tx=tx)
            return removed
        return self._mutate(operation)

    def close(self):
        self.coordinator.stop()
        self.store.dispose()


def create_app_store(config: Optional[Config] = None, clock: Optional[Callable[[], datetime]] = None,
                     start_timer: bool = False, configure_logging: bool = True) -> AppStore:
    """
    Bootstrap the backend: config, logging, store + tables, defaults, and
    the initial blocking sync.

    Args:
        config: Runtime configuration (defaults to the environment)
        clock: Replacement for datetime.now, mainly for tests
        start_timer: Start the periodic sync thread right away
        configure_logging: Attach log handlers (disable when the host owns logging)
    """
    config = config or get_config()
    if configure_logging:
        setup_logging(config)

    store = Store(config.database_url)
    store.init_db()
    repository = EntityRepository(store, clock=clock)
    repository.ensure_defaults()
    engine = DerivationEngine(repository, policy=config.derived_event_policy)
    coordinator = SyncCoordinator(
        store, repository, engine,
        interval=config.sync_interval_seconds,
        log_dir=config.log_dir,
        environment=config.environment,
    )
    coordinator.initialize()
    if start_timer:
        coordinator.start()
    logger.info(f"[AppStore] Ready (policy={config.derived_event_policy}, db={config.database_url})")
    return AppStore(store, repository, engine, coordinator)
