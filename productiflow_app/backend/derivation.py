# backend/derivation.py
"""
Derivation Engine.

Keeps calendar events in step with task due dates and goal deadlines, and
maintains habit streak / milestone state when goal progress changes.

Derived events carry a back-reference to their source in linked_items
(tasks=[task_id] or goals=[goal_id]). Two reconciliation policies exist:

- 'additive' (default): only create missing derived events. Events whose
  source was completed, rescheduled or deleted are left in place.
- 'reconcile': additionally drop derived events the user never edited
  (updated_at == created_at) when their source is gone, no longer
  qualifies, or would now produce a different event. The creation phase of
  the same pass recreates them from current data.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List, Tuple, Callable

from .database import StoreTransaction, empty_linked_items
from .logging_setup import get_logger
from .repository import EntityRepository
from .validation import validate_number

logger = get_logger('derivation')

PRIORITY_COLORS = {
    'P1': '#ef4444',  # red
    'P2': '#f59e0b',  # amber
    'P3': '#3b82f6',  # blue
    'P4': '#6b7280',  # gray
}
DEFAULT_EVENT_COLOR = '#3b82f6'
GOAL_DEADLINE_COLOR = '#10b981'  # emerald
GOAL_DEADLINE_PRIORITY = 'P2'

TASK_EVENT_PREFIX = 'Task: '
GOAL_EVENT_PREFIX = 'Goal Deadline: '

# Fields compared when deciding whether an untouched derived event is stale
COMPARED_EVENT_FIELDS = ('title', 'start_date', 'end_date', 'is_all_day', 'color')


def priority_color(priority: Optional[str]) -> str:
    return PRIORITY_COLORS.get(priority, DEFAULT_EVENT_COLOR)


def task_needs_event(task: Dict[str, Any]) -> bool:
    return bool(task.get('due_date')) and not task.get('completed')


def goal_needs_event(goal: Dict[str, Any]) -> bool:
    """Goals with a deadline and an unmet target. Goals without a target never qualify."""
    target = goal.get('target_value')
    if not goal.get('deadline') or target is None:
        return False
    return (goal.get('current_value') or 0) < target


def task_event_payload(task: Dict[str, Any]) -> Dict[str, Any]:
    links = empty_linked_items()
    links['tasks'] = [task['id']]
    return {
        'title': f"{TASK_EVENT_PREFIX}{task['title']}",
        'description': task.get('description'),
        'start_date': task.get('start_date') or task['due_date'],
        'end_date': task['due_date'],
        'is_all_day': not task.get('start_date'),
        'color': priority_color(task.get('priority')),
        'priority': task.get('priority') or 'P3',
        'tags': list(task.get('tags') or []),
        'location': task.get('location'),
        'linked_items': links,
    }


def goal_event_payload(goal: Dict[str, Any]) -> Dict[str, Any]:
    links = empty_linked_items()
    links['goals'] = [goal['id']]
    return {
        'title': f"{GOAL_EVENT_PREFIX}{goal['title']}",
        'description': goal.get('description'),
        'start_date': goal['deadline'],
        'end_date': goal['deadline'],
        'is_all_day': True,
        'color': GOAL_DEADLINE_COLOR,
        'priority': GOAL_DEADLINE_PRIORITY,
        'tags': list(goal.get('tags') or []),
        'linked_items': links,
    }


def derived_source(event: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """Return ('tasks', id) or ('goals', id) for a derived event, else None."""
    links = event.get('linked_items') or {}
    tasks, goals = links.get('tasks') or [], links.get('goals') or []
    if len(tasks) == 1 and not goals:
        return 'tasks', tasks[0]
    if len(goals) == 1 and not tasks:
        return 'goals', goals[0]
    return None


def is_user_edited(event: Dict[str, Any]) -> bool:
    created, updated = event.get('created_at'), event.get('updated_at')
    return bool(created and updated and updated > created)


def streak_updates(goal: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """
    Streak continuity for a habit whose value just increased.

    Same calendar day as the last completion: no change. Previous calendar
    day: streak + 1. Anything else (gap or first completion): reset to 1.
    """
    today = now.date()
    last = goal.get('last_completed_date')
    last_day = last.date() if last else None
    if last_day == today:
        return {}
    if last_day == today - timedelta(days=1):
        streak = (goal.get('streak_count') or 0) + 1
    else:
        streak = 1
    return {'streak_count': streak, 'last_completed_date': now}


def completed_milestones(milestones: List[Dict[str, Any]], value: float, now: datetime) -> Optional[List[Dict[str, Any]]]:
    """Mark milestones reached by `value`. Returns None when nothing changed."""
    changed = False
    result = []
    for milestone in milestones or []:
        milestone = dict(milestone)
        if not milestone.get('completed') and value >= milestone.get('target_value', 0):
            milestone['completed'] = True
            milestone['completed_at'] = now.isoformat()
            changed = True
        result.append(milestone)
    return result if changed else None


@dataclass
class ReconcileResult:
    created: List[Dict[str, Any]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.removed)


class DerivationEngine:
    """Materializes derived calendar events and goal progress side effects."""

    def __init__(self, repository: EntityRepository, policy: str = 'additive',
                 clock: Optional[Callable[[], datetime]] = None):
        if policy not in ('additive', 'reconcile'):
            raise ValueError(f"Unknown derived event policy '{policy}'")
        self.repository = repository
        self.policy = policy
        self.clock = clock or repository.clock

    # -----------------------------
    # Calendar event derivation
    # -----------------------------
    def reconcile(self, tx: StoreTransaction) -> ReconcileResult:
        """Run one derivation pass inside the caller's transaction."""
        result = ReconcileResult()
        tasks = self.repository.list('tasks', tx=tx)
        goals = self.repository.list('goals', tx=tx)
        events = self.repository.list('calendarEvents', tx=tx)

        if self.policy == 'reconcile':
            events = self._drop_stale(events, tasks, goals, tx, result)

        linked_tasks = {task_id for event in events for task_id in (event.get('linked_items') or {}).get('tasks', [])}
        linked_goals = {goal_id for event in events for goal_id in (event.get('linked_items') or {}).get('goals', [])}

        for task in tasks:
            if task_needs_event(task) and task['id'] not in linked_tasks:
                created = self.repository.create_calendar_event(task_event_payload(task), tx=tx)
                result.created.append(created)
                linked_tasks.add(task['id'])

        for goal in goals:
            if goal_needs_event(goal) and goal['id'] not in linked_goals:
                created = self.repository.create_calendar_event(goal_event_payload(goal), tx=tx)
                result.created.append(created)
                linked_goals.add(goal['id'])

        if result.changed:
            logger.info(
                f"[DerivationEngine] Reconciled ({self.policy}): "
                f"{len(result.created)} created, {len(result.removed)} removed"
            )
        return result

    def _drop_stale(self, events, tasks, goals, tx, result: ReconcileResult) -> List[Dict[str, Any]]:
        sources = {
            'tasks': {task['id']: task for task in tasks},
            'goals': {goal['id']: goal for goal in goals},
        }
        kept = []
        for event in events:
            source = derived_source(event)
            if source is None or is_user_edited(event):
                kept.append(event)
                continue
            kind, source_id = source
            record = sources[kind].get(source_id)
            if record is None:
                stale = True
            elif kind == 'tasks':
                stale = not task_needs_event(record) or self._differs(event, task_event_payload(record))
            else:
                stale = not goal_needs_event(record) or self._differs(event, goal_event_payload(record))
            if stale:
                self.repository.delete('calendarEvents', event['id'], tx=tx)
                result.removed.append(event['id'])
            else:
                kept.append(event)
        return kept

    @staticmethod
    def _differs(event: Dict[str, Any], expected: Dict[str, Any]) -> bool:
        return any(event.get(name) != expected.get(name) for name in COMPARED_EVENT_FIELDS)

    # -----------------------------
    # Goal progress
    # -----------------------------
    def progress_updates(self, goal: Dict[str, Any], new_value: Any) -> Dict[str, Any]:
        """
        Build the partial update for setting a goal's value.

        Streak and milestone fields only change when the value strictly
        increases; equal or lower values just set current_value.
        """
        value = validate_number(new_value, 'current_value', minimum=0, allow_none=False)
        updates: Dict[str, Any] = {'current_value': value}
        if value > (goal.get('current_value') or 0):
            now = self.clock()
            if goal.get('is_habit'):
                updates.update(streak_updates(goal, now))
            milestones = completed_milestones(goal.get('milestones'), value, now)
            if milestones is not None:
                updates['milestones'] = milestones
        return updates

    def apply_goal_progress(self, goal_id: str, new_value: Any, tx: StoreTransaction) -> Dict[str, Any]:
        goal = self.repository.require('goals', goal_id, tx=tx)
        updates = self.progress_updates(goal, new_value)
        updated = self.repository.update_goal(goal_id, updates, tx=tx)
        if 'streak_count' in updates:
            logger.info(f"[DerivationEngine] Goal {goal_id} streak -> {updated['streak_count']}")
        return updated
