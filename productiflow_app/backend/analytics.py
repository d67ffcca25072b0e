# backend/analytics.py
"""
Analytics Aggregator.

compute_analytics() is a pure function of the current task, goal and
project records. It rescans everything on each call (O(n) in the number of
records), which is fine at personal scale.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Any, Sequence

import pandas as pd

from .date_utils import day_key, is_due_today, is_overdue

TRAILING_DAYS = 30
NO_PROJECT_LABEL = 'No Project'

TASK_COLUMNS = ['id', 'completed', 'project', 'updated_at']


@dataclass(frozen=True)
class DayCount:
    date: str  # yyyy-mm-dd
    count: int


@dataclass(frozen=True)
class ProjectCount:
    project: str
    count: int


@dataclass(frozen=True)
class GoalProgress:
    goal_id: str
    goal: str  # display label (title)
    progress: float


@dataclass(frozen=True)
class StreakEntry:
    goal_id: str
    label: str
    count: int
    last_completed_date: str  # yyyy-mm-dd, '' if never completed


@dataclass(frozen=True)
class TimeSpent:
    date: str
    hours: float


@dataclass(frozen=True)
class AnalyticsSnapshot:
    completed_tasks_by_day: Tuple[DayCount, ...] = ()
    completed_tasks_by_project: Tuple[ProjectCount, ...] = ()
    goal_progress: Tuple[GoalProgress, ...] = ()
    productivity_score: int = 0
    streaks: Tuple[StreakEntry, ...] = ()
    time_spent: Tuple[TimeSpent, ...] = ()  # Reserved; always empty

    def completed_by_day(self) -> Dict[str, int]:
        return {entry.date: entry.count for entry in self.completed_tasks_by_day}

    def progress_for(self, goal_id: str) -> Optional[float]:
        for entry in self.goal_progress:
            if entry.goal_id == goal_id:
                return entry.progress
        return None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def is_goal_complete(goal: Dict[str, Any]) -> bool:
    """Completion for goals with a target: current value has reached it."""
    target = goal.get('target_value')
    return bool(target) and (goal.get('current_value') or 0) >= target


def _tasks_frame(tasks: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame(list(tasks), columns=TASK_COLUMNS)
    df['completed'] = df['completed'].eq(True)
    df['updated_at'] = pd.to_datetime(df['updated_at'], errors='coerce')
    return df


def completed_tasks_by_day(df: pd.DataFrame, now: datetime) -> Tuple[DayCount, ...]:
    cutoff = now - timedelta(days=TRAILING_DAYS)
    recent = df[df['completed'] & (df['updated_at'] >= cutoff)]
    if recent.empty:
        return ()
    counts = recent['updated_at'].dt.strftime('%Y-%m-%d').value_counts().sort_index()
    return tuple(DayCount(date=str(day), count=int(count)) for day, count in counts.items())


def completed_tasks_by_project(df: pd.DataFrame, projects: Sequence[Dict[str, Any]]) -> Tuple[ProjectCount, ...]:
    completed = df[df['completed']]
    if completed.empty:
        return ()
    names = {project['id']: project['name'] for project in projects}
    labels = completed['project'].map(
        lambda project_id: names.get(project_id, NO_PROJECT_LABEL) if isinstance(project_id, str) else NO_PROJECT_LABEL
    )
    counts = labels.value_counts()
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return tuple(ProjectCount(project=str(label), count=int(count)) for label, count in ordered)


def goal_progress(goals: Sequence[Dict[str, Any]]) -> Tuple[GoalProgress, ...]:
    entries = []
    for goal in goals:
        target = goal.get('target_value')
        progress = (goal.get('current_value') or 0) / target * 100 if target else 0.0
        entries.append(GoalProgress(goal_id=goal['id'], goal=goal['title'], progress=float(progress)))
    return tuple(entries)


def productivity_score(df: pd.DataFrame) -> int:
    total = len(df)
    if total == 0:
        return 0
    return round_half_up(int(df['completed'].sum()) / total * 100)


def habit_streaks(goals: Sequence[Dict[str, Any]]) -> Tuple[StreakEntry, ...]:
    return tuple(
        StreakEntry(
            goal_id=goal['id'],
            label=goal['title'],
            count=int(goal['streak_count']),
            last_completed_date=day_key(goal['last_completed_date']) if goal.get('last_completed_date') else '',
        )
        for goal in goals
        if goal.get('is_habit') and (goal.get('streak_count') or 0) > 0
    )


def compute_analytics(
    tasks: Sequence[Dict[str, Any]],
    goals: Sequence[Dict[str, Any]],
    projects: Sequence[Dict[str, Any]],
    now: Optional[datetime] = None
) -> AnalyticsSnapshot:
    """Recompute the full analytics snapshot from current records."""
    now = now or datetime.now()
    df = _tasks_frame(tasks)
    return AnalyticsSnapshot(
        completed_tasks_by_day=completed_tasks_by_day(df, now),
        completed_tasks_by_project=completed_tasks_by_project(df, projects),
        goal_progress=goal_progress(goals),
        productivity_score=productivity_score(df),
        streaks=habit_streaks(goals),
        time_spent=(),
    )


# ============================================================================
# Dashboard helpers
# ============================================================================

@dataclass
class TaskBuckets:
    today: List[Dict[str, Any]] = field(default_factory=list)
    upcoming: List[Dict[str, Any]] = field(default_factory=list)
    overdue: List[Dict[str, Any]] = field(default_factory=list)
    completed: List[Dict[str, Any]] = field(default_factory=list)
    incomplete: List[Dict[str, Any]] = field(default_factory=list)


def task_buckets(tasks: Sequence[Dict[str, Any]], now: Optional[datetime] = None) -> TaskBuckets:
    """Split tasks into today / upcoming / overdue / completed views."""
    now = now or datetime.now()
    buckets = TaskBuckets()
    for task in tasks:
        if task.get('completed'):
            buckets.completed.append(task)
            continue
        buckets.incomplete.append(task)
        due = task.get('due_date')
        if not due:
            continue
        if is_due_today(due, now):
            buckets.today.append(task)
        elif is_overdue(due, now):
            buckets.overdue.append(task)
        else:
            buckets.upcoming.append(task)
    return buckets


def dashboard_summary(snapshot, now: Optional[datetime] = None, limit: int = 3) -> Dict[str, Any]:
    """
    Headline numbers and short lists for the dashboard view.

    Args:
        snapshot: Anything exposing tasks, goals and reminders sequences
            (normally a sync_coordinator.Snapshot)
    """
    now = now or datetime.now()
    tasks, goals, reminders = snapshot.tasks, snapshot.goals, snapshot.reminders
    due_today = [t for t in tasks if not t.get('completed') and t.get('due_date') and is_due_today(t['due_date'], now)]
    completed_today = [
        t for t in tasks
        if t.get('completed') and t.get('updated_at') and t['updated_at'].date() == now.date()
    ]
    upcoming_reminders = sorted(
        (r for r in reminders if not r.get('completed') and r['due_date'] > now),
        key=lambda r: r['due_date']
    )[:limit]
    active_goals = [g for g in goals if not is_goal_complete(g)][:limit]
    return {
        'tasks_due_today': len(due_today),
        'tasks_completed_today': len(completed_today),
        'completed_goals': len([g for g in goals if is_goal_complete(g)]),
        'best_active_streak': max([g.get('streak_count') or 0 for g in goals], default=0),
        'upcoming_reminders': upcoming_reminders,
        'active_goals': active_goals,
    }
