from datetime import datetime, timedelta
from types import SimpleNamespace

from backend.analytics import (
    compute_analytics, task_buckets, dashboard_summary, round_half_up, NO_PROJECT_LABEL,
)

NOW = datetime(2025, 1, 20, 12, 0)


def _task(task_id, completed=False, updated=NOW, project=None, due=None):
    return {
        'id': task_id,
        'title': task_id,
        'completed': completed,
        'project': project,
        'due_date': due,
        'created_at': updated - timedelta(days=1),
        'updated_at': updated,
    }


def _goal(goal_id, title, current=0, target=None, habit=False, streak=0, last=None):
    return {
        'id': goal_id,
        'title': title,
        'current_value': current,
        'target_value': target,
        'is_habit': habit,
        'streak_count': streak,
        'last_completed_date': last,
    }


def test_empty_inputs():
    snapshot = compute_analytics([], [], [], now=NOW)
    assert snapshot.productivity_score == 0
    assert snapshot.completed_tasks_by_day == ()
    assert snapshot.completed_tasks_by_project == ()
    assert snapshot.goal_progress == ()
    assert snapshot.streaks == ()
    assert snapshot.time_spent == ()


def test_productivity_score_rounds_two_of_three_to_67():
    tasks = [_task('a', True), _task('b', True), _task('c')]
    assert compute_analytics(tasks, [], [], now=NOW).productivity_score == 67


def test_round_half_up():
    assert round_half_up(62.5) == 63
    assert round_half_up(12.5) == 13
    assert round_half_up(66.4) == 66


def test_completed_by_day_is_sparse_and_windowed():
    tasks = [
        _task('a', True, updated=datetime(2025, 1, 18, 10, 0)),
        _task('b', True, updated=datetime(2025, 1, 19, 23, 30)),
        _task('c'),
        _task('d'),
        _task('e'),
        _task('old', True, updated=NOW - timedelta(days=31)),
    ]
    snapshot = compute_analytics(tasks, [], [], now=NOW)
    assert snapshot.completed_by_day() == {'2025-01-18': 1, '2025-01-19': 1}
    assert [entry.date for entry in snapshot.completed_tasks_by_day] == ['2025-01-18', '2025-01-19']


def test_completed_same_day_is_merged():
    tasks = [
        _task('a', True, updated=datetime(2025, 1, 18, 8, 0)),
        _task('b', True, updated=datetime(2025, 1, 18, 20, 0)),
    ]
    assert compute_analytics(tasks, [], [], now=NOW).completed_by_day() == {'2025-01-18': 2}


def test_completed_by_project_uses_names_and_fallback():
    projects = [{'id': 'inbox', 'name': 'Inbox'}, {'id': 'p1', 'name': 'Work'}]
    tasks = [
        _task('a', True, project='p1'),
        _task('b', True, project='p1'),
        _task('c', True, project='inbox'),
        _task('d', True, project='deleted-project'),
        _task('e', True),
        _task('f', False, project='p1'),
    ]
    result = compute_analytics(tasks, [], projects, now=NOW).completed_tasks_by_project
    assert [(entry.project, entry.count) for entry in result] == [
        ('No Project', 2), ('Work', 2), ('Inbox', 1)
    ]
    assert NO_PROJECT_LABEL == 'No Project'


def test_goal_progress_keyed_by_id_even_with_duplicate_titles():
    goals = [
        _goal('g1', 'Read', current=5, target=10),
        _goal('g2', 'Read', current=3, target=None),
    ]
    snapshot = compute_analytics([], goals, [], now=NOW)
    assert snapshot.progress_for('g1') == 50.0
    assert snapshot.progress_for('g2') == 0.0
    assert [entry.goal for entry in snapshot.goal_progress] == ['Read', 'Read']


def test_streaks_only_for_active_habits():
    goals = [
        _goal('g1', 'Meditate', habit=True, streak=3, last=datetime(2025, 1, 19, 7, 0)),
        _goal('g2', 'Stretch', habit=True, streak=0),
        _goal('g3', 'Save', streak=5),
    ]
    streaks = compute_analytics([], goals, [], now=NOW).streaks
    assert len(streaks) == 1
    assert streaks[0].goal_id == 'g1'
    assert streaks[0].label == 'Meditate'
    assert streaks[0].count == 3
    assert streaks[0].last_completed_date == '2025-01-19'


def test_task_buckets():
    tasks = [
        _task('today', due=datetime(2025, 1, 20, 18, 0)),
        _task('overdue', due=datetime(2025, 1, 18)),
        _task('upcoming', due=datetime(2025, 1, 25)),
        _task('undated'),
        _task('done', True, due=datetime(2025, 1, 18)),
    ]
    buckets = task_buckets(tasks, now=NOW)
    assert [t['id'] for t in buckets.today] == ['today']
    assert [t['id'] for t in buckets.overdue] == ['overdue']
    assert [t['id'] for t in buckets.upcoming] == ['upcoming']
    assert [t['id'] for t in buckets.completed] == ['done']
    assert len(buckets.incomplete) == 4


def test_dashboard_summary():
    snapshot = SimpleNamespace(
        tasks=(
            _task('due', due=datetime(2025, 1, 20, 17, 0)),
            _task('done-today', True, updated=datetime(2025, 1, 20, 8, 0)),
            _task('done-earlier', True, updated=datetime(2025, 1, 15)),
        ),
        goals=(
            _goal('g1', 'Met', current=10, target=10),
            _goal('g2', 'Open', current=1, target=10, habit=True, streak=4),
            _goal('g3', 'Untargeted'),
        ),
        reminders=(
            {'id': 'r1', 'completed': False, 'due_date': datetime(2025, 1, 22)},
            {'id': 'r2', 'completed': False, 'due_date': datetime(2025, 1, 21)},
            {'id': 'r3', 'completed': True, 'due_date': datetime(2025, 1, 21)},
            {'id': 'r4', 'completed': False, 'due_date': datetime(2025, 1, 19)},
        ),
    )
    summary = dashboard_summary(snapshot, now=NOW)
    assert summary['tasks_due_today'] == 1
    assert summary['tasks_completed_today'] == 1
    assert summary['completed_goals'] == 1
    assert summary['best_active_streak'] == 4
    assert [r['id'] for r in summary['upcoming_reminders']] == ['r2', 'r1']
    assert [g['id'] for g in summary['active_goals']] == ['g2', 'g3']
