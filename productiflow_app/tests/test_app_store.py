import json
from datetime import datetime, timedelta, timezone

import pytest

from backend.app_store import create_app_store
from backend.config import Config
from backend.date_utils import (
    parse_natural_date, is_overdue, is_due_today, is_due_tomorrow, is_due_this_week,
)
from backend.errors import NotFound, ValidationError, ImportFormatError


def test_bootstrap_creates_defaults(app):
    snapshot = app.snapshot
    assert app.coordinator.ready
    assert [p['id'] for p in snapshot.projects] == ['inbox']
    assert snapshot.settings['theme'] == 'system'
    assert snapshot.analytics.productivity_score == 0


def test_create_task_derives_event_in_same_mutation(app):
    snapshot = app.create_task({'title': 'Pay bill', 'due_date': datetime(2025, 1, 10)})
    task = app.last_result
    assert task['project'] == 'inbox'
    assert [t['id'] for t in snapshot.tasks] == [task['id']]
    assert len(snapshot.calendar_events) == 1
    assert snapshot.calendar_events[0]['linked_items']['tasks'] == (task['id'],)


def test_mutations_publish_to_subscribers(app):
    received = []
    app.subscribe(received.append)
    snapshot = app.create_project({'name': 'Work'})
    assert received[-1] is snapshot


def test_toggle_completion_updates_analytics(app, clock):
    ids = []
    for title in ('a', 'b', 'c'):
        app.create_task({'title': title})
        ids.append(app.last_result['id'])
    app.toggle_task_completion(ids[0])
    snapshot = app.toggle_task_completion(ids[1])
    assert snapshot.analytics.productivity_score == 67
    assert snapshot.analytics.completed_by_day() == {clock().date().isoformat(): 2}


def test_entity_errors_go_to_caller(app):
    with pytest.raises(NotFound):
        app.update_task('missing', {'title': 'x'})
    with pytest.raises(ValidationError):
        app.create_task({'title': ''})
    # Deleting an absent record is a no-op
    app.delete_task('missing')


def test_goal_progress_streak_flow(app, clock):
    app.create_goal({'title': 'Read', 'category': 'learning', 'is_habit': True})
    goal_id = app.last_result['id']

    snapshot = app.increment_goal_progress(goal_id)
    assert snapshot.find('goals', goal_id)['streak_count'] == 1

    clock.advance(days=1)
    snapshot = app.increment_goal_progress(goal_id)
    assert snapshot.find('goals', goal_id)['streak_count'] == 2
    assert [s.count for s in snapshot.analytics.streaks] == [2]

    snapshot = app.update_goal_progress(goal_id, 10)
    assert snapshot.find('goals', goal_id)['streak_count'] == 2

    clock.advance(days=3)
    snapshot = app.update_goal(goal_id, {'current_value': 11})
    assert snapshot.find('goals', goal_id)['streak_count'] == 1


def test_update_goal_with_explicit_streak_skips_streak_logic(app):
    app.create_goal({'title': 'Read', 'category': 'learning', 'is_habit': True})
    goal_id = app.last_result['id']
    snapshot = app.update_goal(goal_id, {'current_value': 5, 'streak_count': 9})
    assert snapshot.find('goals', goal_id)['streak_count'] == 9


def test_goal_deadline_event_follows_goal_creation(app):
    snapshot = app.create_goal({'title': 'Save', 'category': 'finance', 'target_value': 100,
                                'deadline': datetime(2025, 6, 30)})
    assert [e['title'] for e in snapshot.calendar_events] == ['Goal Deadline: Save']


def test_quick_add_task_with_natural_date(app, clock):
    snapshot = app.quick_add('task', 'Call plumber', due_date='tomorrow')
    task = snapshot.find('tasks', app.last_result['id'])
    assert task['project'] == 'inbox'
    assert task['priority'] == 'P3'
    assert task['due_date'] == clock() + timedelta(days=1)
    assert len(snapshot.calendar_events) == 1


def test_quick_add_event_defaults_to_one_hour_now(app, clock):
    snapshot = app.quick_add('event', 'Coffee')
    event = snapshot.find('calendar_events', app.last_result['id'])
    assert event['start_date'] == clock()
    assert event['end_date'] == clock() + timedelta(hours=1)
    assert event['color'] == '#3b82f6'
    assert event['is_all_day'] is False


def test_quick_add_goal_and_reminder(app, clock):
    snapshot = app.quick_add('goal', 'Learn Spanish')
    assert snapshot.find('goals', app.last_result['id'])['category'] == 'personal'
    snapshot = app.quick_add('reminder', 'Stretch')
    assert snapshot.find('reminders', app.last_result['id'])['due_date'] == clock()


def test_quick_add_rejects_bad_input(app):
    with pytest.raises(ValidationError):
        app.quick_add('note', 'Nope')
    with pytest.raises(ValidationError):
        app.quick_add('task', 'Nope', due_date='someday')


def test_quick_add_converts_utc_due_date_to_local(app):
    snapshot = app.quick_add('reminder', 'Renew passport', due_date='2025-03-01T08:00:00Z')
    expected = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    assert snapshot.find('reminders', app.last_result['id'])['due_date'] == expected


def test_app_export_reset_import(app):
    app.create_task({'title': 'Pay bill', 'due_date': datetime(2025, 1, 10)})
    app.create_project({'name': 'Work'})
    before = app.snapshot
    text = app.export_data()
    assert json.loads(text)['tasks'][0]['title'] == 'Pay bill'

    after_reset = app.reset_data()
    assert after_reset.tasks == ()
    assert [p['id'] for p in after_reset.projects] == ['inbox']

    restored = app.import_data(text)
    assert restored.tasks == before.tasks
    assert restored.projects == before.projects
    assert restored.calendar_events == before.calendar_events


def test_rejected_import_leaves_snapshot_alone(app):
    app.create_task({'title': 'Keep me'})
    before = app.snapshot
    with pytest.raises(ImportFormatError):
        app.import_data('{"tasks": "nope"}')
    assert app.snapshot is before


def test_invalid_import_record_leaves_store_writable(app):
    bad = json.dumps({'goals': [{'id': 'g1', 'title': 'Save', 'category': 'finance', 'currentValue': -5}]})
    with pytest.raises(ImportFormatError):
        app.import_data(bad)
    snapshot = app.create_task({'title': 'Still works', 'tags': ['x']})
    assert [t['title'] for t in snapshot.tasks] == ['Still works']
    assert snapshot.goals == ()


def test_deleting_inbox_is_rejected(app):
    app.create_task({'title': 'Unfiled'})
    before = app.snapshot
    with pytest.raises(ValidationError):
        app.delete_project('inbox')
    assert app.snapshot is before
    assert [p['id'] for p in app.snapshot.projects] == ['inbox']


def test_settings_update(app):
    snapshot = app.update_settings({'time_format': '24h', 'privacy': {'pin_lock': True}})
    assert snapshot.settings['time_format'] == '24h'
    assert snapshot.settings['privacy']['pin_lock'] is True
    assert snapshot.settings['privacy']['biometric'] is False


def test_config_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv('DATABASE_URL', f"sqlite:///{tmp_path / 'env.db'}")
    monkeypatch.setenv('SYNC_INTERVAL_SECONDS', '5')
    monkeypatch.setenv('DERIVED_EVENT_POLICY', 'Reconcile')
    config = Config.from_env(log_dir=str(tmp_path / 'logs'))
    assert config.sync_interval_seconds == 5.0
    assert config.derived_event_policy == 'reconcile'
    assert config.is_sqlite

    app = create_app_store(config, configure_logging=False)
    try:
        assert app.engine.policy == 'reconcile'
    finally:
        app.close()


def test_config_rejects_bad_values():
    with pytest.raises(ValueError):
        Config(derived_event_policy='sometimes')
    with pytest.raises(ValueError):
        Config(sync_interval_seconds=0)


# ============================================================================
# Date helpers
# ============================================================================

NOW = datetime(2025, 1, 8, 15, 30)  # Wednesday


def test_natural_dates():
    assert parse_natural_date('today', NOW) == NOW
    assert parse_natural_date('Tomorrow', NOW) == NOW + timedelta(days=1)
    assert parse_natural_date('next week', NOW) == NOW + timedelta(days=7)
    assert parse_natural_date('in 3 days', NOW) == NOW + timedelta(days=3)
    assert parse_natural_date('2025-02-01', NOW) == datetime(2025, 2, 1)
    assert parse_natural_date('whenever', NOW) is None
    assert parse_natural_date('', NOW) is None


def test_natural_date_accepts_utc_and_offset_strings():
    utc = datetime(2025, 2, 1, 10, 0, tzinfo=timezone.utc)
    local = utc.astimezone().replace(tzinfo=None)
    assert parse_natural_date('2025-02-01T10:00:00Z', NOW) == local
    assert parse_natural_date(' 2025-02-01T12:00:00+02:00 ', NOW) == local
    assert parse_natural_date('soonZ', NOW) is None


def test_due_helpers():
    assert is_overdue(datetime(2025, 1, 7, 23, 59), NOW)
    assert not is_overdue(datetime(2025, 1, 8, 0, 1), NOW)
    assert is_due_today(datetime(2025, 1, 8, 23, 0), NOW)
    assert is_due_tomorrow(datetime(2025, 1, 9), NOW)
    assert is_due_this_week(datetime(2025, 1, 5), NOW)  # Sunday start
    assert not is_due_this_week(datetime(2025, 1, 5), NOW, first_day_of_week=1)
    assert is_due_this_week(datetime(2025, 1, 12), NOW, first_day_of_week=1)


def test_setup_logging_writes_component_messages(tmp_path):
    import logging
    from backend.logging_setup import setup_logging, get_logger, APP_LOGGER_NAME, LOG_FILE_NAME

    config = Config(log_dir=str(tmp_path / 'logs'))
    app_logger = setup_logging(config, console=False)
    try:
        get_logger('tests').info('[Tests] hello from a component')
        for handler in app_logger.handlers:
            handler.flush()
        with open(tmp_path / 'logs' / LOG_FILE_NAME, encoding='utf-8') as f:
            contents = f.read()
        assert '[INFO] [Tests] hello from a component' in contents
        assert app_logger.propagate is False
        # A second call replaces handlers instead of stacking them
        setup_logging(config, console=False)
        assert len(logging.getLogger(APP_LOGGER_NAME).handlers) == 1
    finally:
        for handler in list(app_logger.handlers):
            app_logger.removeHandler(handler)
            handler.close()


def test_handle_error_without_log_dir_returns_short_id():
    from backend.errors import handle_error, StoreIOError

    error_id = handle_error('sync', StoreIOError('disk full'))
    assert len(error_id) == 8
