#!/usr/bin/env python
"""
End-to-end scenarios for the sync and analytics engine.

Each test builds a fresh backend on a temporary SQLite database with a
controllable clock, drives it through AppStore and checks the published
snapshot.

Run with: python -m pytest productiflow_app/tests/test_sync_scenarios.py -v
Or: python productiflow_app/tests/test_sync_scenarios.py
"""
import os
import sys
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.app_store import create_app_store
from backend.config import Config


class SteppingClock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current


class TestSyncScenarios(unittest.TestCase):
    """Scenario tests across repository, derivation, analytics and sync."""

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp(prefix='productiflow_')
        self.clock = SteppingClock(datetime(2025, 1, 6, 9, 0))
        config = Config(
            database_url=f"sqlite:///{os.path.join(self.tmp_dir, 'scenarios.db')}",
            log_dir=os.path.join(self.tmp_dir, 'logs'),
        )
        self.app = create_app_store(config, clock=self.clock, configure_logging=False)

    def tearDown(self):
        self.app.close()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_read_habit_streak_over_two_days(self):
        """Day 1 -> streak 1, day 2 -> streak 2, second update on day 2 -> still 2."""
        self.app.create_goal({'title': 'Read', 'category': 'learning', 'is_habit': True})
        goal_id = self.app.last_result['id']

        day1 = self.app.increment_goal_progress(goal_id).find('goals', goal_id)
        self.assertEqual(day1['streak_count'], 1)
        self.assertEqual(day1['last_completed_date'], self.clock())

        self.clock.current += timedelta(days=1)
        day2 = self.app.increment_goal_progress(goal_id).find('goals', goal_id)
        self.assertEqual(day2['streak_count'], 2)

        self.clock.current += timedelta(hours=2)
        again = self.app.increment_goal_progress(goal_id).find('goals', goal_id)
        self.assertEqual(again['streak_count'], 2)
        self.assertEqual(again['current_value'], 3)

    def test_gap_resets_streak(self):
        self.app.create_goal({'title': 'Run', 'category': 'health', 'is_habit': True})
        goal_id = self.app.last_result['id']
        self.app.increment_goal_progress(goal_id)
        self.clock.current += timedelta(days=2)
        snapshot = self.app.increment_goal_progress(goal_id)
        self.assertEqual(snapshot.find('goals', goal_id)['streak_count'], 1)

    def test_pay_bill_task_gets_one_calendar_event(self):
        self.app.create_task({'title': 'Pay bill', 'due_date': datetime(2025, 1, 10)})
        task_id = self.app.last_result['id']
        snapshot = self.app.coordinator.sync()
        snapshot = self.app.coordinator.sync()

        self.assertEqual(len(snapshot.calendar_events), 1)
        event = snapshot.calendar_events[0]
        self.assertEqual(event['title'], 'Task: Pay bill')
        self.assertEqual(event['start_date'], datetime(2025, 1, 10))
        self.assertEqual(event['end_date'], datetime(2025, 1, 10))
        self.assertTrue(event['is_all_day'])
        self.assertEqual(event['linked_items']['tasks'], (task_id,))

    def test_two_completions_on_distinct_days(self):
        ids = []
        for i in range(5):
            self.app.create_task({'title': f'Task {i}'})
            ids.append(self.app.last_result['id'])

        self.clock.current = datetime(2025, 1, 7, 10, 0)
        self.app.toggle_task_completion(ids[0])
        self.clock.current = datetime(2025, 1, 8, 10, 0)
        snapshot = self.app.toggle_task_completion(ids[1])

        by_day = snapshot.analytics.completed_by_day()
        self.assertEqual(by_day, {'2025-01-07': 1, '2025-01-08': 1})
        self.assertEqual(snapshot.analytics.productivity_score, 40)
        self.assertEqual(
            [(p.project, p.count) for p in snapshot.analytics.completed_tasks_by_project],
            [('Inbox', 2)]
        )

    def test_user_edits_to_derived_events_survive_sync(self):
        self.app.create_task({'title': 'Pay bill', 'due_date': datetime(2025, 1, 10)})
        event_id = self.app.snapshot.calendar_events[0]['id']
        self.clock.current += timedelta(minutes=10)
        self.app.update_calendar_event(event_id, {'title': 'Pay electricity bill'})
        snapshot = self.app.coordinator.sync()
        self.assertEqual([e['title'] for e in snapshot.calendar_events], ['Pay electricity bill'])


if __name__ == '__main__':
    unittest.main()
