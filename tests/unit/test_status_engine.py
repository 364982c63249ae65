"""
Unit Tests for Project Status Derivation
"""
from datetime import datetime, timedelta, timezone

import pytest

from models.models import ProjectStatus, TaskStatus
from services.status_engine import (
    STATUS_RULES,
    StatusSignals,
    TaskSnapshot,
    all_tasks_done,
    as_duration_days,
    as_utc_datetime,
    at_risk,
    behind_schedule,
    collect_signals,
    derive_status,
    has_no_tasks,
    in_danger,
    status_from_signals,
)

NOW = datetime(2025, 3, 1, 12, 0, 0)
PROJECT_END = datetime(2025, 6, 30)


def task(status="TODO", due=None, start=None, duration=None) -> TaskSnapshot:
    return TaskSnapshot(status=status, due_date=due, start_date=start, duration=duration)


class TestCascade:
    """Labels produced by the ordered rule list"""

    def test_no_tasks_is_not_started(self):
        assert derive_status([], PROJECT_END, NOW) == ProjectStatus.NOT_STARTED

    def test_no_tasks_ignores_missing_end_date(self):
        assert derive_status([], None, NOW) == ProjectStatus.NOT_STARTED

    @pytest.mark.parametrize("done_status", ["COMPLETE", "complete", "Done", "completed"])
    def test_all_done_is_completed_regardless_of_dates(self, done_status):
        tasks = [
            task(done_status, due=NOW - timedelta(days=30)),
            task(done_status, due=PROJECT_END + timedelta(days=30)),
            task(done_status, start=datetime(2025, 6, 1), duration=90),
        ]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.COMPLETED

    def test_overdue_by_25_hours_is_behind_schedule(self):
        tasks = [task(TaskStatus.BLOCKED, due=NOW - timedelta(hours=25))]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.BEHIND_SCHEDULE

    def test_overdue_by_23_hours_blocked_is_on_track(self):
        tasks = [task(TaskStatus.BLOCKED, due=NOW - timedelta(hours=23))]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.ON_TRACK

    def test_single_past_due_todo_is_at_risk(self):
        tasks = [task("TODO", due=NOW - timedelta(minutes=5)), task("TODO", due=NOW + timedelta(days=3))]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.AT_RISK

    def test_at_risk_wins_over_behind_schedule(self):
        tasks = [task("IN_PROGRESS", due=NOW - timedelta(days=3))]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.AT_RISK

    def test_two_past_due_in_progress_is_danger(self):
        tasks = [
            task("IN_PROGRESS", due=NOW - timedelta(hours=2)),
            task("IN_PROGRESS", due=NOW - timedelta(days=4)),
        ]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.DANGER

    def test_duration_overflow_is_danger(self):
        tasks = [task("TODO", start=datetime(2025, 1, 1), duration=10)]
        signals = collect_signals(tasks, datetime(2025, 1, 5), datetime(2024, 12, 1))

        assert signals.duration_overflow == 1
        assert status_from_signals(signals) == ProjectStatus.DANGER

    def test_due_after_project_end_is_danger(self):
        tasks = [task("TODO", due=PROJECT_END + timedelta(days=1))]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.DANGER

    def test_due_on_project_end_is_on_track(self):
        tasks = [task("TODO", due=PROJECT_END)]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.ON_TRACK

    def test_future_tasks_are_on_track(self):
        tasks = [task("TODO", due=NOW + timedelta(days=2)), task("COMPLETE", due=NOW - timedelta(days=9))]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.ON_TRACK

    def test_due_exactly_now_is_not_past_due(self):
        assert derive_status([task("TODO", due=NOW)], PROJECT_END, NOW) == ProjectStatus.ON_TRACK


class TestTaskSets:
    """Which tasks count towards each set"""

    def test_completed_tasks_are_excluded_from_every_set(self):
        tasks = [
            task("COMPLETE", due=PROJECT_END + timedelta(days=5), start=datetime(2025, 6, 25), duration=30),
            task("done", due=NOW - timedelta(days=10)),
            task("TODO", due=NOW + timedelta(days=1)),
        ]
        signals = collect_signals(tasks, PROJECT_END, NOW)

        assert signals == StatusSignals(total_tasks=3, completed_tasks=2)
        assert status_from_signals(signals) == ProjectStatus.ON_TRACK

    def test_unknown_status_is_active_but_not_behind_schedule(self):
        recent = collect_signals([task("paused", due=NOW - timedelta(hours=2))], PROJECT_END, NOW)
        assert recent.behind_schedule == 0
        assert status_from_signals(recent) == ProjectStatus.ON_TRACK

        old = collect_signals([task("paused", due=NOW - timedelta(days=3))], PROJECT_END, NOW)
        assert old.overdue == 1
        assert status_from_signals(old) == ProjectStatus.BEHIND_SCHEDULE

    def test_status_strings_are_normalized(self):
        assert task("in-progress").status == TaskStatus.IN_PROGRESS
        assert task("Behind Schedule").status == TaskStatus.BEHIND_SCHEDULE
        assert task("not started").status == TaskStatus.TODO
        assert task("to-do").status == TaskStatus.TODO
        assert task("whatever").status is None

    def test_malformed_dates_count_as_absent(self):
        tasks = [task("TODO", due="not-a-date", start="yesterday", duration=5)]
        assert derive_status(tasks, "garbage", NOW) == ProjectStatus.ON_TRACK

    def test_invalid_durations_are_ignored(self):
        for bad in (0, -3, float("nan"), float("inf"), True, "10"):
            tasks = [task("TODO", start=datetime(2025, 6, 29), duration=bad)]
            assert collect_signals(tasks, PROJECT_END, NOW).duration_overflow == 0

    def test_huge_duration_overflows(self):
        tasks = [task("TODO", start=datetime(2025, 1, 1), duration=10 ** 12)]
        assert derive_status(tasks, PROJECT_END, NOW) == ProjectStatus.DANGER

    def test_iso_strings_with_timezones(self):
        due = (NOW - timedelta(days=2)).isoformat() + "Z"
        signals = collect_signals([task("BLOCKED", due=due)], "2025-06-30T00:00:00+02:00", NOW)
        assert signals.overdue == 1

    def test_accepts_task_like_objects(self):
        class Row:
            status = "IN_PROGRESS"
            due_date = NOW - timedelta(days=1)
            start_date = None
            duration = None

        assert derive_status([Row(), Row()], PROJECT_END, NOW) == ProjectStatus.DANGER


class TestRules:
    """Each rule in isolation"""

    def test_rule_order(self):
        assert [label for label, _ in STATUS_RULES] == [
            ProjectStatus.NOT_STARTED,
            ProjectStatus.COMPLETED,
            ProjectStatus.DANGER,
            ProjectStatus.AT_RISK,
            ProjectStatus.BEHIND_SCHEDULE,
            ProjectStatus.ON_TRACK,
        ]

    def test_has_no_tasks(self):
        assert has_no_tasks(StatusSignals())
        assert not has_no_tasks(StatusSignals(total_tasks=1))

    def test_all_tasks_done(self):
        assert all_tasks_done(StatusSignals(total_tasks=2, completed_tasks=2))
        assert not all_tasks_done(StatusSignals(total_tasks=2, completed_tasks=1))

    @pytest.mark.parametrize(
        "signals",
        [
            StatusSignals(total_tasks=2, behind_schedule=2),
            StatusSignals(total_tasks=1, duration_overflow=1),
            StatusSignals(total_tasks=1, beyond_project=1),
        ],
    )
    def test_in_danger(self, signals):
        assert in_danger(signals)

    def test_at_risk_needs_exactly_one(self):
        assert at_risk(StatusSignals(total_tasks=1, behind_schedule=1))
        assert not at_risk(StatusSignals(total_tasks=2, behind_schedule=2))

    def test_behind_schedule(self):
        assert behind_schedule(StatusSignals(total_tasks=1, overdue=1))
        assert not behind_schedule(StatusSignals(total_tasks=1))


class TestIdempotence:
    def test_same_snapshot_same_label(self):
        tasks = [
            task("TODO", due=NOW - timedelta(hours=3)),
            task("BLOCKED", due=NOW - timedelta(days=2)),
            task("COMPLETE"),
        ]
        first = derive_status(tasks, PROJECT_END, NOW)
        second = derive_status(tasks, PROJECT_END, NOW)
        assert first == second == ProjectStatus.AT_RISK


class TestCoercion:
    def test_aware_datetimes_become_naive_utc(self):
        aware = datetime(2025, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc_datetime(aware) == datetime(2025, 1, 1, 8, 0)

    def test_blank_and_unknown_values(self):
        assert as_utc_datetime("") is None
        assert as_utc_datetime(12345) is None

    def test_duration_days(self):
        assert as_duration_days(3) == 3.0
        assert as_duration_days(None) is None
