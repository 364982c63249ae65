# ================================================================
# services/status_engine.py - project status derived from tasks,
# end date and the current time
# ================================================================
# Rules in STATUS_RULES are checked in order and the first match wins.
# Nothing here touches the database or raises on bad data: unparseable
# dates count as absent.
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Tuple
import math

from models.models import ProjectStatus, TaskStatus

ONE_DAY = timedelta(days=1)

# Active task statuses that count towards "past due" risk
BEHIND_SCHEDULE_STATUSES = frozenset(
    {TaskStatus.BEHIND_SCHEDULE, TaskStatus.TODO, TaskStatus.IN_PROGRESS}
)


def as_utc_datetime(value: Any) -> Optional[datetime]:
    """Coerce a date-ish value to a naive UTC datetime, or None if unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def as_duration_days(value: Any) -> Optional[float]:
    """Positive, finite number of days; anything else is treated as absent."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return float(value)


@dataclass(frozen=True)
class TaskSnapshot:
    """The slice of a task the status engine looks at."""

    status: Optional[TaskStatus]
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    duration: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "status", TaskStatus.parse(self.status))
        object.__setattr__(self, "due_date", as_utc_datetime(self.due_date))
        object.__setattr__(self, "start_date", as_utc_datetime(self.start_date))
        object.__setattr__(self, "duration", as_duration_days(self.duration))

    @classmethod
    def from_task(cls, task) -> "TaskSnapshot":
        return cls(
            status=task.status,
            due_date=task.due_date,
            start_date=task.start_date,
            duration=task.duration,
        )

    @property
    def is_done(self) -> bool:
        return self.status is not None and self.status.is_done

    @property
    def is_active(self) -> bool:
        return not self.is_done


@dataclass(frozen=True)
class StatusSignals:
    """Counts of the task sets the cascade is evaluated against."""

    total_tasks: int = 0
    completed_tasks: int = 0
    overdue: int = 0
    behind_schedule: int = 0
    duration_overflow: int = 0
    beyond_project: int = 0


def _is_overdue(task: TaskSnapshot, now: datetime) -> bool:
    return task.due_date is not None and task.due_date < now - ONE_DAY


def _is_behind_schedule(task: TaskSnapshot, now: datetime) -> bool:
    return (
        task.due_date is not None
        and task.due_date < now
        and task.status in BEHIND_SCHEDULE_STATUSES
    )


def _overflows_duration(task: TaskSnapshot, project_end: Optional[datetime]) -> bool:
    if task.start_date is None or project_end is None or task.duration is None:
        return False
    try:
        return task.start_date + timedelta(days=task.duration) > project_end
    except OverflowError:
        # Past datetime.max is certainly after the project end
        return True


def _is_beyond_project(task: TaskSnapshot, project_end: Optional[datetime]) -> bool:
    return task.due_date is not None and project_end is not None and task.due_date > project_end


def collect_signals(
    tasks: Iterable[TaskSnapshot],
    project_end_date: Any,
    now: Any,
) -> StatusSignals:
    snapshots = [t if isinstance(t, TaskSnapshot) else TaskSnapshot.from_task(t) for t in tasks]
    project_end = as_utc_datetime(project_end_date)
    current = as_utc_datetime(now)

    active = [t for t in snapshots if t.is_active]
    return StatusSignals(
        total_tasks=len(snapshots),
        completed_tasks=len(snapshots) - len(active),
        overdue=sum(1 for t in active if current is not None and _is_overdue(t, current)),
        behind_schedule=sum(1 for t in active if current is not None and _is_behind_schedule(t, current)),
        duration_overflow=sum(1 for t in active if _overflows_duration(t, project_end)),
        beyond_project=sum(1 for t in active if _is_beyond_project(t, project_end)),
    )


# ============================================================
# Rules, evaluated top to bottom, first match wins
# ============================================================
def has_no_tasks(signals: StatusSignals) -> bool:
    return signals.total_tasks == 0


def all_tasks_done(signals: StatusSignals) -> bool:
    return signals.total_tasks > 0 and signals.completed_tasks == signals.total_tasks


def in_danger(signals: StatusSignals) -> bool:
    return (
        signals.behind_schedule >= 2
        or signals.duration_overflow > 0
        or signals.beyond_project > 0
    )


def at_risk(signals: StatusSignals) -> bool:
    return signals.behind_schedule == 1


def behind_schedule(signals: StatusSignals) -> bool:
    return signals.overdue > 0


def on_track(signals: StatusSignals) -> bool:
    return True


StatusRule = Tuple[ProjectStatus, Callable[[StatusSignals], bool]]

STATUS_RULES: Tuple[StatusRule, ...] = (
    (ProjectStatus.NOT_STARTED, has_no_tasks),
    (ProjectStatus.COMPLETED, all_tasks_done),
    (ProjectStatus.DANGER, in_danger),
    (ProjectStatus.AT_RISK, at_risk),
    (ProjectStatus.BEHIND_SCHEDULE, behind_schedule),
    (ProjectStatus.ON_TRACK, on_track),
)


def status_from_signals(signals: StatusSignals) -> ProjectStatus:
    for label, predicate in STATUS_RULES:
        if predicate(signals):
            return label
    return ProjectStatus.ON_TRACK


def derive_status(tasks: Iterable[Any], project_end_date: Any, now: Any) -> ProjectStatus:
    """Classify a project from its tasks, its end date and the current time."""
    return status_from_signals(collect_signals(tasks, project_end_date, now))
