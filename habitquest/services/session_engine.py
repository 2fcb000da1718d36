"""
Chain session state machine.

Session: active -> completed | abandoned.
Step:    pending -> active -> completed | skipped  (pending -> skipped allowed).

The functions below operate on a detached ChainRun and never touch the
database; ChainSessionService loads a row, applies one of them and writes the
result back under a version check. refresh_progress() is the single place
where the cached counters are recomputed and must run after every mutation.
"""
from __future__ import annotations
import math
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..config import settings
from ..errors import InvalidIndexError, SessionStateError, ValidationError
from ..utils.duration import parse_duration, format_minutes
from ..utils.user_time import as_utc, local_now, minutes_between
from .progression import chain_xp


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"


TERMINAL_STEPS = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})


@dataclass
class SessionStep:
    habit_id: str
    habit_name: str
    duration: str
    duration_minutes: int
    order: int
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    time_spent: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEPS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "habit_id": self.habit_id,
            "habit_name": self.habit_name,
            "duration": self.duration,
            "duration_minutes": self.duration_minutes,
            "order": self.order,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "notes": self.notes,
            "time_spent": self.time_spent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionStep":
        return cls(
            habit_id=str(data["habit_id"]),
            habit_name=data["habit_name"],
            duration=data.get("duration") or "",
            duration_minutes=int(data.get("duration_minutes") or 0),
            order=int(data.get("order", 0)),
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            started_at=_parse_ts(data.get("started_at")),
            completed_at=_parse_ts(data.get("completed_at")),
            notes=data.get("notes"),
            time_spent=data.get("time_spent"),
        )


@dataclass
class ChainRun:
    """Mutable columns of a ChainSession row."""
    status: SessionStatus
    is_active: bool
    steps: List[SessionStep]
    current_habit_index: int
    total_habits: int
    total_duration: str
    total_duration_minutes: int
    started_at: datetime
    last_activity_at: datetime
    completed_at: Optional[datetime] = None
    actual_duration: Optional[int] = None
    paused_at: Optional[datetime] = None
    pause_duration: int = 0
    break_started_at: Optional[datetime] = None
    on_break: bool = False
    completed_habits_count: int = 0
    completion_rate: int = 0
    success_rate: int = 0
    xp_earned: int = 0
    day_of_week: int = 0
    hour_of_day: int = 0

    @property
    def completed_steps(self) -> int:
        return sum(1 for s in self.steps if s.status is StepStatus.COMPLETED)

    @property
    def skipped_steps(self) -> int:
        return sum(1 for s in self.steps if s.status is StepStatus.SKIPPED)

    @classmethod
    def from_model(cls, row) -> "ChainRun":
        return cls(
            status=SessionStatus(row.status),
            is_active=row.is_active,
            steps=[SessionStep.from_dict(h) for h in (row.habits or [])],
            current_habit_index=row.current_habit_index,
            total_habits=row.total_habits,
            total_duration=row.total_duration,
            total_duration_minutes=row.total_duration_minutes,
            started_at=as_utc(row.started_at),
            last_activity_at=as_utc(row.last_activity_at),
            completed_at=as_utc(row.completed_at),
            actual_duration=row.actual_duration,
            paused_at=as_utc(row.paused_at),
            pause_duration=row.pause_duration or 0,
            break_started_at=as_utc(row.break_started_at),
            on_break=row.on_break,
            completed_habits_count=row.completed_habits_count,
            completion_rate=row.completion_rate,
            success_rate=row.success_rate,
            xp_earned=row.xp_earned,
            day_of_week=row.day_of_week,
            hour_of_day=row.hour_of_day,
        )

    def column_values(self) -> Dict[str, Any]:
        """Values for an UPDATE/INSERT of the chain_sessions row."""
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "steps"}
        values["status"] = self.status.value
        values["habits"] = [s.to_dict() for s in self.steps]
        return values


@dataclass(frozen=True)
class Transition:
    changed: bool
    step_completed: bool = False
    session_completed: bool = False


NO_CHANGE = Transition(changed=False)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def _percent(part: int, whole: int) -> int:
    """Percentage rounded half-up."""
    if whole <= 0:
        return 0
    return int(math.floor(part * 100 / whole + 0.5))


def order_key(item: Dict[str, Any], index: int) -> int:
    """Explicit `order` when given, else the item's position in the input."""
    order = item.get("order")
    return order if order is not None else index


def new_run(
    items: Iterable[Dict[str, Any]],
    now: datetime,
    tz_name: Optional[str] = None,
    max_habits: Optional[int] = None,
) -> ChainRun:
    """Snapshot a chain's items into a fresh, active run."""
    items = list(items)
    max_habits = max_habits or settings.MAX_CHAIN_HABITS
    if not items:
        raise ValidationError("A chain session needs at least one habit")
    if len(items) > max_habits:
        raise ValidationError(f"A chain session can hold at most {max_habits} habits, got {len(items)}")

    items = sorted(enumerate(items), key=lambda pair: (order_key(pair[1], pair[0]), pair[0]))
    steps = []
    for i, (_, item) in enumerate(items):
        duration = str(item.get("duration") or "")
        steps.append(
            SessionStep(
                habit_id=str(item["habit_id"]),
                habit_name=item["habit_name"],
                duration=duration,
                duration_minutes=parse_duration(duration),
                order=i,
            )
        )

    total_minutes = sum(s.duration_minutes for s in steps)
    local = local_now(tz_name, now)
    run = ChainRun(
        status=SessionStatus.ACTIVE,
        is_active=True,
        steps=steps,
        current_habit_index=0,
        total_habits=len(steps),
        total_duration=format_minutes(total_minutes),
        total_duration_minutes=total_minutes,
        started_at=now,
        last_activity_at=now,
        day_of_week=local.weekday(),
        hour_of_day=local.hour,
    )
    refresh_progress(run)
    return run


def refresh_progress(run: ChainRun) -> None:
    """Recompute every cached field derived from the steps."""
    for i, step in enumerate(run.steps):
        step.order = i
    run.total_habits = len(run.steps)
    run.completed_habits_count = sum(1 for s in run.steps if s.is_terminal)
    run.completion_rate = _percent(run.completed_habits_count, run.total_habits)
    run.success_rate = _percent(run.completed_steps, run.total_habits)
    run.is_active = run.status is SessionStatus.ACTIVE


def _step_at(run: ChainRun, index: int) -> SessionStep:
    if index < 0 or index >= len(run.steps):
        raise InvalidIndexError(f"Habit index {index} is out of range (0..{len(run.steps) - 1})")
    return run.steps[index]


def _require_active(run: ChainRun, action: str) -> None:
    if run.status is not SessionStatus.ACTIVE:
        raise SessionStateError(f"Cannot {action}: session is {run.status.value}")


def start_step(run: ChainRun, index: int, now: datetime) -> Transition:
    _require_active(run, "start a habit")
    step = _step_at(run, index)
    if step.is_terminal:
        raise InvalidIndexError(f"Habit {index} is already {step.status.value}")

    if step.status is StepStatus.ACTIVE and run.current_habit_index == index:
        return NO_CHANGE

    run.current_habit_index = index
    run.last_activity_at = now
    step.status = StepStatus.ACTIVE
    step.started_at = now
    refresh_progress(run)
    return Transition(changed=True)


def complete_step(
    run: ChainRun,
    index: int,
    now: datetime,
    notes: Optional[str] = None,
    time_spent: Optional[int] = None,
) -> Transition:
    return _finish_step(run, index, StepStatus.COMPLETED, now, notes, time_spent)


def skip_step(run: ChainRun, index: int, now: datetime, reason: Optional[str] = None) -> Transition:
    return _finish_step(run, index, StepStatus.SKIPPED, now, reason, None)


def _finish_step(
    run: ChainRun,
    index: int,
    target: StepStatus,
    now: datetime,
    notes: Optional[str],
    time_spent: Optional[int],
) -> Transition:
    step = _step_at(run, index)
    # duplicate calls (two tabs, retries) after the run closed are no-ops
    if run.status is not SessionStatus.ACTIVE:
        return NO_CHANGE
    if step.status is target:
        return NO_CHANGE
    if step.is_terminal:
        raise InvalidIndexError(f"Habit {index} is already {step.status.value}")

    if step.status is StepStatus.PENDING and target is StepStatus.COMPLETED:
        step.started_at = now
    step.status = target
    step.completed_at = now
    if notes:
        step.notes = notes
    if time_spent is not None:
        step.time_spent = max(0, int(time_spent))
    elif target is StepStatus.COMPLETED and step.started_at:
        step.time_spent = minutes_between(step.started_at, now)

    run.last_activity_at = now
    refresh_progress(run)

    if all(s.is_terminal for s in run.steps):
        _finalize(run, now)
        return Transition(changed=True, step_completed=target is StepStatus.COMPLETED, session_completed=True)

    run.current_habit_index = _next_open_index(run, index)
    return Transition(changed=True, step_completed=target is StepStatus.COMPLETED)


def _next_open_index(run: ChainRun, after: int) -> int:
    for i in range(after + 1, len(run.steps)):
        if not run.steps[i].is_terminal:
            return i
    for i in range(0, after):
        if not run.steps[i].is_terminal:
            return i
    return after


def _finalize(run: ChainRun, now: datetime) -> None:
    # close any open pause/break window before measuring
    if run.paused_at:
        _accumulate_pause(run, run.paused_at, now)
        run.paused_at = None
    if run.on_break and run.break_started_at:
        _accumulate_pause(run, run.break_started_at, now)
    run.on_break = False
    run.break_started_at = None

    run.status = SessionStatus.COMPLETED
    if run.completed_at is None:
        run.completed_at = now
    if run.actual_duration is None:
        run.actual_duration = max(0, minutes_between(run.started_at, run.completed_at) - run.pause_duration)
    run.xp_earned = calculate_xp(run)
    refresh_progress(run)


def calculate_xp(run: ChainRun) -> int:
    """XP for a finished run; 0 while the run is still open or was abandoned."""
    if run.status is not SessionStatus.COMPLETED:
        return 0
    return chain_xp(run.completed_steps, run.total_habits)


def _accumulate_pause(run: ChainRun, since: datetime, now: datetime) -> None:
    cap = settings.MAX_PAUSE_MINUTES
    run.pause_duration = min(cap, run.pause_duration + minutes_between(since, now))


def pause(run: ChainRun, now: datetime) -> Transition:
    _require_active(run, "pause")
    if run.paused_at is not None:
        return NO_CHANGE
    if run.on_break:
        raise SessionStateError("Cannot pause during a break")
    run.paused_at = now
    run.last_activity_at = now
    return Transition(changed=True)


def resume(run: ChainRun, now: datetime) -> Transition:
    _require_active(run, "resume")
    if run.paused_at is None:
        raise SessionStateError("Session is not paused")
    _accumulate_pause(run, run.paused_at, now)
    run.paused_at = None
    run.last_activity_at = now
    return Transition(changed=True)


def start_break(run: ChainRun, now: datetime) -> Transition:
    _require_active(run, "start a break")
    if run.on_break:
        return NO_CHANGE
    if run.paused_at is not None:
        raise SessionStateError("Cannot start a break while paused")
    run.on_break = True
    run.break_started_at = now
    run.last_activity_at = now
    return Transition(changed=True)


def end_break(run: ChainRun, now: datetime) -> Transition:
    _require_active(run, "end a break")
    if not run.on_break or run.break_started_at is None:
        raise SessionStateError("Session is not on a break")
    _accumulate_pause(run, run.break_started_at, now)
    run.on_break = False
    run.break_started_at = None
    run.last_activity_at = now
    return Transition(changed=True)


def abandon(run: ChainRun, now: datetime) -> Transition:
    _require_active(run, "abandon")
    run.status = SessionStatus.ABANDONED
    run.completed_at = now
    run.last_activity_at = now
    run.paused_at = None
    run.on_break = False
    run.break_started_at = None
    refresh_progress(run)
    return Transition(changed=True)
