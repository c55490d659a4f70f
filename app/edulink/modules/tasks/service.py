from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Iterable

from app.edulink.audit import record_event
from app.edulink.constants import DEFAULT_PRIORITY, MAX_TASK_ID, PRIORITIES, TITLE_MAX_LENGTH
from app.edulink.utils import parse_iso_date, round_half_up_percent

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.edulink.models import User
    from app.edulink.modules.tasks.models import Task

logger = logging.getLogger(__name__)

UPCOMING_LIMIT = 6


@dataclass(frozen=True)
class Summary:
    total: int
    completed: int
    percent: int

    @property
    def label(self) -> str:
        return f"Total: {self.total} | Completed: {self.completed} ({self.percent}%)"


def validate_task_payload(payload: dict) -> list[str]:
    errors = []
    title = (payload.get("title") or "").strip()
    raw_date = (payload.get("date") or "").strip()
    if not title or not raw_date:
        errors.append("Please enter a title and date.")
    else:
        if len(title) > TITLE_MAX_LENGTH:
            errors.append("Title is too long.")
        if parse_iso_date(raw_date) is None:
            errors.append("Date must be YYYY-MM-DD.")
    priority = (payload.get("priority") or DEFAULT_PRIORITY).strip()
    if priority not in PRIORITIES:
        errors.append("Invalid priority.")
    return errors


def new_task_id(s: "Session") -> int:
    """Epoch-millisecond id, bumped until it does not collide with an existing task."""
    from app.edulink.modules.tasks.models import Task

    candidate = int(time.time() * 1000)
    while s.get(Task, candidate) is not None:
        candidate += 1
    return candidate


def get_user_task(s: "Session", user: "User", task_id: int) -> "Task | None":
    """Tasks owned by someone else are reported as missing."""
    from app.edulink.modules.tasks.models import Task

    if not 0 < task_id <= MAX_TASK_ID:
        return None
    task = s.get(Task, task_id)
    if task is None or task.owner_user_id != user.id:
        return None
    return task


def create_task(s: "Session", payload: dict, user: "User", workspace_role: str | None) -> "Task":
    from app.edulink.modules.tasks.models import Task

    now = datetime.utcnow()
    task = Task(
        id=new_task_id(s),
        title=(payload.get("title") or "").strip(),
        due_date=parse_iso_date(payload.get("date")),
        priority=(payload.get("priority") or DEFAULT_PRIORITY).strip(),
        done=False,
        owner_user_id=user.id,
        workspace_role=workspace_role,
        created_at=now,
        updated_at=now,
    )
    s.add(task)
    s.flush()

    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title, "date": task.date_iso, "priority": task.priority},
    )
    return task


def update_task(s: "Session", task: "Task", payload: dict, user: "User") -> "Task":
    changes = {}

    def _set(attr: str, val):
        nonlocal changes
        if val != getattr(task, attr):
            changes[attr] = {"old": getattr(task, attr), "new": val}
            setattr(task, attr, val)

    _set("title", (payload.get("title") or "").strip())
    _set("due_date", parse_iso_date(payload.get("date")))
    _set("priority", (payload.get("priority") or DEFAULT_PRIORITY).strip())

    task.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="task.edit",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"changes": changes},
    )
    return task


def toggle_done(s: "Session", task: "Task", user: "User") -> "Task":
    task.done = not task.done
    task.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="task.toggle_done",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"done": task.done},
    )
    return task


def delete_task(s: "Session", task: "Task", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="task.delete",
        entity_type="Task",
        entity_id=str(task.id),
        metadata={"title": task.title, "date": task.date_iso},
    )
    s.delete(task)


def clear_completed(s: "Session", user: "User") -> int:
    from app.edulink.modules.tasks.models import Task

    completed = s.query(Task).filter(Task.owner_user_id == user.id, Task.done.is_(True)).all()
    for task in completed:
        s.delete(task)

    record_event(
        s,
        actor=user,
        action="task.clear_completed",
        entity_type="Task",
        entity_id="bulk",
        metadata={"deleted": len(completed), "ids": [t.id for t in completed]},
    )
    return len(completed)


def sort_by_date(tasks: Iterable["Task"]) -> list["Task"]:
    # Ties keep creation order; ids are creation timestamps.
    return sorted(tasks, key=lambda t: (t.due_date, t.id))


def user_tasks(s: "Session", user: "User") -> list["Task"]:
    from app.edulink.modules.tasks.models import Task

    return s.query(Task).filter(Task.owner_user_id == user.id).order_by(Task.due_date.asc(), Task.id.asc()).all()


def task_matches(task: "Task", query: str) -> bool:
    q = (query or "").lower()
    return q in task.title.lower() or q in task.date_iso or q in task.priority.lower()


def search_tasks(s: "Session", user: "User", query: str) -> list["Task"]:
    """
    Case-insensitive match on title, ISO date or priority.
    Filtering happens in Python so the date is matched on its YYYY-MM-DD text on every backend.
    """
    tasks = user_tasks(s, user)
    if not (query or "").strip():
        return tasks
    return [t for t in tasks if task_matches(t, query)]


def summarize(tasks: Iterable["Task"]) -> Summary:
    tasks = list(tasks)
    total = len(tasks)
    completed = sum(1 for t in tasks if t.done)
    return Summary(total=total, completed=completed, percent=round_half_up_percent(completed, total))


def upcoming(tasks: Iterable["Task"], limit: int = UPCOMING_LIMIT) -> list["Task"]:
    return sort_by_date(tasks)[:limit]


def upcoming_label(task: "Task") -> str:
    label = f"{task.date_iso} — {task.title} ({task.priority})"
    if task.done:
        label += " ✅"
    return label


def due_today(s: "Session", user: "User", today: date | None = None) -> list["Task"]:
    from app.edulink.modules.tasks.models import Task

    if today is None:
        today = datetime.utcnow().date()
    return (
        s.query(Task)
        .filter(Task.owner_user_id == user.id, Task.done.is_(False), Task.due_date == today)
        .order_by(Task.id.asc())
        .all()
    )


def reminder_message(count: int) -> str | None:
    if count <= 0:
        return None
    return f"Reminder: {count} task(s) due today!"
