from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from app.edulink.audit import record_event
from app.edulink.constants import DEFAULT_PRIORITY, MAX_TASK_ID, PRIORITIES, TITLE_MAX_LENGTH
from app.edulink.utils import parse_iso_date

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.edulink.models import User
    from app.edulink.modules.tasks.models import Task

logger = logging.getLogger(__name__)

IMPORT_FAILED_MESSAGE = "Failed to import. Please use a valid JSON exported from this app."


class TaskImportError(ValueError):
    pass


@dataclass(frozen=True)
class RowError:
    index: int
    message: str


@dataclass
class ImportResult:
    imported: int = 0
    duplicates: int = 0
    errors: list[RowError] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.duplicates + len(self.errors)


def task_to_dict(task: "Task") -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "date": task.date_iso,
        "priority": task.priority,
        "done": bool(task.done),
        "user": task.owner.email if task.owner else None,
        "role": task.workspace_role,
    }


def export_tasks(tasks: Iterable["Task"]) -> bytes:
    return json.dumps([task_to_dict(t) for t in tasks], indent=2, ensure_ascii=False).encode("utf-8")


def _coerce_id(value) -> int | None:
    # bool is an int subclass; true/false are not ids.
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    elif isinstance(value, str) and value.strip().isdecimal() and len(value.strip()) <= 19:
        value = int(value.strip())
    if not isinstance(value, int):
        return None
    # Must fit the BIGINT primary key.
    return value if 0 < value <= MAX_TASK_ID else None


def parse_tasks_json(raw: bytes | str) -> tuple[list[dict], list[RowError]]:
    """
    Parse a JSON task export.

    The document must be a JSON array. Each element needs a truthy id, title and date;
    elements that fail are reported as RowError and left out of the returned rows.

    Returns:
      (rows, errors)
    Where each row has keys id, title, date (a date), priority, done, role.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8-sig", errors="replace")
    try:
        data = json.loads(raw)
    except ValueError as e:  # JSONDecodeError, or an integer literal past the digit limit
        raise TaskImportError(IMPORT_FAILED_MESSAGE) from e
    if not isinstance(data, list):
        raise TaskImportError(IMPORT_FAILED_MESSAGE)

    rows: list[dict] = []
    errors: list[RowError] = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            errors.append(RowError(i, "Not an object."))
            continue
        if not item.get("id") or not item.get("title") or not item.get("date"):
            errors.append(RowError(i, "Missing id, title or date."))
            continue
        task_id = _coerce_id(item.get("id"))
        if task_id is None:
            errors.append(RowError(i, f"Invalid id: {item.get('id')!r}"))
            continue
        due = parse_iso_date(str(item.get("date")))
        if due is None:
            errors.append(RowError(i, f"Invalid date: {item.get('date')!r}"))
            continue
        title = str(item.get("title")).strip()
        if not title:
            errors.append(RowError(i, "Missing id, title or date."))
            continue
        if len(title) > TITLE_MAX_LENGTH:
            errors.append(RowError(i, "Title is too long."))
            continue
        priority = str(item.get("priority") or DEFAULT_PRIORITY).strip()
        if priority not in PRIORITIES:
            priority = DEFAULT_PRIORITY
        role = item.get("role")
        rows.append(
            {
                "id": task_id,
                "title": title,
                "date": due,
                "priority": priority,
                "done": bool(item.get("done")),
                "role": str(role).strip()[:64] if role else None,  # String(64) column
            }
        )
    return rows, errors


def import_tasks(s: "Session", user: "User", raw: bytes | str, workspace_role: str | None) -> ImportResult:
    """
    Append imported tasks, skipping ids that already exist (in the table or earlier in the file).
    Raises TaskImportError when the document itself is unusable.
    """
    from app.edulink.modules.tasks.models import Task

    rows, errors = parse_tasks_json(raw)
    result = ImportResult(errors=errors)

    ids = [r["id"] for r in rows]
    existing_ids: set[int] = set()
    if ids:
        existing_ids = {tid for (tid,) in s.query(Task.id).filter(Task.id.in_(ids)).all()}

    now = datetime.utcnow()
    for row in rows:
        if row["id"] in existing_ids:
            result.duplicates += 1
            continue
        existing_ids.add(row["id"])
        s.add(
            Task(
                id=row["id"],
                title=row["title"],
                due_date=row["date"],
                priority=row["priority"],
                done=row["done"],
                owner_user_id=user.id,
                workspace_role=row["role"] or workspace_role,
                created_at=now,
                updated_at=now,
            )
        )
        result.imported += 1
    s.flush()

    record_event(
        s,
        actor=user,
        action="task.import",
        entity_type="Task",
        entity_id="import",
        metadata={"imported": result.imported, "duplicates": result.duplicates, "invalid": len(result.errors)},
    )
    logger.info(
        "Task import for user_id=%s: imported=%s duplicates=%s invalid=%s",
        user.id,
        result.imported,
        result.duplicates,
        len(result.errors),
    )
    return result
