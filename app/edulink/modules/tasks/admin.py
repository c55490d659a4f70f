from __future__ import annotations

import io
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, send_file, session, url_for

from app.edulink.audit import record_event
from app.edulink.constants import DEFAULT_PRIORITY, EXPORT_FILENAME, PRIORITIES
from app.edulink.db import db_session
from app.edulink.models import User
from app.edulink.modules.tasks.service import (
    clear_completed,
    create_task,
    delete_task,
    due_today,
    get_user_task,
    reminder_message,
    search_tasks,
    summarize,
    toggle_done,
    update_task,
    upcoming,
    upcoming_label,
    user_tasks,
    validate_task_payload,
)
from app.edulink.modules.tasks.transfer import TaskImportError, export_tasks, import_tasks
from app.edulink.rbac import require_permission

bp = Blueprint("tasks", __name__)

EDIT_SESSION_KEY = "editing_task_id"


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _workspace_role() -> str | None:
    return session.get("workspace_role")


def require_workspace_role(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Task pages need a workspace role; send the user to the role panel first."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not _workspace_role():
            return redirect(url_for("auth.role_get"))
        return fn(*args, **kwargs)

    return wrapped


def _stop_editing() -> None:
    session.pop(EDIT_SESSION_KEY, None)


def _form_payload() -> dict:
    return {
        "title": request.form.get("title"),
        "date": request.form.get("date"),
        "priority": request.form.get("priority") or DEFAULT_PRIORITY,
    }


@bp.get("/")
@require_permission("tasks.view")
@require_workspace_role
def dashboard():
    s = db_session()
    u = _current_user()
    search = (request.args.get("q") or "").strip()

    all_tasks = user_tasks(s, u)
    tasks = search_tasks(s, u, search) if search else all_tasks
    summary = summarize(all_tasks)
    calendar = [upcoming_label(t) for t in upcoming(tasks, limit=current_app.config.get("UPCOMING_LIMIT", 6))]

    editing = None
    editing_id = session.get(EDIT_SESSION_KEY)
    if editing_id is not None:
        editing = get_user_task(s, u, int(editing_id))
        if editing is None:
            _stop_editing()

    reminder = reminder_message(len(due_today(s, u)))

    return render_template(
        "tasks/dashboard.html",
        tasks=tasks,
        search=search,
        summary=summary,
        calendar=calendar,
        editing=editing,
        priorities=PRIORITIES,
        default_priority=DEFAULT_PRIORITY,
        reminder=reminder,
        workspace_role=_workspace_role(),
        display_name=session.get("display_name") or _workspace_role(),
        reminder_interval_ms=current_app.config.get("REMINDER_INTERVAL_SECONDS", 60) * 1000,
    )


@bp.post("/save")
@require_permission("tasks.edit")
@require_workspace_role
def save():
    """Adds a task, or saves the one being edited when edit mode is on."""
    s = db_session()
    u = _current_user()
    payload = _form_payload()

    errors = validate_task_payload(payload)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("tasks.dashboard"))

    editing_id = session.get(EDIT_SESSION_KEY)
    if editing_id is not None:
        task = get_user_task(s, u, int(editing_id))
        _stop_editing()
        if task is None:
            flash("Task not found", "danger")
            return redirect(url_for("tasks.dashboard"))
        update_task(s, task, payload, u)
        s.commit()
        flash("Task saved.", "success")
    else:
        create_task(s, payload, u, _workspace_role())
        s.commit()
        flash("Task added.", "success")
    return redirect(url_for("tasks.dashboard"))


@bp.post("/<int:task_id>/edit")
@require_permission("tasks.edit")
@require_workspace_role
def start_edit(task_id: int):
    s = db_session()
    u = _current_user()
    task = get_user_task(s, u, task_id)
    if task is None:
        flash("Task not found", "danger")
        return redirect(url_for("tasks.dashboard"))
    session[EDIT_SESSION_KEY] = task.id
    return redirect(url_for("tasks.dashboard"))


@bp.post("/edit/cancel")
@require_permission("tasks.edit")
def cancel_edit():
    _stop_editing()
    return redirect(url_for("tasks.dashboard"))


@bp.post("/<int:task_id>/toggle")
@require_permission("tasks.edit")
@require_workspace_role
def toggle(task_id: int):
    s = db_session()
    u = _current_user()
    task = get_user_task(s, u, task_id)
    if task is None:
        abort(404)
    toggle_done(s, task, u)
    s.commit()
    return redirect(url_for("tasks.dashboard", q=request.form.get("q") or None))


@bp.post("/<int:task_id>/delete")
@require_permission("tasks.edit")
@require_workspace_role
def delete(task_id: int):
    s = db_session()
    u = _current_user()
    task = get_user_task(s, u, task_id)
    if task is None:
        abort(404)
    if session.get(EDIT_SESSION_KEY) == task.id:
        _stop_editing()
    delete_task(s, task, u)
    s.commit()
    flash("Task deleted.", "success")
    return redirect(url_for("tasks.dashboard", q=request.form.get("q") or None))


@bp.post("/clear-completed")
@require_permission("tasks.edit")
@require_workspace_role
def clear_completed_post():
    s = db_session()
    u = _current_user()
    count = clear_completed(s, u)
    s.commit()
    flash(f"Cleared {count} completed task(s).", "success")
    return redirect(url_for("tasks.dashboard"))


@bp.get("/export")
@require_permission("tasks.export")
def export():
    s = db_session()
    u = _current_user()
    tasks = user_tasks(s, u)

    record_event(
        s,
        actor=u,
        action="task.export",
        entity_type="Task",
        entity_id="export",
        metadata={"row_count": len(tasks)},
    )
    s.commit()

    return send_file(
        io.BytesIO(export_tasks(tasks)),
        mimetype="application/json",
        as_attachment=True,
        download_name=EXPORT_FILENAME,
        max_age=0,
    )


@bp.post("/import")
@require_permission("tasks.import")
@require_workspace_role
def import_post():
    s = db_session()
    u = _current_user()

    f = request.files.get("file")
    if not f or not f.filename:
        flash("Please select a file to import.", "danger")
        return redirect(url_for("tasks.dashboard"))

    try:
        result = import_tasks(s, u, f.read(), _workspace_role())
    except TaskImportError as e:
        s.rollback()
        current_app.logger.warning("Task import rejected (user_id=%s file=%s): %s", u.id, f.filename, e)
        flash(str(e), "danger")
        return redirect(url_for("tasks.dashboard"))

    s.commit()
    msg = f"Tasks imported. ({result.imported} added"
    if result.skipped:
        msg += f", {result.skipped} skipped"
    flash(msg + ")", "success")
    return redirect(url_for("tasks.dashboard"))


@bp.get("/reminders")
@require_permission("tasks.view")
def reminders():
    s = db_session()
    u = _current_user()
    count = len(due_today(s, u))
    return {"count": count, "message": reminder_message(count)}
