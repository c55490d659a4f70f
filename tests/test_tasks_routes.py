"""End-to-end tests for the tasks blueprint through the Flask test client."""
import io
import json
from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.edulink import create_app
from app.edulink.db import session_scope
from app.edulink.models import AuditEvent, Base, Permission, Role, User
from app.edulink.modules.tasks.models import Task


def _seed_all_permissions(s):
    perm_keys = [
        ("tasks.view", "Tasks: view"),
        ("tasks.edit", "Tasks: add/edit/delete"),
        ("tasks.import", "Tasks: import JSON"),
        ("tasks.export", "Tasks: export JSON"),
    ]
    perms = []
    for key, name in perm_keys:
        p = Permission(key=key, name=name)
        s.add(p)
        perms.append(p)
    return perms


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        perms = _seed_all_permissions(s)
        member = Role(key="member", name="Member")
        member.permissions.extend(perms)
        viewer = Role(key="viewer", name="Viewer")
        viewer.permissions.append(perms[0])
        alice = User(email="alice@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        alice.roles.append(member)
        bob = User(email="bob@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        bob.roles.append(member)
        vera = User(email="vera@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        vera.roles.append(viewer)
        s.add_all([member, viewer, alice, bob, vera])

    return app.test_client()


def _login(client, email="alice@example.com"):
    client.post("/auth/login", data={"email": email, "password": "pw"}, follow_redirects=False)


def _csrf(client) -> str:
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def _post(client, url, data=None, **kwargs):
    data = dict(data or {})
    data["csrf_token"] = _csrf(client)
    return client.post(url, data=data, **kwargs)


def _enter(client, email="alice@example.com", role="Student", name=""):
    _login(client, email)
    _post(client, "/auth/role", {"role": role, "display_name": name})


def _add(client, title, day, priority="Normal"):
    return _post(client, "/tasks/save", {"title": title, "date": day, "priority": priority})


def _tasks(client, email="alice@example.com") -> list[Task]:
    with session_scope(client.application) as s:
        user = s.query(User).filter(User.email == email).one()
        return s.query(Task).filter(Task.owner_user_id == user.id).order_by(Task.id.asc()).all()


def test_dashboard_requires_login(client):
    r = client.get("/tasks/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]


def test_dashboard_requires_workspace_role(client):
    _login(client)
    r = client.get("/tasks/")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/auth/role")


def test_role_selection_and_welcome(client):
    _enter(client, role="Lecturer", name="Dr Smith")
    r = client.get("/tasks/")
    assert r.status_code == 200
    assert b"Welcome, Lecturer" in r.data
    assert b"Dr Smith" in r.data


def test_display_name_defaults_to_role(client):
    _enter(client, role="Student", name="   ")
    with client.session_transaction() as sess:
        assert sess["display_name"] == "Student"


def test_unknown_role_is_rejected(client):
    _login(client)
    r = _post(client, "/auth/role", {"role": "Wizard"}, follow_redirects=True)
    assert b"Please choose a role." in r.data
    with client.session_transaction() as sess:
        assert "workspace_role" not in sess


def test_empty_dashboard(client):
    _enter(client)
    r = client.get("/tasks/")
    assert b"No tasks yet" in r.data
    assert b"Add your first task" in r.data
    assert b"Total: 0 | Completed: 0 (0%)" in r.data


def test_add_task_and_summary(client):
    _enter(client)
    r = _add(client, "Maths homework", "2026-03-02", "High")
    assert r.status_code == 302

    tasks = _tasks(client)
    assert len(tasks) == 1
    assert tasks[0].title == "Maths homework"
    assert tasks[0].workspace_role == "Student"

    r = client.get("/tasks/")
    assert b"Maths homework" in r.data
    assert b"Due: 2026-03-02" in r.data
    assert b"Total: 1 | Completed: 0 (0%)" in r.data
    assert "2026-03-02 — Maths homework (High)".encode("utf-8") in r.data


def test_add_requires_title_and_date(client):
    _enter(client)
    r = _add(client, "", "2026-03-02")
    assert r.status_code == 302
    r = client.get("/tasks/")
    assert b"Please enter a title and date." in r.data
    assert _tasks(client) == []


def test_titles_are_escaped(client):
    _enter(client)
    _add(client, "<script>alert(1)</script>", "2026-03-02")
    r = client.get("/tasks/")
    assert b"<script>alert(1)</script>" not in r.data
    assert b"&lt;script&gt;" in r.data


def test_toggle_done_updates_progress(client):
    _enter(client)
    _add(client, "One", "2026-03-01")
    _add(client, "Two", "2026-03-02")
    _add(client, "Three", "2026-03-03")
    first = _tasks(client)[0]

    r = _post(client, f"/tasks/{first.id}/toggle")
    assert r.status_code == 302
    r = client.get("/tasks/")
    assert b"Total: 3 | Completed: 1 (33%)" in r.data
    assert b"width: 33%" in r.data

    _post(client, f"/tasks/{first.id}/toggle")
    r = client.get("/tasks/")
    assert b"Total: 3 | Completed: 0 (0%)" in r.data


def test_edit_mode_toggle_and_save(client):
    _enter(client)
    _add(client, "Draft essay", "2026-03-01", "Low")
    task = _tasks(client)[0]

    r = _post(client, f"/tasks/{task.id}/edit")
    assert r.status_code == 302
    r = client.get("/tasks/")
    assert "💾 Save".encode("utf-8") in r.data
    assert b'id="cancelEditBtn"' in r.data
    assert b'value="Draft essay"' in r.data

    _add(client, "Final essay", "2026-03-08", "High")
    tasks = _tasks(client)
    assert len(tasks) == 1
    assert tasks[0].title == "Final essay"
    assert tasks[0].due_date.isoformat() == "2026-03-08"
    assert tasks[0].priority == "High"

    r = client.get("/tasks/")
    assert "➕ Add Task".encode("utf-8") in r.data
    assert b'id="cancelEditBtn"' not in r.data


def test_cancel_edit(client):
    _enter(client)
    _add(client, "Keep me", "2026-03-01")
    task = _tasks(client)[0]
    _post(client, f"/tasks/{task.id}/edit")
    _post(client, "/tasks/edit/cancel")
    with client.session_transaction() as sess:
        assert "editing_task_id" not in sess

    # Next save adds instead of editing
    _add(client, "Another", "2026-03-02")
    assert [t.title for t in _tasks(client)] == ["Keep me", "Another"]


def test_save_after_task_vanished_reports_not_found(client):
    _enter(client)
    _add(client, "Ghost", "2026-03-01")
    task = _tasks(client)[0]
    _post(client, f"/tasks/{task.id}/edit")
    with session_scope(client.application) as s:
        s.delete(s.get(Task, task.id))

    r = _add(client, "Edited ghost", "2026-03-01")
    assert r.status_code == 302
    r = client.get("/tasks/")
    assert b"Task not found" in r.data
    assert _tasks(client) == []
    with client.session_transaction() as sess:
        assert "editing_task_id" not in sess


def test_change_role_clears_edit_mode(client):
    _enter(client)
    _add(client, "Task", "2026-03-01")
    task = _tasks(client)[0]
    _post(client, f"/tasks/{task.id}/edit")

    r = _post(client, "/auth/role/change")
    assert r.headers["Location"].endswith("/auth/role")
    with client.session_transaction() as sess:
        assert "editing_task_id" not in sess
        assert "workspace_role" not in sess


def test_delete_task(client):
    _enter(client)
    _add(client, "Delete me", "2026-03-01")
    task = _tasks(client)[0]
    r = _post(client, f"/tasks/{task.id}/delete")
    assert r.status_code == 302
    assert _tasks(client) == []

    with session_scope(client.application) as s:
        actions = [e.action for e in s.query(AuditEvent).all()]
        assert "task.create" in actions
        assert "task.delete" in actions


def test_other_users_tasks_are_not_reachable(client):
    _enter(client, email="bob@example.com")
    _add(client, "Bob's task", "2026-03-01")
    bob_task = _tasks(client, "bob@example.com")[0]
    client.get("/auth/logout")

    _enter(client)
    r = client.get("/tasks/")
    assert b"Bob&#39;s task" not in r.data
    assert b"Bob's task" not in r.data
    assert _post(client, f"/tasks/{bob_task.id}/toggle").status_code == 404
    assert _post(client, f"/tasks/{bob_task.id}/delete").status_code == 404
    assert len(_tasks(client, "bob@example.com")) == 1


def test_search_filters_list_but_not_summary(client):
    _enter(client)
    _add(client, "Maths homework", "2026-03-02", "High")
    _add(client, "Physics lab", "2026-04-10", "Low")

    r = client.get("/tasks/?q=physics")
    assert b"Physics lab" in r.data
    assert b"Maths homework" not in r.data
    assert b"Total: 2 | Completed: 0 (0%)" in r.data

    r = client.get("/tasks/?q=2026-03")
    assert b"Maths homework" in r.data
    assert b"Physics lab" not in r.data


def test_clear_completed(client):
    _enter(client)
    _add(client, "Done", "2026-03-01")
    _add(client, "Open", "2026-03-02")
    done = _tasks(client)[0]
    _post(client, f"/tasks/{done.id}/toggle")

    r = _post(client, "/tasks/clear-completed", follow_redirects=True)
    assert b"Cleared 1 completed task(s)." in r.data
    assert [t.title for t in _tasks(client)] == ["Open"]


def test_export_downloads_json(client):
    _enter(client)
    _add(client, "Essay", "2026-03-01", "High")
    r = client.get("/tasks/export")
    assert r.status_code == 200
    assert r.mimetype == "application/json"
    assert "Edulink_tasks.json" in r.headers["Content-Disposition"]
    data = json.loads(r.data)
    assert [(d["title"], d["date"], d["priority"], d["done"]) for d in data] == [("Essay", "2026-03-01", "High", False)]


def test_import_upload(client):
    _enter(client)
    payload = json.dumps(
        [
            {"id": 1700000000001, "title": "Imported", "date": "2026-05-01", "priority": "Low", "done": False},
            {"id": 1700000000001, "title": "Duplicate", "date": "2026-05-01"},
        ]
    ).encode("utf-8")
    r = _post(
        client,
        "/tasks/import",
        {"file": (io.BytesIO(payload), "Edulink_tasks.json")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Tasks imported." in r.data
    assert [t.title for t in _tasks(client)] == ["Imported"]


def test_import_rejects_invalid_file(client):
    _enter(client)
    r = _post(
        client,
        "/tasks/import",
        {"file": (io.BytesIO(b'{"not": "a list"}'), "bad.json")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"Failed to import. Please use a valid JSON exported from this app." in r.data
    assert _tasks(client) == []


def test_reminders_endpoint(client):
    _enter(client)
    r = client.get("/tasks/reminders")
    assert r.json == {"count": 0, "message": None}

    today = datetime.utcnow().date().isoformat()
    _add(client, "Due today", today)
    r = client.get("/tasks/reminders")
    assert r.json == {"count": 1, "message": "Reminder: 1 task(s) due today!"}

    r = client.get("/tasks/")
    assert b"Reminder: 1 task(s) due today!" in r.data


def test_view_only_user_cannot_edit(client):
    _enter(client, email="vera@example.com")
    r = client.get("/tasks/")
    assert r.status_code == 200
    assert b'id="addBtn"' not in r.data
    r = _add(client, "Sneaky", "2026-03-01")
    assert r.status_code == 403
    assert _tasks(client, "vera@example.com") == []


def test_overlong_title_is_rejected(client):
    _enter(client)
    r = _add(client, "x" * 300, "2026-03-02")
    assert r.status_code == 302
    r = client.get("/tasks/")
    assert b"Title is too long." in r.data
    assert b'maxlength="255"' in r.data
    assert _tasks(client) == []


def test_week_date_is_rejected(client):
    _enter(client)
    _add(client, "Essay", "2026-W10-1")
    r = client.get("/tasks/")
    assert b"Date must be YYYY-MM-DD." in r.data
    assert _tasks(client) == []


def test_delete_keeps_search_query(client):
    _enter(client)
    _add(client, "Physics lab", "2026-03-01")
    task = _tasks(client)[0]
    r = _post(client, f"/tasks/{task.id}/delete", {"q": "physics"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/tasks/?q=physics")


def test_out_of_range_task_id_is_not_found(client):
    _enter(client)
    assert _post(client, f"/tasks/{10**20}/toggle").status_code == 404
    assert _post(client, f"/tasks/{10**20}/delete").status_code == 404


def test_import_upload_skips_oversized_id(client):
    _enter(client)
    payload = json.dumps([{"id": 10**20, "title": "big", "date": "2026-03-01"}]).encode("utf-8")
    r = _post(
        client,
        "/tasks/import",
        {"file": (io.BytesIO(payload), "Edulink_tasks.json")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Tasks imported. (0 added, 1 skipped)" in r.data
    assert _tasks(client) == []


def test_oversized_upload_reports_configured_limit(client):
    client.application.config["MAX_CONTENT_LENGTH"] = 1024
    _enter(client)
    r = _post(
        client,
        "/tasks/import",
        {"file": (io.BytesIO(b"[" + b" " * 4096 + b"]"), "Edulink_tasks.json")},
        content_type="multipart/form-data",
        follow_redirects=True,
    )
    assert b"File too large. Maximum size is 1KB." in r.data
