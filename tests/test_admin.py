"""Tests for the admin shell: audit trail and account management."""
import pytest
from werkzeug.security import check_password_hash, generate_password_hash

from app.edulink import create_app
from app.edulink.db import session_scope
from app.edulink.models import AuditEvent, Base, Permission, Role, User


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        perms = [
            Permission(key="admin.view", name="Admin: view shell"),
            Permission(key="admin.edit", name="Admin: manage accounts"),
        ]
        admin = Role(key="admin", name="Administrator")
        admin.permissions.extend(perms)
        member = Role(key="member", name="Member")
        u = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        u.roles.append(admin)
        s.add_all(perms + [admin, member, u])

    return app.test_client()


def _login(client):
    client.post("/auth/login", data={"email": "admin@example.com", "password": "pw"}, follow_redirects=False)


def _csrf(client) -> str:
    with client.session_transaction() as sess:
        return sess["csrf_token"]


def _member_role_id(client) -> int:
    with session_scope(client.application) as s:
        return s.query(Role).filter(Role.key == "member").one().id


def test_accounts_require_admin_edit(client):
    r = client.get("/admin/accounts")
    assert r.status_code == 302


def test_create_account_and_audit(client):
    _login(client)
    r = client.post(
        "/admin/accounts/new",
        data={
            "csrf_token": _csrf(client),
            "email": "Student@Example.com",
            "password": "longenough",
            "password_confirm": "longenough",
            "role_ids": [str(_member_role_id(client))],
        },
        follow_redirects=True,
    )
    assert r.status_code == 200
    assert b"Account created for student@example.com." in r.data

    with session_scope(client.application) as s:
        u = s.query(User).filter(User.email == "student@example.com").one()
        assert [r.key for r in u.roles] == ["member"]
        assert check_password_hash(u.password_hash, "longenough")

    r = client.get("/admin/audit?action=user.create")
    assert r.status_code == 200
    assert b"user.create" in r.data


def test_create_account_validates_password(client):
    _login(client)
    r = client.post(
        "/admin/accounts/new",
        data={"csrf_token": _csrf(client), "email": "x@example.com", "password": "short", "password_confirm": "short"},
        follow_redirects=True,
    )
    assert b"Password must be at least 8 characters." in r.data
    with session_scope(client.application) as s:
        assert s.query(User).filter(User.email == "x@example.com").one_or_none() is None


def test_audit_rejects_bad_dates(client):
    _login(client)
    r = client.get("/admin/audit?date_from=yesterday")
    assert r.status_code == 200
    assert b"date_from must be YYYY-MM-DD" in r.data


def test_login_is_audited(client):
    _login(client)
    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login").one()
        assert ev.actor_user_email == "admin@example.com"
        assert ev.request_id


def test_account_detail_lists_effective_permissions(client):
    _login(client)
    with session_scope(client.application) as s:
        admin_id = s.query(User).filter(User.email == "admin@example.com").one().id
    r = client.get(f"/admin/accounts/{admin_id}")
    assert r.status_code == 200
    assert b"Permissions: admin.edit, admin.view" in r.data
