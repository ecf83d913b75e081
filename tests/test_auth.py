from datetime import datetime, timedelta

from app.community.db import session_scope
from app.community.models import AdminStudentId, AuditEvent, PasswordResetToken, User
from conftest import PASSWORD


def _issue_student_id(login, username="dana", grade=2, class_name="c"):
    admin, h = login("admin")
    r = admin.post("/api/admin/student-ids", json={"username": username, "grade": grade, "class_name": class_name}, headers=h)
    assert r.status_code == 201, r.json
    return r.json


def test_login_and_me(login):
    c, _ = login("alice")
    r = c.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["username"] == "alice"
    assert r.json["user"]["role"] == "student"


def test_login_by_email(client):
    r = client.post("/api/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
    assert r.status_code == 200
    assert r.json["user"]["username"] == "bob"


def test_login_wrong_password(app, client):
    r = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
    assert r.status_code == 401
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_rate_limited(client):
    for _ in range(5):
        client.post("/api/auth/login", json={"username": "alice", "password": "wrong-pass"})
    r = client.post("/api/auth/login", json={"username": "alice", "password": PASSWORD})
    assert r.status_code == 429


def test_admin_login_rejects_students(client):
    r = client.post("/api/auth/admin/login", json={"username": "alice", "password": PASSWORD})
    assert r.status_code == 403
    r = client.post("/api/auth/admin/login", json={"username": "admin", "password": PASSWORD})
    assert r.status_code == 200
    assert r.json["user"]["role"] == "admin"


def test_visitor_session(visitor):
    c, _ = visitor
    r = c.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["role"] == "visitor"


def test_logout_clears_session(login):
    c, _ = login("alice")
    assert c.post("/api/auth/logout").status_code == 200
    assert c.get("/api/auth/me").status_code == 401


def test_register_with_student_id(app, login, client):
    ticket = _issue_student_id(login)
    r = client.post(
        "/api/auth/register",
        json={"username": "dana", "email": "dana@example.com", "password": "hunter22", "student_code": ticket["student_code"]},
    )
    assert r.status_code == 201, r.json
    user = r.json["user"]
    assert user["grade"] == 2
    assert user["class_name"] == "C"
    assert user["student_code"] == ticket["student_code"]
    with session_scope(app) as s:
        row = s.query(AdminStudentId).filter(AdminStudentId.username == "dana").one()
        assert row.is_assigned is True
        assert row.assigned_to_user_id == user["id"]


def test_register_rejects_mismatched_username(login, client):
    ticket = _issue_student_id(login)
    r = client.post(
        "/api/auth/register",
        json={"username": "eve", "email": "eve@example.com", "password": "hunter22", "student_code": ticket["student_code"]},
    )
    assert r.status_code == 400


def test_register_ticket_single_use(login, client, app):
    ticket = _issue_student_id(login)
    payload = {"username": "dana", "email": "dana@example.com", "password": "hunter22", "student_code": ticket["student_code"]}
    assert client.post("/api/auth/register", json=payload).status_code == 201
    other = app.test_client()
    payload["email"] = "dana2@example.com"
    assert other.post("/api/auth/register", json=payload).status_code == 400


def test_register_validates_fields(client):
    r = client.post("/api/auth/register", json={"username": "x", "email": "bad", "password": "1", "student_code": "ABC"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3


def test_admin_register_requires_code(client):
    payload = {"username": "boss", "email": "boss@example.com", "password": "hunter22", "admin_code": "wrong"}
    assert client.post("/api/auth/admin/register", json=payload).status_code == 403
    payload["admin_code"] = "letmein"
    r = client.post("/api/auth/admin/register", json=payload)
    assert r.status_code == 201
    assert r.json["user"]["role"] == "admin"


def test_admin_register_disabled_without_code(app, client):
    app.config["ADMIN_REGISTRATION_CODE"] = ""
    payload = {"username": "boss", "email": "boss@example.com", "password": "hunter22", "admin_code": "letmein"}
    r = client.post("/api/auth/admin/register", json=payload)
    assert r.status_code == 403
    assert "disabled" in r.json["error"]


def test_password_reset_flow(app, client, monkeypatch):
    sent = {}

    def fake_send(to, name, token):
        sent.update(to=to, token=token)
        return True, ""

    monkeypatch.setattr("app.community.mailer.send_password_reset_email", fake_send)
    r = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
    assert r.status_code == 200
    assert sent["to"] == "alice@example.com"

    assert client.get(f"/api/auth/reset-password/{sent['token']}").json["valid"] is True
    r = client.post("/api/auth/reset-password", json={"token": sent["token"], "password": "brand-new"})
    assert r.status_code == 200
    assert client.get(f"/api/auth/reset-password/{sent['token']}").json["valid"] is False

    r = client.post("/api/auth/login", json={"username": "alice", "password": "brand-new"})
    assert r.status_code == 200


def test_forgot_password_unknown_email_is_generic(client, monkeypatch):
    calls = []
    monkeypatch.setattr("app.community.mailer.send_password_reset_email", lambda *a: calls.append(a) or (True, ""))
    known = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json == unknown.json
    assert len(calls) == 1


def test_forgot_password_send_failure_still_generic(client, monkeypatch):
    monkeypatch.setattr("app.community.mailer.send_password_reset_email", lambda *a: (False, "SMTP down"))
    r = client.post("/api/auth/forgot-password", json={"email": "alice@example.com"})
    assert r.status_code == 200


def test_expired_reset_token_rejected(app, client, ids):
    with session_scope(app) as s:
        s.add(PasswordResetToken(user_id=ids["alice"], token="old-token", expires_at=datetime.utcnow() - timedelta(minutes=1)))
    r = client.post("/api/auth/reset-password", json={"token": "old-token", "password": "brand-new"})
    assert r.status_code == 400


def test_suspended_user_cannot_login(app, client, ids):
    with session_scope(app) as s:
        s.get(User, ids["bob"]).is_active = False
    r = client.post("/api/auth/login", json={"username": "bob", "password": PASSWORD})
    assert r.status_code == 401


def test_admin_register_with_non_ascii_code(client):
    payload = {"username": "boss", "email": "boss@example.com", "password": "hunter22", "admin_code": "über"}
    r = client.post("/api/auth/admin/register", json=payload)
    assert r.status_code == 403
