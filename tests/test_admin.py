from app.community.db import session_scope
from app.community.models import AdminStudentId, User


def test_admin_routes_require_admin(login, visitor):
    alice, h = login("alice")
    assert alice.get("/api/admin/student-ids").status_code == 403
    assert alice.post("/api/admin/promote", json={"user_id": 1}, headers=h).status_code == 403
    v, vh = visitor
    assert v.get("/api/admin/users").status_code == 403


def test_student_id_lifecycle(app, login):
    admin, h = login("admin")
    r = admin.post("/api/admin/student-ids", json={"username": "dana", "grade": 2, "class_name": "c"}, headers=h)
    assert r.status_code == 201
    ticket = r.json
    assert ticket["class_name"] == "C"
    assert len(ticket["student_code"]) == 8
    assert ticket["is_assigned"] is False

    assert admin.post("/api/admin/student-ids", json={"username": "Dana", "grade": 2, "class_name": "C"}, headers=h).status_code == 409
    assert admin.post("/api/admin/student-ids", json={"username": "alice", "grade": 3, "class_name": "B"}, headers=h).status_code == 409
    bad = admin.post("/api/admin/student-ids", json={"username": "erin", "grade": 8, "class_name": "Z"}, headers=h)
    assert bad.status_code == 400
    assert len(bad.json["errors"]) == 2

    c = app.test_client()
    reg = c.post(
        "/api/auth/register",
        json={"username": "dana", "email": "dana@example.com", "password": "secret123", "student_code": ticket["student_code"]},
    )
    assert reg.status_code == 201
    listed = admin.get("/api/admin/student-ids").json
    assert listed[0]["is_assigned"] is True
    assert admin.delete(f"/api/admin/student-ids/{ticket['id']}", headers=h).status_code == 409

    spare = admin.post("/api/admin/student-ids", json={"username": "erin", "grade": 1, "class_name": "A"}, headers=h).json
    assert admin.delete(f"/api/admin/student-ids/{spare['id']}", headers=h).status_code == 200
    with session_scope(app) as s:
        assert s.get(AdminStudentId, spare["id"]) is None


def test_students_list_filters(login):
    admin, _ = login("admin")
    everyone = admin.get("/api/admin/students").json
    assert sorted(u["username"] for u in everyone) == ["alice", "bob", "carol"]
    grade4 = admin.get("/api/admin/students?grade=4").json
    assert [u["username"] for u in grade4] == ["carol"]
    section = admin.get("/api/admin/students?grade=3&class_name=b").json
    assert sorted(u["username"] for u in section) == ["alice", "bob"]
    users = admin.get("/api/admin/users").json
    assert users[0]["role"] == "admin"


def test_delete_student(app, login, ids):
    admin, h = login("admin")
    assert admin.delete(f"/api/admin/students/{ids['admin']}", headers=h).status_code == 409
    admin.post("/api/admin/promote", json={"user_id": ids["carol"]}, headers=h)
    assert admin.delete(f"/api/admin/students/{ids['carol']}", headers=h).status_code == 403

    alice, ah = login("alice")
    alice.post("/api/posts", json={"content": "bye"}, headers=ah)
    r = admin.delete(f"/api/admin/students/{ids['alice']}", json={"reason": "Left school"}, headers=h)
    assert r.status_code == 200
    assert r.json["deleted"]["posts"] == 1
    with session_scope(app) as s:
        assert s.get(User, ids["alice"]) is None


def test_handover(app, login, ids):
    admin, h = login("admin")
    assert admin.post("/api/admin/handover", json={"new_admin_id": ids["admin"]}, headers=h).status_code == 409
    r = admin.post("/api/admin/handover", json={"new_admin_id": ids["bob"], "notes": "Graduating"}, headers=h)
    assert r.status_code == 200
    assert r.json["new_admin_id"] == ids["bob"]

    assert admin.get("/api/admin/succession-history").status_code == 403
    assert admin.get("/api/auth/me").json["user"]["role"] == "student"

    bob, _ = login("bob")
    history = bob.get("/api/admin/succession-history").json
    assert len(history) == 1
    assert history[0]["previous_admin_name"] == "Admin"
    assert history[0]["new_admin_name"] == "Bob"
    assert history[0]["notes"] == "Graduating"


def test_promote(login, ids):
    admin, h = login("admin")
    r = admin.post("/api/admin/promote", json={"user_id": ids["carol"]}, headers=h)
    assert r.status_code == 200
    assert r.json["user"]["role"] == "admin"
    assert admin.post("/api/admin/promote", json={"user_id": ids["carol"]}, headers=h).status_code == 409
    assert admin.post("/api/admin/promote", json={"user_id": 9999}, headers=h).status_code == 404


def test_donation_url(client, login):
    assert client.get("/api/settings/donation-url").json == {"url": None}
    admin, h = login("admin")
    assert admin.put("/api/admin/settings/donation-url", json={"url": "javascript:alert(1)"}, headers=h).status_code == 400
    r = admin.put("/api/admin/settings/donation-url", json={"url": "https://give.example.org/school"}, headers=h)
    assert r.status_code == 200
    assert client.get("/api/settings/donation-url").json["url"] == "https://give.example.org/school"
    admin.put("/api/admin/settings/donation-url", json={"url": ""}, headers=h)
    assert client.get("/api/settings/donation-url").json["url"] is None


def test_audit_log(login, ids):
    admin, h = login("admin")
    admin.post("/api/admin/promote", json={"user_id": ids["carol"]}, headers=h)
    events = admin.get("/api/admin/audit?action=admin.").json
    assert [e["action"] for e in events] == ["admin.promote"]
    assert events[0]["actor_username"] == "admin"
    logins = admin.get("/api/admin/audit?action=auth.login&limit=1").json
    assert len(logins) == 1


def test_audit_log_negative_limit(login):
    admin, _h = login("admin")
    r = admin.get("/api/admin/audit?limit=-1")
    assert r.status_code == 200
    assert len(r.json) == 1
