from app.community.db import session_scope
from app.community.models import AuditEvent
from app.community.modules.scopes import service as scope_service
from app.community.modules.scopes.models import DigitalKey
from conftest import GRADE3_CODE, SECTION3B_CODE


def _key_count(app, user_id, scope_id):
    with session_scope(app) as s:
        return s.query(DigitalKey).filter(DigitalKey.user_id == user_id, DigitalKey.scope_id == scope_id).count()


def test_unlock_with_wrong_code(app, login, ids, unlock):
    c, h = login("alice")
    r = unlock(c, h, ids["section3b"], "not-the-code")
    assert r.status_code == 400
    assert r.json["error"] == "Incorrect access code"
    assert _key_count(app, ids["alice"], ids["section3b"]) == 0
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "scope.unlock_failed").count() == 1


def test_unlock_twice_keeps_one_key(app, login, ids, unlock):
    c, h = login("alice")
    first = unlock(c, h, ids["section3b"], SECTION3B_CODE)
    assert first.status_code == 201
    assert first.json["created"] is True
    assert first.json["message"] == "Access granted! Digital key saved to your profile."

    second = unlock(c, h, ids["section3b"], SECTION3B_CODE)
    assert second.status_code == 200
    assert second.json["created"] is False
    assert second.json["key"]["id"] == first.json["key"]["id"]
    assert _key_count(app, ids["alice"], ids["section3b"]) == 1


def test_unlock_unknown_scope(login, unlock):
    c, h = login("alice")
    assert unlock(c, h, 9999, "whatever").status_code == 404


def test_unlock_global_scope_is_noop(app, login, ids, unlock):
    c, h = login("alice")
    r = unlock(c, h, ids["global"], "")
    assert r.status_code == 200
    assert r.json["key"] is None
    assert _key_count(app, ids["alice"], ids["global"]) == 0


def test_visitor_cannot_unlock(visitor, ids, unlock):
    c, h = visitor
    assert unlock(c, h, ids["section3b"], SECTION3B_CODE).status_code == 403


def test_key_check_and_list(login, ids, unlock):
    c, h = login("alice")
    assert c.get(f"/api/keys/check/{ids['grade3']}").json["has_access"] is False
    assert c.get(f"/api/keys/check/{ids['global']}").json["has_access"] is True
    unlock(c, h, ids["grade3"], GRADE3_CODE)
    assert c.get(f"/api/keys/check/{ids['grade3']}").json["has_access"] is True
    keys = c.get("/api/keys").json
    assert [k["scope_id"] for k in keys] == [ids["grade3"]]
    assert keys[0]["scope"]["name"] == "Grade 3"


def test_admin_has_access_everywhere(login, ids):
    c, _ = login("admin")
    assert c.get(f"/api/keys/check/{ids['section4a']}").json["has_access"] is True


def test_visitor_key_check_and_list(visitor, ids):
    c, _ = visitor
    assert c.get(f"/api/keys/check/{ids['grade3']}").json["has_access"] is False
    assert c.get(f"/api/keys/check/{ids['global']}").json["has_access"] is True
    assert c.get("/api/keys").json == []


def test_access_codes_only_shown_to_admin(login):
    student, _ = login("alice")
    scopes = student.get("/api/scopes").json
    assert scopes and all("access_code" not in sc for sc in scopes)

    admin, _ = login("admin")
    by_name = {sc["name"]: sc for sc in admin.get("/api/scopes").json}
    assert by_name["Class 3-B"]["access_code"] == SECTION3B_CODE


def test_admin_creates_scopes(login):
    c, h = login("admin")
    r = c.post("/api/admin/scopes", json={"type": "grade", "name": "Grade 5", "grade_number": 5, "access_code": "Five5"}, headers=h)
    assert r.status_code == 201
    r = c.post("/api/admin/scopes", json={"type": "section", "name": "Class 5-C", "section_name": "5-c", "access_code": "FiveC"}, headers=h)
    assert r.status_code == 201
    assert r.json["section_name"] == "5-C"


def test_scope_validation(login):
    c, h = login("admin")
    # section without its grade
    r = c.post("/api/admin/scopes", json={"type": "section", "name": "Class 6-A", "section_name": "6-A", "access_code": "SixA"}, headers=h)
    assert r.status_code == 400
    # duplicate grade
    r = c.post("/api/admin/scopes", json={"type": "grade", "name": "Grade 3 again", "grade_number": 3, "access_code": "Dup3"}, headers=h)
    assert r.status_code == 409
    # second global
    r = c.post("/api/admin/scopes", json={"type": "global", "name": "Another"}, headers=h)
    assert r.status_code == 409
    # non-alphanumeric code
    r = c.post("/api/admin/scopes", json={"type": "grade", "name": "Grade 6", "grade_number": 6, "access_code": "six-6"}, headers=h)
    assert r.status_code == 400


def test_students_cannot_manage_scopes(login, ids):
    c, h = login("alice")
    r = c.post("/api/admin/scopes", json={"type": "grade", "name": "Grade 5", "grade_number": 5, "access_code": "Five5"}, headers=h)
    assert r.status_code == 403
    assert c.delete(f"/api/admin/scopes/{ids['section4a']}", headers=h).status_code == 403


def test_scope_delete_rules(login, ids, unlock):
    c, h = login("admin")
    assert c.delete(f"/api/admin/scopes/{ids['global']}", headers=h).status_code == 409

    # grade with sections
    r = c.delete(f"/api/admin/scopes/{ids['grade4']}", headers=h)
    assert r.status_code == 409
    assert r.json["reasons"]

    # section with a key
    alice, ah = login("alice")
    unlock(alice, ah, ids["section3b"], SECTION3B_CODE)
    assert c.delete(f"/api/admin/scopes/{ids['section3b']}", headers=h).status_code == 409

    # empty section, then its grade
    assert c.delete(f"/api/admin/scopes/{ids['section4a']}", headers=h).status_code == 200
    assert c.delete(f"/api/admin/scopes/{ids['grade4']}", headers=h).status_code == 200


def test_unlock_with_non_ascii_code(app, login, ids, unlock):
    c, h = login("alice")
    r = unlock(c, h, ids["section3b"], "Zugangscodeé")
    assert r.status_code == 400
    assert r.json["error"] == "Incorrect access code"
    assert _key_count(app, ids["alice"], ids["section3b"]) == 0


def test_unlock_race_returns_existing_key(app, login, ids, unlock, monkeypatch):
    c, h = login("alice")
    with session_scope(app) as s:
        s.add(DigitalKey(user_id=ids["alice"], scope_id=ids["section3b"]))
    real_find_key = scope_service.find_key
    calls = []

    def find_key_missing_first(s, user_id, scope_id):
        calls.append(scope_id)
        return None if len(calls) == 1 else real_find_key(s, user_id, scope_id)

    monkeypatch.setattr(scope_service, "find_key", find_key_missing_first)
    r = unlock(c, h, ids["section3b"], SECTION3B_CODE)
    assert r.status_code == 200
    assert r.json["created"] is False
    assert r.json["key"]["scope_id"] == ids["section3b"]
    assert len(calls) == 2
    assert _key_count(app, ids["alice"], ids["section3b"]) == 1
