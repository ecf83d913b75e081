from app.community.constants import PEER_METRICS
from app.community.db import session_scope
from app.community.models import User


def _full_rating(value=4):
    return {m: value for m in PEER_METRICS}


SOCIAL = {
    "empathy": 6,
    "angerManagement": 5,
    "cooperation": 6,
    "selfConfidence": 5,
    "acceptingCriticism": 5,
    "listening": 6,
}


def test_profile_visibility(login, ids):
    alice, _ = login("alice")
    own = alice.get(f"/api/users/{ids['alice']}").json
    assert own["email"] == "alice@example.com"
    other = alice.get(f"/api/users/{ids['bob']}").json
    assert "email" not in other
    assert other["average_rating"] == 3.0


def test_edit_own_profile_only(login, ids):
    alice, h = login("alice")
    r = alice.patch(f"/api/users/{ids['alice']}/profile", json={"bio": "I like robots", "class_name": "c"}, headers=h)
    assert r.status_code == 200
    assert r.json["bio"] == "I like robots"
    assert r.json["class_name"] == "C"
    assert alice.patch(f"/api/users/{ids['bob']}/profile", json={"bio": "hacked"}, headers=h).status_code == 403
    assert alice.patch(f"/api/users/{ids['alice']}/profile", json={"grade": 9}, headers=h).status_code == 400


def test_hobbies(login, ids):
    alice, h = login("alice")
    r = alice.patch(f"/api/users/{ids['alice']}/hobbies", json={"hobbies": ["chess", " football "]}, headers=h)
    assert r.status_code == 200
    assert alice.get(f"/api/users/{ids['alice']}").json["hobbies"] == ["chess", "football"]
    too_many = ["a", "b", "c", "d", "e", "f"]
    assert alice.patch(f"/api/users/{ids['alice']}/hobbies", json={"hobbies": too_many}, headers=h).status_code == 400
    assert alice.patch(f"/api/users/{ids['alice']}/hobbies", json={"hobbies": ["x" * 51]}, headers=h).status_code == 400


def test_tendencies(login, ids):
    alice, h = login("alice")
    r = alice.patch(f"/api/users/{ids['alice']}/tendencies", json=SOCIAL, headers=h)
    assert r.status_code == 200
    assert r.json["tendencies"]["empathy"] == 6

    wrong_total = dict(SOCIAL, empathy=7)
    assert alice.patch(f"/api/users/{ids['alice']}/tendencies", json=wrong_total, headers=h).status_code == 400
    out_of_range = dict(SOCIAL, empathy=11, listening=0)
    assert alice.patch(f"/api/users/{ids['alice']}/tendencies", json=out_of_range, headers=h).status_code == 400
    mixed = dict(SOCIAL)
    mixed.pop("listening")
    mixed["creativity"] = 6
    assert alice.patch(f"/api/users/{ids['alice']}/tendencies", json=mixed, headers=h).status_code == 400


def test_self_rating_rejected(login, ids):
    alice, h = login("alice")
    r = alice.post(f"/api/users/{ids['alice']}/rate", json=_full_rating(), headers=h)
    assert r.status_code == 409


def test_peer_rating_upsert(app, login, ids):
    bob, h = login("bob")
    r = bob.post(f"/api/users/{ids['alice']}/rate", json=_full_rating(4), headers=h)
    assert r.status_code == 201
    assert r.json["average_rating"] == 4.0

    carol, ch = login("carol")
    carol.post(f"/api/users/{ids['alice']}/rate", json=_full_rating(2), headers=ch)

    r = bob.post(f"/api/users/{ids['alice']}/rate", json=_full_rating(5), headers=h)
    assert r.status_code == 200
    assert r.json["created"] is False
    assert r.json["peer_scores"]["kindness"] == 3.5
    assert bob.get(f"/api/users/{ids['alice']}/rating").json["kindness"] == 5


def test_peer_rating_validation(login, ids):
    bob, h = login("bob")
    partial = _full_rating()
    partial.pop("temper")
    assert bob.post(f"/api/users/{ids['alice']}/rate", json=partial, headers=h).status_code == 400
    assert bob.post(f"/api/users/{ids['alice']}/rate", json=_full_rating(6), headers=h).status_code == 400
    assert bob.post(f"/api/users/{ids['admin']}/rate", json=_full_rating(), headers=h).status_code == 400


def test_admin_sets_credibility_threshold(app, login, ids):
    admin, h = login("admin")
    r = admin.patch(f"/api/users/{ids['bob']}/credibility", json={"credibility_score": 24}, headers=h)
    assert r.status_code == 200
    assert r.json["account_status"] == "threatened"
    r = admin.patch(f"/api/users/{ids['bob']}/credibility", json={"credibility_score": 25}, headers=h)
    assert r.json["account_status"] == "active"
    assert admin.patch(f"/api/users/{ids['bob']}/credibility", json={"credibility_score": -1}, headers=h).status_code == 400


def test_admin_suspends_user(app, login, ids):
    bob, _ = login("bob")
    admin, h = login("admin")
    r = admin.patch(f"/api/users/{ids['bob']}/status", json={"account_status": "suspended"}, headers=h)
    assert r.status_code == 200
    assert bob.get("/api/auth/me").status_code == 401
    assert admin.patch(f"/api/users/{ids['admin']}/status", json={"account_status": "suspended"}, headers=h).status_code == 409


def test_stats_and_reputation(app, login, ids):
    alice, h = login("alice")
    alice.post("/api/posts", json={"content": "one"}, headers=h)
    alice.post("/api/posts", json={"content": "two"}, headers=h)
    stats = alice.get(f"/api/users/{ids['alice']}/stats").json
    assert stats["posts_count"] == 2
    assert stats["reputation_score"] == 2 * 2.0 + 1.5 * 50

    r = alice.post("/api/reputation/calculate", json={}, headers=h)
    assert r.json["reputation_score"] == 79.0
    assert alice.post("/api/reputation/calculate", json={"user_id": ids["bob"]}, headers=h).status_code == 403


def test_class_roster_and_search(login):
    alice, _ = login("alice")
    roster = alice.get("/api/classes/3/b/students").json
    assert sorted(s["username"] for s in roster) == ["alice", "bob"]
    assert alice.get("/api/classes/9/A/students").status_code == 400
    found = alice.get("/api/users/search?email=Carol@example.com").json
    assert found["username"] == "carol"


def test_profile_comments(login, ids):
    bob, h = login("bob")
    r = bob.post(f"/api/users/{ids['alice']}/comments", json={"content": "Great teammate", "rating": 5}, headers=h)
    assert r.status_code == 201
    comments = bob.get(f"/api/users/{ids['alice']}/comments").json
    assert [c["content"] for c in comments] == ["Great teammate"]
    assert bob.post(f"/api/users/{ids['alice']}/comments", json={"content": "x", "rating": 9}, headers=h).status_code == 400


def test_admin_deletes_user(app, login, ids):
    bob, bh = login("bob")
    bob.post(f"/api/users/{ids['alice']}/rate", json=_full_rating(5), headers=bh)
    admin, h = login("admin")
    assert admin.delete(f"/api/users/{ids['admin']}", headers=h).status_code == 409
    r = admin.delete(f"/api/users/{ids['bob']}", headers=h)
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(User, ids["bob"]) is None
        assert s.get(User, ids["alice"]).peer_scores is None


def test_deleting_event_owner_refreshes_attendee_reputation(app, login, ids):
    bob, bh = login("bob")
    event = bob.post(
        "/api/events",
        json={"title": "Chess Club", "event_type": "extracurricular", "start_time": "2026-11-02T09:00:00Z", "end_time": "2026-11-02T10:00:00Z"},
        headers=bh,
    ).json
    carol, ch = login("carol")
    assert carol.post(f"/api/events/{event['id']}/rsvp", headers=ch).json["attending"] is True
    with session_scope(app) as s:
        assert s.get(User, ids["carol"]).reputation_score == 1.5 * 50 + 3.0

    admin, h = login("admin")
    assert admin.delete(f"/api/users/{ids['bob']}", headers=h).status_code == 200
    with session_scope(app) as s:
        assert s.get(User, ids["carol"]).reputation_score == 1.5 * 50
