from app.community.db import session_scope
from app.community.models import User
from app.community.modules.events import service as event_service
from app.community.modules.events.models import EventRsvp
from conftest import SECTION3B_CODE

START = "2026-11-02T09:00:00Z"
END = "2026-11-02T11:00:00Z"


def _event(c, h, **overrides):
    payload = {"title": "Science Fair", "event_type": "curricular", "start_time": START, "end_time": END}
    payload.update(overrides)
    return c.post("/api/events", json=payload, headers=h)


def test_create_school_wide_event(login):
    c, h = login("alice")
    r = _event(c, h, location="Main Hall")
    assert r.status_code == 201, r.json
    assert r.json["scope_id"] is None
    assert r.json["start_time"] == "2026-11-02T09:00:00"
    assert r.json["rsvp_count"] == 0
    assert r.json["creator"]["username"] == "alice"


def test_event_validation(login):
    c, h = login("alice")
    assert _event(c, h, event_type="party").status_code == 400
    assert _event(c, h, title="").status_code == 400
    assert _event(c, h, start_time="not-a-date").status_code == 400
    assert _event(c, h, end_time="2026-11-01T09:00:00Z").status_code == 400


def test_scoped_event_visibility(login, ids, unlock):
    alice, ah = login("alice")
    unlock(alice, ah, ids["section3b"], SECTION3B_CODE)
    scoped = _event(alice, ah, title="Class trip", scope_id=ids["section3b"]).json
    public = _event(alice, ah, title="Open day").json

    carol, _ = login("carol")
    titles = [e["title"] for e in carol.get("/api/events").json]
    assert titles == ["Open day"]
    assert carol.get(f"/api/events/{scoped['id']}").status_code == 403
    assert carol.get(f"/api/events?scope_id={ids['section3b']}").status_code == 403
    assert carol.get(f"/api/events/{public['id']}").status_code == 200

    listed = alice.get(f"/api/events?scope_id={ids['section3b']}").json
    assert [e["id"] for e in listed] == [scoped["id"]]


def test_event_in_locked_scope_forbidden(login, ids):
    c, h = login("carol")
    assert _event(c, h, scope_id=ids["section3b"]).status_code == 403


def test_rsvp_toggle_and_reputation(app, login, ids):
    alice, ah = login("alice")
    event_id = _event(alice, ah).json["id"]
    bob, bh = login("bob")

    r = bob.post(f"/api/events/{event_id}/rsvp", headers=bh)
    assert r.json == {"attending": True, "rsvp_count": 1}
    assert bob.get(f"/api/events/{event_id}").json["user_has_rsvpd"] is True
    assert [a["username"] for a in bob.get(f"/api/events/{event_id}/attendees").json] == ["bob"]
    assert [x["event_id"] for x in bob.get("/api/rsvps").json] == [event_id]
    with session_scope(app) as s:
        assert s.get(User, ids["bob"]).reputation_score == 1.5 * 50 + 3.0

    r = bob.post(f"/api/events/{event_id}/rsvp", headers=bh)
    assert r.json == {"attending": False, "rsvp_count": 0}
    with session_scope(app) as s:
        assert s.get(User, ids["bob"]).reputation_score == 1.5 * 50


def test_visitor_reads_events_only(login, visitor):
    alice, ah = login("alice")
    event_id = _event(alice, ah).json["id"]
    v, vh = visitor
    assert [e["id"] for e in v.get("/api/events").json] == [event_id]
    assert v.post(f"/api/events/{event_id}/rsvp", headers=vh).status_code == 403
    assert _event(v, vh).status_code == 403


def test_update_and_delete_permissions(login):
    alice, ah = login("alice")
    event_id = _event(alice, ah).json["id"]
    bob, bh = login("bob")
    bob.post(f"/api/events/{event_id}/rsvp", headers=bh)

    assert bob.patch(f"/api/events/{event_id}", json={"title": "Mine"}, headers=bh).status_code == 403
    r = alice.patch(f"/api/events/{event_id}", json={"title": "Science Fair 2026", "location": "Gym"}, headers=ah)
    assert r.status_code == 200
    assert r.json["title"] == "Science Fair 2026"
    assert r.json["location"] == "Gym"

    assert bob.delete(f"/api/events/{event_id}", headers=bh).status_code == 403
    assert alice.delete(f"/api/events/{event_id}", headers=ah).status_code == 200
    assert bob.get(f"/api/events/{event_id}").status_code == 404
    assert bob.get("/api/rsvps").json == []


def test_event_comments(login):
    alice, ah = login("alice")
    event_id = _event(alice, ah).json["id"]
    bob, bh = login("bob")
    r = bob.post(f"/api/events/{event_id}/comments", json={"content": "Count me in"}, headers=bh)
    assert r.status_code == 201
    assert [c["content"] for c in alice.get(f"/api/events/{event_id}/comments").json] == ["Count me in"]
    assert bob.post(f"/api/events/{event_id}/comments", json={"content": ""}, headers=bh).status_code == 400


def test_rsvp_survives_concurrent_insert(app, login, ids, monkeypatch):
    alice, ah = login("alice")
    event_id = _event(alice, ah).json["id"]
    bob, bh = login("bob")
    with session_scope(app) as s:
        s.add(EventRsvp(event_id=event_id, user_id=ids["bob"]))
    monkeypatch.setattr(event_service, "find_rsvp", lambda s, event_id, user_id: None)

    r = bob.post(f"/api/events/{event_id}/rsvp", headers=bh)
    assert r.status_code == 200
    assert r.json == {"attending": True, "rsvp_count": 1}
    with session_scope(app) as s:
        assert s.get(User, ids["bob"]).reputation_score == 1.5 * 50 + 3.0
