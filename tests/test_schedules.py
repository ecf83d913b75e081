from conftest import SECTION3B_CODE


def _slot(c, h, scope_id, day=1, period=1, subject="Math", teacher_name="Ms. Noor"):
    return c.post(
        "/api/schedules",
        json={"scope_id": scope_id, "day_of_week": day, "period_number": period, "subject": subject, "teacher_name": teacher_name},
        headers=h,
    )


def test_schedule_requires_key(login, ids, unlock):
    c, h = login("alice")
    assert _slot(c, h, ids["section3b"]).status_code == 403
    assert c.get(f"/api/schedules/{ids['section3b']}").status_code == 403
    unlock(c, h, ids["section3b"], SECTION3B_CODE)
    r = _slot(c, h, ids["section3b"])
    assert r.status_code == 201
    assert r.json["subject"] == "Math"
    assert [x["id"] for x in c.get(f"/api/schedules/{ids['section3b']}").json] == [r.json["id"]]


def test_schedule_only_in_sections(login, ids):
    c, h = login("admin")
    assert _slot(c, h, ids["grade3"]).status_code == 400


def test_schedule_slot_bounds_and_duplicates(login, ids):
    c, h = login("admin")
    assert _slot(c, h, ids["section4a"], day=8).status_code == 400
    assert _slot(c, h, ids["section4a"], period=0).status_code == 400
    assert _slot(c, h, ids["section4a"], day=7, period=7).status_code == 201
    assert _slot(c, h, ids["section4a"], day=7, period=7).status_code == 409


def test_schedule_update(login, ids, unlock):
    admin, h = login("admin")
    slot_id = _slot(admin, h, ids["section3b"]).json["id"]

    carol, ch = login("carol")
    assert carol.patch(f"/api/schedules/{slot_id}", json={"subject": "Art"}, headers=ch).status_code == 403

    alice, ah = login("alice")
    unlock(alice, ah, ids["section3b"], SECTION3B_CODE)
    r = alice.patch(f"/api/schedules/{slot_id}", json={"subject": "Art"}, headers=ah)
    assert r.status_code == 200
    assert r.json["subject"] == "Art"
    assert r.json["teacher_name"] == "Ms. Noor"


def test_schedule_bulk_update(login, ids):
    c, h = login("admin")
    _slot(c, h, ids["section4a"], day=1, period=1, subject="Math")
    r = c.put(
        f"/api/schedules/{ids['section4a']}/bulk",
        json={
            "updates": [
                {"day_of_week": 1, "period_number": 1, "subject": "Physics", "teacher_name": "Mr. Sami"},
                {"day_of_week": 1, "period_number": 2, "subject": "Chemistry"},
                {"day_of_week": 1, "period_number": 3},
            ]
        },
        headers=h,
    )
    assert r.status_code == 200
    assert [(x["period_number"], x["subject"]) for x in r.json] == [(1, "Physics"), (2, "Chemistry")]
    slots = c.get(f"/api/schedules/{ids['section4a']}").json
    assert len(slots) == 2

    bad = c.put(f"/api/schedules/{ids['section4a']}/bulk", json={"updates": "nope"}, headers=h)
    assert bad.status_code == 400


def test_schedule_bulk_update_accepts_patch(login, ids):
    c, h = login("admin")
    r = c.patch(
        f"/api/schedules/{ids['section4a']}/bulk",
        json={"updates": [{"day_of_week": 2, "period_number": 1, "subject": "History"}]},
        headers=h,
    )
    assert r.status_code == 200
    assert [(x["day_of_week"], x["subject"]) for x in r.json] == [(2, "History")]
