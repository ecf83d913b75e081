from app.community.db import session_scope
from app.community.models import User
from app.community.modules.posts.models import Post
from app.community.modules.teachers.models import Teacher, TeacherReview


def _create_teacher(login, **extra):
    admin, h = login("admin")
    payload = {"name": "Ms. Noor", "description": "Physics", "classroom_rules": ["Be on time"]}
    payload.update(extra)
    r = admin.post("/api/teachers", json=payload, headers=h)
    assert r.status_code == 201, r.json
    return admin, h, r.json


def test_admin_creates_teacher_with_code(login):
    _, _, t = _create_teacher(login)
    assert t["teacher_code"].startswith("T")
    assert len(t["teacher_code"]) == 11
    assert t["is_claimed"] is False
    assert t["classroom_rules"] == ["Be on time"]


def test_teacher_code_hidden_from_students(login):
    _, _, t = _create_teacher(login)
    alice, _ = login("alice")
    listed = alice.get("/api/teachers").json
    assert listed[0]["id"] == t["id"]
    assert "teacher_code" not in listed[0]


def test_students_cannot_create_teachers(login):
    c, h = login("alice")
    assert c.post("/api/teachers", json={"name": "Nope"}, headers=h).status_code == 403


def test_claim_flow(login):
    admin, h, t = _create_teacher(login)
    bob, bh = login("bob")

    assert bob.post("/api/teachers/claim", json={"teacher_code": "TNOTREAL00"}, headers=bh).status_code == 404
    r = bob.post("/api/teachers/claim", json={"teacher_code": t["teacher_code"].lower()}, headers=bh)
    assert r.status_code == 200
    assert r.json["is_claimed"] is True
    assert r.json["teacher_code"] == t["teacher_code"]

    alice, ah = login("alice")
    assert alice.post("/api/teachers/claim", json={"teacher_code": t["teacher_code"]}, headers=ah).status_code == 409

    # claimed profiles belong to the teacher now
    assert admin.patch(f"/api/teachers/{t['id']}", json={"name": "Renamed"}, headers=h).status_code == 403
    r = bob.patch("/api/teachers/me", json={"description": "Physics and robotics", "academic_achievements": ["PhD"]}, headers=bh)
    assert r.status_code == 200
    assert r.json["academic_achievements"] == ["PhD"]
    assert bob.get("/api/teachers/me").json["description"] == "Physics and robotics"


def test_one_claim_per_account(login):
    admin, h, first = _create_teacher(login)
    second = admin.post("/api/teachers", json={"name": "Mr. Sami"}, headers=h).json
    bob, bh = login("bob")
    assert bob.post("/api/teachers/claim", json={"teacher_code": first["teacher_code"]}, headers=bh).status_code == 200
    assert bob.post("/api/teachers/claim", json={"teacher_code": second["teacher_code"]}, headers=bh).status_code == 409


def test_teacher_me_without_claim(login):
    c, _ = login("alice")
    assert c.get("/api/teachers/me").status_code == 404


def test_admin_edits_unclaimed(login):
    admin, h, t = _create_teacher(login)
    r = admin.patch(f"/api/teachers/{t['id']}", json={"name": "Dr. Noor"}, headers=h)
    assert r.status_code == 200
    assert r.json["name"] == "Dr. Noor"


def test_reviews(login):
    admin, h, t = _create_teacher(login)
    alice, ah = login("alice")
    bob, bh = login("bob")

    assert alice.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 6}, headers=ah).status_code == 400
    r = alice.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 5, "comment": "Great"}, headers=ah)
    assert r.status_code == 201
    assert alice.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 4}, headers=ah).status_code == 409
    bob.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 2}, headers=bh)

    detail = alice.get(f"/api/teachers/{t['id']}").json
    assert detail["average_rating"] == 3.5


def test_teacher_cannot_review_self(login):
    admin, h, t = _create_teacher(login)
    bob, bh = login("bob")
    bob.post("/api/teachers/claim", json={"teacher_code": t["teacher_code"]}, headers=bh)
    assert bob.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 5}, headers=bh).status_code == 409


def test_moderation_hides_review(login):
    admin, h, t = _create_teacher(login)
    alice, ah = login("alice")
    bob, bh = login("bob")
    review_id = alice.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 1, "comment": "rude"}, headers=ah).json["id"]
    bob.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 5}, headers=bh)

    r = admin.patch(f"/api/teachers/{t['id']}/reviews/{review_id}/moderate", json={"hidden": True}, headers=h)
    assert r.status_code == 200
    assert r.json["is_moderated"] is True

    public = [x["id"] for x in bob.get(f"/api/teachers/{t['id']}/reviews").json]
    assert review_id not in public
    assert len(admin.get(f"/api/teachers/{t['id']}/reviews").json) == 2
    assert bob.get(f"/api/teachers/{t['id']}").json["average_rating"] == 5.0


def test_delete_teacher_profile_only(app, login):
    admin, h, t = _create_teacher(login)
    alice, ah = login("alice")
    alice.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 4}, headers=ah)
    r = admin.delete(f"/api/teachers/{t['id']}", headers=h)
    assert r.status_code == 200
    assert r.json["reviews"] == 1
    with session_scope(app) as s:
        assert s.query(Teacher).count() == 0
        assert s.query(TeacherReview).count() == 0


def test_delete_teacher_account_cascades(app, login, ids):
    admin, h, t = _create_teacher(login)
    bob, bh = login("bob")
    bob.post("/api/teachers/claim", json={"teacher_code": t["teacher_code"]}, headers=bh)
    bob.post("/api/posts", json={"content": "Homework is due Friday"}, headers=bh)
    other = admin.post("/api/teachers", json={"name": "Mr. Sami"}, headers=h).json
    bob.post(f"/api/teachers/{other['id']}/reviews", json={"rating": 3}, headers=bh)

    alice, ah = login("alice")
    alice.post(f"/api/teachers/{t['id']}/reviews", json={"rating": 5}, headers=ah)

    r = admin.delete(f"/api/admin/teachers/{t['id']}", headers=h)
    assert r.status_code == 200, r.json
    assert r.json["account"]["posts"] == 1

    with session_scope(app) as s:
        assert s.get(User, ids["bob"]) is None
        assert s.get(Teacher, t["id"]) is None
        assert s.query(Post).filter(Post.author_id == ids["bob"]).count() == 0
        assert s.query(TeacherReview).filter(TeacherReview.teacher_id == t["id"]).count() == 0
        assert s.query(TeacherReview).filter(TeacherReview.student_id == ids["bob"]).count() == 0
