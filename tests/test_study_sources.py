import io
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from conftest import GRADE3_CODE


def _upload(c, headers, *, name="notes.pdf", data=b"%PDF-1.4 fractions", **fields):
    form = {"subject": "Math", "title": "Fractions", "description": "Chapter 2"}
    form.update(fields)
    form["file"] = (io.BytesIO(data), name)
    return c.post("/api/study-sources", data=form, headers=headers, content_type="multipart/form-data")


def test_upload_list_download(app, login):
    alice, h = login("alice")
    r = _upload(alice, h)
    assert r.status_code == 201, r.json
    src = r.json
    assert src["scope_id"] is None
    assert src["file_name"] == "notes.pdf"
    assert src["file_size"] == len(b"%PDF-1.4 fractions")
    assert src["author"]["username"] == "alice"

    bob, _ = login("bob")
    listed = bob.get("/api/study-sources").json
    assert [x["id"] for x in listed] == [src["id"]]
    assert bob.get("/api/study-sources?subject=History").json == []

    dl = bob.get(src["file_url"])
    assert dl.status_code == 200
    assert dl.data == b"%PDF-1.4 fractions"
    assert "attachment" in dl.headers["Content-Disposition"]


def test_upload_requires_csrf(login):
    alice, _ = login("alice")
    assert _upload(alice, {}).status_code == 400


def test_upload_validation(login):
    alice, h = login("alice")
    r = _upload(alice, h, name="payload.exe")
    assert r.status_code == 400
    assert "File type not allowed" in r.json["error"]

    r = _upload(alice, h, subject="")
    assert r.status_code == 400
    assert "Subject is required." in r.json["error"]

    r = _upload(alice, h, data=b"")
    assert r.status_code == 400


def test_visitors_cannot_upload(visitor):
    c, h = visitor
    assert _upload(c, h).status_code == 403


def test_scoped_upload_needs_key(login, ids, unlock):
    alice, h = login("alice")
    assert _upload(alice, h, scope_id=str(ids["grade3"])).status_code == 403

    unlock(alice, h, ids["grade3"], GRADE3_CODE)
    r = _upload(alice, h, scope_id=str(ids["grade3"]))
    assert r.status_code == 201
    src = r.json

    carol, _ = login("carol")
    assert carol.get(f"/api/study-sources?scope_id={ids['grade3']}").status_code == 403
    assert carol.get(src["file_url"]).status_code == 403
    assert carol.get("/api/study-sources").json == []


def test_delete_rules(app, login):
    alice, h = login("alice")
    src = _upload(alice, h).json

    bob, bh = login("bob")
    assert bob.delete(f"/api/study-sources/{src['id']}", headers=bh).status_code == 403

    admin, ah = login("admin")
    assert admin.delete(f"/api/study-sources/{src['id']}", headers=ah).status_code == 200
    assert alice.get(f"/api/study-sources/{src['id']}/file").status_code == 404
    assert not [p for p in (Path(app.config["STORAGE_ROOT"]) / "study-sources").rglob("*") if p.is_file()]


def test_failed_commit_removes_stored_file(app, login, monkeypatch):
    alice, h = login("alice")

    def fail_commit(self):
        raise RuntimeError("database went away")

    monkeypatch.setattr(Session, "commit", fail_commit)
    with pytest.raises(RuntimeError):
        _upload(alice, h)
    assert [p for p in Path(app.config["STORAGE_ROOT"]).rglob("*") if p.is_file()] == []
