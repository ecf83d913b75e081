import pytest
from werkzeug.security import generate_password_hash

from app.community import auth, create_app
from app.community.constants import ROLE_ADMIN, ROLE_STUDENT
from app.community.db import session_scope
from app.community.models import Base, User
from app.community.modules.scopes.models import Scope

PASSWORD = "secret123"
GRADE3_CODE = "Grade3Code"
SECTION3B_CODE = "Rover3Black"
SECTION4A_CODE = "Section4A"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("ADMIN_REGISTRATION_CODE", "letmein")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "SMTP_SERVER"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    auth._login_attempts.clear()

    pw = generate_password_hash(PASSWORD)
    with session_scope(app) as s:
        s.add_all(
            [
                Scope(name="Public Square", type="global"),
                Scope(name="Grade 3", type="grade", grade_number=3, access_code=GRADE3_CODE),
                Scope(name="Class 3-B", type="section", section_name="3-B", access_code=SECTION3B_CODE),
                Scope(name="Grade 4", type="grade", grade_number=4, access_code="Grade4Code"),
                Scope(name="Class 4-A", type="section", section_name="4-A", access_code=SECTION4A_CODE),
                User(username="admin", email="admin@example.com", password_hash=pw, name="Admin", role=ROLE_ADMIN),
                User(username="alice", email="alice@example.com", password_hash=pw, name="Alice", role=ROLE_STUDENT, grade=3, class_name="B"),
                User(username="bob", email="bob@example.com", password_hash=pw, name="Bob", role=ROLE_STUDENT, grade=3, class_name="B"),
                User(username="carol", email="carol@example.com", password_hash=pw, name="Carol", role=ROLE_STUDENT, grade=4, class_name="A"),
            ]
        )
    return app


@pytest.fixture()
def ids(app):
    with session_scope(app) as s:
        scopes = {sc.name: sc.id for sc in s.query(Scope).all()}
        users = {u.username: u.id for u in s.query(User).all()}
    return {
        "global": scopes["Public Square"],
        "grade3": scopes["Grade 3"],
        "section3b": scopes["Class 3-B"],
        "grade4": scopes["Grade 4"],
        "section4a": scopes["Class 4-A"],
        **users,
    }


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def login(app):
    """Returns a function that logs a fresh test client in and returns (client, csrf headers)."""

    def _login(username: str, password: str = PASSWORD):
        c = app.test_client()
        r = c.post("/api/auth/login", json={"username": username, "password": password})
        assert r.status_code == 200, r.json
        return c, {"X-CSRF-Token": r.json["csrf_token"]}

    return _login


@pytest.fixture()
def visitor(app):
    c = app.test_client()
    r = c.post("/api/auth/visitor")
    assert r.status_code == 200
    return c, {"X-CSRF-Token": r.json["csrf_token"]}


@pytest.fixture()
def unlock(app):
    def _unlock(c, headers, scope_id: int, code: str):
        return c.post("/api/keys/unlock", json={"scope_id": scope_id, "access_code": code}, headers=headers)

    return _unlock
