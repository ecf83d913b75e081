def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_requires_auth(client):
    r = client.get("/api/posts")
    assert r.status_code == 401
    assert "error" in r.json


def test_unknown_api_route_is_json(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert "error" in r.json


def test_mutation_without_csrf_rejected(login):
    c, _headers = login("alice")
    r = c.post("/api/posts", json={"content": "no token"})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]


def test_non_ascii_csrf_token_rejected(login):
    c, _headers = login("alice")
    r = c.post("/api/posts", json={"content": "bad token", "csrf_token": "é"})
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_schema_guardrail_reports_missing_tables(tmp_path, monkeypatch):
    from app.community import create_app

    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'empty.db'}")
    monkeypatch.setenv("ENV", "test")
    app = create_app()
    r = app.test_client().get("/api/auth/me")
    assert r.status_code == 503
    assert "users" in r.json["missing"]
