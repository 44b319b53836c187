from __future__ import annotations

import app as api_app


def test_health_reports_db_and_version(app_client):
    _app, client = app_client
    res = client.get("/health")
    assert res.status_code == 200
    data = res.get_json()
    assert data["status"] == "ok"
    assert data["db"] == "ok"
    assert data["version"] == api_app.APP_VERSION
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert len(res.headers["X-Request-ID"]) == 16


def test_health_degrades_when_db_is_unreachable(app_client, monkeypatch):
    _app, client = app_client

    class _DeadSession:
        def execute(self, *_args, **_kwargs):
            raise RuntimeError("connection refused")

        def close(self):
            pass

    monkeypatch.setattr(api_app, "SessionLocal", _DeadSession)
    res = client.get("/health")
    assert res.status_code == 503
    assert res.get_json()["status"] == "degraded"
    assert res.get_json()["db"] == "error"


def test_version_and_unknown_endpoint(app_client):
    app, client = app_client
    data = client.get("/version").get_json()
    assert data["version"] == api_app.APP_VERSION
    assert data["env"] == app.config["CFG"].APP_ENV

    res = client.get("/api/payroll")
    assert res.status_code == 404
    assert res.get_json()["error"]["code"] == "NOT_FOUND"
