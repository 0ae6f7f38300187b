from fastapi.testclient import TestClient

from app.main import app


def test_health():
    with TestClient(app) as c:
        r = c.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}
        assert r.headers["X-Request-ID"]


def test_startup_builds_ledger_from_settings():
    with TestClient(app) as c:
        r = c.get("/v1/payments/config")
        assert r.status_code == 200
        assert r.json()["gateway"] == "simulated"
        assert r.json()["configured"] is True
