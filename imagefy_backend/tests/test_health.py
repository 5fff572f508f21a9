from fastapi.testclient import TestClient

from imagefy_backend.core.errors import StoreError
from imagefy_backend.main import create_app


def test_healthz_ok(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_root_banner(client):
    body = client.get("/").json()
    assert body["environment"] == "test"
    assert body["status"]
    assert body["timestamp"]


def test_readyz_ok(client):
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["billing"] is True


def test_readyz_store_down(client, app, monkeypatch):
    async def broken_ping():
        raise StoreError("Database unreachable")

    monkeypatch.setattr(app.state.store, "ping", broken_ping)

    resp = client.get("/readyz")

    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unreachable"


def test_readyz_before_startup(settings, engine, provider):
    app = create_app(settings, engine=engine, provider_factory=lambda cfg: provider)
    client = TestClient(app)

    assert client.get("/readyz").status_code == 503
    assert client.get("/healthz").status_code == 200
