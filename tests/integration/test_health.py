from fastapi.testclient import TestClient

from lead_engine.main import create_app


def make_client():
    return TestClient(create_app(use_lifespan=False))


def test_healthz():
    response = make_client().get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "lead-engine"}


def test_readyz_when_database_is_healthy(monkeypatch):
    async def healthy():
        return {"healthy": True, "pool_stats": {"pool_size": 1}}

    monkeypatch.setattr("lead_engine.routes.health.db_health_check", healthy)
    monkeypatch.setattr("lead_engine.routes.health.settings.RATE_LIMIT_BACKEND", "memory")

    response = make_client().get("/readyz")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["checks"]["database"]["ok"] is True
    assert body["checks"]["redis"]["ok"] is True


def test_readyz_when_database_is_down(monkeypatch):
    async def unhealthy():
        return {"healthy": False, "error": "connection refused"}

    monkeypatch.setattr("lead_engine.routes.health.db_health_check", unhealthy)

    response = make_client().get("/readyz")

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["checks"]["database"]["error"] == "connection refused"


def test_request_id_is_echoed():
    response = make_client().get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
