from sqlalchemy.exc import OperationalError

from lms_admin.api import health


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "healthy"


def test_ready_endpoint_database_up(client):
    resp = client.get("/ready")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ready", "database": "up"}


def test_ready_endpoint_database_down(client, monkeypatch):
    def _down(engine):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(health, "ping", _down)

    resp = client.get("/ready")
    assert resp.status_code == 503
    assert resp.get_json()["database"] == "down"


def test_unknown_route_is_json_404(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Not Found"


def test_method_not_allowed_is_json(client):
    resp = client.patch("/api/users")
    assert resp.status_code == 405
    assert "message" in resp.get_json()
