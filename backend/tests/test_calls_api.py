import pytest
from fastapi.testclient import TestClient

from peercall.api.deps import get_call_controller
from peercall.main import app
from peercall.services.call import CallController
from tests.helpers import FakeMediaSource, FakeTransportFactory, InMemorySignalingChannel


def make_client(media=None):
    controller = CallController(
        "alice",
        InMemorySignalingChannel(),
        media or FakeMediaSource(),
        FakeTransportFactory(),
    )
    app.dependency_overrides[get_call_controller] = lambda: controller
    return TestClient(app), controller


@pytest.fixture(autouse=True)
def clear_overrides():
    yield
    app.dependency_overrides.clear()


def test_health():
    client, _ = make_client()
    with client:
        r = client.get("/api/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok"}


def test_current_call_is_idle():
    client, _ = make_client()
    with client:
        r = client.get("/api/calls/current")
        assert r.status_code == 200
        data = r.json()
        assert data["state"] == "idle"
        assert data["call_id"] is None
        assert data["has_local_stream"] is False


def test_start_and_end_call():
    client, _ = make_client()
    with client:
        r = client.post("/api/calls/start", json={"counterpart_id": "bob"})
        assert r.status_code == 200
        data = r.json()
        assert data["call_id"] == "alice_bob"
        assert data["state"] == "negotiating"
        assert data["role"] == "caller"
        assert data["has_local_stream"] is True
        assert data["has_remote_stream"] is False
        assert data["failure"] is None

        r = client.get("/api/calls/current")
        assert r.json()["state"] == "negotiating"

        r = client.post("/api/calls/end")
        assert r.status_code == 200
        assert r.json() == {"call_id": "alice_bob", "state": "ended", "message": "Call ended"}

        # Hanging up again is harmless
        r = client.post("/api/calls/end")
        assert r.status_code == 200
        assert r.json()["state"] == "ended"


def test_accept_call():
    client, _ = make_client()
    with client:
        r = client.post("/api/calls/accept", json={"counterpart_id": "bob"})
        assert r.status_code == 200
        assert r.json()["role"] == "callee"
        assert r.json()["state"] == "negotiating"
        client.post("/api/calls/end")


def test_second_call_conflicts():
    client, _ = make_client()
    with client:
        assert client.post("/api/calls/start", json={"counterpart_id": "bob"}).status_code == 200
        r = client.post("/api/calls/start", json={"counterpart_id": "carol"})
        assert r.status_code == 409
        client.post("/api/calls/end")


def test_invalid_counterpart():
    client, _ = make_client()
    with client:
        assert client.post("/api/calls/start", json={"counterpart_id": "alice"}).status_code == 400
        assert client.post("/api/calls/accept", json={"counterpart_id": "b_ob"}).status_code == 400


def test_media_failure_maps_to_503():
    client, controller = make_client(media=FakeMediaSource(fail=True))
    with client:
        r = client.post("/api/calls/start", json={"counterpart_id": "bob"})
        assert r.status_code == 503
        assert r.json()["detail"]["reason"] == "media_unavailable"

        r = client.get("/api/calls/current")
        assert r.json()["state"] == "failed"
        assert r.json()["failure"]["reason"] == "media_unavailable"


def test_end_without_call_is_404():
    client, _ = make_client()
    with client:
        assert client.post("/api/calls/end").status_code == 404
