"""Tests for the watch hub API."""

import time

import pytest
from fastapi.testclient import TestClient

from src.filewatcher.codec import encode_events
from src.filewatcher.models import ChangeEvent, EventType
from src.watchhub.api_server import PUSH_CHANNEL_PATH, create_app
from src.watchhub.config import HubConfig

WATCHLIST = "/api/v1/projects/watchlist"


def changes_url(project_id, timestamp):
    return f"/api/v1/projects/{project_id}/file-changes?timestamp={timestamp}"


def status_url(project_id, watch_state_id, client_uuid="client-1"):
    url = f"/api/v1/projects/{project_id}/file-changes/{watch_state_id}/status"
    if client_uuid:
        url += f"?clientUuid={client_uuid}"
    return url


def body(*events):
    return {"msg": encode_events(events)}


def ev(path, event_type, ts=1):
    return ChangeEvent(path, event_type, False, ts)


@pytest.fixture
def app():
    return create_app()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def project(client):
    resp = client.post(WATCHLIST, json={"projectID": "p1", "pathToMonitor": "/work/p1"})
    assert resp.status_code == 200
    return resp.json()


class TestWatchlist:
    """Tests for watch list endpoints."""

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_register_and_list(self, client, project):
        assert project["projectWatchStateId"]

        resp = client.get(WATCHLIST)
        assert resp.json() == {"projects": [project]}

        status = client.get("/api/v1/projects/p1/watch-status").json()
        assert status["state"] == "pending_ack"
        assert status["projectWatchStateId"] == project["projectWatchStateId"]

    def test_windows_root_is_normalized(self, client):
        resp = client.post(WATCHLIST, json={"projectID": "w", "pathToMonitor": "C:\\work\\w"})
        assert resp.json()["pathToMonitor"] == "/c/work/w"

    @pytest.mark.parametrize("payload", [
        {"pathToMonitor": "/work/p1"},
        {"projectID": "p1"},
        {"projectID": "p1", "pathToMonitor": "/work/p1", "ignoredFilenames": ["a/b"]},
        {"projectID": "p1", "pathToMonitor": "/work/p1", "ignoredPaths": "not-a-list"},
        ["not", "an", "object"],
    ])
    def test_register_rejects_malformed(self, client, payload):
        resp = client.post(WATCHLIST, json=payload)
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_unregister(self, client, project):
        assert client.delete("/api/v1/projects/p1").status_code == 200
        assert client.get(WATCHLIST).json() == {"projects": []}
        assert client.get("/api/v1/projects/p1/watch-status").status_code == 404

    def test_unregister_unknown(self, client):
        assert client.delete("/api/v1/projects/nope").status_code == 404


class TestFileChanges:
    """Tests for file change delivery endpoints."""

    def test_accepts_batch(self, client, project):
        resp = client.post(changes_url("p1", 100), json=body(ev("/a.txt", EventType.CREATE)))
        assert resp.status_code == 200
        assert resp.json() == {"accepted": True, "violations": []}

        events = client.get("/api/v1/projects/p1/file-changes").json()["events"]
        assert events == [{"path": "/a.txt", "directory": False, "type": "CREATE", "timestamp": 1}]

    def test_out_of_order_reported(self, client, project, app):
        client.post(changes_url("p1", 100), json=body())
        resp = client.post(changes_url("p1", 50), json=body(ev("/a", EventType.CREATE)))

        assert resp.status_code == 200
        assert resp.json()["accepted"] is False
        assert app.state.sink.severe_error_occurred

    def test_strict_mode_conflict(self):
        client = TestClient(create_app(cfg=HubConfig(strict_violations=True)))
        client.post(WATCHLIST, json={"projectID": "p1", "pathToMonitor": "/work/p1"})
        client.post(changes_url("p1", 100), json=body())

        resp = client.post(changes_url("p1", 50), json=body())

        assert resp.status_code == 409
        assert resp.json()["kind"] == "out_of_order"

    @pytest.mark.parametrize("url,payload", [
        ("/api/v1/projects/p1/file-changes", {"msg": ""}),
        ("/api/v1/projects/p1/file-changes?timestamp=abc", {"msg": ""}),
        (changes_url("p1", 1), {"message": "x"}),
        (changes_url("p1", 1), {"msg": "%%%not-base64"}),
    ])
    def test_malformed_delivery(self, client, project, url, payload):
        assert client.post(url, json=payload).status_code == 400


class TestAcks:
    """Tests for watch state acknowledgement endpoint."""

    def test_ack_moves_to_watching(self, client, project):
        resp = client.put(status_url("p1", project["projectWatchStateId"]), json={"success": True})
        assert resp.status_code == 200
        assert resp.json() == {"projectID": "p1", "state": "watching"}

    def test_requires_client_uuid(self, client, project):
        resp = client.put(status_url("p1", project["projectWatchStateId"], None), json={"success": True})
        assert resp.status_code == 400

    def test_requires_boolean(self, client, project):
        resp = client.put(status_url("p1", project["projectWatchStateId"]), json={"success": "yes"})
        assert resp.status_code == 400

    def test_unknown_project(self, client):
        resp = client.put(status_url("ghost", "w"), json={"success": True})
        assert resp.json()["state"] == "unregistered"


class TestPushChannel:
    """Tests for the websocket push channel."""

    def test_register_is_pushed(self, client):
        with client.websocket_connect(PUSH_CHANNEL_PATH) as ws:
            stored = client.post(
                WATCHLIST,
                json={"projectID": "p1", "pathToMonitor": "/work/p1", "ignoredPaths": ["/target/*"]},
            ).json()

            message = ws.receive_json()

        assert message["type"] == "watchChanged"
        assert message["projects"] == [{
            "projectID": "p1",
            "pathToMonitor": "/work/p1",
            "ignoredPaths": ["/target/*"],
            "projectWatchStateId": stored["projectWatchStateId"],
            "changeType": "add",
        }]

    def test_unregister_is_pushed(self, client, project):
        with client.websocket_connect(PUSH_CHANNEL_PATH) as ws:
            client.delete("/api/v1/projects/p1")
            message = ws.receive_json()

        assert message == {
            "type": "watchChanged",
            "projects": [{"projectID": "p1", "changeType": "delete"}],
        }

    def test_debug_broadcast(self, client):
        with client.websocket_connect(PUSH_CHANNEL_PATH) as ws:
            resp = client.post("/api/v1/debug", json={"msg": "hello"})
            assert resp.json() == {"sessions": 1}
            assert ws.receive_json() == {"type": "debug", "msg": "hello"}

    def test_keepalive_is_ignored(self, client):
        with client.websocket_connect(PUSH_CHANNEL_PATH) as ws:
            ws.send_text("{}")
            client.post("/api/v1/debug", json={"msg": "still here"})
            assert ws.receive_json()["msg"] == "still here"

    def test_session_removed_on_disconnect(self, client, app):
        with client.websocket_connect(PUSH_CHANNEL_PATH):
            assert len(app.state.broadcaster) == 1
        # Handler cleanup runs after the client side closes
        for _ in range(100):
            if len(app.state.broadcaster) == 0:
                break
            time.sleep(0.01)
        assert len(app.state.broadcaster) == 0
