"""Integration tests for the /ws log stream."""

import time

import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.main import app


@pytest.fixture
def ws_client():
    """Synchronous client that runs the app lifespan."""
    with TestClient(app) as client:
        yield client


def create_deployment(client: TestClient) -> str:
    response = client.post(
        "/v1/deployments",
        json={"project_id": "acme-site", "commit_hash": "3f9c2a1b7e"},
    )
    assert response.status_code == 201
    return response.json()["id"]


def subscribe(ws, deployment_id: str) -> None:
    ws.send_json({"type": "subscribe", "deploymentId": deployment_id})
    assert ws.receive_json() == {"type": "subscribed", "deploymentId": deployment_id}


def wait_for_open_connections(client: TestClient, expected: int) -> None:
    for _ in range(200):
        if client.get("/v1/health").json()["channel"]["open_connections"] == expected:
            return
        time.sleep(0.01)
    raise AssertionError(f"expected {expected} open connections")


class TestWebSocketStream:
    """Tests for the WebSocket transport."""

    def test_subscribe_and_receive_lines(self, ws_client: TestClient):
        deployment_id = create_deployment(ws_client)

        with ws_client.websocket_connect("/ws") as ws:
            subscribe(ws, deployment_id)

            ws_client.post(
                f"/v1/deployments/{deployment_id}/logs",
                json={"lines": ["Installing dependencies", "Build succeeded"]},
            )

            assert ws.receive_json() == {
                "type": "log",
                "deploymentId": deployment_id,
                "message": "Installing dependencies",
            }
            assert ws.receive_json() == {
                "type": "log",
                "deploymentId": deployment_id,
                "message": "Build succeeded",
            }

    def test_two_observers_see_same_stream(self, ws_client: TestClient):
        deployment_id = create_deployment(ws_client)
        lines = [f"step {i}" for i in range(20)]

        with ws_client.websocket_connect("/ws") as first, ws_client.websocket_connect(
            "/ws"
        ) as second:
            subscribe(first, deployment_id)
            subscribe(second, deployment_id)

            ws_client.post(f"/v1/deployments/{deployment_id}/logs", json={"lines": lines})

            for ws in (first, second):
                assert [ws.receive_json()["message"] for _ in lines] == lines

    def test_status_frames_are_relayed(self, ws_client: TestClient):
        deployment_id = create_deployment(ws_client)

        with ws_client.websocket_connect("/ws") as ws:
            subscribe(ws, deployment_id)
            ws_client.post(f"/v1/deployments/{deployment_id}/cancel")

            assert ws.receive_json() == {
                "type": "status",
                "deploymentId": deployment_id,
                "status": "cancelled",
            }

    def test_unsubscribe_stops_delivery(self, ws_client: TestClient):
        deployment_id = create_deployment(ws_client)

        with ws_client.websocket_connect("/ws") as ws:
            subscribe(ws, deployment_id)
            ws.send_json({"type": "unsubscribe", "deploymentId": deployment_id})
            assert ws.receive_json()["type"] == "unsubscribed"

            response = ws_client.post(
                f"/v1/deployments/{deployment_id}/logs", json={"lines": ["unseen"]}
            )
            assert response.json()["delivered"] == 0

    def test_malformed_frame_keeps_connection(self, ws_client: TestClient):
        deployment_id = create_deployment(ws_client)

        with ws_client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["code"] == "PROTOCOL_ERROR"

            ws.send_json({"type": "subscribe"})
            assert ws.receive_json()["type"] == "error"

            subscribe(ws, deployment_id)

    def test_disconnect_releases_subscriptions(self, ws_client: TestClient):
        deployment_id = create_deployment(ws_client)

        with ws_client.websocket_connect("/ws") as ws:
            subscribe(ws, deployment_id)
            wait_for_open_connections(ws_client, 1)

        wait_for_open_connections(ws_client, 0)
        response = ws_client.post(
            f"/v1/deployments/{deployment_id}/logs", json={"lines": ["nobody listens"]}
        )
        assert response.json()["delivered"] == 0
        assert ws_client.get("/v1/health").json()["channel"]["subscriptions"] == 0

    def test_idle_connection_gets_ping(
        self, ws_client: TestClient, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setattr(settings, "stream_heartbeat_interval", 0.05)

        with ws_client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "ping"}
