"""Tests for the FastAPI control surface."""

import inspect
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import api_server


STATUS = {
    "status": "running",
    "running": True,
    "paused": False,
    "lastHeartbeat": "2025-01-01T00:00:00+00:00",
    "peakBalance": 1000.0,
    "cycleCount": 3,
    "symbols": ["BTCUSDT"],
    "dryRun": True,
}


@pytest.fixture
def controller(monkeypatch):
    controller = MagicMock()
    controller.status.return_value = dict(STATUS)
    controller.pause.return_value = True
    controller.resume.return_value = False
    monkeypatch.setattr(api_server, "loop_controller_instance", controller)
    return controller


@pytest.fixture
def client():
    return TestClient(api_server.app)


class TestControlEndpoints:
    """Tests for agent control routes."""

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_unregistered_controller(self, client, monkeypatch):
        monkeypatch.setattr(api_server, "loop_controller_instance", None)
        assert client.get("/api/agent/status").status_code == 503
        assert client.post("/api/agent/pause").status_code == 503

    def test_status(self, client, controller):
        response = client.get("/api/agent/status")
        assert response.status_code == 200
        assert response.json()["cycleCount"] == 3

    def test_health(self, client, controller):
        body = client.get("/api/health").json()
        assert body["agent"] == "running"
        assert body["lastHeartbeat"] == STATUS["lastHeartbeat"]

    def test_pause(self, client, controller):
        body = client.post("/api/agent/pause").json()
        controller.pause.assert_called_once()
        assert body["changed"] is True

    def test_resume_when_not_paused(self, client, controller):
        body = client.post("/api/agent/resume").json()
        controller.resume.assert_called_once_with()
        assert body["changed"] is False

    def test_stop(self, client, controller):
        assert client.post("/api/agent/stop").status_code == 200
        controller.stop.assert_called_once_with()

    def test_control_action(self, client, controller):
        response = client.post("/api/agent/control", json={"action": "STOP"})
        assert response.status_code == 200
        controller.stop.assert_called_once_with()

    def test_control_invalid_action(self, client, controller):
        response = client.post("/api/agent/control", json={"action": "liquidate"})
        assert response.status_code == 400
        controller.stop.assert_not_called()
        controller.pause.assert_not_called()


class TestHistoryEndpoints:
    """Tests for read-only history routes."""

    def test_decisions(self, client, controller):
        controller.store.find_decisions.return_value = [{"id": "a"}]
        response = client.get("/api/decisions", params={"symbol": "BTCUSDT", "limit": 5})
        assert response.json() == [{"id": "a"}]
        controller.store.find_decisions.assert_called_once_with(symbol="BTCUSDT", limit=5)

    def test_alerts_limited(self, client, controller):
        controller.store.find_alerts.return_value = [{"id": str(i)} for i in range(10)]
        response = client.get("/api/alerts", params={"type": "ERROR", "limit": 2})
        assert len(response.json()) == 2
        controller.store.find_alerts.assert_called_once_with(alert_type="ERROR")

    def test_limit_validated(self, client, controller):
        assert client.get("/api/trades", params={"limit": 0}).status_code == 422


class TestBlockingHandlers:
    """Routes that write the store must run in the threadpool, not on the event loop."""

    @pytest.mark.parametrize("handler", [
        api_server.pause_agent,
        api_server.resume_agent,
        api_server.stop_agent,
        api_server.control_agent,
        api_server.get_agent_status,
        api_server.get_decisions,
        api_server.get_trades,
        api_server.get_alerts,
    ])
    def test_handler_is_sync(self, handler):
        assert not inspect.iscoroutinefunction(handler)
