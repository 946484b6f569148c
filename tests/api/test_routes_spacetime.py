"""
Tests for SpacetimeDB status routes (/api/spacetime).
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from spacetime_link.exceptions import ConnectionTimeoutError, NotInitializedError
from spacetime_link.models import ConnectionState, Identity
from spacetime_link.services.subscription_registrar import SubscriptionHandle


STATUS = {
    "state": "active",
    "connected": True,
    "uri": "wss://stdb.example.test",
    "module_name": "bitcraft-test",
    "identity": "c200aabbccdd",
    "subscriptions": 2,
    "connect_count": 1,
    "disconnect_count": 0,
    "uptime_seconds": 12.5,
    "last_error": None,
}


def test_status(client, stub_manager):
    stub_manager.get_status.return_value = STATUS

    resp = client.get("/api/spacetime/status")

    assert resp.status_code == 200
    assert resp.json() == STATUS


def test_ready_when_active(client, stub_manager):
    stub_manager.is_ready = True
    stub_manager.state = ConnectionState.ACTIVE
    stub_manager.current.return_value = SimpleNamespace(identity=Identity(hex="c200aabbccdd"))

    resp = client.get("/api/spacetime/ready")

    assert resp.status_code == 200
    assert resp.json() == {"ready": True, "identity": "c200aabbccdd"}


def test_ready_when_connecting(client):
    resp = client.get("/api/spacetime/ready")

    assert resp.status_code == 503
    body = resp.json()
    assert body["error"] == "SERVICE_UNAVAILABLE"
    assert "connecting" in body["message"]


def test_subscriptions(client, stub_manager):
    conn = SimpleNamespace()
    handle = SubscriptionHandle("SELECT * FROM chat_message_state", conn, query_id=1, request_id=1)
    handle.applied = True
    conn.subscriptions = [handle]
    stub_manager.current.return_value = conn

    resp = client.get("/api/spacetime/subscriptions")

    assert resp.status_code == 200
    assert resp.json() == [{
        "query": "SELECT * FROM chat_message_state",
        "query_id": 1,
        "request_id": 1,
        "applied": True,
        "ended": False,
        "error": None,
    }]


def test_subscriptions_without_connection(client, stub_manager):
    stub_manager.current.side_effect = NotInitializedError()

    resp = client.get("/api/spacetime/subscriptions")

    assert resp.status_code == 503
    assert resp.json()["error"] == "NOT_INITIALIZED"


def test_manager_missing():
    from fastapi import FastAPI
    from spacetime_link.api.router import api_router
    from web.app import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")

    with TestClient(app) as tc:
        resp = tc.get("/api/spacetime/status")
    assert resp.status_code == 503


class TestLifespan:
    def test_startup_connects_and_shutdown_closes(self):
        from web.app import create_app

        with patch("spacetime_link.lifecycle.ConnectionManager") as manager_cls:
            manager = manager_cls.return_value
            manager.connect = AsyncMock()
            manager.shutdown = AsyncMock()
            manager.get_status.return_value = STATUS

            with TestClient(create_app()) as tc:
                resp = tc.get("/api/spacetime/status")
                assert resp.status_code == 200
                manager.connect.assert_awaited_once()

            manager.shutdown.assert_awaited_once()

    def test_startup_timeout_is_not_fatal(self):
        from web.app import create_app

        with patch("spacetime_link.lifecycle.ConnectionManager") as manager_cls:
            manager = manager_cls.return_value
            manager.connect = AsyncMock(side_effect=ConnectionTimeoutError(checks=11, poll_interval=0.5))
            manager.shutdown = AsyncMock()
            manager.is_ready = False
            manager.state = ConnectionState.FAILED

            with TestClient(create_app()) as tc:
                resp = tc.get("/api/spacetime/ready")
                assert resp.status_code == 503
