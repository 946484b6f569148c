"""
Shared test fixtures for all tests.

Provides:
- settings: Settings with a test auth token and a temporary logs dir
- connection_config: valid ConnectionConfig
- transports: FakeTransportFactory recording every transport built
- factory: ConnectionFactory using fake transports
- manager: ConnectionManager wired to the fake factory
"""

import pytest

from spacetime_link.config import ConnectionConfig, Settings
from spacetime_link.services.connection_factory import ConnectionFactory
from spacetime_link.services.connection_manager import ConnectionManager
from tests.fakes import FakeTransportFactory


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SPACETIME_URI="wss://stdb.example.test",
        SPACETIME_MODULE_NAME="bitcraft-test",
        SPACETIME_AUTH_TOKEN="test-token",
        SPACETIME_POLL_INTERVAL=0.01,
        SPACETIME_MAX_ATTEMPTS=5,
        LOGS_DIR=tmp_path / "logs",
    )


@pytest.fixture
def connection_config():
    return ConnectionConfig(
        uri="wss://stdb.example.test",
        module_name="bitcraft-test",
        auth_token="test-token",
    )


@pytest.fixture
def transports():
    return FakeTransportFactory()


@pytest.fixture
def factory(transports):
    return ConnectionFactory(transport_factory=transports)


@pytest.fixture
def manager(factory, settings):
    return ConnectionManager(factory=factory, settings=settings)


@pytest.fixture
def stub_manager():
    """MagicMock standing in for the lifespan-owned ConnectionManager."""
    from unittest.mock import MagicMock

    from spacetime_link.models import ConnectionState

    stub = MagicMock(spec=ConnectionManager)
    stub.is_ready = False
    stub.state = ConnectionState.CONNECTING
    return stub


@pytest.fixture
def client(stub_manager):
    """Create a FastAPI TestClient with the stub manager injected.

    Uses a minimal app (no lifespan) to avoid opening a real connection.
    """
    from fastapi.testclient import TestClient
    from fastapi import FastAPI
    from spacetime_link.api.router import api_router
    from web.app import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    app.state.spacetime = stub_manager

    with TestClient(app) as tc:
        yield tc
