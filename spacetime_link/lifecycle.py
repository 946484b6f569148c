from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from spacetime_link.config import get_settings
from spacetime_link.exceptions import ConnectionTimeoutError
from spacetime_link.services.connection_manager import ConnectionManager
from spacetime_link.utils.logging import LOGGER


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    LOGGER.info("Application startup")

    # Missing configuration is fatal; a slow or failed handshake is not
    manager = ConnectionManager(settings=get_settings())
    app.state.spacetime = manager
    try:
        await manager.connect()
        LOGGER.info("SpacetimeDB connection STARTED")
    except ConnectionTimeoutError as e:
        LOGGER.warning(f"SpacetimeDB connection not ready: {e} (non-fatal)")

    yield

    LOGGER.info("Application shutdown")
    try:
        await manager.shutdown()
    except Exception as e:
        LOGGER.warning(f"SpacetimeDB shutdown error: {e}")
