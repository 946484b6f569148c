"""
SpacetimeDB connection status routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from spacetime_link.api.dependencies import get_connection_manager
from spacetime_link.exceptions import ServiceUnavailableError
from spacetime_link.services.connection_manager import ConnectionManager

router = APIRouter()


# ── Response models ──

class ConnectionStatusResponse(BaseModel):
    state: str
    connected: bool
    uri: Optional[str]
    module_name: Optional[str]
    identity: Optional[str]
    subscriptions: int
    connect_count: int
    disconnect_count: int
    uptime_seconds: float
    last_error: Optional[str]


class ReadinessResponse(BaseModel):
    ready: bool
    identity: str


class SubscriptionItem(BaseModel):
    query: str
    query_id: int
    request_id: int
    applied: bool
    ended: bool
    error: Optional[str]


# ── Routes ──

@router.get("/status", response_model=ConnectionStatusResponse)
async def get_connection_status(manager: ConnectionManager = Depends(get_connection_manager)):
    """Connection state, identity and counters"""
    return manager.get_status()


@router.get("/ready", response_model=ReadinessResponse)
async def get_readiness(manager: ConnectionManager = Depends(get_connection_manager)):
    """200 when the connection is active, 503 otherwise"""
    if not manager.is_ready:
        raise ServiceUnavailableError("spacetime", f"connection is {manager.state.value}")
    connection = manager.current()
    return ReadinessResponse(ready=True, identity=connection.identity.to_hex_string())


@router.get("/subscriptions", response_model=List[SubscriptionItem])
async def list_subscriptions(manager: ConnectionManager = Depends(get_connection_manager)):
    """Subscriptions registered on the current connection"""
    connection = manager.current()
    return [handle.to_dict() for handle in connection.subscriptions]
