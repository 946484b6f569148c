from fastapi import Request

from spacetime_link.exceptions import ServiceUnavailableError
from spacetime_link.services.connection_manager import ConnectionManager


def get_connection_manager(request: Request) -> ConnectionManager:
    """
    Get the application's ConnectionManager (dependency injection)

    The manager is created by the application lifespan and stored on
    app.state.spacetime.
    """
    manager = getattr(request.app.state, "spacetime", None)
    if manager is None:
        raise ServiceUnavailableError("spacetime", "connection manager not started")
    return manager
