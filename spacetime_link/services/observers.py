"""
Connection lifecycle observers

The factory wires a list of observers into every Connection. Its own
LoggingObserver always runs first; caller observers follow in order.
"""
import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Callable, Optional, Set

from spacetime_link.exceptions import HandshakeFailure, TransportDisconnect
from spacetime_link.models import Identity
from spacetime_link.utils.logging import get_logger

if TYPE_CHECKING:
    from spacetime_link.services.connection_factory import Connection

logger = get_logger(__name__)

# Strong references to callback tasks still running
_background_tasks: Set[asyncio.Task] = set()


class LifecycleObserver:
    """Receives connect / connect-error / disconnect events. Override any subset."""

    def on_connect(self, connection: "Connection", identity: Identity) -> Any:
        pass

    def on_connect_error(self, connection: "Connection", error: HandshakeFailure) -> Any:
        pass

    def on_disconnect(self, connection: "Connection", error: Optional[TransportDisconnect]) -> Any:
        pass


class LoggingObserver(LifecycleObserver):
    """The factory's own hooks"""

    def on_connect(self, connection, identity):
        logger.info(f"Connected to SpacetimeDB with identity {identity.to_hex_string()}")

    def on_connect_error(self, connection, error):
        logger.error(f"Failed to connect to SpacetimeDB: {error}")

    def on_disconnect(self, connection, error):
        if error is not None:
            logger.info(f"Disconnected from SpacetimeDB: {error}")
        else:
            logger.info("Disconnected from SpacetimeDB")


class CallbackObserver(LifecycleObserver):
    """Adapts the three optional plain callbacks to the observer interface"""

    def __init__(
        self,
        on_connect: Optional[Callable] = None,  # callback(connection, identity)
        on_connect_error: Optional[Callable] = None,  # callback(error)
        on_disconnect: Optional[Callable] = None,  # callback(error or None)
    ):
        self._on_connect = on_connect
        self._on_connect_error = on_connect_error
        self._on_disconnect = on_disconnect

    def on_connect(self, connection, identity):
        if self._on_connect:
            return self._on_connect(connection, identity)

    def on_connect_error(self, connection, error):
        if self._on_connect_error:
            return self._on_connect_error(error)

    def on_disconnect(self, connection, error):
        if self._on_disconnect:
            return self._on_disconnect(error)


def invoke_callback(label: str, callback: Callable, *args: Any) -> None:
    """
    Call a sync or async callback without letting it break the caller.

    Exceptions are logged with traceback. Awaitable results are scheduled
    as tasks on the running loop and not awaited; their failures are logged
    when the task finishes.
    """
    try:
        result = callback(*args)
    except Exception:
        logger.exception(f"{label} callback error")
        return

    if inspect.isawaitable(result):
        task = asyncio.ensure_future(result)
        _background_tasks.add(task)
        task.add_done_callback(lambda t: _finish_callback_task(label, t))


def _finish_callback_task(label: str, task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"{label} callback error: {exc}", exc_info=exc)
