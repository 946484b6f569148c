"""
SpacetimeDB connection lifecycle manager
Owns the single current Connection, exposes it to dependents and lets them
wait until it is usable.
"""
import asyncio
import time
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from spacetime_link.config import ConnectionConfig, Settings, get_settings
from spacetime_link.exceptions import (
    ConnectionTimeoutError,
    NotInitializedError,
    WaitCancelledError,
)
from spacetime_link.models import ConnectionState
from spacetime_link.services.connection_factory import Connection, ConnectionFactory
from spacetime_link.services.observers import LifecycleObserver
from spacetime_link.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.5  # seconds
DEFAULT_MAX_ATTEMPTS = 10


class _ConnectionTracker(LifecycleObserver):
    """Keeps the manager's current reference in step with lifecycle events"""

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def on_connect(self, connection, identity):
        self._manager._connect_count += 1
        self._manager._current = connection

    def on_connect_error(self, connection, error):
        self._manager._last_error = error.message

    def on_disconnect(self, connection, error):
        self._manager._disconnect_count += 1
        if error is not None:
            self._manager._last_error = error.message
        # A stale connection must not clear a newer one
        if self._manager._current is connection:
            self._manager._current = None


class ConnectionManager:
    """
    Manages the process's single SpacetimeDB connection.

    Lifecycle:
    - initialize() builds a connection (CONNECTING) and stores it as current
    - the handshake moves it to ACTIVE or FAILED
    - a disconnect clears the current reference
    - initialize() after DISCONNECTED/FAILED builds a fresh connection

    The current reference is only ever replaced by a single assignment, so
    readers never observe a partial update.
    """

    def __init__(
        self,
        factory: Optional[ConnectionFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self._factory = factory or ConnectionFactory()
        self._settings = settings or get_settings()
        self._tracker = _ConnectionTracker(self)

        # State
        self._current: Optional[Connection] = None
        self._initialized = False
        self._connect_count = 0
        self._disconnect_count = 0
        self._last_error: Optional[str] = None

    # ── Public API ──

    @property
    def state(self) -> ConnectionState:
        connection = self._current
        if connection is not None:
            return connection.state
        if self._initialized:
            return ConnectionState.DISCONNECTED
        return ConnectionState.UNINITIALIZED

    @property
    def is_ready(self) -> bool:
        connection = self._current
        return connection is not None and connection.is_active

    def current(self) -> Connection:
        """Return the current connection or raise NotInitializedError"""
        connection = self._current
        if connection is None:
            raise NotInitializedError()
        return connection

    def initialize(
        self,
        config: Union[ConnectionConfig, Mapping[str, Any], None] = None,
        observers: Optional[Iterable[LifecycleObserver]] = None,
    ) -> Connection:
        """
        Build and store the current connection.

        Returns as soon as the factory has produced a handle; the handshake
        continues in the background. If a connection is already CONNECTING
        or ACTIVE it is returned and no second handshake is started.
        """
        existing = self._current
        if existing is not None and existing.state in (ConnectionState.CONNECTING, ConnectionState.ACTIVE):
            logger.warning(f"SpacetimeDB connection already {existing.state.value}")
            return existing

        if config is None:
            config = ConnectionConfig.from_settings(self._settings)

        connection = self._factory.build(config, observers=[self._tracker, *(observers or [])])
        self._current = connection
        self._initialized = True
        return connection

    async def wait_until_ready(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Poll until the current connection is ACTIVE.

        The attempt count starts at zero and grows by one per failed check;
        the wait fails only once it exceeds max_attempts, so up to
        max_attempts + 1 checks are made. There is no sleep after the final
        failed check. A missing connection counts as not ready.

        Args:
            poll_interval: Seconds between checks (constant, no backoff)
            max_attempts: Failed checks tolerated before giving up
            cancel_event: Stops the wait with WaitCancelledError when set

        Raises:
            ConnectionTimeoutError: after max_attempts + 1 failed checks
            WaitCancelledError: cancel_event was set while waiting
        """
        if poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")
        if max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

        checks = 0
        while True:
            if self._check_ready():
                return
            checks += 1
            if checks > max_attempts:
                logger.error(f"SpacetimeDB not ready after {checks} checks")
                raise ConnectionTimeoutError(checks=checks, poll_interval=poll_interval)
            await self._pause(poll_interval, cancel_event, checks)

    async def connect(
        self,
        config: Union[ConnectionConfig, Mapping[str, Any], None] = None,
        observers: Optional[Iterable[LifecycleObserver]] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Connection:
        """Initialize and wait until the connection is active"""
        self.initialize(config, observers)
        await self.wait_until_ready(
            poll_interval=self._settings.spacetime_poll_interval if poll_interval is None else poll_interval,
            max_attempts=self._settings.spacetime_max_attempts if max_attempts is None else max_attempts,
            cancel_event=cancel_event,
        )
        return self.current()

    async def shutdown(self) -> None:
        """Close the current connection and clear the reference"""
        connection = self._current
        if connection is None:
            return
        self._current = None
        await connection.close()
        logger.info("SpacetimeDB connection manager stopped")

    def get_status(self) -> Dict[str, Any]:
        """Health/status info"""
        connection = self._current
        connected_at = connection.connected_at if connection is not None else None
        uptime = (time.time() - connected_at) if connected_at and self.is_ready else 0
        return {
            "state": self.state.value,
            "connected": self.is_ready,
            "uri": connection.uri if connection is not None else None,
            "module_name": connection.module_name if connection is not None else None,
            "identity": (
                connection.identity.to_hex_string()
                if connection is not None and connection.identity
                else None
            ),
            "subscriptions": len(connection.subscriptions) if connection is not None else 0,
            "connect_count": self._connect_count,
            "disconnect_count": self._disconnect_count,
            "uptime_seconds": round(uptime, 1),
            "last_error": self._last_error,
        }

    # ── Internal ──

    def _check_ready(self) -> bool:
        try:
            return self.current().state is ConnectionState.ACTIVE
        except NotInitializedError:
            return False

    async def _pause(self, interval: float, cancel_event: Optional[asyncio.Event], checks: int) -> None:
        if cancel_event is None:
            await asyncio.sleep(interval)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return
        logger.info("SpacetimeDB readiness wait cancelled")
        raise WaitCancelledError(checks)
