"""
SpacetimeDB connection factory
Builds a Connection from static configuration and a list of lifecycle
observers, then starts the handshake in the background.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from spacetime_link.config import ConnectionConfig, parse_connection_config
from spacetime_link.exceptions import (
    ConnectionStateError,
    HandshakeFailure,
    TransportDisconnect,
)
from spacetime_link.models import ConnectionState, Identity
from spacetime_link.services.observers import (
    CallbackObserver,
    LifecycleObserver,
    LoggingObserver,
    invoke_callback,
)
from spacetime_link.services.subscription_registrar import SubscriptionBuilder, SubscriptionHandle
from spacetime_link.services.transport import (
    Transport,
    WebSocketTransport,
    extract_query_id,
    subscribe_single,
    unsubscribe,
)
from spacetime_link.utils.logging import get_logger

logger = get_logger(__name__)

CALLBACK_OPTIONS = ("on_connect", "on_connect_error", "on_disconnect")


class Connection:
    """
    A single logical session to SpacetimeDB.

    State changes come only from transport events (handshake result,
    disconnect) or an explicit close(). A connection that reached
    DISCONNECTED or FAILED is never reused; build a new one instead.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        transport: Transport,
        observers: Iterable[LifecycleObserver],
    ):
        self._config = config
        self._transport = transport
        self._observers: List[LifecycleObserver] = list(observers)

        # State
        self._state = ConnectionState.UNINITIALIZED
        self.identity: Optional[Identity] = None
        self.connected_at: Optional[float] = None
        self.last_error: Optional[Exception] = None
        self._task: Optional[asyncio.Task] = None
        self._send_tasks: Set[asyncio.Task] = set()

        # Subscriptions
        self._subscriptions: Dict[int, SubscriptionHandle] = {}
        self._queued: List[Dict[str, Any]] = []
        self._last_request_id = 0
        self._last_query_id = 0

    # ── Public API ──

    @property
    def uri(self) -> str:
        return self._config.uri

    @property
    def module_name(self) -> str:
        return self._config.module_name

    @property
    def auth_token(self) -> str:
        return self._config.auth_token

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is ConnectionState.ACTIVE

    @property
    def subscriptions(self) -> List[SubscriptionHandle]:
        return list(self._subscriptions.values())

    def subscription_builder(self) -> SubscriptionBuilder:
        return SubscriptionBuilder(self)

    def __repr__(self) -> str:
        return f"Connection(uri={self.uri!r}, module={self.module_name!r}, state={self._state.value})"

    # ── Lifecycle ──

    def start(self) -> None:
        """Schedule the handshake on the running loop (non-blocking)"""
        if self._state is not ConnectionState.UNINITIALIZED:
            raise ConnectionStateError("start", self._state.value)
        self._state = ConnectionState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        """Close the session. An active connection fires its disconnect hooks."""
        if self._state is ConnectionState.ACTIVE:
            await self._transport.close()
            if self._task:
                await self._task
        elif self._state is ConnectionState.CONNECTING:
            if self._task:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            await self._transport.close()
            self._state = ConnectionState.DISCONNECTED
            logger.info("SpacetimeDB connection closed before the handshake completed")

    # ── Internal ──

    async def _run(self) -> None:
        """Handshake, then pump server messages until the session ends"""
        try:
            identity = await self._transport.connect(self._config)
        except HandshakeFailure as e:
            self._fail(e)
            return
        except Exception as e:
            self._fail(HandshakeFailure(self.uri, str(e) or e.__class__.__name__))
            return

        self.identity = identity
        self.connected_at = time.time()
        self._state = ConnectionState.ACTIVE
        self._dispatch("on_connect", identity)
        self._flush_queued()

        error: Optional[TransportDisconnect] = None
        try:
            async for message in self._transport.messages():
                self._handle_message(message)
        except TransportDisconnect as e:
            error = e
        except Exception as e:
            logger.error(f"SpacetimeDB message loop error: {e}")
            error = TransportDisconnect(str(e))
        finally:
            self._state = ConnectionState.DISCONNECTED

        try:
            await self._transport.close()
        except Exception as e:
            logger.warning(f"SpacetimeDB transport close error: {e}")
        finally:
            self.last_error = error
            self._dispatch("on_disconnect", error)

    def _fail(self, error: HandshakeFailure) -> None:
        self._state = ConnectionState.FAILED
        self.last_error = error
        self._queued.clear()
        self._dispatch("on_connect_error", error)

    def _dispatch(self, hook: str, *args: Any) -> None:
        for observer in self._observers:
            invoke_callback(
                f"{type(observer).__name__}.{hook}",
                getattr(observer, hook),
                self,
                *args,
            )

    def _handle_message(self, message: Dict[str, Any]) -> None:
        """Route one server envelope to its subscription"""
        kind, payload = next(iter(message.items()))
        if not isinstance(payload, dict):
            logger.debug(f"Ignoring {kind} message without payload")
            return

        if kind == "SubscribeApplied":
            handle = self._lookup(payload, kind)
            if handle:
                handle._mark_applied()
        elif kind == "UnsubscribeApplied":
            handle = self._lookup(payload, kind)
            if handle:
                handle._mark_ended()
                self._subscriptions.pop(handle.query_id, None)
        elif kind == "SubscriptionError":
            handle = self._lookup(payload, kind)
            reason = str(payload.get("error", "unknown error"))
            if handle:
                handle._mark_failed(reason)
                self._subscriptions.pop(handle.query_id, None)
            else:
                logger.error(f"SpacetimeDB subscription error: {reason}")
        else:
            logger.debug(f"Ignoring {kind} message")

    def _lookup(self, payload: Dict[str, Any], kind: str) -> Optional[SubscriptionHandle]:
        try:
            query_id = extract_query_id(payload)
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid query_id in {kind}: {e}")
            return None
        handle = self._subscriptions.get(query_id) if query_id is not None else None
        if handle is None:
            logger.warning(f"{kind} for unknown query {query_id}")
        return handle

    def _register_subscription(
        self,
        query_text: str,
        on_applied: Optional[Callable],
        on_error: Optional[Callable],
    ) -> SubscriptionHandle:
        if self._state not in (ConnectionState.CONNECTING, ConnectionState.ACTIVE):
            raise ConnectionStateError("subscribe", self._state.value)

        self._last_query_id += 1
        handle = SubscriptionHandle(
            query_text=query_text,
            connection=self,
            query_id=self._last_query_id,
            request_id=self._next_request_id(),
            on_applied=on_applied,
            on_error=on_error,
        )
        self._subscriptions[handle.query_id] = handle

        message = subscribe_single(query_text, handle.request_id, handle.query_id)
        if self.is_active:
            self._schedule_send(message)
        else:
            self._queued.append(message)
        return handle

    def _send_unsubscribe(self, handle: SubscriptionHandle) -> None:
        if not self.is_active:
            raise ConnectionStateError("unsubscribe", self._state.value)
        self._schedule_send(unsubscribe(self._next_request_id(), handle.query_id))

    def _next_request_id(self) -> int:
        self._last_request_id += 1
        return self._last_request_id

    def _flush_queued(self) -> None:
        queued, self._queued = self._queued, []
        for message in queued:
            self._schedule_send(message)

    def _schedule_send(self, message: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._send(message))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send(self, message: Dict[str, Any]) -> None:
        try:
            await self._transport.send(message)
        except TransportDisconnect as e:
            logger.error(f"Failed to send {next(iter(message))} to SpacetimeDB: {e}")


class ConnectionFactory:
    """
    Builds connections wired with lifecycle observers.

    The factory's LoggingObserver always runs before caller observers, so
    its logging is observed even when a caller hook fails.
    """

    def __init__(self, transport_factory: Callable[[], Transport] = WebSocketTransport):
        self._transport_factory = transport_factory

    def build(
        self,
        config: Union[ConnectionConfig, Mapping[str, Any]],
        observers: Optional[Iterable[LifecycleObserver]] = None,
    ) -> Connection:
        """
        Validate configuration and return a CONNECTING connection.

        Must be called from a running event loop. Configuration problems
        raise ConfigurationError here; network failures are reported later
        through on_connect_error.

        A mapping may also carry on_connect / on_connect_error /
        on_disconnect callables; they run right after the factory's own
        logging, ahead of the observers passed in.
        """
        installed: List[LifecycleObserver] = [LoggingObserver()]
        if not isinstance(config, ConnectionConfig):
            options = dict(config)
            callbacks = {key: options.pop(key) for key in CALLBACK_OPTIONS if key in options}
            if callbacks:
                installed.append(CallbackObserver(**callbacks))
            config = options
        config = parse_connection_config(config)

        connection = Connection(
            config=config,
            transport=self._transport_factory(),
            observers=[*installed, *(observers or [])],
        )
        connection.start()
        logger.info(f"SpacetimeDB connection to {config.uri} ({config.module_name}) started")
        return connection
