"""
Query subscriptions against the current SpacetimeDB connection
"""
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from spacetime_link.exceptions import SubscriptionFailedError
from spacetime_link.services.observers import invoke_callback
from spacetime_link.utils.logging import get_logger

if TYPE_CHECKING:
    from spacetime_link.services.connection_factory import Connection
    from spacetime_link.services.connection_manager import ConnectionManager

logger = get_logger(__name__)


class SubscriptionHandle:
    """
    One server-side query registration tied to the Connection it was built on.

    `applied` flips exactly once, when the server acknowledges the query.
    The handle is meaningless once its connection is no longer active.
    """

    def __init__(
        self,
        query_text: str,
        connection: "Connection",
        query_id: int,
        request_id: int,
        on_applied: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
    ):
        self.query_text = query_text
        self.connection = connection
        self.query_id = query_id
        self.request_id = request_id
        self.applied = False
        self.applied_at: Optional[float] = None
        self.ended = False
        self.error: Optional[str] = None
        self._on_applied = on_applied
        self._on_error = on_error
        self._unsubscribe_requested = False
        self._unsubscribe_sent = False

    @property
    def is_active(self) -> bool:
        return self.applied and not self.ended and self.connection.is_active

    def unsubscribe(self) -> None:
        """Drop the registration. Before acknowledgment, it is dropped right after applying."""
        if self.ended or self._unsubscribe_requested:
            return
        self._unsubscribe_requested = True
        if self.applied:
            self._send_unsubscribe()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query_text,
            "query_id": self.query_id,
            "request_id": self.request_id,
            "applied": self.applied,
            "ended": self.ended,
            "error": self.error,
        }

    def __repr__(self) -> str:
        return f"SubscriptionHandle(query_id={self.query_id}, applied={self.applied}, query={self.query_text!r})"

    # ── Server events (called by Connection) ──

    def _mark_applied(self) -> None:
        if self.applied:
            logger.debug(f"Duplicate SubscribeApplied for query {self.query_id}")
            return
        self.applied = True
        self.applied_at = time.time()
        if self._on_applied:
            invoke_callback("Subscription applied", self._on_applied, self)
        if self._unsubscribe_requested:
            self._send_unsubscribe()

    def _mark_ended(self) -> None:
        self.ended = True

    def _mark_failed(self, reason: str) -> None:
        self.error = reason
        self.ended = True
        logger.error(f"Subscription {self.query_id} rejected: {reason} (query: {self.query_text})")
        if self._on_error:
            invoke_callback(
                "Subscription error",
                self._on_error,
                SubscriptionFailedError(self.query_text, reason),
            )

    def _send_unsubscribe(self) -> None:
        if self._unsubscribe_sent or self.ended:
            return
        self._unsubscribe_sent = True
        self.connection._send_unsubscribe(self)


class SubscriptionBuilder:
    """Collects callbacks, then issues the subscribe request on its connection"""

    def __init__(self, connection: "Connection"):
        self._connection = connection
        self._on_applied: Optional[Callable] = None
        self._on_error: Optional[Callable] = None

    def on_applied(self, callback: Callable) -> "SubscriptionBuilder":
        self._on_applied = callback
        return self

    def on_error(self, callback: Callable) -> "SubscriptionBuilder":
        self._on_error = callback
        return self

    def subscribe(self, query_text: str) -> SubscriptionHandle:
        if not query_text or not query_text.strip():
            raise ValueError("query_text must not be empty")
        return self._connection._register_subscription(
            query_text.strip(), self._on_applied, self._on_error
        )


class SubscriptionRegistrar:
    """Registers query subscriptions against the manager's current connection."""

    def __init__(self, manager: "ConnectionManager"):
        self._manager = manager

    def subscribe(
        self,
        query_text: str,
        on_applied: Optional[Callable] = None,
        on_error: Optional[Callable] = None,
    ) -> SubscriptionHandle:
        """
        Issue exactly one subscribe request for `query_text`.

        Raises NotInitializedError when there is no current connection. A
        connection that is still connecting queues the request until the
        handshake completes. Identical queries are not deduplicated.

        Args:
            query_text: Raw SQL query, e.g. "SELECT * FROM chat_message_state"
            on_applied: callback(handle), sync or async, fired on acknowledgment
            on_error: callback(SubscriptionFailedError) if the server rejects the query
        """
        connection = self._manager.current()

        builder = connection.subscription_builder()
        if on_applied:
            builder.on_applied(on_applied)
        if on_error:
            builder.on_error(on_error)

        handle = builder.subscribe(query_text)
        logger.info(f"Subscription {handle.query_id} requested: {handle.query_text}")
        return handle
