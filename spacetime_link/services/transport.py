"""
SpacetimeDB WebSocket transport
Opens the streaming session and carries subscription envelopes over the
JSON text subprotocol. Row payloads are passed through undecoded.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake

from spacetime_link.config import ConnectionConfig
from spacetime_link.exceptions import HandshakeFailure, TransportDisconnect
from spacetime_link.models import Identity
from spacetime_link.utils.logging import get_logger

logger = get_logger(__name__)

JSON_SUBPROTOCOL = "v1.json.spacetimedb"

PING_INTERVAL = 30  # seconds
CLOSE_TIMEOUT = 5  # seconds
MAX_MESSAGE_SIZE = 2**24  # 16MB - initial subscription rows can be large


class Transport(ABC):
    """Streaming session to the remote database, one per Connection"""

    @abstractmethod
    async def connect(self, config: ConnectionConfig) -> Identity:
        """Open the session and return the identity from the handshake"""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Send one client envelope"""

    @abstractmethod
    def messages(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded server envelopes until the session closes"""

    @abstractmethod
    async def close(self) -> None:
        """Close the session; safe to call more than once"""


# ── Envelopes ──

def build_subscribe_url(uri: str, module_name: str) -> str:
    """Map the configured endpoint to the database subscribe URL"""
    base = uri.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/v1/database/{module_name}/subscribe"


def encode_message(message: Dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def decode_message(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Decode a server envelope: a JSON object with exactly one tag key"""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    message = json.loads(raw)
    if not isinstance(message, dict) or len(message) != 1:
        raise ValueError(f"Unexpected envelope: {str(raw)[:100]}")
    return message


def subscribe_single(query: str, request_id: int, query_id: int) -> Dict[str, Any]:
    return {
        "SubscribeSingle": {
            "query": query,
            "request_id": request_id,
            "query_id": {"id": query_id},
        }
    }


def unsubscribe(request_id: int, query_id: int) -> Dict[str, Any]:
    return {
        "Unsubscribe": {
            "request_id": request_id,
            "query_id": {"id": query_id},
        }
    }


def extract_query_id(payload: Dict[str, Any]) -> Optional[int]:
    """Read query_id from a server payload ({"id": n}, n, or an option wrapper)"""
    value = payload.get("query_id")
    if isinstance(value, dict):
        if "some" in value:
            value = value["some"]
        elif "none" in value:
            return None
    if isinstance(value, dict):
        value = value.get("id")
    if value is None:
        return None
    return int(value)


# ── WebSocket implementation ──

class WebSocketTransport(Transport):
    """
    Transport over the websockets library.

    The handshake is complete once the server's first IdentityToken
    envelope arrives. Abnormal closure surfaces as TransportDisconnect,
    a clean close simply ends messages().
    """

    def __init__(self, connector: Optional[Callable] = None):
        self._connector = connector or websockets.connect
        self._ws = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def connect(self, config: ConnectionConfig) -> Identity:
        url = build_subscribe_url(config.uri, config.module_name)
        logger.info(f"Connecting to SpacetimeDB at {url}...")

        try:
            self._ws = await asyncio.wait_for(
                self._connector(
                    url,
                    subprotocols=[JSON_SUBPROTOCOL],
                    additional_headers={"Authorization": f"Bearer {config.auth_token}"},
                    ping_interval=PING_INTERVAL,
                    ping_timeout=PING_INTERVAL * 2,
                    close_timeout=CLOSE_TIMEOUT,
                    max_size=MAX_MESSAGE_SIZE,
                ),
                timeout=config.connect_timeout,
            )
            raw = await asyncio.wait_for(self._ws.recv(), timeout=config.connect_timeout)
        except asyncio.TimeoutError:
            await self.close()
            raise HandshakeFailure(config.uri, f"no response within {config.connect_timeout}s")
        except (OSError, InvalidHandshake, ConnectionClosed) as e:
            await self.close()
            raise HandshakeFailure(config.uri, str(e) or e.__class__.__name__) from e

        try:
            message = decode_message(raw)
            payload = message.get("IdentityToken")
            if payload is None:
                raise ValueError(f"expected IdentityToken, got {next(iter(message))}")
            return Identity.from_message(payload)
        except ValueError as e:
            await self.close()
            raise HandshakeFailure(config.uri, str(e)) from e

    async def send(self, message: Dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportDisconnect("transport is not open")
        try:
            await self._ws.send(encode_message(message))
        except ConnectionClosed as e:
            raise TransportDisconnect(str(e), _close_code(e)) from e

    async def messages(self) -> AsyncIterator[Dict[str, Any]]:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                try:
                    yield decode_message(raw)
                except ValueError as e:
                    logger.warning(f"Invalid message from SpacetimeDB: {e}")
        except ConnectionClosedError as e:
            logger.warning(f"SpacetimeDB connection closed: {e}")
            raise TransportDisconnect(str(e), _close_code(e)) from e
        except OSError as e:
            raise TransportDisconnect(str(e)) from e

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


def _close_code(exc: ConnectionClosed) -> Optional[int]:
    frame = getattr(exc, "rcvd", None)
    return frame.code if frame is not None else None
