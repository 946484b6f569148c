"""
Server-assigned session identity
"""
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Identity:
    """Opaque identity returned by SpacetimeDB once the handshake completes"""
    hex: str
    token: Optional[str] = None
    connection_id: Optional[str] = None

    def __str__(self) -> str:
        return self.hex

    def to_hex_string(self) -> str:
        return self.hex

    @classmethod
    def from_message(cls, payload: Any) -> "Identity":
        """
        Build from an IdentityToken payload.

        The identity field may be a bare hex string or the JSON wrapper
        {"__identity__": "0x..."} used by the text protocol.
        """
        raw = payload.get("identity") if isinstance(payload, dict) else None
        if isinstance(raw, dict):
            raw = raw.get("__identity__")
        if not raw:
            raise ValueError("IdentityToken message carries no identity")

        hex_value = str(raw)
        if hex_value.startswith("0x"):
            hex_value = hex_value[2:]

        connection_id = payload.get("connection_id")
        if isinstance(connection_id, dict):
            connection_id = connection_id.get("__connection_id__")

        return cls(
            hex=hex_value.lower(),
            token=payload.get("token"),
            connection_id=str(connection_id) if connection_id is not None else None,
        )
