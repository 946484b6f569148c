"""
Enum definitions for models
"""
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle state of a SpacetimeDB connection"""
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


__all__ = [
    "ConnectionState",
]
