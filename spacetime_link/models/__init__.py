"""
Models package - Unified exports for all models

    from spacetime_link.models import ConnectionState, Identity
"""

from spacetime_link.models.enums import ConnectionState
from spacetime_link.models.identity import Identity

__all__ = [
    "ConnectionState",
    "Identity",
]
