"""
Client-side integration layer for a shared SpacetimeDB backend.
Owns the single streaming connection, readiness waiting and query subscriptions.
"""

__all__ = [
    "api",
    "config",
    "exceptions",
    "models",
    "services",
    "utils",
]
