"""
FastAPI application surface for the SpacetimeDB link.
"""

from .app import create_app, app

__all__ = ["create_app", "app"]
