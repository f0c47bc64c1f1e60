"""Internal HTTP API of the integration engine."""

from .app import create_app

__all__ = ["create_app"]
