"""HTTP API over a diagram store."""

from .app import create_app

__all__ = ["create_app"]
