"""Flask app factory for the API server."""

from __future__ import annotations

import threading
from typing import Optional

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from ..config.settings import Settings, load_settings
from ..store.store import DiagramStore
from ..utils.logging import configure_logging
from .routes import register_routes


def create_app(
    store: Optional[DiagramStore] = None,
    settings: Optional[Settings] = None,
) -> Flask:
    """Build the API app around one store.

    Every request touching the store holds the same lock, so commands never
    interleave under a threaded server.
    """
    settings = settings or load_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)

    app = Flask(__name__)
    CORS(app, origins=settings.cors_origins)
    # Counters live on this limiter, not shared between apps
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        storage_uri="memory://",
    )
    limiter.init_app(app)

    register_routes(
        app,
        store=store or DiagramStore(settings=settings),
        lock=threading.Lock(),
    )
    return app
