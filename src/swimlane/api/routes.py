"""HTTP routes for the API server."""

from __future__ import annotations

import json
import threading
from typing import Any, Dict

from flask import Flask, Response, jsonify, request

from .. import __version__
from ..core.exceptions import FormatError, UnknownCommandError
from ..notation import export_diagram, import_diagram
from ..store.store import COMMANDS, DiagramStore
from ..utils.logging import get_logger

logger = get_logger("api")


def _state(store: DiagramStore) -> Dict[str, Any]:
    return {
        "diagram": store.diagram.to_json_dict(),
        "selection": store.selection.to_json_dict(),
        "pendingInsert": store.pending_insert.to_json_dict() if store.pending_insert else None,
        "canUndo": store.can_undo,
        "canRedo": store.can_redo,
    }


def register_routes(app: Flask, *, store: DiagramStore, lock: threading.Lock) -> None:
    @app.before_request
    def log_request() -> None:
        logger.info(
            "HTTP %s %s from %s",
            request.method,
            request.path,
            request.remote_addr,
        )

    @app.get("/api/info")
    def api_info() -> Any:
        return jsonify(
            {
                "name": "Swimlane Studio",
                "version": __version__,
                "commands": sorted(COMMANDS),
                "endpoints": {
                    "diagram": "/api/diagram",
                    "commands": "/api/commands/<name>",
                    "export": "/api/export/mermaid",
                    "import": "/api/import/mermaid",
                    "audit": "/api/audit",
                },
            }
        )

    @app.get("/api/diagram")
    def get_diagram() -> Any:
        with lock:
            return jsonify(_state(store))

    @app.post("/api/commands/<name>")
    def run_command(name: str) -> Any:
        payload = request.get_json(force=True, silent=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            return jsonify({"error": "Command arguments must be a JSON object."}), 400

        with lock:
            try:
                result = store.execute(name, payload)
            except UnknownCommandError as exc:
                return jsonify({"error": exc.message}), 404
            except (TypeError, ValueError) as exc:
                logger.info("Rejected command %s: %s", name, exc)
                return jsonify({"error": str(exc)}), 400
            body = _state(store)
        body["result"] = result
        return jsonify(body)

    @app.post("/api/undo")
    def undo() -> Any:
        with lock:
            result = store.undo()
            body = _state(store)
        body["result"] = result
        return jsonify(body)

    @app.post("/api/redo")
    def redo() -> Any:
        with lock:
            result = store.redo()
            body = _state(store)
        body["result"] = result
        return jsonify(body)

    @app.get("/api/export/mermaid")
    def export_mermaid() -> Any:
        with lock:
            text = export_diagram(store.diagram)
        return Response(text, mimetype="text/plain; charset=utf-8")

    @app.post("/api/import/mermaid")
    def import_mermaid() -> Any:
        payload = request.get_json(force=True, silent=True)
        if isinstance(payload, dict):
            text = payload.get("text", "")
            preserve_layout = bool(payload.get("preserveLayout", False))
        else:
            text = request.get_data(as_text=True)
            preserve_layout = request.args.get("preserveLayout", "").lower() in ("1", "true", "yes")

        try:
            diagram = import_diagram(text)
        except FormatError as exc:
            logger.info("Rejected import: %s", exc.message)
            return jsonify({"error": exc.message}), 400

        with lock:
            store.set_diagram(diagram, preserve_layout=preserve_layout)
            body = _state(store)
        return jsonify(body)

    @app.get("/api/audit")
    def get_audit() -> Any:
        with lock:
            document = json.loads(store.export_audit())
        return jsonify(document)
