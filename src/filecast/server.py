"""HTTP server exposing session control and status."""

from __future__ import annotations

import json
import logging
from typing import Optional

from quart import Quart, jsonify, request, websocket

from . import __version__
from .config import Settings
from .engine import Engine
from .errors import AlreadyRunning, NotRunning, SessionError
from .manager import SessionRegistry
from .models import SessionDescriptor, validate_credential

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "already_running": 409,
    "not_running": 409,
    "spawn_error": 502,
    "start_failed": 502,
}


def _error_payload(error: SessionError) -> dict:
    return {"error": str(error), "code": error.code}


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> Quart:
    """
    Build the Quart application around its own session registry.

    Args:
        settings: Runtime settings; read from the environment when omitted
        engine: Optional engine override, mainly for tests

    Returns:
        Configured Quart application
    """
    app = Quart(__name__)
    settings = settings or Settings.from_env()
    registry = SessionRegistry(settings, engine=engine)
    app.config["FILECAST_SETTINGS"] = settings
    app.extensions["filecast"] = registry

    @app.before_serving
    async def _start_clock():
        registry.start_clock()

    @app.after_serving
    async def _shutdown():
        await registry.close()

    @app.route("/api")
    async def api_info():
        """API endpoint with service info."""
        return jsonify({
            "service": "filecast",
            "version": __version__,
            "endpoints": {
                "streams": "/streams",
                "status": "/streams/<session_id>/status",
                "events": "/streams/events",
            },
        })

    @app.route("/stream-keys/validate", methods=["POST"])
    async def validate_stream_key():
        """Check the shape of an ingest credential without starting anything."""
        data = await request.get_json(silent=True) or {}
        if not validate_credential(str(data.get("credential") or "")):
            return jsonify({"error": "Invalid stream key format.", "valid": False}), 400
        return jsonify({"message": "Valid stream key.", "valid": True})

    @app.route("/streams", methods=["GET"])
    async def list_streams():
        """List every retained session."""
        return jsonify({
            "streams": [snapshot.to_dict() for snapshot in registry.list_statuses()],
            "active": sorted(registry.list_active()),
        })

    @app.route("/streams/<session_id>/start", methods=["POST"])
    async def start_stream(session_id: str):
        """Start publishing a file for a session."""
        data = await request.get_json(silent=True)
        if not data:
            return jsonify({"error": "JSON body is required"}), 400

        loop = data.get("loop", True)
        if not isinstance(loop, bool):
            return jsonify({"error": "loop must be a JSON boolean"}), 400

        try:
            descriptor = SessionDescriptor(
                session_id=session_id,
                credential=str(data.get("credential") or ""),
                input_path=str(data.get("input_path") or ""),
                quality=data.get("quality"),
                orientation=data.get("orientation") or "landscape",
                loop=loop,
                title=data.get("title"),
            )
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        result = await registry.start(session_id, descriptor)
        if not result.ok:
            status_code = ERROR_STATUS.get(result.error.code, 500)
            return jsonify(_error_payload(result.error)), status_code

        snapshot = registry.get_status(session_id)
        return jsonify(snapshot.to_dict() if snapshot else {"session_id": session_id}), 201

    @app.route("/streams/<session_id>/stop", methods=["POST"])
    async def stop_stream(session_id: str):
        """Stop a running session."""
        result = await registry.stop(session_id)
        if not result.ok:
            return jsonify(_error_payload(result.error)), ERROR_STATUS.get(result.error.code, 500)

        snapshot = registry.get_status(session_id)
        return jsonify(snapshot.to_dict() if snapshot else {"session_id": session_id})

    @app.route("/streams/<session_id>/status", methods=["GET"])
    async def get_stream_status(session_id: str):
        """Get the latest status snapshot for a session."""
        snapshot = registry.get_status(session_id)
        if snapshot is None:
            return jsonify({"error": "Stream not found"}), 404
        return jsonify(snapshot.to_dict())

    @app.route("/streams/<session_id>", methods=["DELETE"])
    async def clear_stream(session_id: str):
        """Forget a stopped session."""
        try:
            removed = await registry.clear(session_id)
        except AlreadyRunning as exc:
            return jsonify(_error_payload(exc)), 409
        if not removed:
            return jsonify(_error_payload(NotRunning("Stream not found"))), 404
        return jsonify({"message": "Stream cleared"})

    @app.websocket("/streams/events")
    async def stream_events():
        """Push status events to a websocket client."""
        queue = registry.subscribe()
        try:
            while True:
                event = await queue.get()
                payload = {"session_id": event.session_id, "status": event.snapshot.to_dict(), "error": event.error}
                await websocket.send(json.dumps(payload))
        finally:
            registry.unsubscribe(queue)

    return app


def main(host: str = "0.0.0.0", port: int = 8000, settings: Optional[Settings] = None) -> None:
    """Run the server with the built-in Quart runner."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app = create_app(settings)
    logger.info("Serving filecast on %s:%s", host, port)
    app.run(host=host, port=port)


if __name__ == "__main__":
    import sys

    main(port=int(sys.argv[1]) if len(sys.argv) > 1 else 8000)
