"""
HTTP Microservice
=================
Flask-based HTTP API for the segment extraction engine.

A host page (or a test harness) posts a render-tree snapshot and either
gets the extraction result back directly or opens an overlay session and
drives it with the same commands a browser extension would send.

Endpoints:
    GET    /api/health                      → Health check
    GET    /api/info                        → Version and capability info
    POST   /api/extract                     → Extract segments from a snapshot
    POST   /api/sessions                    → Open an overlay session
    GET    /api/sessions/<id>               → Overlay state and layer
    DELETE /api/sessions/<id>               → Close a session
    POST   /api/sessions/<id>/show          → Show (or remove) the overlay
    POST   /api/sessions/<id>/remove        → Remove the overlay
    POST   /api/sessions/<id>/hide          → Hide temporarily
    POST   /api/sessions/<id>/restore       → Restore after a hide
    POST   /api/sessions/<id>/resize        → Page resized
    POST   /api/sessions/<id>/keys          → Key down / key up
    GET    /api/sessions/<id>/events        → Drain outbound notifications
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from .engine import XRayConfig, XRayEngine
from .errors import UnknownSessionError
from .models import ExtractionResult
from .overlay import OverlaySyncEngine
from .painters import MemoryPainter
from .snapshot import SnapshotRenderTree

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


# ─── In-memory session store ──────────────────────────────────────────────────


@dataclass(eq=False)
class OverlaySession:
    """One page session: its current tree, painter and overlay controller."""

    session_id: str
    tree: SnapshotRenderTree
    painter: MemoryPainter
    overlay: OverlaySyncEngine = None
    events: list[str] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def to_dict(self) -> dict:
        layer = self.overlay.layer
        state = self.overlay.state
        return {
            "session_id": self.session_id,
            "phase": state.phase.value,
            "segments": [s.to_wire() for s in state.segments],
            "peek_latched": state.peek_latched,
            "hidden": self.painter.hidden,
            "layer": layer.model_dump(mode="json") if layer else None,
            "pending_events": len(self.events),
        }


sessions: dict[str, OverlaySession] = {}
sessions_lock = threading.Lock()


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("XRAY_CONFIG", XRayConfig.from_env())
    app.config.setdefault("MAX_CONTENT_LENGTH", 50 * 1024 * 1024)  # 50MB

    return app


def _engine() -> XRayEngine:
    return XRayEngine(app.config.get("XRAY_CONFIG") or XRayConfig.from_env())


def _get_session(session_id: str) -> OverlaySession:
    with sessions_lock:
        session = sessions.get(session_id)
    if session is None:
        raise UnknownSessionError(session_id)
    return session


def _snapshot_from_request() -> SnapshotRenderTree:
    """Snapshot from the JSON body, either bare or under ``snapshot``."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Provide a JSON render-tree snapshot")
    return SnapshotRenderTree.from_dict(data.get("snapshot", data))


@app.errorhandler(UnknownSessionError)
def _unknown_session(e):
    return jsonify({"error": "Session not found", "session_id": str(e)}), 404


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    with sessions_lock:
        total = len(sessions)
        visible = sum(1 for s in sessions.values() if s.overlay.state.is_visible)
    return jsonify({
        "status": "healthy",
        "service": "segxray",
        "version": __version__,
        "active_sessions": total,
        "visible_overlays": visible,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Engine version and capability info."""
    config = app.config.get("XRAY_CONFIG") or XRayConfig()
    return jsonify({
        "version": __version__,
        "engine": "segment-walker",
        "capabilities": [
            "segment_extraction",
            "visibility_check",
            "overlay_sessions",
            "pdf_extraction",
        ],
        "supported_inputs": ["snapshot", "pdf"],
        "settings": {
            "clip_threshold": config.clip_threshold,
            "corner_inset": config.corner_inset,
            "unterminated_policy": config.unterminated_policy.value,
            "peek_key": config.peek_key,
            "resize_debounce_ms": config.resize_debounce_ms,
        },
    })


# ─── Extraction ──────────────────────────────────────────────────────────────


@app.route("/api/extract", methods=["POST"])
def extract():
    """
    Run one extraction pass over a posted snapshot.

    Returns the extraction wire result: ``{"textElements": [...]}`` or,
    with status 422, ``{"error": "..."}``.
    """
    try:
        tree = _snapshot_from_request()
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400

    result = _engine().extract(tree)
    status = 200 if result.succeeded else 422
    return jsonify(result.to_wire()), status


# ─── Overlay Sessions ────────────────────────────────────────────────────────


@app.route("/api/sessions", methods=["POST"])
def create_session():
    """Open an overlay session over a posted snapshot."""
    try:
        tree = _snapshot_from_request()
    except (ValueError, TypeError) as e:
        return jsonify({"error": str(e)}), 400

    session = OverlaySession(
        session_id=str(uuid.uuid4()),
        tree=tree,
        painter=MemoryPainter(),
    )
    session.overlay = _engine().create_overlay(
        session.painter, lambda: session.tree
    )
    session.overlay.add_listener(session.events.append)

    with sessions_lock:
        sessions[session.session_id] = session

    logger.info(f"Session {session.session_id} opened")
    return jsonify(session.to_dict()), 201


@app.route("/api/sessions/<session_id>", methods=["GET"])
def get_session(session_id: str):
    session = _get_session(session_id)
    with session.lock:
        return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>", methods=["DELETE"])
def delete_session(session_id: str):
    with sessions_lock:
        session = sessions.pop(session_id, None)
    if session is None:
        raise UnknownSessionError(session_id)
    with session.lock:
        session.overlay.remove()
    logger.info(f"Session {session_id} closed")
    return jsonify({"deleted": session_id})


@app.route("/api/sessions/<session_id>/show", methods=["POST"])
def show_overlay(session_id: str):
    """
    Show the overlay.

    Body: ``{"enabled": bool, "textElements": [...]}``. Without
    ``textElements`` the session's own tree is extracted first.
    """
    session = _get_session(session_id)
    data = request.get_json(silent=True) or {}
    enabled = bool(data.get("enabled", True))

    with session.lock:
        if "textElements" in data:
            try:
                result = ExtractionResult.from_wire(data)
            except (ValueError, TypeError, AttributeError) as e:
                return jsonify({"error": str(e)}), 400
        else:
            result = _engine().extract(session.tree)
        if not result.succeeded:
            return jsonify(result.to_wire()), 422
        session.overlay.show(enabled, result.text_elements)
        return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>/remove", methods=["POST"])
def remove_overlay(session_id: str):
    session = _get_session(session_id)
    with session.lock:
        session.overlay.remove()
        return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>/hide", methods=["POST"])
def hide_overlay(session_id: str):
    """Hide temporarily; reports whether the overlay had been visible."""
    session = _get_session(session_id)
    with session.lock:
        was_visible = session.overlay.hide_temporarily()
        return jsonify({"wasVisible": was_visible, **session.to_dict()})


@app.route("/api/sessions/<session_id>/restore", methods=["POST"])
def restore_overlay(session_id: str):
    session = _get_session(session_id)
    with session.lock:
        session.overlay.restore()
        return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>/resize", methods=["POST"])
def resize_page(session_id: str):
    """
    The page was resized.

    Body may carry a fresh ``snapshot`` (the re-laid-out page) or just a
    new ``viewport``. Reconciliation runs immediately; a caller batching
    resize bursts debounces on its own side.
    """
    session = _get_session(session_id)
    data = request.get_json(silent=True) or {}

    with session.lock:
        try:
            if "snapshot" in data:
                session.tree = SnapshotRenderTree.from_dict(data["snapshot"])
            elif "viewport" in data:
                viewport = data["viewport"]
                session.tree.set_viewport(
                    float(viewport["width"]), float(viewport["height"])
                )
        except KeyError as e:
            return jsonify({"error": f"Missing field: {e}"}), 400
        except (ValueError, TypeError, AttributeError) as e:
            return jsonify({"error": str(e)}), 400
        session.overlay.on_resize()
        session.overlay.flush_resize()
        return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>/keys", methods=["POST"])
def key_event(session_id: str):
    """Body: ``{"key": "Shift", "type": "down" | "up"}``."""
    session = _get_session(session_id)
    data = request.get_json(silent=True) or {}
    key = data.get("key")
    event_type = data.get("type")

    if not key or event_type not in ("down", "up"):
        return jsonify({
            "error": "Provide key and type ('down' or 'up')"
        }), 400

    with session.lock:
        if event_type == "down":
            session.overlay.key_down(key)
        else:
            session.overlay.key_up(key)
        return jsonify(session.to_dict())


@app.route("/api/sessions/<session_id>/events", methods=["GET"])
def drain_events(session_id: str):
    """Return and clear outbound notifications."""
    session = _get_session(session_id)
    with session.lock:
        events = list(session.events)
        session.events.clear()
    return jsonify({"events": events})


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
