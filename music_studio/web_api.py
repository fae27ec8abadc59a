#!/usr/bin/env python3
"""Flask JSON API for Music Studio.

The browser front-end talks to the preference engine and the MIDI exporter
through this small API.  The learning state lives in a JSON file owned by
the application and is written after every change.

* **Application factory** - :func:`create_app` builds and configures the
  Flask application so production servers like Gunicorn can serve it
  directly.  ``FLASK_SECRET`` must be set outside debug mode.
* **Request size limiting** - ``MAX_CONTENT_LENGTH`` (``MAX_UPLOAD_MB``,
  default 5) bounds incoming bodies so oversized payloads are rejected early.
* **Serialised state access** - a process-wide lock wraps every
  read-modify-write of the learning state because Flask may serve requests
  on several threads.
* **Explicit empty-export error** - ``POST /api/midi`` answers ``422`` when
  the result holds no notes instead of returning a useless file.

Routes
------
``GET  /api/learning``            current state plus confidence and favourites
``POST /api/learning/feedback``   ``{"text": str, "action": str}``
``POST /api/learning/bulk``       ``{"texts": [str], "action": str | [str]}``
``POST /api/learning/snippet``    ``{"humanization": str, "pattern": str}``
``POST /api/learning/toggle``
``POST /api/learning/reset``      ``{"confirm": true}``
``POST /api/midi``                generation result, optional ``"embedPreferences"``
"""

from __future__ import annotations

import logging
import os
import secrets
from pathlib import Path
from threading import Lock
from typing import Optional

from flask import Flask, Response, current_app, jsonify, request

from .learning import (
    DEFAULT_STATE_FILE,
    LearningSession,
    describe_preferences,
    load_state,
    save_state,
    state_to_dict,
    top_preferences,
)
from .midi_io import encode_midi
from .notes import has_notes, result_from_dict
from .validation import validate_and_enhance

__all__ = ["create_app"]

# Logger used throughout the module for diagnostic messages.
logger = logging.getLogger(__name__)

# Guards the learning session shared by all request threads.
STATE_LOCK = Lock()


def _session() -> LearningSession:
    return current_app.extensions["music_studio.session"]


def _state_response():
    state = _session().state
    body = state_to_dict(state)
    body["confidence"] = state.confidence
    body["topPreferences"] = {d.value: k for d, k in top_preferences(state).items()}
    body["summary"] = describe_preferences(state)
    return jsonify(body)


def _bad_request(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def get_learning():
    """Return the current learning state."""

    with STATE_LOCK:
        return _state_response()


def post_feedback():
    body = _json_body()
    text = body.get("text")
    if not isinstance(text, str):
        return _bad_request("'text' must be a string")
    with STATE_LOCK:
        try:
            _session().record_feedback(text, body.get("action", ""))
        except ValueError as exc:
            return _bad_request(str(exc))
        return _state_response()


def post_bulk():
    body = _json_body()
    texts = body.get("texts")
    if not isinstance(texts, list) or not all(isinstance(t, str) for t in texts):
        return _bad_request("'texts' must be a list of strings")
    with STATE_LOCK:
        try:
            _session().record_bulk_feedback(texts, body.get("action", "like"))
        except ValueError as exc:
            return _bad_request(str(exc))
        return _state_response()


def post_snippet():
    body = _json_body()
    humanization = body.get("humanization", "")
    pattern = body.get("pattern", "")
    if not isinstance(humanization, str) or not isinstance(pattern, str):
        return _bad_request("'humanization' and 'pattern' must be strings")
    with STATE_LOCK:
        _session().record_snippet_analysis(humanization, pattern)
        return _state_response()


def post_toggle():
    with STATE_LOCK:
        _session().toggle_enabled()
        return _state_response()


def post_reset():
    """Clear learned preferences once the client confirms."""

    if _json_body().get("confirm") is not True:
        return _bad_request("Reset must be confirmed with {\"confirm\": true}")
    with STATE_LOCK:
        _session().reset()
        logger.info("Learned preferences reset")
        return _state_response()


def post_midi():
    """Validate a generation result and return it as a MIDI download."""

    body = _json_body()
    try:
        result = result_from_dict(body)
    except ValueError as exc:
        return _bad_request(str(exc))
    if result.bpm <= 0:
        return _bad_request("bpm must be greater than 0")
    if not has_notes(result):
        return _bad_request("Nothing to export", 422)

    side_channel = None
    if body.get("embedPreferences"):
        with STATE_LOCK:
            side_channel = {
                d: dict(w) for d, w in _session().state.preferences.items()
            }
    data = encode_midi(validate_and_enhance(result).tracks, result.bpm, side_channel)
    return Response(
        data,
        mimetype="audio/midi",
        headers={"Content-Disposition": "attachment; filename=generation.mid"},
    )


def create_app(state_path: Optional[Path] = None, *, debug: bool = False) -> Flask:
    """Build and configure the Flask application instance.

    ``state_path`` selects the learning state file (default
    ``DEFAULT_STATE_FILE``).  Outside debug mode ``FLASK_SECRET`` must be set;
    a missing value is logged at ``CRITICAL`` and raises
    :class:`RuntimeError` so the API never runs with an insecure default.
    """

    app = Flask(__name__)
    app.debug = debug

    secret = os.environ.get("FLASK_SECRET")
    try:
        max_mb = int(os.environ.get("MAX_UPLOAD_MB", "5"))
    except ValueError:
        max_mb = 5
        logger.warning("Invalid MAX_UPLOAD_MB value; defaulting to 5 MB.")

    if not secret:
        if not app.debug:
            logger.critical("FLASK_SECRET environment variable must be set in production.")
            raise RuntimeError("Missing FLASK_SECRET")
        secret = secrets.token_urlsafe(32)
        logger.warning(
            "FLASK_SECRET environment variable not set. "
            "Using a randomly generated key; sessions will not persist across restarts."
        )
    app.secret_key = secret
    app.config["MAX_CONTENT_LENGTH"] = max_mb * 1024 * 1024

    path = Path(state_path).expanduser() if state_path is not None else DEFAULT_STATE_FILE
    app.config["STATE_FILE"] = path
    app.extensions["music_studio.session"] = LearningSession(
        load_state(path), on_change=lambda state: save_state(state, path)
    )

    app.add_url_rule("/api/learning", view_func=get_learning, methods=["GET"])
    app.add_url_rule("/api/learning/feedback", view_func=post_feedback, methods=["POST"])
    app.add_url_rule("/api/learning/bulk", view_func=post_bulk, methods=["POST"])
    app.add_url_rule("/api/learning/snippet", view_func=post_snippet, methods=["POST"])
    app.add_url_rule("/api/learning/toggle", view_func=post_toggle, methods=["POST"])
    app.add_url_rule("/api/learning/reset", view_func=post_reset, methods=["POST"])
    app.add_url_rule("/api/midi", view_func=post_midi, methods=["POST"])

    @app.errorhandler(413)
    def handle_request_too_large(_err):
        """Return a concise message when the client uploads too much data."""
        return "Request exceeds configured size limit.", 413

    return app
