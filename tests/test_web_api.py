"""Tests for the Flask JSON API.

The app is created against a temporary state file.  Besides the learning
routes the suite checks that ``FLASK_SECRET`` is enforced outside debug mode,
that oversized bodies are rejected and that empty generations cannot be
exported.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

pytest.importorskip("flask")

from music_studio.midi_io import read_side_channel  # noqa: E402
from music_studio.web_api import create_app  # noqa: E402

NOTE = {"note": 60, "velocity": 80, "time": 0, "duration": 1}


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


@pytest.fixture
def client(state_path, monkeypatch):
    monkeypatch.setenv("FLASK_SECRET", "testing-secret")
    app = create_app(state_path)
    app.config["TESTING"] = True
    return app.test_client()


def test_missing_secret_in_production(state_path, monkeypatch, caplog):
    monkeypatch.delenv("FLASK_SECRET", raising=False)
    with pytest.raises(RuntimeError, match="Missing FLASK_SECRET"):
        create_app(state_path)
    assert "FLASK_SECRET" in caplog.text


def test_debug_mode_generates_secret(state_path, monkeypatch):
    monkeypatch.delenv("FLASK_SECRET", raising=False)
    app = create_app(state_path, debug=True)
    assert app.secret_key


def test_initial_state(client):
    body = client.get("/api/learning").get_json()
    assert body["isEnabled"] is False
    assert body["sampleCount"] == 0
    assert body["confidence"] == 0.0
    assert body["topPreferences"] == {}
    assert len(body["preferences"]) == 10


def test_feedback_updates_and_persists(client, state_path):
    client.post("/api/learning/toggle")
    resp = client.post("/api/learning/feedback", json={"text": "dramatic rock with guitar", "action": "like"})

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["topPreferences"]["style"] == "rock"
    assert body["topPreferences"]["mood"] == "dramatic"
    assert body["sampleCount"] == 1
    assert json.loads(state_path.read_text(encoding="utf-8"))["sampleCount"] == 1


def test_feedback_rejects_unknown_action(client):
    resp = client.post("/api/learning/feedback", json={"text": "jazz", "action": "love"})
    assert resp.status_code == 400
    assert "Unknown feedback action" in resp.get_json()["error"]


def test_feedback_requires_text(client):
    assert client.post("/api/learning/feedback", json={"action": "like"}).status_code == 400


def test_bulk_with_per_text_actions(client):
    client.post("/api/learning/toggle")
    resp = client.post(
        "/api/learning/bulk",
        json={"texts": ["jazz trio", "jazz ballad"], "action": ["like", "dislike"]},
    )
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["sampleCount"] == 2
    assert body["preferences"]["style"]["jazz"] == pytest.approx(0.1)


def test_bulk_action_mismatch_is_bad_request(client):
    client.post("/api/learning/toggle")
    resp = client.post("/api/learning/bulk", json={"texts": ["a", "b"], "action": ["like"]})
    assert resp.status_code == 400


def test_snippet_route(client):
    client.post("/api/learning/toggle")
    body = client.post(
        "/api/learning/snippet", json={"humanization": "swing", "pattern": "syncopated"}
    ).get_json()
    assert body["preferences"]["humanization"] == {"swing": pytest.approx(0.2)}
    assert body["preferences"]["pattern"] == {"syncopated": pytest.approx(0.2)}


def test_reset_needs_confirmation(client):
    client.post("/api/learning/toggle")
    client.post("/api/learning/feedback", json={"text": "jazz", "action": "like"})

    assert client.post("/api/learning/reset", json={}).status_code == 400
    assert client.get("/api/learning").get_json()["sampleCount"] == 1

    body = client.post("/api/learning/reset", json={"confirm": True}).get_json()
    assert body["sampleCount"] == 0
    assert body["isEnabled"] is True


def test_midi_export(client):
    resp = client.post("/api/midi", json={"bpm": 100, "tracks": [{"trackName": "Lead", "notes": [NOTE]}]})
    assert resp.status_code == 200
    assert resp.mimetype == "audio/midi"
    assert resp.data.startswith(b"MThd")
    assert read_side_channel(resp.data) is None


def test_midi_export_embeds_preferences(client):
    client.post("/api/learning/toggle")
    client.post("/api/learning/feedback", json={"text": "blues", "action": "download"})
    resp = client.post("/api/midi", json={"embedPreferences": True, "tracks": [{"notes": [NOTE]}]})
    assert read_side_channel(resp.data)["style"] == {"blues": pytest.approx(0.2)}


def test_midi_export_without_notes(client):
    resp = client.post("/api/midi", json={"tracks": [{"trackName": "Melody", "notes": []}]})
    assert resp.status_code == 422
    assert resp.get_json()["error"] == "Nothing to export"


@pytest.mark.parametrize("payload", [{}, {"tracks": "x"}, {"bpm": 0, "tracks": [{"notes": [NOTE]}]}])
def test_midi_export_bad_input(client, payload):
    assert client.post("/api/midi", json=payload).status_code == 400


def test_request_too_large(state_path, monkeypatch):
    monkeypatch.setenv("FLASK_SECRET", "testing-secret")
    monkeypatch.setenv("MAX_UPLOAD_MB", "1")
    app = create_app(state_path)
    client = app.test_client()
    big = "x" * (1024 * 1024 + 10)
    resp = client.post("/api/learning/feedback", data=big, content_type="application/json")
    assert resp.status_code == 413


@pytest.mark.parametrize(
    "body",
    [
        '{"bpm": Infinity, "tracks": [{"notes": [{"note": 60, "velocity": 80, "time": 0, "duration": 1}]}]}',
        '{"tracks": [{"notes": [{"note": 60, "velocity": 80, "time": Infinity, "duration": 1}]}]}',
        '{"tracks": [{"notes": [{"note": 60, "velocity": NaN, "time": 0, "duration": 1}]}]}',
    ],
)
def test_midi_export_rejects_non_finite_numbers(client, body):
    resp = client.post("/api/midi", data=body, content_type="application/json")
    assert resp.status_code == 400
    assert "finite" in resp.get_json()["error"]


def test_midi_export_clamps_huge_numbers(client):
    body = '{"tracks": [{"notes": [{"note": 60, "velocity": 80, "time": 1e308, "duration": 1e308}]}]}'
    resp = client.post("/api/midi", data=body, content_type="application/json")
    assert resp.status_code == 200
    assert resp.data.startswith(b"MThd")
