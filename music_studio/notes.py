"""Note and track containers for generated music.

Generation results arrive as JSON from the language-model collaborator::

    {"description": "...", "bpm": 96,
     "tracks": [{"trackName": "Melody",
                 "notes": [{"note": 60, "velocity": 80, "time": 0, "duration": 0.5}]}]}

:func:`result_from_dict` converts that payload into the dataclasses below.
Times and durations are in seconds.  Range checking is left to
:mod:`music_studio.validation`; parsing only insists that the fields exist
and are numeric.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

__all__ = [
    "DEFAULT_BPM",
    "MidiNote",
    "MidiTrack",
    "GenerationResult",
    "note_from_dict",
    "track_from_dict",
    "result_from_dict",
    "result_to_dict",
    "has_notes",
]

DEFAULT_BPM = 120


@dataclass
class MidiNote:
    """A single sounded pitch."""

    note: int
    velocity: int
    time: float
    duration: float


@dataclass
class MidiTrack:
    """An instrumental part.  Note order carries no meaning."""

    notes: List[MidiNote] = field(default_factory=list)
    track_name: Optional[str] = None


@dataclass
class GenerationResult:
    """Tracks produced for one prompt plus the model's description."""

    tracks: List[MidiTrack] = field(default_factory=list)
    bpm: float = DEFAULT_BPM
    description: str = ""


def _finite(value) -> Optional[float]:
    # Integers too large for a float count as infinite.
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _number(data: Mapping, name: str) -> float:
    try:
        value = data[name]
    except KeyError:
        raise ValueError(f"note is missing '{name}'") from None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"note field '{name}' must be a number, got {value!r}")
    number = _finite(value)
    if number is None:
        raise ValueError(f"note field '{name}' must be finite, got {value!r}")
    return number


def note_from_dict(data: Mapping) -> MidiNote:
    """Parse a note.  Pitch and velocity are rounded to integers."""

    if not isinstance(data, Mapping):
        raise ValueError("each note must be an object")
    return MidiNote(
        note=int(round(_number(data, "note"))),
        velocity=int(round(_number(data, "velocity"))),
        time=float(_number(data, "time")),
        duration=float(_number(data, "duration")),
    )


def track_from_dict(data: Mapping) -> MidiTrack:
    if not isinstance(data, Mapping):
        raise ValueError("each track must be an object")
    notes = data.get("notes")
    if not isinstance(notes, list):
        raise ValueError("track is missing a 'notes' list")
    name = data.get("trackName")
    return MidiTrack(
        notes=[note_from_dict(n) for n in notes],
        track_name=str(name) if name is not None else None,
    )


def result_from_dict(data: Mapping) -> GenerationResult:
    """Parse a generation result, defaulting ``bpm`` to 120.

    Raises ``ValueError`` when the structure is unusable.
    """

    if not isinstance(data, Mapping):
        raise ValueError("generation result must be an object")
    tracks = data.get("tracks")
    if not isinstance(tracks, list):
        raise ValueError("generation result is missing a 'tracks' list")
    bpm = data.get("bpm")
    if bpm is None:
        bpm = DEFAULT_BPM
    elif isinstance(bpm, bool) or not isinstance(bpm, (int, float)):
        raise ValueError(f"bpm must be a number, got {bpm!r}")
    elif _finite(bpm) is None:
        raise ValueError(f"bpm must be finite, got {bpm!r}")
    return GenerationResult(
        tracks=[track_from_dict(t) for t in tracks],
        bpm=bpm,
        description=str(data.get("description") or ""),
    )


def result_to_dict(result: GenerationResult) -> dict:
    """Inverse of :func:`result_from_dict`."""

    tracks = []
    for track in result.tracks:
        entry: dict = {
            "notes": [
                {"note": n.note, "velocity": n.velocity, "time": n.time, "duration": n.duration}
                for n in track.notes
            ]
        }
        if track.track_name is not None:
            entry["trackName"] = track.track_name
        tracks.append(entry)
    return {"description": result.description, "bpm": result.bpm, "tracks": tracks}


def has_notes(result: GenerationResult) -> bool:
    """Return ``True`` when at least one track contains a note."""

    return any(track.notes for track in result.tracks)
