"""Normalisation and quality scoring for generated note data.

Generated notes come from a text model and are not trusted.
:func:`validate_and_enhance` clamps every note into a playable range and
sorts each track by onset so the MIDI encoder always receives sane input.
:func:`assess_quality` scores a result with a handful of light heuristics
(melodic contour, chord voicing, syncopation, velocity shaping) so hosts can
flag obviously weak generations.

Example
-------
>>> from music_studio.notes import MidiNote
>>> clamp_note(MidiNote(note=200, velocity=0, time=-1, duration=0))
MidiNote(note=108, velocity=1, time=0.0, duration=0.1)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Sequence

import numpy as np

from .notes import GenerationResult, MidiNote, MidiTrack

__all__ = [
    "LOWEST_NOTE",
    "HIGHEST_NOTE",
    "MIN_DURATION",
    "MAX_SECONDS",
    "clamp_note",
    "validate_and_enhance",
    "QualityReport",
    "assess_quality",
]

# Piano range A0-C8.
LOWEST_NOTE = 21
HIGHEST_NOTE = 108
MIN_DURATION = 0.1
# Upper bound for start times and durations, in seconds (one day).
MAX_SECONDS = 86400.0


def _bounded(value: float, low: float, high: float) -> float:
    # NaN falls to the lower bound; infinities to the nearest one.
    value = float(value)
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def clamp_note(note: MidiNote) -> MidiNote:
    """Return a copy of ``note`` with every field in range.

    Start times and durations are capped at :data:`MAX_SECONDS`.
    """

    return replace(
        note,
        note=int(_bounded(note.note, LOWEST_NOTE, HIGHEST_NOTE)),
        velocity=int(_bounded(note.velocity, 1, 127)),
        time=_bounded(note.time, 0.0, MAX_SECONDS),
        duration=_bounded(note.duration, MIN_DURATION, MAX_SECONDS),
    )


def validate_and_enhance(result: GenerationResult) -> GenerationResult:
    """Clamp all notes and order each track by start time.

    The input is left untouched; a new result is returned.
    """

    tracks = []
    for track in result.tracks:
        notes = sorted((clamp_note(n) for n in track.notes), key=lambda n: n.time)
        tracks.append(replace(track, notes=notes))
    return replace(result, tracks=tracks)


# ---------------------------------------------------------------------------
# Quality assessment
# ---------------------------------------------------------------------------


@dataclass
class QualityReport:
    """Scores in ``[0, 1]`` plus human readable issues."""

    overall: float
    melodic: float
    harmonic: float
    rhythmic: float
    dynamic: float
    issues: List[str] = field(default_factory=list)


def _span(notes: Sequence[MidiNote]) -> float:
    return max(n.time + n.duration for n in notes) - min(n.time for n in notes)


def _group_by_quarter(notes: Sequence[MidiNote]) -> Dict[float, List[int]]:
    """Bucket pitches by onset rounded to a quarter second."""

    groups: Dict[float, List[int]] = {}
    for n in notes:
        groups.setdefault(round(n.time * 4) / 4, []).append(n.note)
    return {t: sorted(p) for t, p in sorted(groups.items())}


def _contour_variety(pitches: Sequence[int]) -> float:
    steps = np.abs(np.diff(np.asarray(pitches, dtype=float)))
    return min(1.0, float(steps.mean()) / 12)


def _phrase_length(notes: Sequence[MidiNote]) -> float:
    span = _span(notes)
    if span <= 0:
        return 0.0
    # Four notes per second reads as well phrased.
    return min(1.0, len(notes) / (span * 4))


def _note_density(notes: Sequence[MidiNote]) -> float:
    span = _span(notes)
    return len(notes) / (span * 8) if span > 0 else 0.0


def _chord_voicing(notes: Sequence[MidiNote]) -> float:
    chords = [c for c in _group_by_quarter(notes).values() if len(c) >= 3]
    if not chords:
        return 0.0
    scores = []
    for chord in chords:
        gaps = np.diff(chord)
        scores.append(float(np.count_nonzero((gaps >= 3) & (gaps <= 12))) / len(gaps))
    return float(np.mean(scores))


def _voice_leading(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 4:
        return 0.0
    chords = list(_group_by_quarter(notes).values())
    scores = []
    for prev, cur in zip(chords, chords[1:]):
        if len(prev) >= 3 and len(cur) >= 3:
            voices = min(len(prev), len(cur))
            moves = np.abs(np.asarray(cur[:voices]) - np.asarray(prev[:voices]))
            scores.append(float(np.count_nonzero(moves <= 2)) / voices)
    return float(np.mean(scores)) if scores else 0.0


def _harmonic_rhythm(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 4:
        return 0.0
    onsets = list(_group_by_quarter(notes))
    if len(onsets) < 2:
        return 0.0
    return min(1.0, float(np.var(np.diff(onsets))) / 4)


def _rhythmic_variety(notes: Sequence[MidiNote]) -> float:
    unique = {round(n.duration * 4) / 4 for n in notes}
    return min(1.0, len(unique) / 8)


def _syncopation(notes: Sequence[MidiNote]) -> float:
    positions = np.mod(np.asarray([n.time for n in notes]) * 4, 1)
    return float(np.count_nonzero(positions > 0.5)) / len(notes)


def _timing(notes: Sequence[MidiNote]) -> float:
    ordered = sorted(notes, key=lambda n: n.time)
    clean = sum(
        1 for prev, cur in zip(ordered, ordered[1:]) if cur.time - (prev.time + prev.duration) >= 0
    )
    return clean / (len(ordered) - 1)


def _velocity_range(notes: Sequence[MidiNote]) -> int:
    velocities = [n.velocity for n in notes]
    return max(velocities) - min(velocities)


def _dynamic_shaping(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 4:
        return 0.0
    velocities = np.asarray([n.velocity for n in sorted(notes, key=lambda n: n.time)], dtype=float)
    size = max(2, len(velocities) // 4)
    shaped = 0
    for start in range(0, len(velocities) - size, size):
        segment = velocities[start:start + size]
        slope = np.polyfit(np.arange(len(segment)), segment, 1)[0]
        if abs(slope) > 0.1:
            shaped += 1
    return shaped / math.ceil(len(velocities) / size)


def _melodic_score(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 2:
        return 0.3
    score = 0.5
    if _contour_variety([n.note for n in notes]) > 0.5:
        score += 0.2
    if _phrase_length(notes) > 0.6:
        score += 0.2
    if 0.3 < _note_density(notes) < 0.8:
        score += 0.1
    return min(1.0, score)


def _harmonic_score(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 3:
        return 0.3
    score = 0.5
    if _chord_voicing(notes) > 0.6:
        score += 0.2
    if _voice_leading(notes) > 0.5:
        score += 0.2
    if _harmonic_rhythm(notes) > 0.4:
        score += 0.1
    return min(1.0, score)


def _rhythmic_score(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 2:
        return 0.3
    score = 0.5
    if _rhythmic_variety(notes) > 0.4:
        score += 0.2
    if _syncopation(notes) > 0.3:
        score += 0.2
    if _timing(notes) > 0.6:
        score += 0.1
    return min(1.0, score)


def _dynamic_score(notes: Sequence[MidiNote]) -> float:
    if len(notes) < 2:
        return 0.3
    score = 0.5
    spread = _velocity_range(notes)
    if spread / 127 > 0.4:
        score += 0.2
    if _dynamic_shaping(notes) > 0.5:
        score += 0.2
    if min(1.0, spread / 80) > 0.6:
        score += 0.1
    return min(1.0, score)


def _track_label(track: MidiTrack, index: int) -> str:
    return (track.track_name or f"track-{index}").lower()


def assess_quality(result: GenerationResult) -> QualityReport:
    """Score ``result`` per category, averaged over all tracks.

    Melodic scoring only counts tracks named like a melody or lead and
    harmonic scoring only chord or harmony tracks; empty tracks are reported
    as issues and contribute nothing.
    """

    issues: List[str] = []
    melodic = harmonic = rhythmic = dynamic = 0.0

    for index, track in enumerate(result.tracks):
        label = _track_label(track, index)
        notes = track.notes
        if not notes:
            issues.append(f"Track {index} ({label}) has no notes")
            continue
        if "melody" in label or "lead" in label:
            melodic += _melodic_score(notes)
        if "chord" in label or "harmony" in label:
            harmonic += _harmonic_score(notes)
        rhythmic += _rhythmic_score(notes)
        dynamic += _dynamic_score(notes)

    count = len(result.tracks)
    if count:
        melodic, harmonic, rhythmic, dynamic = (
            melodic / count, harmonic / count, rhythmic / count, dynamic / count
        )
    overall = (melodic + harmonic + rhythmic + dynamic) / 4
    return QualityReport(
        overall=round(overall, 2),
        melodic=round(melodic, 2),
        harmonic=round(harmonic, 2),
        rhythmic=round(rhythmic, 2),
        dynamic=round(dynamic, 2),
        issues=issues,
    )
