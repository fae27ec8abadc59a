"""Unit tests for the Standard MIDI File writer.

The suite checks the exact bytes produced for a small two-note melody, the
variable-length quantity encoder, event ordering and the preference side
channel.  ``mido`` serves as an independent reader so the files are known
to parse with a real MIDI library.
"""

from __future__ import annotations

import io
import json
import sys
from pathlib import Path

import mido
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from music_studio import midi_io  # noqa: E402
from music_studio.keywords import MusicalDimension  # noqa: E402
from music_studio.notes import GenerationResult, MidiNote, MidiTrack, result_from_dict  # noqa: E402
from music_studio.validation import validate_and_enhance  # noqa: E402


def _decode_vlq(data: bytes) -> int:
    value = 0
    for i, byte in enumerate(data):
        value = (value << 7) | (byte & 0x7F)
        if not byte & 0x80:
            assert i == len(data) - 1, "terminating byte must be last"
            return value
    raise AssertionError("unterminated variable-length quantity")


MELODY = MidiTrack(
    track_name="Melody",
    notes=[
        MidiNote(note=60, velocity=80, time=0, duration=0.5),
        MidiNote(note=64, velocity=80, time=0.5, duration=0.5),
    ],
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (0, b"\x00"),
        (127, b"\x7f"),
        (128, b"\x81\x00"),
        (16383, b"\xff\x7f"),
        (16384, b"\x81\x80\x00"),
        (2097151, b"\xff\xff\x7f"),
    ],
)
def test_vlq_encoding(value, expected):
    encoded = midi_io.encode_vlq(value)
    assert encoded == expected
    assert _decode_vlq(encoded) == value


def test_vlq_rejects_negative():
    with pytest.raises(ValueError):
        midi_io.encode_vlq(-1)


def test_two_note_melody_bytes():
    """The full file for a simple melody at 120 BPM is byte exact."""

    data = midi_io.encode_midi([MELODY], 120)

    assert data[:14] == bytes.fromhex("4D546864 00000006 0001 0001 01E0")
    events = (
        bytes.fromhex("00 FF5103 07A120")
        + bytes.fromhex("00 FF0306") + b"Melody"
        + bytes.fromhex("00 90 3C 50")
        + bytes.fromhex("8360 80 3C 00")
        + bytes.fromhex("00 90 40 50")
        + bytes.fromhex("8360 80 40 00")
        + bytes.fromhex("00 FF2F00")
    )
    assert data[14:22] == b"MTrk" + len(events).to_bytes(4, "big")
    assert data[22:] == events
    assert data.endswith(b"\xff\x2f\x00")


def test_tempo_track_skips_tempo_event():
    track = MidiTrack(track_name="Tempo Track", notes=[])
    chunk = midi_io.encode_track(track, 120)
    assert b"\xff\x51" not in chunk
    assert chunk[8:] == bytes.fromhex("00 FF030B") + b"Tempo Track" + bytes.fromhex("00 FF2F00")


def test_unnamed_track_has_no_name_event():
    chunk = midi_io.encode_track(MidiTrack(notes=[]), 90)
    assert b"\xff\x03" not in chunk
    # 60,000,000 / 90 = 666,666.67 -> 666,667
    assert chunk[8:15] == bytes.fromhex("00 FF5103") + (666667).to_bytes(3, "big")


def test_longer_notes_play_louder():
    events = midi_io.schedule_events([MidiNote(60, 100, 0, 2.0), MidiNote(62, 5, 0, 0.1)], 120)
    ons = [e for e in events if e.on]
    # 100 + 23 (22.5 rounds half up) = 123 ; 5 - 6 = -1 -> 0
    assert [e.velocity for e in ons] == [123, 0]
    assert all(e.velocity == 0 for e in events if not e.on)


def test_same_tick_events_keep_creation_order():
    notes = [MidiNote(67, 70, 1.0, 0.5), MidiNote(60, 70, 0.0, 1.0), MidiNote(64, 70, 1.0, 0.5)]
    events = midi_io.schedule_events(notes, 60)
    assert [(e.tick, e.on, e.note) for e in events] == [
        (0, True, 60),
        (480, True, 67),
        (480, False, 60),
        (480, True, 64),
        (720, False, 67),
        (720, False, 64),
    ]


def test_out_of_range_input_still_encodes():
    notes = [MidiNote(note=300, velocity=500, time=-2, duration=0.5)]
    events = midi_io.schedule_events(notes, 120)
    assert events[0] == midi_io.MidiEvent(0, True, 127, 127)


@pytest.mark.parametrize("bpm", [0, -60, float("inf"), float("nan")])
def test_unusable_bpm_rejected(bpm):
    with pytest.raises(ValueError):
        midi_io.encode_midi([MELODY], bpm)


def test_huge_note_values_pin_to_last_tick():
    """Values far beyond any real song still give encodable events."""

    events = midi_io.schedule_events([MidiNote(60, 80, 1e308, 1e308)], 120)
    assert events == [
        midi_io.MidiEvent(midi_io.MAX_TICK, True, 60, 127),
        midi_io.MidiEvent(midi_io.MAX_TICK, False, 60, 0),
    ]


def test_infinite_start_encodes_with_four_byte_delta():
    chunk = midi_io.encode_track(MidiTrack(notes=[MidiNote(60, 80, float("inf"), 1.0)]), 120)
    # 80 + 8 (7.5 rounds half up) = 88 = 0x58
    assert bytes.fromhex("FFFFFF7F 90 3C 58 00 80 3C 00") in chunk


def test_nan_fields_fall_to_lower_bounds():
    nan = float("nan")
    events = midi_io.schedule_events([MidiNote(nan, nan, nan, nan)], 120)
    assert events == [midi_io.MidiEvent(0, True, 0, 0), midi_io.MidiEvent(0, False, 0, 0)]


def test_tiny_bpm_caps_tempo_value():
    chunk = midi_io.encode_track(MidiTrack(notes=[]), 1e-300)
    assert chunk[8:15] == bytes.fromhex("00 FF5103 FFFFFF")


@pytest.mark.parametrize(
    "payload",
    [
        '{"tracks":[{"notes":[{"note":60,"velocity":80,"time":Infinity,"duration":1}]}]}',
        '{"tracks":[{"notes":[{"note":NaN,"velocity":80,"time":0,"duration":1}]}]}',
        '{"bpm":Infinity,"tracks":[{"notes":[{"note":60,"velocity":80,"time":0,"duration":1}]}]}',
        '{"bpm":NaN,"tracks":[]}',
    ],
)
def test_non_finite_json_numbers_rejected(payload):
    with pytest.raises(ValueError, match="finite"):
        result_from_dict(json.loads(payload))


def test_huge_json_numbers_encode_after_validation():
    result = result_from_dict(
        json.loads('{"tracks":[{"notes":[{"note":60,"velocity":80,"time":1e308,"duration":1e308}]}]}')
    )
    data = midi_io.encode_midi(validate_and_enhance(result).tracks, result.bpm)

    mid = mido.MidiFile(file=io.BytesIO(data))
    note_on = [m for m in mid.tracks[0] if m.type == "note_on"][0]
    # Start clamped to one day: 86400 s at 960 ticks per second.
    assert note_on.time == 86400 * 960


def test_file_parses_with_mido():
    bass = MidiTrack(track_name="Bass", notes=[MidiNote(36, 90, 0, 1.0)])
    data = midi_io.encode_midi([MELODY, bass], 100)

    mid = mido.MidiFile(file=io.BytesIO(data))
    assert mid.type == 1
    assert mid.ticks_per_beat == 480
    assert len(mid.tracks) == 2
    assert mid.tracks[1].name == "Bass"
    tempo = [m for m in mid.tracks[0] if m.type == "set_tempo"][0].tempo
    assert tempo == 600000
    notes = [m.note for m in mid.tracks[0] if m.type == "note_on"]
    assert notes == [60, 64]


def test_side_channel_round_trip():
    preferences = {d: {} for d in MusicalDimension}
    preferences[MusicalDimension.STYLE] = {"jazz": 0.7}
    preferences[MusicalDimension.VOICE_LEADING] = {"counterpoint": 0.9}

    data = midi_io.encode_midi([MELODY], 120, side_channel=preferences)
    payload = midi_io.read_side_channel(data)

    assert payload == {
        "style": {"jazz": 0.7},
        "mood": {},
        "key": {},
        "pattern": {},
        "humanization": {},
    }
    assert b"\xff\x01" in data


def test_side_channel_absent():
    assert midi_io.read_side_channel(midi_io.encode_midi([MELODY], 120)) is None


def test_long_side_channel_uses_vlq_length():
    """Payloads over 127 bytes still produce a parseable file."""

    preferences = {MusicalDimension.STYLE: {f"style {i}": 0.5 for i in range(40)}}
    data = midi_io.encode_midi([MELODY], 120, side_channel=preferences)
    payload = midi_io.read_side_channel(data)
    assert len(payload["style"]) == 40


def test_write_midi_file_validates_and_creates_directory(tmp_path):
    result = GenerationResult(
        tracks=[MidiTrack(track_name="Lead", notes=[MidiNote(10, 0, -1, 0)])], bpm=120
    )
    out = tmp_path / "exports" / "song.mid"

    data = midi_io.write_midi_file(result, out)

    assert out.read_bytes() == data
    # Clamped to note 21, duration 0.1s -> on at tick 0, off at tick 96.
    assert bytes.fromhex("00 90 15") in data
    assert bytes.fromhex("60 80 15 00") in data
