"""Music Studio core library.

This package holds the two pieces of the AI-assisted composition studio that
carry real logic:

* **Preference learning** (:mod:`music_studio.learning`) - free-text
  descriptions of generated pieces are matched against a keyword vocabulary
  spanning ten musical dimensions.  User reactions (like, dislike,
  regenerate, download) adjust per-keyword weights which later bias
  generation prompts.
* **MIDI export** (:mod:`music_studio.midi_io`) - generated tracks are
  validated, scheduled onto a 480 tick-per-quarter grid and written as a
  format 1 Standard MIDI File.  Learned preferences may be embedded in a text
  meta-event so a companion tool can recover them later.

A typical workflow::

    from music_studio import LearningSession, load_state, save_state
    from music_studio import result_from_dict, write_midi_file

    session = LearningSession(load_state(), on_change=save_state)
    session.record_feedback(result.description, "like")
    write_midi_file(result, "song.mid", side_channel=session.state.preferences)

Both a command line tool (:mod:`music_studio.cli`) and a small Flask JSON
API (:mod:`music_studio.web_api`) wrap these calls.
"""

__version__ = "0.1.0"

from .keywords import KEYWORD_MAP, MusicalDimension, find_keywords  # noqa: F401
from .learning import (  # noqa: F401
    DEFAULT_STATE_FILE,
    FeedbackAction,
    LearningSession,
    LearningState,
    describe_import_files,
    describe_preferences,
    get_top_keyword,
    load_state,
    new_state,
    record_bulk_feedback,
    record_feedback,
    record_snippet_analysis,
    reset,
    save_state,
    toggle_enabled,
    top_preferences,
    weight_of,
)
from .notes import (  # noqa: F401
    GenerationResult,
    MidiNote,
    MidiTrack,
    has_notes,
    result_from_dict,
    result_to_dict,
)
from .validation import QualityReport, assess_quality, validate_and_enhance  # noqa: F401
from .midi_io import (  # noqa: F401
    encode_midi,
    encode_vlq,
    read_side_channel,
    schedule_events,
    write_midi_file,
)


def main() -> None:
    """Console entry point; see :func:`music_studio.cli.main`."""

    from .cli import main as _main

    _main()
