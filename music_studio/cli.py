"""Command line interface for Music Studio.

Modification summary
--------------------
* Sub-commands cover the whole learning workflow (``feedback``, ``bulk``,
  ``import``, ``snippet``, ``toggle``, ``reset``, ``show``) plus MIDI
  ``export`` and ``inspect``.
* Every learning command loads the state, applies one mutation and saves it
  again so the file on disk always reflects the latest feedback.
* ``reset`` refuses to run without ``--yes`` because it cannot be undone.
* ``export`` rejects results without any notes instead of writing an empty
  file.

The state file defaults to ``$MUSIC_STUDIO_STATE_FILE`` or
``~/.music_studio_learning.json``; ``--state-file`` overrides it.

Example
-------
Running ``python -m music_studio export result.json --output out.mid
--embed-preferences`` validates the notes in ``result.json``, writes
``out.mid`` and stores the current style, mood, key, pattern and
humanization weights inside the file.
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from pathlib import Path
from typing import List, Optional

from .keywords import MusicalDimension
from .learning import (
    DEFAULT_STATE_FILE,
    FeedbackAction,
    LearningSession,
    describe_import_files,
    describe_preferences,
    get_top_keyword,
    load_state,
    save_state,
)
from .midi_io import read_side_channel, write_midi_file
from .notes import has_notes, result_from_dict
from .validation import assess_quality

__all__ = ["build_parser", "run_cli", "main"]

_ACTIONS = [a.value for a in FeedbackAction]


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for all sub-commands."""

    parser = argparse.ArgumentParser(
        prog="music-studio",
        description="Learn musical preferences from feedback and export MIDI files.",
    )
    parser.add_argument(
        "--state-file",
        type=str,
        help=f"Path to the learning state JSON file (default: {DEFAULT_STATE_FILE})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    fb = sub.add_parser("feedback", help="Learn from one generation description")
    fb.add_argument("--text", type=str, required=True, help="Description of the generated piece")
    fb.add_argument("--action", choices=_ACTIONS, required=True, help="Your reaction")

    bulk = sub.add_parser("bulk", help="Learn from text files, one description per file")
    bulk.add_argument("--action", choices=_ACTIONS, default="like", help="Reaction applied to every file")
    bulk.add_argument("files", nargs="+", help="Text files containing descriptions")

    imp = sub.add_parser("import", help="Learn from file names of imported material")
    imp.add_argument("--kind", choices=["chords", "melodies", "humanization"], required=True)
    imp.add_argument("files", nargs="+", help="Imported files (only names are used)")

    snip = sub.add_parser("snippet", help="Learn from a performance analysis")
    snip.add_argument("--humanization", type=str, default="", help="Humanization description")
    snip.add_argument("--pattern", type=str, default="", help="Pattern description")

    sub.add_parser("toggle", help="Enable or disable learning")

    rst = sub.add_parser("reset", help="Forget all learned preferences")
    rst.add_argument("--yes", action="store_true", help="Confirm the reset")

    sub.add_parser("show", help="Print the learned preferences")

    exp = sub.add_parser("export", help="Write a generation result as a MIDI file")
    exp.add_argument("input", type=str, help="Generation result JSON file")
    exp.add_argument("--output", type=str, required=True, help="Output MIDI file path")
    exp.add_argument("--bpm", type=float, help="Override the tempo stored in the result")
    exp.add_argument("--embed-preferences", action="store_true", help="Store learned preferences in the file")
    exp.add_argument("--no-validate", dest="validate", action="store_false", help="Skip clamping of note values")
    exp.add_argument("--report", action="store_true", help="Log a quality assessment of the result")

    ins = sub.add_parser("inspect", help="Print preferences embedded in a MIDI file")
    ins.add_argument("file", type=str, help="MIDI file to read")

    srv = sub.add_parser("serve", help="Run the JSON API with Flask's development server")
    srv.add_argument("--host", type=str, default="127.0.0.1")
    srv.add_argument("--port", type=int, default=5000)
    srv.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    return parser


def _show(session: LearningSession) -> None:
    state = session.state
    print(f"Learning enabled: {'yes' if state.is_enabled else 'no'}")
    print(f"Samples: {state.sample_count} (confidence {state.confidence:.0f}%)")
    for dimension in MusicalDimension:
        top = get_top_keyword(state, dimension)
        if top is not None:
            print(f"  {dimension.value}: {top} ({state.preferences[dimension][top]:.2f})")
    for line in describe_preferences(state):
        print(line)


def _read_texts(paths: List[str]) -> List[str]:
    texts = []
    for name in paths:
        try:
            texts.append(Path(name).read_text(encoding="utf-8"))
        except OSError as exc:
            logging.error("Could not read %s: %s", name, exc)
            sys.exit(1)
    return texts


def _export(args: argparse.Namespace, session: LearningSession) -> None:
    try:
        with open(args.input, "r", encoding="utf-8") as fh:
            result = result_from_dict(json.load(fh))
    except OSError as exc:
        logging.error("Could not read %s: %s", args.input, exc)
        sys.exit(1)
    except ValueError as exc:
        logging.error("Invalid generation result: %s", exc)
        sys.exit(1)

    if args.bpm is not None:
        result.bpm = args.bpm
    if not math.isfinite(result.bpm) or result.bpm <= 0:
        logging.error("BPM must be a finite number greater than 0.")
        sys.exit(1)
    if not has_notes(result):
        logging.error("Nothing to export: the generation result contains no notes.")
        sys.exit(1)

    if args.report:
        report = assess_quality(result)
        logging.info(
            "Quality %.2f (melodic %.2f, harmonic %.2f, rhythmic %.2f, dynamic %.2f)",
            report.overall, report.melodic, report.harmonic, report.rhythmic, report.dynamic,
        )
        for issue in report.issues:
            logging.warning(issue)

    side_channel = session.state.preferences if args.embed_preferences else None
    try:
        write_midi_file(result, args.output, side_channel, validate=args.validate)
    except OSError as exc:
        logging.error("Could not write MIDI file: %s", exc)
        sys.exit(1)


def _inspect(path: str) -> None:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        logging.error("Could not read %s: %s", path, exc)
        sys.exit(1)
    try:
        payload = read_side_channel(data)
    except (OSError, EOFError, ValueError) as exc:
        logging.error("%s is not a readable MIDI file: %s", path, exc)
        sys.exit(1)
    if payload is None:
        print("No embedded preferences found.")
        return
    print(json.dumps(payload, indent=2))


def run_cli(argv: Optional[List[str]] = None) -> None:
    """Parse ``argv`` (default ``sys.argv[1:]``) and run one command."""

    args = build_parser().parse_args(argv)
    state_path = Path(args.state_file).expanduser() if args.state_file else DEFAULT_STATE_FILE
    session = LearningSession(
        load_state(state_path), on_change=lambda state: save_state(state, state_path)
    )

    if args.command == "feedback":
        if not session.state.is_enabled:
            logging.warning("Learning is disabled; run 'toggle' to enable it.")
        matched = session.record_feedback(args.text, args.action)
        logging.info("Updated %d keyword(s).", len(matched))
    elif args.command == "bulk":
        texts = _read_texts(args.files)
        matched = session.record_bulk_feedback(texts, args.action)
        logging.info("Learned from %d description(s); updated %d keyword(s).", len(texts), len(matched))
    elif args.command == "import":
        descriptions = describe_import_files(args.files, args.kind)
        matched = session.record_bulk_feedback(descriptions, FeedbackAction.LIKE)
        logging.info("Learned from %d %s file(s).", len(descriptions), args.kind)
    elif args.command == "snippet":
        matched = session.record_snippet_analysis(args.humanization, args.pattern)
        logging.info("Updated %d keyword(s).", len(matched))
    elif args.command == "toggle":
        enabled = session.toggle_enabled()
        logging.info("Learning %s.", "enabled" if enabled else "disabled")
    elif args.command == "reset":
        if not args.yes:
            logging.error("Resetting cannot be undone; pass --yes to confirm.")
            sys.exit(1)
        session.reset()
        logging.info("Learned preferences cleared.")
    elif args.command == "show":
        _show(session)
    elif args.command == "export":
        _export(args, session)
    elif args.command == "inspect":
        _inspect(args.file)
    elif args.command == "serve":
        from .web_api import create_app

        try:
            app = create_app(state_path, debug=args.debug)
        except RuntimeError as exc:
            logging.error(str(exc))
            sys.exit(1)
        app.run(host=args.host, port=args.port, debug=args.debug)


def main() -> None:
    """Configure logging and run the CLI."""

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    run_cli()
