"""Preference learning from user feedback.

The engine keeps a small weight table per :class:`MusicalDimension`.  Every
piece of feedback (like, dislike, regenerate or download) is matched against
the keyword vocabulary and each recognised keyword has its weight nudged up
or down.  Weights are clamped to ``[MIN_WEIGHT, MAX_WEIGHT]`` so a keyword
that fell out of favour can always recover and downstream prompt weighting
stays bounded.

State is an explicit :class:`LearningState` object.  The functions in this
module mutate it in place and return the ``(dimension, keyword)`` pairs they
touched; persisting the result is up to the host, usually through
:class:`LearningSession` which calls a save hook after every mutation.

Example
-------
>>> state = new_state(enabled=True)
>>> record_feedback(state, "A calm piano piece in C major", FeedbackAction.LIKE)
[(<MusicalDimension.MOOD: 'mood'>, 'calm'), (<MusicalDimension.KEY: 'key'>, 'c major'), (<MusicalDimension.INSTRUMENT: 'instrument'>, 'piano')]
>>> weight_of(state.preferences[MusicalDimension.MOOD], "calm")
0.2

Callers embedding the engine in a multi-threaded host must serialise access
to a given state; an update is a plain read, clamp and write.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .keywords import MusicalDimension, find_keywords

__all__ = [
    "FeedbackAction",
    "LearningState",
    "LearningSession",
    "MIN_WEIGHT",
    "MAX_WEIGHT",
    "LEARNING_RATE",
    "MAX_CONFIDENCE_SAMPLES",
    "DEFAULT_STATE_FILE",
    "new_state",
    "weight_of",
    "confidence_for",
    "record_feedback",
    "record_bulk_feedback",
    "record_snippet_analysis",
    "toggle_enabled",
    "reset",
    "get_top_keyword",
    "top_preferences",
    "describe_preferences",
    "describe_import_files",
    "state_from_dict",
    "state_to_dict",
    "load_state",
    "save_state",
]

logger = logging.getLogger(__name__)

MIN_WEIGHT = 0.1
MAX_WEIGHT = 1.0
LEARNING_RATE = 0.1

# Confidence reaches 100% after this many feedback samples.
MAX_CONFIDENCE_SAMPLES = 50

env_path = os.environ.get("MUSIC_STUDIO_STATE_FILE")
if env_path:
    DEFAULT_STATE_FILE = Path(env_path).expanduser()
else:
    DEFAULT_STATE_FILE = Path.home() / ".music_studio_learning.json"

PreferenceWeights = Dict[str, float]
LearnedPreferences = Dict[MusicalDimension, PreferenceWeights]
Pair = Tuple[MusicalDimension, str]


class FeedbackAction(str, Enum):
    """User reactions the engine learns from."""

    LIKE = "like"
    DISLIKE = "dislike"
    REGENERATE = "regenerate"
    # Downloading a piece is an implicit like.
    DOWNLOAD = "download"

    @classmethod
    def parse(cls, value: Union[str, "FeedbackAction"]) -> "FeedbackAction":
        """Return the action named by ``value`` (case-insensitive).

        Raises ``ValueError`` for unknown names.
        """

        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(a.value for a in cls)
            raise ValueError(f"Unknown feedback action {value!r}; expected one of: {valid}") from None

    @property
    def delta(self) -> float:
        """Weight change applied to each matched keyword."""

        if self in (FeedbackAction.LIKE, FeedbackAction.DOWNLOAD):
            return LEARNING_RATE
        if self is FeedbackAction.DISLIKE:
            return -LEARNING_RATE
        # Regenerating is a milder dislike.
        return -LEARNING_RATE / 2


def _empty_preferences() -> LearnedPreferences:
    return {dimension: {} for dimension in MusicalDimension}


@dataclass
class LearningState:
    """Mutable learning state shared by the feedback functions.

    ``preferences`` always holds all ten dimensions.  ``confidence`` is derived
    from ``sample_count`` and never stored.
    """

    is_enabled: bool = False
    preferences: LearnedPreferences = field(default_factory=_empty_preferences)
    sample_count: int = 0

    @property
    def confidence(self) -> float:
        return confidence_for(self.sample_count)


def new_state(enabled: bool = False) -> LearningState:
    """Return an empty state with every dimension present."""

    return LearningState(is_enabled=enabled)


def weight_of(weights: Mapping[str, float], keyword: str) -> float:
    """Return the weight of ``keyword``, treating unseen keywords as the floor."""

    return weights.get(keyword, MIN_WEIGHT)


def _clamp(weight: float) -> float:
    return max(MIN_WEIGHT, min(MAX_WEIGHT, weight))


def confidence_for(sample_count: int) -> float:
    """Map a cumulative sample count to a 0-100 confidence score."""

    return min(100.0, sample_count / MAX_CONFIDENCE_SAMPLES * 100)


def _apply(state: LearningState, dimension: MusicalDimension, keyword: str, delta: float) -> None:
    weights = state.preferences.setdefault(dimension, {})
    before = weight_of(weights, keyword)
    weights[keyword] = _clamp(before + delta)
    logger.debug(
        "%s/%s: %.3f -> %.3f", dimension.value, keyword, before, weights[keyword]
    )


# ---------------------------------------------------------------------------
# Feedback processing
# ---------------------------------------------------------------------------


def record_feedback(state: LearningState, text: str, action: Union[str, FeedbackAction]) -> List[Pair]:
    """Learn from a single description and the user's reaction to it.

    Every keyword found in ``text`` receives one clamped update.  The sample
    counter grows by one per call, even when nothing matched.  Nothing happens
    while learning is disabled.
    """

    action = FeedbackAction.parse(action)
    if not state.is_enabled:
        return []
    matches = find_keywords(text)
    for dimension, keyword in matches:
        _apply(state, dimension, keyword, action.delta)
    state.sample_count += 1
    return matches


def record_bulk_feedback(
    state: LearningState,
    texts: Sequence[str],
    action: Union[str, FeedbackAction, Sequence[Union[str, FeedbackAction]]],
) -> List[Pair]:
    """Learn from a batch of descriptions at once.

    ``action`` is either one action for the whole batch or one action per
    text.  Deltas for the same keyword are summed across the batch and the
    total is clamped once, so the result can differ from calling
    :func:`record_feedback` for each text in turn.  The sample counter grows
    by ``len(texts)``.
    """

    if isinstance(action, (str, FeedbackAction)):
        actions = [FeedbackAction.parse(action)] * len(texts)
    else:
        actions = [FeedbackAction.parse(a) for a in action]
        if len(actions) != len(texts):
            raise ValueError("number of actions must match number of texts")

    if not state.is_enabled or not texts:
        return []

    adjustments: Dict[Pair, float] = {}
    for text, act in zip(texts, actions):
        for pair in find_keywords(text):
            adjustments[pair] = adjustments.get(pair, 0.0) + act.delta

    for (dimension, keyword), delta in adjustments.items():
        _apply(state, dimension, keyword, delta)
    state.sample_count += len(texts)
    return list(adjustments)


def record_snippet_analysis(state: LearningState, humanization_text: str, pattern_text: str) -> List[Pair]:
    """Learn from a performance analysis as if the user liked it.

    ``humanization_text`` is only scanned for humanization keywords and
    ``pattern_text`` only for pattern keywords.  Counts as one sample.
    """

    if not state.is_enabled:
        return []
    matches = find_keywords(humanization_text, [MusicalDimension.HUMANIZATION])
    matches += find_keywords(pattern_text, [MusicalDimension.PATTERN])
    for dimension, keyword in matches:
        _apply(state, dimension, keyword, FeedbackAction.LIKE.delta)
    state.sample_count += 1
    return matches


def toggle_enabled(state: LearningState) -> bool:
    """Flip learning on or off and return the new setting."""

    state.is_enabled = not state.is_enabled
    return state.is_enabled


def reset(state: LearningState) -> None:
    """Forget every learned weight and the sample count.

    Confirmation belongs to the caller; the enabled flag is kept.
    """

    state.preferences = _empty_preferences()
    state.sample_count = 0


# ---------------------------------------------------------------------------
# Reading preferences
# ---------------------------------------------------------------------------


def get_top_keyword(state: LearningState, dimension: Union[str, MusicalDimension]) -> Optional[str]:
    """Return the highest weighted keyword of ``dimension`` or ``None``.

    Ties go to the keyword that was recorded first.
    """

    weights = state.preferences.get(MusicalDimension(dimension), {})
    if not weights:
        return None
    return max(weights.items(), key=lambda item: item[1])[0]


# Dimensions surfaced to the generation prompt, with their display labels.
_PROMPT_DIMENSIONS: Tuple[Tuple[MusicalDimension, str, str], ...] = (
    (MusicalDimension.STYLE, "Style", "use {} characteristics, instruments, and musical elements"),
    (MusicalDimension.MOOD, "Mood", "create music that conveys {} emotions and energy"),
    (MusicalDimension.KEY, "Key", "use {} as the primary key center"),
    (MusicalDimension.PATTERN, "Rhythmic Pattern", "use {} rhythmic patterns and phrasing"),
    (MusicalDimension.HUMANIZATION, "Performance Feel", "apply {} timing and expression"),
)


def top_preferences(state: LearningState) -> Dict[MusicalDimension, str]:
    """Return the favourite keyword of each prompt-facing dimension."""

    tops = {}
    for dimension, _label, _hint in _PROMPT_DIMENSIONS:
        keyword = get_top_keyword(state, dimension)
        if keyword is not None:
            tops[dimension] = keyword
    return tops


def describe_preferences(state: LearningState) -> List[str]:
    """Render the favourite keywords as lines for a generation prompt."""

    tops = top_preferences(state)
    return [
        f"{label}: {tops[dimension]} ({hint.format(tops[dimension])})"
        for dimension, label, hint in _PROMPT_DIMENSIONS
        if dimension in tops
    ]


_IMPORT_SUFFIXES = {
    "chords": "chord progression pattern",
    "melodies": "melodic pattern",
    "humanization": "humanized natural feel performance",
}


def describe_import_files(paths: Iterable[Union[str, Path]], kind: str) -> List[str]:
    """Turn imported file names into descriptions for bulk learning.

    ``kind`` is ``"chords"``, ``"melodies"`` or ``"humanization"``.  The file
    stem has underscores and hyphens replaced by spaces, e.g.
    ``jazz_ii-V-I.mid`` becomes ``"jazz ii V I chord progression pattern"``.
    """

    try:
        suffix = _IMPORT_SUFFIXES[kind]
    except KeyError:
        raise ValueError(f"Unknown import kind {kind!r}; expected chords, melodies or humanization") from None
    descriptions = []
    for path in paths:
        cleaned = Path(path).stem.replace("_", " ").replace("-", " ")
        descriptions.append(f"{cleaned} {suffix}")
    return descriptions


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def state_to_dict(state: LearningState) -> dict:
    """Return the JSON layout used on disk.  ``confidence`` is not stored."""

    return {
        "isEnabled": state.is_enabled,
        "preferences": {
            dimension.value: dict(state.preferences.get(dimension, {}))
            for dimension in MusicalDimension
        },
        "sampleCount": state.sample_count,
    }


def _stored_weight(dimension: str, keyword, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"weight for {dimension}/{keyword} must be a number, got {value!r}")
    try:
        weight = float(value)
    except OverflowError:
        weight = math.inf
    if not math.isfinite(weight):
        raise ValueError(f"weight for {dimension}/{keyword} must be finite, got {value!r}")
    return _clamp(weight)


def state_from_dict(data: Mapping) -> LearningState:
    """Build a state from persisted data, adding any missing dimensions.

    Older files predate some dimensions; those are back-filled with empty
    weight tables while stored weights are kept as they are (a weight outside
    ``[MIN_WEIGHT, MAX_WEIGHT]`` is clamped).  Raises ``ValueError`` when the
    layout is unusable: a non-boolean ``isEnabled``, a bad ``sampleCount`` or
    a weight that is not a finite number.
    """

    if not isinstance(data, Mapping):
        raise ValueError("learning state must be a JSON object")
    stored = data.get("preferences")
    count = data.get("sampleCount")
    if not isinstance(stored, Mapping):
        raise ValueError("learning state is missing 'preferences'")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ValueError("learning state has an invalid 'sampleCount'")
    enabled = data.get("isEnabled", False)
    if not isinstance(enabled, bool):
        raise ValueError("learning state has an invalid 'isEnabled'")

    preferences = _empty_preferences()
    for name, weights in stored.items():
        try:
            dimension = MusicalDimension(name)
        except ValueError:
            logger.warning("Ignoring unknown preference dimension %r", name)
            continue
        if not isinstance(weights, Mapping):
            raise ValueError(f"preferences for {name!r} must be an object")
        preferences[dimension] = {str(k): _stored_weight(name, k, v) for k, v in weights.items()}

    return LearningState(
        is_enabled=enabled,
        preferences=preferences,
        sample_count=count,
    )


def load_state(path: Path = DEFAULT_STATE_FILE) -> LearningState:
    """Load the learning state from ``path``.

    Missing, unreadable or malformed files yield a fresh empty state so a
    corrupt file never prevents the application from starting.
    """

    path = Path(path).expanduser()
    if path.is_file():
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return state_from_dict(json.load(fh))
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Could not load learning state from %s: %s", path, exc)
    return new_state()


def save_state(state: LearningState, path: Path = DEFAULT_STATE_FILE) -> None:
    """Write ``state`` to ``path`` as JSON.

    Failures are logged rather than raised; losing a save must not interrupt
    composing.
    """

    path = Path(path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(state_to_dict(state), fh, indent=2)
    except OSError as exc:
        logger.error("Could not save learning state to %s: %s", path, exc)


class LearningSession:
    """Bind a :class:`LearningState` to a persistence hook.

    Each mutating method forwards to the module function of the same name and
    then calls ``on_change(state)``.  Hosts typically pass a closure around
    :func:`save_state` so the state is written after every mutation.
    """

    def __init__(
        self,
        state: Optional[LearningState] = None,
        on_change: Optional[Callable[[LearningState], None]] = None,
    ) -> None:
        self.state = state if state is not None else new_state()
        self._on_change = on_change

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.state)

    def record_feedback(self, text: str, action: Union[str, FeedbackAction]) -> List[Pair]:
        pairs = record_feedback(self.state, text, action)
        self._changed()
        return pairs

    def record_bulk_feedback(self, texts: Sequence[str], action) -> List[Pair]:
        pairs = record_bulk_feedback(self.state, texts, action)
        self._changed()
        return pairs

    def record_snippet_analysis(self, humanization_text: str, pattern_text: str) -> List[Pair]:
        pairs = record_snippet_analysis(self.state, humanization_text, pattern_text)
        self._changed()
        return pairs

    def toggle_enabled(self) -> bool:
        enabled = toggle_enabled(self.state)
        self._changed()
        return enabled

    def reset(self) -> None:
        reset(self.state)
        self._changed()

    def get_top_keyword(self, dimension: Union[str, MusicalDimension]) -> Optional[str]:
        return get_top_keyword(self.state, dimension)
