"""Keyword vocabulary used to interpret generation descriptions.

Each :class:`MusicalDimension` owns an independent list of keywords.  The
preference engine scans free text (typically the description returned with a
generated piece) for these phrases and nudges the weight of every phrase it
finds.  Patterns are compiled once at import time into :data:`KEYWORD_TABLE`
so feedback handling never rebuilds regular expressions.

Example
-------
>>> from music_studio.keywords import MusicalDimension, find_keywords
>>> find_keywords("An upbeat jazz tune on piano")
[(<MusicalDimension.STYLE: 'style'>, 'jazz'), (<MusicalDimension.MOOD: 'mood'>, 'upbeat'), (<MusicalDimension.INSTRUMENT: 'instrument'>, 'piano')]
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional, Pattern, Tuple

__all__ = [
    "MusicalDimension",
    "KEYWORD_MAP",
    "KEYWORD_TABLE",
    "compile_keyword",
    "find_keywords",
]


class MusicalDimension(str, Enum):
    """The ten independent categories of musical taste."""

    STYLE = "style"
    MOOD = "mood"
    KEY = "key"
    INSTRUMENT = "instrument"
    HUMANIZATION = "humanization"
    PATTERN = "pattern"
    HARMONIC_COMPLEXITY = "harmonic_complexity"
    MELODIC_DEVELOPMENT = "melodic_development"
    DYNAMIC_EXPRESSION = "dynamic_expression"
    VOICE_LEADING = "voice_leading"


# Vocabulary per dimension.  Multi-word phrases match with any amount of
# whitespace between the words.  Order matters only for readability.
KEYWORD_MAP: Dict[MusicalDimension, List[str]] = {
    MusicalDimension.STYLE: [
        "jazz", "classical", "rock", "blues", "electronic", "folk", "pop",
        "ambient", "hip-hop", "country", "funk", "soul", "reggae",
    ],
    MusicalDimension.MOOD: [
        "happy", "sad", "melancholic", "energetic", "calm", "dramatic",
        "mysterious", "romantic", "aggressive", "peaceful", "upbeat", "funky",
        "dark", "light",
    ],
    MusicalDimension.KEY: [
        "c major", "g major", "d major", "a major", "e major", "f major",
        "c minor", "g minor", "d minor", "a minor", "e minor", "f minor",
    ],
    MusicalDimension.INSTRUMENT: [
        "piano", "guitar", "drums", "bass", "violin", "saxophone", "trumpet",
        "flute", "synthesizer", "organ", "synth", "cello", "clarinet",
        "trombone", "marimba", "harp", "electric guitar", "acoustic guitar",
        "rhodes", "pads", "lead",
    ],
    MusicalDimension.HUMANIZATION: [
        "swing", "groove", "humanized", "natural feel", "velocity variance",
        "timing imperfection", "dynamic range", "rubato", "expressive",
        "phrasing", "articulation", "laid-back", "behind the beat",
        "unquantized", "tight", "quantized", "rushed",
    ],
    MusicalDimension.PATTERN: [
        "complex rhythm", "simple rhythm", "melodic", "arpeggiated",
        "dense texture", "sparse texture", "repetitive", "syncopated",
        "call and response", "chord", "progression", "four-on-the-floor",
        "off-beats", "bassline riff",
    ],
    MusicalDimension.HARMONIC_COMPLEXITY: [
        "simple", "complex", "modal", "chromatic", "extended chords",
        "secondary dominants", "modal interchange", "borrowed chords",
        "altered dominants", "tritone substitution", "diatonic",
    ],
    MusicalDimension.MELODIC_DEVELOPMENT: [
        "motivic", "motif", "contour", "wide range", "narrow range",
        "sequence", "imitation", "variation", "stepwise", "leaps",
        "antecedent-consequent",
    ],
    MusicalDimension.DYNAMIC_EXPRESSION: [
        "expressive", "accented", "humanized", "crescendo", "diminuendo",
        "dynamic contrast", "dynamic shaping", "legato", "staccato",
        "ghost notes", "static dynamics",
    ],
    MusicalDimension.VOICE_LEADING: [
        "contrary motion", "stepwise motion", "smooth voice leading",
        "parallel motion", "counterpoint", "polyphonic", "inversions",
        "suspensions", "close voicing", "open voicing",
    ],
}


class KeywordPattern(NamedTuple):
    """A compiled keyword belonging to one dimension."""

    dimension: MusicalDimension
    keyword: str
    pattern: Pattern[str]


def compile_keyword(keyword: str) -> Pattern[str]:
    """Return a regex matching ``keyword`` as a whole phrase.

    Plain keywords match on word boundaries, so ``jazz`` and ``funk`` are both
    found in ``jazz-funk``.  A keyword that is itself hyphenated must not be
    followed by another hyphen: ``four-on-the-floor`` does not match inside
    ``four-on-the-floor-ish``.  Spaces inside the keyword accept any run of
    whitespace.
    """

    words = keyword.lower().split()
    body = r"\s+".join(re.escape(word) for word in words)
    tail = r"(?![\w-])" if "-" in keyword else r"(?!\w)"
    return re.compile(r"(?<!\w)" + body + tail)


KEYWORD_TABLE: Tuple[KeywordPattern, ...] = tuple(
    KeywordPattern(dimension, keyword, compile_keyword(keyword))
    for dimension, keywords in KEYWORD_MAP.items()
    for keyword in keywords
)


def find_keywords(
    text: str, dimensions: Optional[Iterable[MusicalDimension]] = None
) -> List[Tuple[MusicalDimension, str]]:
    """Return every ``(dimension, keyword)`` pair present in ``text``.

    ``dimensions`` restricts the scan; keywords of other dimensions are
    ignored even when they occur in the text.  Each pair is reported at most
    once regardless of how often the phrase repeats.
    """

    if not text:
        return []
    allowed = set(dimensions) if dimensions is not None else None
    lowered = text.lower()
    return [
        (entry.dimension, entry.keyword)
        for entry in KEYWORD_TABLE
        if (allowed is None or entry.dimension in allowed)
        and entry.pattern.search(lowered)
    ]
