"""
Wake Phrase Matching

Decides whether a recognizer transcript contains the activation phrase.
Recognition engines routinely mishear short names, so matching runs in
three passes: known variants, a "greeting + s-word" heuristic, then an
edit-distance check over consecutive word pairs.

Pure functions only; the activation trigger that owns the recognizer calls
`matches_wake_phrase` and, on True, starts the session.
"""

import re
from typing import List, Optional, Sequence

DEFAULT_WAKE_PHRASE = "hey sully"

# Exact variants (case insensitive)
EXACT_VARIANTS = [
    "hey sully",
    "heys ully",
    "ey sully",
    "oye sully",
    "sully",
    "sullivan",
]

# Common misrecognitions
FUZZY_VARIANTS = [
    "hey sally",
    "hey soul",
    "hey souly",
    "hey solley",
    "hey sulley",
    "heyso lee",
    "hay sully",
    "hey silly",
    "hey solely",
    "a sully",
    "hey slowly",
    "hi sully",
]

GREETING_TOKENS = ("hey", "hi", "hay")
NAME_FRAGMENTS = ("sul", "sull", "sol", "soll", "sal")
SHORT_S_WORD = re.compile(r"\bs\w{1,3}(y|i|ee|ey)")

MAX_WORDS = 5
MAX_DISTANCE = 3


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings (insert, delete, substitute)."""
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(a) + 1))
    for i, b_char in enumerate(b, start=1):
        current = [i]
        for j, a_char in enumerate(a, start=1):
            cost = 0 if a_char == b_char else 1
            current.append(min(
                previous[j] + 1,        # deletion
                current[j - 1] + 1,     # insertion
                previous[j - 1] + cost, # substitution
            ))
        previous = current
    return previous[-1]


def _recent_words(transcript: str, previous: str) -> List[str]:
    combined = f"{previous} {transcript}".lower().strip()
    return combined.split()[-MAX_WORDS:]


def matches_wake_phrase(
    transcript: str,
    previous: str = "",
    wake_phrase: str = DEFAULT_WAKE_PHRASE,
    variants: Optional[Sequence[str]] = None,
) -> bool:
    """
    Check a transcript (plus the previous one) for the wake phrase.

    Args:
        transcript: Latest recognizer output
        previous: Transcript received just before, to catch split phrases
        wake_phrase: Target phrase
        variants: Override for the exact + fuzzy variant list

    Returns:
        True if the session should be activated
    """
    words = _recent_words(transcript or "", previous or "")
    if not words:
        return False
    recent = " ".join(words)

    candidates = [wake_phrase.lower()]
    candidates.extend(variants if variants is not None else EXACT_VARIANTS + FUZZY_VARIANTS)
    if any(phrase in recent for phrase in candidates):
        return True

    # Greeting followed by something close to the name
    if any(token in recent for token in GREETING_TOKENS) and (
        any(fragment in recent for fragment in NAME_FRAGMENTS)
        or SHORT_S_WORD.search(recent)
    ):
        return True

    target = wake_phrase.lower()
    for first, second in zip(words, words[1:]):
        if levenshtein_distance(f"{first} {second}", target) <= MAX_DISTANCE:
            return True

    return False
