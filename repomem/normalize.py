"""Shrink free text before it is stored.

Relative dates become absolute, conversational filler is dropped, whitespace is
collapsed and repeated sentences are removed. The goal is fewer tokens when the
text is later injected as context, without changing what it says.
"""

from __future__ import annotations

import datetime as dt
import re

FILLER_PHRASES = (
    ("i", "think"),
    ("i", "believe"),
    ("sort", "of"),
    ("kind", "of"),
    ("pretty", "much"),
    ("you", "know"),
)
FILLER_WORDS = ("basically", "actually", "just", "really", "very")

# Whole words only: bounded by whitespace (or the text edges). "today" may
# carry one trailing punctuation mark, which is left in place.
_RELATIVE_DAY_RE = re.compile(
    r"(?<!\S)(today|yesterday)(?=[.,!?;:]?(?!\S))",
    re.IGNORECASE,
)
_FILLER_PHRASE_RE = re.compile(
    r"(?<!\S)(?:"
    + "|".join(rf"{first}\s+{second}" for first, second in FILLER_PHRASES)
    + r")(?!\S)",
    re.IGNORECASE,
)
_FILLER_WORD_RE = re.compile(
    r"(?<!\S)(?:" + "|".join(FILLER_WORDS) + r")(?!\S)",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")
# A terminator ends a sentence only before whitespace or the end of the text.
# This is stricter than splitting on every [.!?]: "src/app.ts" and "v1.2" stay intact.
_SENTENCE_END_RE = re.compile(r"[.!?]+(?=\s|$)")


def _replace_relative_days(text: str, today: dt.date) -> str:
    dates = {
        "today": today.isoformat(),
        "yesterday": (today - dt.timedelta(days=1)).isoformat(),
    }
    return _RELATIVE_DAY_RE.sub(lambda match: dates[match.group(1).lower()], text)


def _dedupe_sentences(text: str) -> str:
    seen: set[str] = set()
    sentences: list[str] = []
    for fragment in _SENTENCE_END_RE.split(text):
        sentence = fragment.strip()
        if not sentence or sentence in seen:
            continue
        seen.add(sentence)
        sentences.append(sentence)
    result = ". ".join(sentences)
    if result and text[-1] in ".!?":
        result += "."
    return result


def normalize(text: str, today: dt.date | None = None) -> str:
    if not text:
        return ""
    today = today or dt.date.today()
    text = _replace_relative_days(text, today)
    text = _FILLER_PHRASE_RE.sub(" ", text)
    text = _FILLER_WORD_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if not text:
        return ""
    return _dedupe_sentences(text)
