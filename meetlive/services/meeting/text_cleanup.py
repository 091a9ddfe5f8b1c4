"""Synchronous repair of fragmented words in streamed transcripts.

Streaming speech recognition sometimes splits a word into letters or
syllables ("fun ciona", "p r o b l e m a"). This pass fixes a fixed set of
those artifacts and normalizes spacing so a segment reads well the first time
it is shown, before the asynchronous correction pass has a chance to run.
"""

from __future__ import annotations

import re


def _split_word_pattern(word: str) -> re.Pattern[str]:
    # Matches the word with any spaces between its letters, but not the intact word.
    letters = [re.escape(ch) for ch in word]
    return re.compile(r"\b" + r"\s*".join(letters) + r"\b", re.IGNORECASE)


_FRAGMENTED_WORDS = (
    "funciona",
    "ejecuta",
    "problema",
    "podemos",
    "sabemos",
    "vamos",
    "hacer",
    "seguir",
    "invirtiendo",
    "mejor",
    "cosas",
)

_WORD_FIXES: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (_split_word_pattern(word), word) for word in _FRAGMENTED_WORDS
) + ((re.compile(r"\be\s+s\s+de\b", re.IGNORECASE), "es de"),)

_MULTISPACE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([.,!?;:])")
_SPACE_AFTER_OPENING = re.compile(r"([¿¡])\s+")


def _match_case(original: str, replacement: str) -> str:
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def quick_clean(text: str) -> str:
    """Repair known split-word artifacts and normalize spacing."""

    if not text:
        return ""

    cleaned = text
    for pattern, replacement in _WORD_FIXES:
        cleaned = pattern.sub(lambda m, r=replacement: _match_case(m.group(0), r), cleaned)

    cleaned = _MULTISPACE.sub(" ", cleaned)
    cleaned = _SPACE_BEFORE_PUNCT.sub(r"\1", cleaned)
    cleaned = _SPACE_AFTER_OPENING.sub(r"\1", cleaned)
    return cleaned.strip()
