"""
String metrics provider.

Phonetic codes and edit distance are never computed here; they are delegated
to ``jellyfish`` (Soundex, Metaphone) and ``rapidfuzz`` (Levenshtein).
Anything satisfying ``StringMetrics`` can be passed in instead.
"""

import re
from typing import Protocol

import jellyfish
from rapidfuzz.distance import Levenshtein

_NON_LETTERS = re.compile(r"[^A-Za-z]")


class StringMetrics(Protocol):
    """Contract the similarity library and blocking depend on."""

    def phonetic_codes(self, value: str) -> tuple[str, str]:
        """Two independent phonetic codes for a value ('' when not encodable)."""
        ...

    def phonetic_match(self, a: str, b: str) -> tuple[bool, bool]:
        """Per-scheme equality of the phonetic codes of two values."""
        ...

    def edit_similarity(self, a: str, b: str) -> float:
        """Normalized edit-distance similarity in [0, 1]."""
        ...


class JellyfishMetrics:
    """Default provider: Soundex + Metaphone codes, normalized Levenshtein."""

    def phonetic_codes(self, value: str) -> tuple[str, str]:
        letters = _NON_LETTERS.sub("", value or "")
        if not letters:
            return "", ""
        return jellyfish.soundex(letters), jellyfish.metaphone(letters)

    def phonetic_match(self, a: str, b: str) -> tuple[bool, bool]:
        codes_a = self.phonetic_codes(a)
        codes_b = self.phonetic_codes(b)
        return tuple(  # type: ignore[return-value]
            bool(code_a) and code_a == code_b
            for code_a, code_b in zip(codes_a, codes_b)
        )

    def edit_similarity(self, a: str, b: str) -> float:
        if a == b:
            return 1.0
        if not a or not b:
            return 0.0
        return float(Levenshtein.normalized_similarity(a, b))
