"""
Token Cosine Similarity

Free-text comparison over term-frequency vectors. Both texts are tokenized,
counted against their shared vocabulary and L2-normalized, so the dot
product is the cosine of the angle between them.
"""

import re
from collections import Counter
from typing import Any

import numpy as np

_TOKEN = re.compile(r"[a-z0-9]+")


def tokenize(value: Any) -> list[str]:
    """Lower-cased alphanumeric tokens; list values are tokenized item by item."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return [token for item in value for token in tokenize(item)]
    return _TOKEN.findall(str(value).lower())


def term_frequency_matrix(*token_lists: list[str]) -> tuple[np.ndarray, list[str]]:
    """One row of term counts per token list, over their sorted shared vocabulary."""
    vocabulary = sorted(set().union(*token_lists))
    rows = []
    for tokens in token_lists:
        counts = Counter(tokens)
        rows.append([counts[term] for term in vocabulary])
    return np.array(rows, dtype=np.float64).reshape(len(token_lists), len(vocabulary)), vocabulary


def cosine_similarity(a: Any, b: Any) -> float:
    """
    Cosine of the term-frequency vectors of two texts.

    Word order is ignored: "acme widget co" and "co widget acme" score 1.0.
    Text with no tokens on either side scores 0.0.
    """
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0

    vectors, _ = term_frequency_matrix(tokens_a, tokens_b)
    vectors = vectors / np.linalg.norm(vectors, axis=1, keepdims=True)
    return float(min(1.0, vectors[0] @ vectors[1]))
