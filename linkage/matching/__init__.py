"""
Similarity Module

Per-semantic-type comparators:
- Names: phonetic codes + edit distance, nickname table
- Addresses: token, component and string similarity
- Dates, postal codes, phones, emails, arrays, coordinates
- Free text: optional token cosine over term-frequency vectors
"""

from linkage.matching.metrics import JellyfishMetrics, StringMetrics
from linkage.matching.cosine import cosine_similarity
from linkage.matching.similarity import (
    SimilarityLibrary,
    are_name_variants,
    array_similarity,
    check_dispatch_table,
)
from linkage.matching.address import jaccard, parse_address

__all__ = [
    "JellyfishMetrics",
    "StringMetrics",
    "SimilarityLibrary",
    "are_name_variants",
    "array_similarity",
    "check_dispatch_table",
    "cosine_similarity",
    "jaccard",
    "parse_address",
]
