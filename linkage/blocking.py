"""
Blocking Key Generator

Emits coarse keys per record so that only records sharing a key under the
same strategy are compared. Most strategies give one key per record; the
n-gram and tag strategies give several. A record lacking the inputs a strategy needs
simply gets no key for it.
"""

import re
from collections import defaultdict
from typing import Mapping, Optional, Sequence

from linkage.errors import ConfigurationError
from linkage.matching.dates import parse_date
from linkage.matching.metrics import JellyfishMetrics, StringMetrics
from linkage.models import BlockingStrategy, SemanticType, SemanticView

BlockKey = tuple[BlockingStrategy, str]

_NON_LETTERS = re.compile(r"[^A-Z]")
_NON_DIGITS = re.compile(r"\D")


def _letters(value) -> str:
    return _NON_LETTERS.sub("", str(value).upper())


def _zip(view: SemanticView) -> Optional[str]:
    digits = _NON_DIGITS.sub("", str(view.get(SemanticType.POSTAL_CODE) or ""))
    return digits[:5] if len(digits) >= 5 else None


def _name_parts(view: SemanticView) -> tuple[str, str]:
    """(first, last) letters, falling back to the tokens of a full name."""
    first = _letters(view.get(SemanticType.FIRST_NAME) or "")
    last = _letters(view.get(SemanticType.LAST_NAME) or "")
    full_tokens = str(view.get(SemanticType.FULL_NAME) or "").split()
    if not first and full_tokens:
        first = _letters(full_tokens[0])
    if not last and len(full_tokens) > 1:
        last = _letters(full_tokens[-1])
    return first, last


def _ngrams(letters: str, n: int = 3, limit: int = 5) -> list[str]:
    """Distinct leading n-grams; a value shorter than n is its own key."""
    if len(letters) < n:
        return [letters] if letters else []
    grams = dict.fromkeys(letters[i:i + n] for i in range(len(letters) - n + 1))
    return list(grams)[:limit]


class BlockingKeyGenerator:
    """
    Builds blocking keys and candidate pairs for a set of strategies.

    Usage:
        blocker = BlockingKeyGenerator([BlockingStrategy.ZIP, BlockingStrategy.PHONE])
        pairs = blocker.candidate_pairs(source_views, target_views)
    """

    def __init__(
        self,
        strategies: Sequence[BlockingStrategy],
        metrics: Optional[StringMetrics] = None,
    ):
        if not strategies:
            raise ConfigurationError("At least one blocking strategy is required", "blocking")
        for strategy in strategies:
            if not isinstance(strategy, BlockingStrategy):
                raise ConfigurationError(f"Unknown blocking strategy: {strategy!r}", "blocking")
        self.strategies = tuple(dict.fromkeys(strategies))
        self.metrics = metrics or JellyfishMetrics()

    def strategy_keys(self, strategy: BlockingStrategy, view: SemanticView) -> list[str]:
        """Keys ``view`` gets under one strategy; empty when its inputs are missing."""
        if strategy == BlockingStrategy.NGRAM:
            _, last = _name_parts(view)
            return _ngrams(last)

        if strategy == BlockingStrategy.TAGS:
            tags = view.get(SemanticType.TAGS) or ()
            if isinstance(tags, str):
                tags = tags.split(",")
            cleaned = (str(tag).strip().casefold() for tag in tags if tag is not None)
            return list(dict.fromkeys(tag for tag in cleaned if tag))

        key = self.key_for(strategy, view)
        return [key] if key else []

    def key_for(self, strategy: BlockingStrategy, view: SemanticView) -> Optional[str]:
        """Single key for ``strategy``; multi-key strategies go through ``strategy_keys``."""
        if strategy == BlockingStrategy.ZIP:
            return _zip(view)

        if strategy == BlockingStrategy.LAST_NAME_ZIP:
            _, last = _name_parts(view)
            zip_code = _zip(view)
            if last and zip_code:
                return f"{last[:4]}|{zip_code}"
            return None

        if strategy == BlockingStrategy.PHONE:
            digits = _NON_DIGITS.sub("", str(view.get(SemanticType.PHONE) or ""))
            return digits or None

        if strategy == BlockingStrategy.LAST_NAME_DOB:
            _, last = _name_parts(view)
            born = parse_date(view.get(SemanticType.DATE_OF_BIRTH))
            if last and born:
                return f"{last[:3]}|{born.year:04d}-{born.month:02d}"
            return None

        if strategy == BlockingStrategy.EMAIL_LOCAL_PART:
            email = str(view.get(SemanticType.EMAIL) or "").strip().lower()
            local = email.split("@", 1)[0] if "@" in email else ""
            return local or None

        if strategy == BlockingStrategy.NAME_PHONETIC:
            first, last = _name_parts(view)
            if not first or not last:
                return None
            first_code = self.metrics.phonetic_codes(first)[0]
            last_code = self.metrics.phonetic_codes(last)[0]
            if first_code and last_code:
                return f"{first_code}|{last_code}"
            return None
        if strategy == BlockingStrategy.EMAIL_DOMAIN:
            parts = str(view.get(SemanticType.EMAIL) or "").strip().lower().split("@")
            if len(parts) == 2 and parts[1]:
                return parts[1]
            return None

        if strategy == BlockingStrategy.PHONE_LAST_FOUR:
            digits = _NON_DIGITS.sub("", str(view.get(SemanticType.PHONE) or ""))
            return digits[-4:] if len(digits) >= 4 else None

        if strategy in (BlockingStrategy.NGRAM, BlockingStrategy.TAGS):
            keys = self.strategy_keys(strategy, view)
            return keys[0] if keys else None

        raise ConfigurationError(f"Unhandled blocking strategy: {strategy.value}", "blocking")

    def keys_for(self, view: SemanticView) -> list[BlockKey]:
        """(strategy, key) for every configured strategy the view has inputs for."""
        return [
            (strategy, key)
            for strategy in self.strategies
            for key in self.strategy_keys(strategy, view)
        ]

    def block_index(self, views: Mapping[str, SemanticView]) -> dict[BlockKey, list[str]]:
        """Inverted index: (strategy, key) -> record ids, in input order."""
        index: dict[BlockKey, list[str]] = defaultdict(list)
        for record_id, view in views.items():
            for block_key in self.keys_for(view):
                index[block_key].append(record_id)
        return dict(index)

    def candidates_for(self, view: SemanticView, index: Mapping[BlockKey, list[str]]) -> list[str]:
        """Ids in ``index`` sharing at least one key with ``view``, sorted."""
        found: set[str] = set()
        for block_key in self.keys_for(view):
            found.update(index.get(block_key, ()))
        return sorted(found)

    def candidate_pairs(
        self,
        left: Mapping[str, SemanticView],
        right: Optional[Mapping[str, SemanticView]] = None,
    ) -> list[tuple[str, str]]:
        """
        Id pairs sharing at least one key under the same strategy.

        Args:
            left: Source views by record id
            right: Target views by record id; None compares ``left`` with itself

        Returns:
            Sorted, de-duplicated pairs. In self-comparison mode each pair is
            ordered (smaller id, larger id) and self-pairs are removed.
        """
        if right is None:
            pairs: set[tuple[str, str]] = set()
            for members in self.block_index(left).values():
                for i, first in enumerate(members):
                    for second in members[i + 1:]:
                        if first != second:
                            pairs.add((min(first, second), max(first, second)))
            return sorted(pairs)

        index = self.block_index(right)
        return sorted(
            (left_id, right_id)
            for left_id, view in left.items()
            for right_id in self.candidates_for(view, index)
        )
