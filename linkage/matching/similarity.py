"""
Similarity Library

Per-semantic-type comparators producing scores in [0, 1]. Comparators are
looked up in a dispatch table keyed by SemanticType; the table is checked
for completeness when the library is built.
"""

from typing import Any, Callable, Mapping, Optional

from config.logging import logger
from linkage.errors import ConfigurationError
from linkage.matching.address import address_similarity, jaccard
from linkage.matching.cosine import cosine_similarity
from linkage.matching.dates import date_similarity
from linkage.matching.geo import geo_similarity
from linkage.matching.metrics import JellyfishMetrics, StringMetrics
from linkage.models import ARRAY_TYPES, SemanticType, SemanticView, SimilarityResult
from linkage.rules import GeoConfig

Comparator = Callable[[Any, Any], float]

# Known variants for common given names
NICKNAMES = {
    "william": ["will", "bill", "billy", "willy", "liam"],
    "robert": ["rob", "bob", "bobby", "robbie"],
    "richard": ["rick", "dick", "richie", "ricky"],
    "michael": ["mike", "mikey", "mick"],
    "james": ["jim", "jimmy", "jamie"],
    "john": ["johnny", "jon", "jonathan"],
    "thomas": ["tom", "tommy"],
    "charles": ["charlie", "chuck", "chaz"],
    "christopher": ["chris", "topher"],
    "daniel": ["dan", "danny"],
    "matthew": ["matt", "matty"],
    "anthony": ["tony", "ant"],
    "joseph": ["joe", "joey", "jos"],
    "edward": ["ed", "eddie", "ted", "teddy"],
    "david": ["dave", "davey"],
    "alexander": ["alex", "al", "sandy"],
    "nicholas": ["nick", "nicky"],
    "benjamin": ["ben", "benji", "benny"],
    "steven": ["steve", "stevie"],
    "timothy": ["tim", "timmy"],
    "elizabeth": ["liz", "lizzy", "beth", "betty", "eliza"],
    "katherine": ["kate", "katie", "kathy", "catherine", "cathy"],
    "margaret": ["maggie", "meg", "peggy"],
    "jennifer": ["jen", "jenny"],
    "jessica": ["jess", "jessie"],
    "sarah": ["sara", "sally"],
    "patricia": ["pat", "patty", "tricia"],
    "stephanie": ["steph"],
    "rebecca": ["becky", "becca"],
    "samantha": ["sam", "sammy"],
    "victoria": ["vicky", "tori", "vicki"],
    "deborah": ["deb", "debbie"],
    "christine": ["chris", "christy", "tina"],
}

NICKNAME_SCORE = 0.9

# Name (root or variant) -> every root it belongs to
_NAME_ROOTS: dict[str, set[str]] = {}
for _root, _variants in NICKNAMES.items():
    for _name in (_root, *_variants):
        _NAME_ROOTS.setdefault(_name, set()).add(_root)


def are_name_variants(a: str, b: str) -> bool:
    """True when two given names share a root in the nickname table."""
    first = str(a).strip().lower()
    second = str(b).strip().lower()
    if not first or not second or first == second:
        return False
    return bool(_NAME_ROOTS.get(first, set()) & _NAME_ROOTS.get(second, set()))


def _digits(value: Any) -> str:
    return "".join(ch for ch in str(value) if ch.isdigit())


def _as_items(value: Any) -> list:
    if isinstance(value, str):
        return [item for item in (part.strip() for part in value.split(",")) if item]
    return list(value)


def array_similarity(a: Any, b: Any) -> float:
    """Case-folded Jaccard over array values."""
    return jaccard(
        {str(item).strip().casefold() for item in _as_items(a)},
        {str(item).strip().casefold() for item in _as_items(b)},
    )


def email_similarity(a: Any, b: Any) -> float:
    first = str(a).strip().lower()
    second = str(b).strip().lower()
    if first == second:
        return 1.0
    if "@" in first and "@" in second and first.rsplit("@", 1)[1] == second.rsplit("@", 1)[1]:
        return 0.5
    return 0.0


def phone_similarity(a: Any, b: Any) -> float:
    first = _digits(a)
    second = _digits(b)
    if first and first == second:
        return 1.0
    if len(first) >= 4 and len(second) >= 4 and first[-4:] == second[-4:]:
        return 0.7
    return 0.0


def postal_code_similarity(a: Any, b: Any) -> float:
    """Longest common prefix (at least 3 digits) over the longer length."""
    first = _digits(a)
    second = _digits(b)
    if not first or not second:
        return 0.0
    prefix = 0
    for ch_a, ch_b in zip(first, second):
        if ch_a != ch_b:
            break
        prefix += 1
    if prefix < 3:
        return 0.0
    return prefix / max(len(first), len(second))


class SimilarityLibrary:
    """
    Dispatches a pair of standardized values to the comparator for its type.

    Usage:
        library = SimilarityLibrary()
        library.compare(SemanticType.FIRST_NAME, "ROBERT", "BOB")  # 0.9
    """

    def __init__(
        self,
        metrics: Optional[StringMetrics] = None,
        geo: Optional[GeoConfig] = None,
        overrides: Optional[Mapping[SemanticType, Comparator]] = None,
        text_cosine: bool = False,
    ):
        self.metrics = metrics or JellyfishMetrics()
        self.geo = geo or GeoConfig()

        table: dict[SemanticType, Comparator] = {
            SemanticType.FIRST_NAME: self.name_similarity,
            SemanticType.LAST_NAME: self.name_similarity,
            SemanticType.MIDDLE_NAME: self.name_similarity,
            SemanticType.FULL_NAME: self.full_name_similarity,
            SemanticType.EMAIL: email_similarity,
            SemanticType.PHONE: phone_similarity,
            SemanticType.ADDRESS: self.address_similarity,
            SemanticType.CITY: self.text_similarity,
            SemanticType.STATE: self.text_similarity,
            SemanticType.COUNTRY: self.text_similarity,
            SemanticType.POSTAL_CODE: postal_code_similarity,
            SemanticType.DATE_OF_BIRTH: date_similarity,
            SemanticType.GENDER: self.text_similarity,
            SemanticType.TAGS: array_similarity,
            SemanticType.ADDRESS_COMPONENTS: array_similarity,
            SemanticType.LOCATION: self.location_similarity,
            SemanticType.TEXT: cosine_similarity if text_cosine else self.text_similarity,
            SemanticType.UNKNOWN: self.text_similarity,
        }
        if overrides:
            table.update(overrides)
        self.comparators = check_dispatch_table(table)

    # ------------------------------------------------------------------
    # Comparators that need the metrics provider or geo rules
    # ------------------------------------------------------------------

    def name_similarity(self, a: Any, b: Any) -> float:
        """
        0.35 * phonetic code A + 0.35 * phonetic code B + 0.30 * edit similarity.

        Known nickname pairs (Robert/Bob) score 0.9 without further work.
        """
        first = str(a).strip().upper()
        second = str(b).strip().upper()
        if first == second:
            return 1.0
        if are_name_variants(first, second):
            return NICKNAME_SCORE
        code_a, code_b = self.metrics.phonetic_match(first, second)
        return 0.35 * code_a + 0.35 * code_b + 0.30 * self.metrics.edit_similarity(first, second)

    def full_name_similarity(self, a: Any, b: Any) -> float:
        """Token-by-token name similarity when both names have the same shape."""
        tokens_a = str(a).split()
        tokens_b = str(b).split()
        if len(tokens_a) > 1 and len(tokens_a) == len(tokens_b):
            scores = [self.name_similarity(x, y) for x, y in zip(tokens_a, tokens_b)]
            return sum(scores) / len(scores)
        return self.name_similarity(a, b)

    def address_similarity(self, a: Any, b: Any) -> float:
        return address_similarity(str(a), str(b), self.metrics)

    def location_similarity(self, a: Any, b: Any) -> float:
        return geo_similarity(a, b, self.geo.max_distance_km, self.geo.decay)

    def text_similarity(self, a: Any, b: Any) -> float:
        return self.metrics.edit_similarity(str(a).strip().upper(), str(b).strip().upper())

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def compare(self, semantic_type: SemanticType, a: Any, b: Any) -> float:
        """
        Compare two standardized values of the given type.

        Args:
            semantic_type: Type selecting the comparator
            a: First value
            b: Second value

        Returns:
            Score in [0, 1]. Missing values score 0.0, identical values 1.0.
            A comparator that cannot interpret its input scores 0.0.
        """
        if _is_missing(a, semantic_type) or _is_missing(b, semantic_type):
            return 0.0
        if a == b:
            return 1.0

        comparator = self.comparators[semantic_type]
        try:
            score = float(comparator(a, b))
        except (ValueError, TypeError) as exc:
            logger.debug(f"{semantic_type.value} comparison failed, scoring 0.0: {exc}")
            return 0.0
        return max(0.0, min(1.0, score))

    def score_fields(self, a: SemanticView, b: SemanticView) -> list[SimilarityResult]:
        """Per-field scores for every semantic type carrying a value on both sides."""
        results = []
        for semantic_type, value in a.items():
            if semantic_type not in b:
                continue
            if _is_missing(value, semantic_type) or _is_missing(b[semantic_type], semantic_type):
                continue
            results.append(SimilarityResult(semantic_type, self.compare(semantic_type, value, b[semantic_type])))
        return results

    def compare_views(self, a: SemanticView, b: SemanticView) -> dict[SemanticType, float]:
        """``score_fields`` keyed by semantic type."""
        return {result.semantic_type: result.score for result in self.score_fields(a, b)}


def check_dispatch_table(table: Mapping[SemanticType, Comparator]) -> dict[SemanticType, Comparator]:
    """
    Ensure every SemanticType has a callable comparator.

    Raises:
        ConfigurationError: If a type is unmapped or mapped to a non-callable
    """
    missing = [t.value for t in SemanticType if t not in table]
    if missing:
        raise ConfigurationError(
            f"No comparator registered for semantic types: {', '.join(missing)}",
            "comparators",
        )
    for semantic_type, comparator in table.items():
        if not callable(comparator):
            raise ConfigurationError(
                f"Comparator for {semantic_type.value} is not callable",
                f"comparators.{semantic_type.value}",
            )
    return dict(table)


def _is_missing(value: Any, semantic_type: SemanticType) -> bool:
    if value is None:
        return True
    if semantic_type in ARRAY_TYPES:
        # Empty arrays are values: two empty arrays are identical
        return False
    if isinstance(value, str):
        return not value.strip()
    return False
