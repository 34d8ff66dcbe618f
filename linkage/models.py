"""
Record Linkage Engine - Core data model

Plain value objects shared by every component. Nothing here is persisted;
all of it is recomputed per call.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional

from linkage.errors import ValidationError


class SemanticType(Enum):
    """Canonical field category, independent of the source column name."""
    FIRST_NAME = "firstName"
    LAST_NAME = "lastName"
    MIDDLE_NAME = "middleName"
    FULL_NAME = "fullName"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    CITY = "city"
    STATE = "state"
    COUNTRY = "country"
    POSTAL_CODE = "postalCode"
    DATE_OF_BIRTH = "dateOfBirth"
    GENDER = "gender"
    TAGS = "tags"                              # Array-valued
    ADDRESS_COMPONENTS = "addressComponents"   # Array-valued
    LOCATION = "location"                      # (lat, lng) pair
    TEXT = "text"                              # Free text
    UNKNOWN = "unknown"                        # Classifier could not decide


NAME_TYPES = frozenset({
    SemanticType.FIRST_NAME,
    SemanticType.LAST_NAME,
    SemanticType.MIDDLE_NAME,
    SemanticType.FULL_NAME,
})

ARRAY_TYPES = frozenset({SemanticType.TAGS, SemanticType.ADDRESS_COMPONENTS})


class BlockingStrategy(Enum):
    """Coarse keys used to prune the comparison space."""
    ZIP = "zip"
    LAST_NAME_ZIP = "lastNameZip"
    PHONE = "phone"
    LAST_NAME_DOB = "lastNameDobYearMonth"
    EMAIL_LOCAL_PART = "emailLocalPart"
    NAME_PHONETIC = "namePhonetic"
    NGRAM = "ngram"                            # Multi-key
    EMAIL_DOMAIN = "emailDomain"
    PHONE_LAST_FOUR = "lastFourDigits"
    TAGS = "tags"                              # Multi-key


class DistanceDecay(Enum):
    """How great-circle distance maps onto a similarity score."""
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    LOGARITHMIC = "logarithmic"


class MatchTier(Enum):
    """Discretized confidence bucket."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    MINIMUM = "MINIMUM"
    NO_MATCH = "NO_MATCH"

    @property
    def rank(self) -> int:
        """Lower rank is a stronger tier."""
        return _TIER_RANK[self]


_TIER_RANK = {
    MatchTier.HIGH: 0,
    MatchTier.MEDIUM: 1,
    MatchTier.LOW: 2,
    MatchTier.MINIMUM: 3,
    MatchTier.NO_MATCH: 4,
}


# Semantic type -> standardized value
SemanticView = dict[SemanticType, Any]


@dataclass(frozen=True)
class Record:
    """A source record: an identifier plus an ordered field mapping."""
    record_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], id_field: str = "id") -> "Record":
        """Build a record from a plain row, taking its id from ``id_field``."""
        if id_field not in data or data[id_field] in (None, ""):
            raise ValidationError(f"Row has no '{id_field}' value", id_field, data)
        return cls(record_id=str(data[id_field]), fields=dict(data))


@dataclass(frozen=True)
class SimilarityResult:
    """Score for one field, keyed by semantic type."""
    semantic_type: SemanticType
    score: float


@dataclass
class MatchResult:
    """Outcome of comparing two records."""
    confidence: float = 0.0
    tier: MatchTier = MatchTier.NO_MATCH
    components: dict[SemanticType, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    expected_confidence: Optional[float] = None
    confidence_ratio: Optional[float] = None
    resolved_by: str = "rules"

    @property
    def is_match(self) -> bool:
        return self.tier != MatchTier.NO_MATCH

    def with_warnings(self, warnings: list[str]) -> "MatchResult":
        """Return a copy carrying additional warnings."""
        if not warnings:
            return self
        return replace(self, warnings=[*self.warnings, *warnings])

    def for_pair(self, source_id: str, target_id: str) -> "MatchResult":
        return replace(self, source_id=source_id, target_id=target_id)

    def __repr__(self) -> str:
        pair = f"{self.source_id}->{self.target_id}, " if self.source_id else ""
        return f"<MatchResult({pair}{self.tier.value}, conf={self.confidence:.2f})>"


@dataclass(frozen=True)
class Cluster:
    """Record identifiers deemed to refer to the same entity."""
    cluster_id: str
    record_ids: tuple[str, ...]
    confidence: float

    @property
    def size(self) -> int:
        return len(self.record_ids)
