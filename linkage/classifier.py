"""
Semantic Type Classifier

Maps a raw field (name, declared type, sample values) to a canonical
semantic type with a confidence score. Field-name aliases are tried first;
sample content is only consulted when no alias matches.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from config.logging import logger
from linkage.errors import SemanticTypeError, ValidationError
from linkage.models import SemanticType
from linkage.rules import FieldMapping

# Checked in this order; the first matching type wins
NAME_PATTERNS: tuple[tuple[SemanticType, tuple[str, ...]], ...] = (
    (SemanticType.EMAIL, (r"^email$", r"^e[-_]?mail", r"^contact[-_]?email", r"^email[-_]?address")),
    (SemanticType.PHONE, (
        r"^phone$", r"^phone[-_]?number", r"^contact[-_]?phone",
        r"^telephone", r"^mobile", r"^cell[-_]?phone",
    )),
    (SemanticType.FIRST_NAME, (r"^first[-_]?name$", r"^given[-_]?name$", r"^f[-_]?name$", r"^forename$")),
    (SemanticType.LAST_NAME, (r"^last[-_]?name$", r"^surname$", r"^family[-_]?name$", r"^l[-_]?name$")),
    (SemanticType.MIDDLE_NAME, (r"^middle[-_]?name$", r"^m[-_]?name$")),
    (SemanticType.FULL_NAME, (r"^name$", r"^full[-_]?name$", r"^person[-_]?name$", r"^display[-_]?name$")),
    (SemanticType.DATE_OF_BIRTH, (r"^date[-_]?of[-_]?birth$", r"^birth[-_]?date$", r"^dob$", r"^born[-_]?on$")),
    (SemanticType.ADDRESS, (r"^address$", r"^street[-_]?address$", r"^addr$", r"^street$")),
    (SemanticType.POSTAL_CODE, (r"^postal[-_]?code$", r"^zip[-_]?code$", r"^zip$", r"^postcode$")),
    (SemanticType.CITY, (r"^city$", r"^town$", r"^municipality$")),
    (SemanticType.STATE, (r"^state$", r"^province$", r"^region$", r"^county$")),
    (SemanticType.COUNTRY, (r"^country$", r"^nation$")),
    (SemanticType.GENDER, (r"^gender$", r"^sex$")),
    (SemanticType.TAGS, (r"^tags?$", r"^labels?$", r"^categories$", r"^keywords$")),
    (SemanticType.LOCATION, (r"^location$", r"^coordinates$", r"^geo(?:[-_]?point)?$", r"^lat[-_]?lng$")),
)

_COMPILED_NAME_PATTERNS = tuple(
    (semantic_type, tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns))
    for semantic_type, patterns in NAME_PATTERNS
)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9]{10,15}$")
POSTAL_CODE_PATTERN = re.compile(r"^[0-9]{5}(-[0-9]{4})?$")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
GENDER_VALUES = frozenset({"m", "f", "male", "female", "man", "woman"})

NAME_MATCH_CONFIDENCE = 0.7
CONTENT_MATCH_CONFIDENCE = 0.6
FULL_SAMPLE_COUNT = 10


@dataclass
class FieldDescriptor:
    """A raw field as seen in a source schema."""
    name: str
    declared_type: Optional[str] = None
    sample_values: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class Classification:
    """Detected semantic type for one field."""
    semantic_type: SemanticType
    confidence: float
    matched_by: Optional[str] = None  # "name", "content", "name+content"

    @property
    def is_known(self) -> bool:
        return self.semantic_type != SemanticType.UNKNOWN


def detect_from_name(name: str) -> Optional[SemanticType]:
    """Semantic type suggested by the field name alone."""
    for semantic_type, patterns in _COMPILED_NAME_PATTERNS:
        if any(pattern.search(name) for pattern in patterns):
            return semantic_type
    return None


def detect_from_content(samples: Sequence[Any], declared_type: Optional[str] = None) -> Optional[SemanticType]:
    """Semantic type suggested by the sample values (and declared column type)."""
    values = [str(sample).strip() for sample in samples if sample is not None]
    if not values:
        return None

    kind = (declared_type or "").lower()
    if any(EMAIL_PATTERN.match(value) for value in values):
        return SemanticType.EMAIL
    if any(PHONE_PATTERN.match(value) for value in values):
        return SemanticType.PHONE
    if "date" in kind or "timestamp" in kind or any(ISO_DATE_PATTERN.match(value) for value in values):
        return SemanticType.DATE_OF_BIRTH
    if any(POSTAL_CODE_PATTERN.match(value) for value in values):
        return SemanticType.POSTAL_CODE
    if any(value.lower() in GENDER_VALUES for value in values):
        return SemanticType.GENDER
    return None


class SemanticTypeClassifier:
    """
    Deterministic field classifier.

    Usage:
        classifier = SemanticTypeClassifier()
        result = classifier.classify(FieldDescriptor("given_name", "varchar", ["Ann"]))
        # result.semantic_type == SemanticType.FIRST_NAME
    """

    def classify(self, descriptor: FieldDescriptor) -> Classification:
        """
        Classify a single field.

        Args:
            descriptor: Field name, declared type and optional samples

        Returns:
            Classification; UNKNOWN with confidence 0.0 when nothing matches

        Raises:
            ValidationError: If the descriptor has no name
        """
        if descriptor is None or not isinstance(descriptor.name, str) or not descriptor.name.strip():
            raise ValidationError("Field descriptor has no name", "name", getattr(descriptor, "name", None))

        name = descriptor.name.strip()
        samples = list(descriptor.sample_values or [])
        by_name = detect_from_name(name)
        by_content = detect_from_content(samples, descriptor.declared_type)

        semantic_type = by_name or by_content
        if semantic_type is None:
            return Classification(SemanticType.UNKNOWN, 0.0)

        confidence = 0.0
        matched = []
        if by_name == semantic_type:
            confidence += NAME_MATCH_CONFIDENCE
            matched.append("name")
        if by_content == semantic_type:
            confidence += CONTENT_MATCH_CONFIDENCE
            matched.append("content")

        non_null = sum(1 for sample in samples if sample is not None)
        if non_null:
            confidence *= 0.7 + 0.3 * min(non_null / FULL_SAMPLE_COUNT, 1.0)

        return Classification(semantic_type, min(confidence, 1.0), "+".join(matched))

    def infer_mappings(
        self,
        descriptors: Sequence[FieldDescriptor],
        required: Iterable[SemanticType] = (),
    ) -> list[FieldMapping]:
        """
        Build field mappings for a schema, one field per semantic type.

        The most confident field wins each type; among equally confident
        fields the first one listed is used.

        Raises:
            SemanticTypeError: If a required type is not detected, or two fields
                claim a required type with the same confidence
        """
        best: dict[SemanticType, tuple[Classification, FieldDescriptor]] = {}
        tied: set[SemanticType] = set()

        for descriptor in descriptors:
            result = self.classify(descriptor)
            if not result.is_known:
                logger.debug(f"Field '{descriptor.name}' left unmapped")
                continue
            current = best.get(result.semantic_type)
            if current is None or result.confidence > current[0].confidence:
                best[result.semantic_type] = (result, descriptor)
                tied.discard(result.semantic_type)
            elif result.confidence == current[0].confidence:
                tied.add(result.semantic_type)

        for semantic_type in required:
            if semantic_type not in best:
                raise SemanticTypeError(
                    f"Required field type {semantic_type.value} not found in schema",
                    semantic_type.value,
                )
            if semantic_type in tied:
                raise SemanticTypeError(
                    f"Ambiguous mapping for required type {semantic_type.value}: "
                    "several fields match with equal confidence",
                    semantic_type.value,
                )

        return [
            FieldMapping(semantic_type=semantic_type, source_field=descriptor.name)
            for semantic_type, (_, descriptor) in best.items()
        ]
