"""
Match Validator

Structural checks on match results, the merge gate, and a contradiction
scan that annotates (never blocks) high-confidence matches.
"""

import re
from collections.abc import Mapping
from numbers import Real
from typing import Any, Iterable

from linkage.errors import MissingFieldError, ValidationError
from linkage.matching.dates import parse_date
from linkage.models import MatchResult, MatchTier, SemanticType, SemanticView

MERGE_FIELD_MIN_SCORE = 0.7

EMAIL_CONFLICT = "Different email addresses but high confidence match"
PHONE_CONFLICT = "Different phone numbers but high confidence match"
BIRTH_DATE_CONFLICT = "Different birth dates but high confidence match"

_NON_DIGITS = re.compile(r"\D")


class MatchValidator:
    """
    Validates match results and decides whether two records may be merged.

    Args:
        merge_min_confidence: Minimum confidence for a merge
        merge_required_fields: Fields that must each score >= 0.7 for a merge
    """

    def __init__(
        self,
        merge_min_confidence: float = 0.9,
        merge_required_fields: Iterable[SemanticType] = (),
    ):
        self.merge_min_confidence = merge_min_confidence
        self.merge_required_fields = tuple(merge_required_fields)

    def validate_result(self, result: Any) -> MatchResult:
        """
        Check the shape of a match result.

        Raises:
            ValidationError: If confidence, tier or components are malformed
        """
        if not isinstance(result, MatchResult):
            raise ValidationError(f"Expected a MatchResult, got {type(result).__name__}", "result")
        confidence = result.confidence
        if not isinstance(confidence, Real) or isinstance(confidence, bool) or confidence != confidence:
            raise ValidationError("Confidence must be a number", "confidence", confidence)
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError("Confidence must be between 0 and 1", "confidence", confidence)
        if not isinstance(result.tier, MatchTier):
            raise ValidationError(f"Unknown match tier: {result.tier!r}", "tier", result.tier)
        if not isinstance(result.components, Mapping):
            raise ValidationError("Components must be a mapping", "components", result.components)
        return result

    def is_valid(self, result: Any) -> bool:
        try:
            self.validate_result(result)
        except ValidationError:
            return False
        return True

    def can_merge(self, result: MatchResult) -> bool:
        """True when a well-formed result is strong enough to merge the records."""
        if not self.is_valid(result):
            return False
        if result.confidence < self.merge_min_confidence:
            return False
        return all(
            result.components.get(semantic_type, 0.0) >= MERGE_FIELD_MIN_SCORE
            for semantic_type in self.merge_required_fields
        )

    def check_false_positives(
        self,
        result: MatchResult,
        source: SemanticView,
        target: SemanticView,
    ) -> list[str]:
        """
        Contradictions between two records that matched with HIGH/MEDIUM tier.

        Returns:
            Warning messages; empty for lower tiers or when nothing conflicts
        """
        if result.tier not in (MatchTier.HIGH, MatchTier.MEDIUM):
            return []

        warnings = []

        email_a = source.get(SemanticType.EMAIL)
        email_b = target.get(SemanticType.EMAIL)
        if email_a and email_b and str(email_a).strip().lower() != str(email_b).strip().lower():
            warnings.append(EMAIL_CONFLICT)

        phone_a = _NON_DIGITS.sub("", str(source.get(SemanticType.PHONE) or ""))
        phone_b = _NON_DIGITS.sub("", str(target.get(SemanticType.PHONE) or ""))
        if len(phone_a) >= 10 and len(phone_b) >= 10 and phone_a[-4:] != phone_b[-4:]:
            warnings.append(PHONE_CONFLICT)

        born_a = parse_date(source.get(SemanticType.DATE_OF_BIRTH))
        born_b = parse_date(target.get(SemanticType.DATE_OF_BIRTH))
        if born_a and born_b and born_a != born_b:
            warnings.append(BIRTH_DATE_CONFLICT)

        return warnings

    def validate_candidate(
        self,
        source: SemanticView,
        target: SemanticView,
        required_fields: Iterable[SemanticType],
    ) -> None:
        """
        Raises:
            MissingFieldError: If either side lacks a required semantic type
        """
        for semantic_type in required_fields:
            if source.get(semantic_type) in (None, "", []):
                raise MissingFieldError(semantic_type.value, "source")
            if target.get(semantic_type) in (None, "", []):
                raise MissingFieldError(semantic_type.value, "target")
