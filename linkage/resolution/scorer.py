"""
Match Scorer

Composite weighted confidence, tier classification and the expected
maximum confidence for a given set of available fields.
"""

from collections import Counter
from numbers import Real
from typing import Any, Iterable, Mapping, Optional, Sequence

from linkage.errors import ValidationError
from linkage.models import MatchResult, MatchTier, SemanticType
from linkage.rules import ConfidenceThresholds, ScoringRules

_ST = SemanticType

# Field combinations that can support a confident match on their own
HIGH_VALUE_GROUPS = (
    frozenset({_ST.EMAIL}),
    frozenset({_ST.PHONE}),
    frozenset({_ST.FIRST_NAME, _ST.LAST_NAME, _ST.DATE_OF_BIRTH}),
    frozenset({_ST.FIRST_NAME, _ST.LAST_NAME, _ST.ADDRESS, _ST.POSTAL_CODE}),
)
MEDIUM_VALUE_GROUPS = (
    frozenset({_ST.FIRST_NAME, _ST.LAST_NAME}),
    frozenset({_ST.ADDRESS, _ST.POSTAL_CODE}),
    frozenset({_ST.LAST_NAME, _ST.POSTAL_CODE}),
)

HIGH_VALUE_CONFIDENCE = 0.9
MEDIUM_VALUE_CONFIDENCE = 0.7
MULTI_FIELD_CONFIDENCE = 0.5
SINGLE_FIELD_FACTOR = 0.6

# Purpose -> tier whose threshold a match must reach
PURPOSE_TIERS = {
    "merge": MatchTier.HIGH,
    "append": MatchTier.MEDIUM,
    "link": MatchTier.LOW,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and value == value


class MatchScorer:
    """
    Turns per-field similarity scores into a confidence and a tier.

    Usage:
        scorer = MatchScorer(ScoringRules(), ConfidenceThresholds())
        result = scorer.score({SemanticType.EMAIL: 1.0, SemanticType.LAST_NAME: 0.8})
    """

    def __init__(
        self,
        scoring: Optional[ScoringRules] = None,
        thresholds: Optional[ConfidenceThresholds] = None,
    ):
        self.scoring = scoring or ScoringRules()
        self.thresholds = thresholds or ConfidenceThresholds()
        self._tier_cutoffs = (
            (MatchTier.HIGH, self.thresholds.high),
            (MatchTier.MEDIUM, self.thresholds.medium),
            (MatchTier.LOW, self.thresholds.low),
            (MatchTier.MINIMUM, self.thresholds.minimum),
        )

    def threshold_for(self, tier: MatchTier) -> float:
        for candidate, cutoff in self._tier_cutoffs:
            if candidate == tier:
                return cutoff
        return 0.0

    def composite(self, components: Mapping[SemanticType, float]) -> float:
        """
        Weighted average of the field scores that meet their minimum.

        Returns:
            Confidence in [0, 1]; 0.0 when no field counts

        Raises:
            ValidationError: If a component score is not a number in [0, 1]
        """
        weighted = 0.0
        total_weight = 0.0
        for semantic_type, score in components.items():
            if not _is_number(score) or not 0.0 <= score <= 1.0:
                raise ValidationError(
                    f"Component score for {semantic_type.value} must be in [0, 1]",
                    semantic_type.value,
                    score,
                )
            if not self.scoring.meets_minimum(semantic_type, score):
                continue
            weight = self.scoring.weight_for(semantic_type)
            weighted += score * weight
            total_weight += weight

        if total_weight <= 0:
            return 0.0
        return max(0.0, min(1.0, weighted / total_weight))

    def classify(self, confidence: float) -> MatchTier:
        """
        Tier for a confidence: the first threshold it meets.

        Raises:
            ValidationError: If confidence is not a number in [0, 1]
        """
        if not _is_number(confidence) or not 0.0 <= confidence <= 1.0:
            raise ValidationError("Confidence must be a number in [0, 1]", "confidence", confidence)
        for tier, cutoff in self._tier_cutoffs:
            if confidence >= cutoff:
                return tier
        return MatchTier.NO_MATCH

    def expected_max_confidence(self, fields: Iterable[SemanticType]) -> float:
        """
        Best confidence a match could plausibly reach with these fields.

        Lets callers spot matches that underperform the data they had.
        """
        available = frozenset(fields)
        if not available:
            return 0.0
        if any(group <= available for group in HIGH_VALUE_GROUPS):
            return HIGH_VALUE_CONFIDENCE
        if any(group <= available for group in MEDIUM_VALUE_GROUPS):
            return MEDIUM_VALUE_CONFIDENCE
        if len(available) >= 2:
            return MULTI_FIELD_CONFIDENCE
        (only,) = available
        base = self.scoring.field_weights.get(only, self.scoring.default_weight)
        return min(1.0, base * SINGLE_FIELD_FACTOR)

    def score(
        self,
        components: Mapping[SemanticType, float],
        available_fields: Optional[Iterable[SemanticType]] = None,
    ) -> MatchResult:
        confidence = self.composite(components)
        fields = set(components) if available_fields is None else set(available_fields)
        expected = self.expected_max_confidence(fields)
        return MatchResult(
            confidence=confidence,
            tier=self.classify(confidence),
            components=dict(components),
            expected_confidence=expected,
            confidence_ratio=(confidence / expected) if expected > 0 else None,
        )

    def is_confident_enough(self, confidence: float, purpose: str = "default") -> bool:
        """
        Whether a confidence is high enough for an intended use.

        merge -> HIGH, append -> MEDIUM, link -> LOW, anything else -> MINIMUM.
        """
        tier = PURPOSE_TIERS.get(purpose, MatchTier.MINIMUM)
        return confidence >= self.threshold_for(tier)

    def quality_metrics(self, results: Sequence[MatchResult]) -> dict[str, Any]:
        """Summary statistics over a batch of results."""
        total = len(results)
        tiers = Counter(result.tier for result in results)
        coverage = Counter(
            semantic_type for result in results for semantic_type in result.components
        )
        return {
            "total": total,
            "tier_counts": {tier.value: tiers.get(tier, 0) for tier in MatchTier},
            "tier_rates": {
                tier.value: (tiers.get(tier, 0) / total if total else 0.0) for tier in MatchTier
            },
            "average_confidence": (
                sum(result.confidence for result in results) / total if total else 0.0
            ),
            "field_coverage": {
                semantic_type.value: count / total for semantic_type, count in coverage.items()
            },
            "warning_count": sum(len(result.warnings) for result in results),
        }
