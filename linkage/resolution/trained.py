"""
Pluggable trained resolver.

A trained model is optional. It is wrapped in a capability that always
answers with a ResolverOutcome (a result or an error), so callers choose the
rule-based path by inspecting the outcome rather than catching exceptions.
"""

from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional, Protocol, Sequence

from config.logging import logger
from linkage.errors import ValidationError
from linkage.models import MatchResult, MatchTier, Record, SemanticType
from linkage.resolution.scorer import MatchScorer
from linkage.resolution.validator import MatchValidator
from linkage.rules import FieldMapping


class TrainedResolver(Protocol):
    """Contract for an externally trained pairwise model."""

    @property
    def is_trained(self) -> bool:
        ...

    def resolve(self, source: Record, target: Record, mappings: Sequence[FieldMapping]) -> Any:
        """Return a MatchResult or a mapping with confidence/tier/components."""
        ...


@dataclass(frozen=True)
class ResolverOutcome:
    """Either a well-formed result or the reason there is none."""
    result: Optional[MatchResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.error is None

    @classmethod
    def success(cls, result: MatchResult) -> "ResolverOutcome":
        return cls(result=result)

    @classmethod
    def failure(cls, error: str) -> "ResolverOutcome":
        return cls(error=error)


class TrainedCapability:
    """
    Boundary around an optional TrainedResolver.

    Exceptions and malformed outputs from the resolver are converted into
    failure outcomes here and go no further.
    """

    def __init__(
        self,
        resolver: Optional[TrainedResolver],
        scorer: MatchScorer,
        validator: MatchValidator,
    ):
        self.resolver = resolver
        self.scorer = scorer
        self.validator = validator

    @property
    def available(self) -> bool:
        if self.resolver is None:
            return False
        try:
            return bool(self.resolver.is_trained)
        except Exception as e:
            logger.warning(f"Trained resolver status check failed: {e}")
            return False

    def resolve(self, source: Record, target: Record, mappings: Sequence[FieldMapping]) -> ResolverOutcome:
        if not self.available:
            return ResolverOutcome.failure("No trained resolver available")

        try:
            raw = self.resolver.resolve(source, target, mappings)
        except Exception as e:
            logger.warning(
                f"Trained resolver failed for {source.record_id}->{target.record_id}: {e}"
            )
            return ResolverOutcome.failure(f"{type(e).__name__}: {e}")

        try:
            result = self._coerce(raw)
        except ValidationError as e:
            logger.warning(f"Trained resolver returned a malformed result: {e}")
            return ResolverOutcome.failure(str(e))

        return ResolverOutcome.success(replace(result, resolved_by="trained"))

    def _coerce(self, raw: Any) -> MatchResult:
        """Accept a MatchResult or a MatchResult-shaped mapping."""
        if isinstance(raw, MatchResult):
            return self.validator.validate_result(raw)
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Unsupported result type {type(raw).__name__}", "result")

        confidence = raw.get("confidence")
        tier = raw.get("tier")
        if tier is None:
            tier = self.scorer.classify(confidence)
        elif not isinstance(tier, MatchTier):
            try:
                tier = MatchTier(str(tier).upper())
            except ValueError as e:
                raise ValidationError(f"Unknown match tier: {tier!r}", "tier", tier) from e

        components = raw.get("components", {})
        if not isinstance(components, Mapping):
            raise ValidationError("Components must be a mapping", "components", components)
        try:
            typed = {
                key if isinstance(key, SemanticType) else SemanticType(key): score
                for key, score in components.items()
            }
        except ValueError as e:
            raise ValidationError(f"Unknown component type: {e}", "components") from e

        return self.validator.validate_result(
            MatchResult(
                confidence=confidence,
                tier=tier,
                components=typed,
                warnings=list(raw.get("warnings", [])),
            )
        )
