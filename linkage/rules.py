"""
Rule configuration

Immutable, validated configuration objects passed into each component at
construction. They are plain pydantic models so the same structure can be
serialized (``to_dict``) and handed to a bulk-query backend.
"""

from types import MappingProxyType
from typing import Any, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from linkage.errors import ConfigurationError
from linkage.models import BlockingStrategy, DistanceDecay, SemanticType

DEFAULT_FIELD_WEIGHTS: Mapping[SemanticType, float] = MappingProxyType({
    SemanticType.EMAIL: 0.9,
    SemanticType.PHONE: 0.8,
    SemanticType.DATE_OF_BIRTH: 0.8,
    SemanticType.FIRST_NAME: 0.6,
    SemanticType.LAST_NAME: 0.7,
    SemanticType.FULL_NAME: 0.7,
    SemanticType.POSTAL_CODE: 0.7,
    SemanticType.ADDRESS: 0.5,
    SemanticType.CITY: 0.4,
    SemanticType.STATE: 0.3,
    SemanticType.COUNTRY: 0.3,
    SemanticType.MIDDLE_NAME: 0.3,
    SemanticType.GENDER: 0.2,
})

DEFAULT_WEIGHT = 0.5
PRIORITY_FIELD_BOOST = 1.5

ModelT = TypeVar("ModelT", bound="RuleModel")


class RuleModel(BaseModel):
    """Frozen pydantic base that reports problems as ConfigurationError."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except PydanticValidationError as exc:
            error = exc.errors()[0]
            key = ".".join(str(part) for part in error["loc"]) or None
            raise ConfigurationError(
                f"Invalid {type(self).__name__} configuration at '{key}': {error['msg']}",
                key,
            ) from exc

    def to_dict(self) -> dict[str, Any]:
        """Serializable form consumed by external rule compilers."""
        return self.model_dump(mode="json")


class FieldMapping(RuleModel):
    """Maps a source column onto a semantic type."""
    semantic_type: SemanticType
    source_field: str = Field(min_length=1)
    target_field: Optional[str] = None


class ConfidenceThresholds(RuleModel):
    """Tier cut-offs. Must satisfy HIGH >= MEDIUM >= LOW >= MINIMUM."""
    high: float = Field(default=0.90, ge=0.0, le=1.0)
    medium: float = Field(default=0.70, ge=0.0, le=1.0)
    low: float = Field(default=0.50, ge=0.0, le=1.0)
    minimum: float = Field(default=0.30, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_descending(self) -> "ConfidenceThresholds":
        if not (self.high >= self.medium >= self.low >= self.minimum):
            raise ConfigurationError(
                "Confidence thresholds must be in descending order: "
                f"HIGH ({self.high}) >= MEDIUM ({self.medium}) >= "
                f"LOW ({self.low}) >= MINIMUM ({self.minimum})",
                "confidenceThresholds",
            )
        return self


class ScoringRules(RuleModel):
    """Per-field weights and optional per-field minimum scores.

    Both maps are read-only once validated.
    """
    field_weights: dict[SemanticType, float] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS), validate_default=True
    )
    min_field_scores: dict[SemanticType, float] = Field(default_factory=dict, validate_default=True)
    priority_fields: tuple[SemanticType, ...] = ()
    default_weight: float = Field(default=DEFAULT_WEIGHT, ge=0.0, le=1.0)

    @field_validator("field_weights", "min_field_scores", mode="after")
    @classmethod
    def _read_only(cls, value: dict[SemanticType, float]) -> Mapping[SemanticType, float]:
        return MappingProxyType(dict(value))

    @field_serializer("field_weights", "min_field_scores")
    def _serialize_map(self, value: Mapping[SemanticType, float]) -> dict[str, float]:
        return {semantic_type.value: score for semantic_type, score in value.items()}

    @model_validator(mode="after")
    def _check_weights(self) -> "ScoringRules":
        if not self.field_weights:
            raise ConfigurationError("Scoring rules define no field weights", "fieldWeights")
        for semantic_type, weight in self.field_weights.items():
            if not 0.0 <= weight <= 1.0:
                raise ConfigurationError(
                    f'Field weight for "{semantic_type.value}" must be between 0 and 1',
                    f"fieldWeights.{semantic_type.value}",
                )
        for semantic_type, minimum in self.min_field_scores.items():
            if not 0.0 <= minimum <= 1.0:
                raise ConfigurationError(
                    f'Minimum score for "{semantic_type.value}" must be between 0 and 1',
                    f"minFieldScores.{semantic_type.value}",
                )
        return self

    def weight_for(self, semantic_type: SemanticType) -> float:
        weight = self.field_weights.get(semantic_type, self.default_weight)
        if semantic_type in self.priority_fields:
            weight *= PRIORITY_FIELD_BOOST
        return weight

    def meets_minimum(self, semantic_type: SemanticType, score: float) -> bool:
        return score >= self.min_field_scores.get(semantic_type, 0.0)


class GeoConfig(RuleModel):
    """Distance decay for geospatial comparisons."""
    max_distance_km: float = Field(default=5.0, gt=0.0)
    decay: DistanceDecay = DistanceDecay.LINEAR


class MatchingConfig(RuleModel):
    """Everything the pairwise engine needs, fixed at construction."""
    thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    scoring: ScoringRules = Field(default_factory=ScoringRules)
    geo: GeoConfig = Field(default_factory=GeoConfig)
    max_workers: int = Field(default=4, ge=1)
    merge_min_confidence: float = Field(default=0.90, ge=0.0, le=1.0)
    merge_required_fields: tuple[SemanticType, ...] = ()
    text_cosine: bool = False

    @classmethod
    def from_settings(cls, app_settings: Any) -> "MatchingConfig":
        """Build a config from environment-driven application settings."""
        return cls(
            thresholds=ConfidenceThresholds(
                high=app_settings.MATCH_THRESHOLD_HIGH,
                medium=app_settings.MATCH_THRESHOLD_MEDIUM,
                low=app_settings.MATCH_THRESHOLD_LOW,
                minimum=app_settings.MATCH_THRESHOLD_MINIMUM,
            ),
            geo=GeoConfig(
                max_distance_km=app_settings.GEO_MAX_DISTANCE_KM,
                decay=app_settings.GEO_DECAY,
            ),
            max_workers=app_settings.MATCH_WORKERS,
            merge_min_confidence=app_settings.MERGE_MIN_CONFIDENCE,
            text_cosine=app_settings.TEXT_COSINE,
        )


class ReferenceSource(RuleModel):
    """One reference data source in a waterfall.

    Lower ``priority`` means higher precedence.
    """
    id: str = Field(min_length=1)
    priority: int
    name: Optional[str] = None
    blocking: tuple[BlockingStrategy, ...] = ()
    scoring: Optional[ScoringRules] = None
    confidence_multiplier: float = Field(default=1.0, gt=0.0)
    required_fields: tuple[SemanticType, ...] = ()
    field_mappings: tuple[FieldMapping, ...] = ()
    append_fields: tuple[str, ...] = ()


class WaterfallConfig(RuleModel):
    """Priority-ordered multi-source resolution rules."""
    sources: tuple[ReferenceSource, ...] = Field(min_length=1)
    thresholds: ConfidenceThresholds = Field(default_factory=ConfidenceThresholds)
    default_scoring: Optional[ScoringRules] = None
    default_blocking: tuple[BlockingStrategy, ...] = ()
    allow_multiple_matches: bool = False
    max_matches: int = Field(default=1, ge=1)
    max_workers: int = Field(default=4, ge=1)

    @model_validator(mode="after")
    def _check_sources(self) -> "WaterfallConfig":
        seen_ids: set[str] = set()
        seen_priorities: dict[int, str] = {}
        for source in self.sources:
            if source.id in seen_ids:
                raise ConfigurationError(f"Duplicate reference source id: {source.id}", "sources")
            seen_ids.add(source.id)
            if source.priority in seen_priorities:
                raise ConfigurationError(
                    f"Reference sources {seen_priorities[source.priority]} and {source.id} "
                    f"share priority {source.priority}",
                    f"sources.{source.id}.priority",
                )
            seen_priorities[source.priority] = source.id
            if source.scoring is None and self.default_scoring is None:
                raise ConfigurationError(
                    f"No scoring rules defined for reference source {source.id}",
                    f"sources.{source.id}.scoring",
                )
            if not source.blocking and not self.default_blocking:
                raise ConfigurationError(
                    f"No blocking rules defined for reference source {source.id}",
                    f"sources.{source.id}.blocking",
                )
        return self

    def ordered_sources(self) -> list[ReferenceSource]:
        return sorted(self.sources, key=lambda source: source.priority)

    def scoring_for(self, source: ReferenceSource) -> ScoringRules:
        return source.scoring or self.default_scoring

    def blocking_for(self, source: ReferenceSource) -> tuple[BlockingStrategy, ...]:
        return source.blocking or self.default_blocking


def load_rules(data: Mapping[str, Any], model: Type[ModelT] = MatchingConfig) -> ModelT:
    """
    Validate a plain configuration mapping into an immutable rule object.

    Args:
        data: Plain structure (e.g. parsed JSON/YAML)
        model: Rule model to build (MatchingConfig, WaterfallConfig, ...)

    Returns:
        Validated, frozen rule object

    Raises:
        ConfigurationError: If the mapping is not a valid configuration
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{model.__name__} configuration must be a mapping")
    return model(**data)
