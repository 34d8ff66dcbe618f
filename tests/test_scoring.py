#!/usr/bin/env python3
"""
Tests for rule configuration, match scoring and validation.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from linkage.errors import ConfigurationError, MissingFieldError, ValidationError
from linkage.models import DistanceDecay, MatchResult, MatchTier, SemanticType
from linkage.resolution import MatchScorer, MatchValidator
from linkage.resolution.validator import BIRTH_DATE_CONFLICT, EMAIL_CONFLICT, PHONE_CONFLICT
from linkage.rules import (
    ConfidenceThresholds,
    MatchingConfig,
    ScoringRules,
    WaterfallConfig,
    load_rules,
)

ST = SemanticType


# =============================================================================
# Rule configuration
# =============================================================================

def test_thresholds_must_descend():
    with pytest.raises(ConfigurationError) as exc:
        ConfidenceThresholds(high=0.5, medium=0.7)
    assert exc.value.config_key == "confidenceThresholds"
    with pytest.raises(ConfigurationError):
        ConfidenceThresholds(low=0.2, minimum=0.3)


def test_thresholds_must_be_in_range():
    with pytest.raises(ConfigurationError):
        ConfidenceThresholds(high=1.5)


def test_scoring_rules_validation():
    with pytest.raises(ConfigurationError):
        ScoringRules(field_weights={})
    with pytest.raises(ConfigurationError):
        ScoringRules(field_weights={"email": 1.5})
    with pytest.raises(ConfigurationError):
        ScoringRules(min_field_scores={"email": -0.1})


def test_rules_are_frozen():
    thresholds = ConfidenceThresholds()
    with pytest.raises(Exception):
        thresholds.high = 0.1


def test_scoring_maps_are_read_only():
    """Weights cannot be changed behind validation once rules are built."""
    rules = ScoringRules(min_field_scores={ST.EMAIL: 0.5})
    scorer = MatchScorer(rules)
    with pytest.raises(TypeError):
        rules.field_weights[ST.EMAIL] = 50.0
    with pytest.raises(TypeError):
        rules.min_field_scores[ST.EMAIL] = -3.0
    with pytest.raises(TypeError):
        del rules.field_weights[ST.LAST_NAME]
    assert rules.field_weights[ST.EMAIL] == 0.9
    assert scorer.composite({ST.EMAIL: 1.0, ST.LAST_NAME: 0.5}) == pytest.approx(0.78125)


def test_scoring_maps_do_not_alias_caller_input():
    weights = {ST.EMAIL: 0.9}
    rules = ScoringRules(field_weights=weights)
    weights[ST.EMAIL] = 50.0
    assert rules.field_weights[ST.EMAIL] == 0.9


def test_load_rules():
    config = load_rules({
        "thresholds": {"high": 0.95, "medium": 0.8, "low": 0.6, "minimum": 0.4},
        "scoring": {"field_weights": {"email": 1.0, "lastName": 0.5}},
        "geo": {"decay": "exponential"},
    })
    assert config.thresholds.high == 0.95
    assert config.scoring.field_weights[ST.EMAIL] == 1.0
    assert config.geo.decay == DistanceDecay.EXPONENTIAL


def test_load_rules_rejects_bad_input():
    with pytest.raises(ConfigurationError):
        load_rules({"unexpected": True})
    with pytest.raises(ConfigurationError):
        load_rules(["not", "a", "mapping"])
    with pytest.raises(ConfigurationError):
        load_rules({"thresholds": {"high": 0.1, "medium": 0.9}})
    with pytest.raises(ConfigurationError):
        load_rules({"sources": []}, WaterfallConfig)


def test_to_dict_is_serializable():
    data = MatchingConfig().to_dict()
    assert data["thresholds"]["high"] == 0.9
    assert data["scoring"]["field_weights"]["email"] == 0.9
    assert data["geo"]["decay"] == "linear"


def test_config_from_settings():
    config = MatchingConfig.from_settings(settings)
    assert config.thresholds.high == settings.MATCH_THRESHOLD_HIGH
    assert config.max_workers == settings.MATCH_WORKERS
    assert config.geo.max_distance_km == settings.GEO_MAX_DISTANCE_KM


# =============================================================================
# Scorer
# =============================================================================

def test_composite_weighted_average():
    scorer = MatchScorer()
    # (1.0 * 0.9 + 0.5 * 0.7) / (0.9 + 0.7)
    assert scorer.composite({ST.EMAIL: 1.0, ST.LAST_NAME: 0.5}) == pytest.approx(0.78125)
    assert scorer.composite({}) == 0.0


def test_composite_unlisted_type_weighs_half():
    scorer = MatchScorer()
    assert scorer.composite({ST.TAGS: 1.0, ST.EMAIL: 0.0}) == pytest.approx(0.5 / 1.4)


def test_composite_respects_field_minimums():
    scorer = MatchScorer(ScoringRules(min_field_scores={ST.EMAIL: 0.8}))
    assert scorer.composite({ST.EMAIL: 0.5, ST.LAST_NAME: 1.0}) == 1.0
    assert scorer.composite({ST.EMAIL: 0.5}) == 0.0


def test_priority_fields_are_boosted():
    scorer = MatchScorer(ScoringRules(priority_fields=(ST.LAST_NAME,)))
    # Last name weight 0.7 * 1.5
    assert scorer.composite({ST.EMAIL: 1.0, ST.LAST_NAME: 0.5}) == pytest.approx(1.425 / 1.95)


def test_composite_rejects_bad_component():
    with pytest.raises(ValidationError):
        MatchScorer().composite({ST.EMAIL: 1.5})


def test_classify_tiers():
    scorer = MatchScorer()
    assert scorer.classify(0.95) == MatchTier.HIGH
    assert scorer.classify(0.9) == MatchTier.HIGH
    assert scorer.classify(0.75) == MatchTier.MEDIUM
    assert scorer.classify(0.5) == MatchTier.LOW
    assert scorer.classify(0.3) == MatchTier.MINIMUM
    assert scorer.classify(0.29) == MatchTier.NO_MATCH


def test_classify_is_monotonic():
    scorer = MatchScorer(thresholds=ConfidenceThresholds(high=0.8, medium=0.6, low=0.6, minimum=0.1))
    ranks = [scorer.classify(step / 100).rank for step in range(101)]
    assert ranks == sorted(ranks, reverse=True)


def test_classify_rejects_out_of_range():
    scorer = MatchScorer()
    for bad in (1.2, -0.1, float("nan"), "0.5", None):
        with pytest.raises(ValidationError):
            scorer.classify(bad)


def test_expected_max_confidence():
    scorer = MatchScorer()
    assert scorer.expected_max_confidence({ST.EMAIL, ST.CITY}) == 0.9
    assert scorer.expected_max_confidence({ST.FIRST_NAME, ST.LAST_NAME, ST.DATE_OF_BIRTH}) == 0.9
    assert scorer.expected_max_confidence({ST.FIRST_NAME, ST.LAST_NAME}) == 0.7
    assert scorer.expected_max_confidence({ST.CITY, ST.STATE}) == 0.5
    assert scorer.expected_max_confidence({ST.CITY}) == pytest.approx(0.24)
    assert scorer.expected_max_confidence(set()) == 0.0


def test_score_builds_result():
    result = MatchScorer().score({ST.FIRST_NAME: 1.0, ST.LAST_NAME: 0.5})
    assert result.tier == MatchTier.MEDIUM
    assert result.expected_confidence == 0.7
    assert result.confidence_ratio == pytest.approx(result.confidence / 0.7)
    assert result.resolved_by == "rules"


def test_is_confident_enough():
    scorer = MatchScorer()
    assert not scorer.is_confident_enough(0.8, "merge")
    assert scorer.is_confident_enough(0.8, "append")
    assert not scorer.is_confident_enough(0.35, "link")
    assert scorer.is_confident_enough(0.35)


def test_quality_metrics():
    scorer = MatchScorer()
    results = [
        MatchResult(0.95, MatchTier.HIGH, {ST.EMAIL: 1.0}),
        MatchResult(0.55, MatchTier.LOW, {ST.EMAIL: 0.5, ST.PHONE: 0.7}, ["warning"]),
    ]
    metrics = scorer.quality_metrics(results)
    assert metrics["total"] == 2
    assert metrics["tier_counts"]["HIGH"] == 1
    assert metrics["tier_rates"]["LOW"] == 0.5
    assert metrics["average_confidence"] == pytest.approx(0.75)
    assert metrics["field_coverage"] == {"email": 1.0, "phone": 0.5}
    assert metrics["warning_count"] == 1
    assert scorer.quality_metrics([])["average_confidence"] == 0.0


# =============================================================================
# Validator
# =============================================================================

def test_validate_result():
    validator = MatchValidator()
    good = MatchResult(0.8, MatchTier.MEDIUM, {ST.EMAIL: 1.0})
    assert validator.validate_result(good) is good

    for bad in (
        MatchResult(1.5, MatchTier.HIGH),
        MatchResult("high", MatchTier.HIGH),
        MatchResult(0.5, "LOW"),
        MatchResult(0.5, MatchTier.LOW, ["email"]),
        {"confidence": 0.5},
    ):
        with pytest.raises(ValidationError):
            validator.validate_result(bad)


def test_can_merge():
    validator = MatchValidator(merge_min_confidence=0.9, merge_required_fields=(ST.EMAIL,))
    assert validator.can_merge(MatchResult(0.95, MatchTier.HIGH, {ST.EMAIL: 0.7}))
    assert not validator.can_merge(MatchResult(0.85, MatchTier.MEDIUM, {ST.EMAIL: 1.0}))
    assert not validator.can_merge(MatchResult(0.95, MatchTier.HIGH, {ST.EMAIL: 0.6}))
    assert not validator.can_merge(MatchResult(0.95, MatchTier.HIGH, {}))
    assert not validator.can_merge(MatchResult(1.5, MatchTier.HIGH, {ST.EMAIL: 1.0}))


def test_false_positive_warnings():
    validator = MatchValidator()
    result = MatchResult(0.92, MatchTier.HIGH)
    source = {ST.EMAIL: "a@x.com", ST.PHONE: "5551234567", ST.DATE_OF_BIRTH: "1990-01-01"}
    target = {ST.EMAIL: "b@x.com", ST.PHONE: "5551239999", ST.DATE_OF_BIRTH: "1990-01-02"}
    assert validator.check_false_positives(result, source, target) == [
        EMAIL_CONFLICT,
        PHONE_CONFLICT,
        BIRTH_DATE_CONFLICT,
    ]
    assert validator.check_false_positives(result, source, source) == []


def test_false_positive_scan_skips_weak_tiers_and_short_phones():
    validator = MatchValidator()
    source = {ST.EMAIL: "a@x.com", ST.PHONE: "1234567"}
    target = {ST.EMAIL: "b@x.com", ST.PHONE: "7654321"}
    assert validator.check_false_positives(MatchResult(0.5, MatchTier.LOW), source, target) == []
    assert validator.check_false_positives(MatchResult(0.75, MatchTier.MEDIUM), source, target) == [
        EMAIL_CONFLICT,
    ]


def test_validate_candidate():
    validator = MatchValidator()
    validator.validate_candidate({ST.EMAIL: "a@x.com"}, {ST.EMAIL: "b@x.com"}, [ST.EMAIL])
    with pytest.raises(MissingFieldError) as exc:
        validator.validate_candidate({}, {ST.EMAIL: "b@x.com"}, [ST.EMAIL])
    assert str(exc.value) == "Source missing required field: email"
    with pytest.raises(MissingFieldError) as exc:
        validator.validate_candidate({ST.EMAIL: "a@x.com"}, {ST.PHONE: "1"}, [ST.EMAIL])
    assert exc.value.side == "target"
