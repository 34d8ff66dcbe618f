#!/usr/bin/env python3
"""
Tests for priority-ordered waterfall resolution.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from linkage.errors import ConfigurationError, ValidationError
from linkage.matching import SimilarityLibrary
from linkage.matching.similarity import email_similarity
from linkage.models import BlockingStrategy, MatchTier, Record, SemanticType
from linkage.resolution import MatchEngine, WaterfallResolver
from linkage.resolution.validator import EMAIL_CONFLICT
from linkage.rules import (
    FieldMapping,
    MatchingConfig,
    ReferenceSource,
    ScoringRules,
    WaterfallConfig,
    load_rules,
)

ST = SemanticType
ZIP = BlockingStrategy.ZIP

MAPPINGS = [
    FieldMapping(semantic_type=ST.FIRST_NAME, source_field="first_name", target_field="given"),
    FieldMapping(semantic_type=ST.LAST_NAME, source_field="last_name", target_field="family"),
    FieldMapping(semantic_type=ST.EMAIL, source_field="email", target_field="mail"),
    FieldMapping(semantic_type=ST.POSTAL_CODE, source_field="zip", target_field="postcode"),
]


def incoming(record_id, first, last, zip_code, email=None):
    return Record(record_id, {"first_name": first, "last_name": last, "zip": zip_code, "email": email})


def reference(record_id, first, last, zip_code, email=None, **extra):
    return Record(record_id, {"given": first, "family": last, "postcode": zip_code, "mail": email, **extra})


CRM = [reference("c1", "Bob", "Smith", "02139", "bob@x.com", account_id="A-17")]
MARKETING = [
    reference("m1", "Bob", "Smith", "02139", segment="gold"),
    reference("m2", "Robert", "Smith", "02139", segment="silver"),
    reference("m3", "Alice", "Jones", "02139", segment="bronze"),
]


def make_config(crm_multiplier=1.0, **overrides):
    return WaterfallConfig(
        sources=(
            # Listed out of order: priority decides, not position
            ReferenceSource(id="marketing", priority=2, append_fields=("segment",)),
            ReferenceSource(
                id="crm",
                priority=1,
                required_fields=(ST.EMAIL,),
                confidence_multiplier=crm_multiplier,
                append_fields=("account_id",),
            ),
        ),
        default_scoring=ScoringRules(),
        default_blocking=(ZIP,),
        **overrides,
    )


@pytest.fixture
def engine():
    return MatchEngine(MatchingConfig(max_workers=2))


def make_resolver(engine, **kwargs):
    return WaterfallResolver(make_config(**kwargs), {"crm": CRM, "marketing": MARKETING}, engine)


# =============================================================================
# Source ordering
# =============================================================================

def test_sources_are_walked_by_priority(engine):
    resolver = make_resolver(engine)
    assert [source.id for source in resolver.sources] == ["crm", "marketing"]


def test_missing_required_field_skips_source(engine):
    """No email: CRM is skipped and marketing answers."""
    outcome = make_resolver(engine).resolve(incoming("r1", "Robert", "Smith", "02139"), MAPPINGS)
    assert outcome.skipped_sources == ["crm"]
    assert outcome.matched_source == "marketing"
    assert outcome.matches[0].result.target_id == "m2"
    assert outcome.matches[0].appended_fields == {"segment": "silver"}


def test_higher_priority_source_wins_despite_multiplier(engine):
    """A discounted CRM match above LOW still beats a better marketing match."""
    record = incoming("r1", "Robert", "Smith", "02139", "bob@x.com")
    outcome = make_resolver(engine, crm_multiplier=0.6).resolve(record, MAPPINGS)
    assert outcome.matched_source == "crm"
    match = outcome.matches[0]
    # (0.9 * 0.6 + 0.7 + 0.9 + 0.7) / 2.9, discounted by 0.6
    assert match.confidence == pytest.approx(2.84 / 2.9 * 0.6)
    assert match.result.tier == MatchTier.LOW
    assert match.appended_fields == {"account_id": "A-17"}


def test_multiplier_below_low_falls_through(engine):
    record = incoming("r1", "Robert", "Smith", "02139", "bob@x.com")
    outcome = make_resolver(engine, crm_multiplier=0.4).resolve(record, MAPPINGS)
    assert outcome.matched_source == "marketing"
    assert outcome.skipped_sources == []


def test_adjusted_confidence_is_clamped(engine):
    record = incoming("r1", "Robert", "Smith", "02139", "bob@x.com")
    outcome = make_resolver(engine, crm_multiplier=1.5).resolve(record, MAPPINGS)
    assert outcome.best_confidence == 1.0
    assert outcome.matches[0].result.tier == MatchTier.HIGH


# =============================================================================
# Match limits
# =============================================================================

def test_single_match_by_default(engine):
    outcome = make_resolver(engine).resolve(incoming("r1", "Robert", "Smith", "02139"), MAPPINGS)
    assert len(outcome.matches) == 1


def test_multiple_matches(engine):
    resolver = make_resolver(engine, allow_multiple_matches=True, max_matches=5)
    outcome = resolver.resolve(incoming("r1", "Robert", "Smith", "02139"), MAPPINGS)
    # Alice Jones shares only the zip and stays below LOW
    assert [match.result.target_id for match in outcome.matches] == ["m2", "m1"]
    assert outcome.matches[0].confidence >= outcome.matches[1].confidence


def test_unmatched_record(engine):
    outcome = make_resolver(engine).resolve(incoming("r9", "Zed", "Quinn", "10001"), MAPPINGS)
    assert not outcome.is_match
    assert outcome.matched_source is None
    assert outcome.best_confidence == 0.0
    assert "no match" in repr(outcome)


def test_source_with_own_field_mappings(engine):
    config = WaterfallConfig(
        sources=(
            ReferenceSource(
                id="registry",
                priority=1,
                field_mappings=(
                    FieldMapping(semantic_type=ST.LAST_NAME, source_field="surname"),
                    FieldMapping(semantic_type=ST.POSTAL_CODE, source_field="postal"),
                ),
            ),
        ),
        default_scoring=ScoringRules(),
        default_blocking=(ZIP,),
    )
    resolver = WaterfallResolver(config, {"registry": [Record("g1", {"surname": "SMITH", "postal": "02139-4307"})]}, engine)
    outcome = resolver.resolve(incoming("r1", "Robert", "Smith", "02139"), MAPPINGS)
    assert outcome.matched_source == "registry"
    assert set(outcome.matches[0].result.components) == {ST.LAST_NAME, ST.POSTAL_CODE}


# =============================================================================
# Adjusted results
# =============================================================================

def single_source_resolver(engine, multiplier, references):
    config = WaterfallConfig(
        sources=(ReferenceSource(id="crm", priority=1, confidence_multiplier=multiplier),),
        default_scoring=ScoringRules(),
        default_blocking=(ZIP,),
    )
    return WaterfallResolver(config, {"crm": references}, engine)


def test_boosted_match_is_checked_for_conflicts(engine):
    """A LOW raw score boosted to HIGH still gets the contradiction scan."""
    resolver = single_source_resolver(
        engine, 1.5, [reference("c1", "Ann", "Lee", "02139", "ann@a.com")]
    )
    outcome = resolver.resolve(incoming("r1", "Ann", "Lee", "02139", "zed@b.com"), MAPPINGS)
    result = outcome.matches[0].result
    # Raw (0.6 + 0.7 + 0.0 + 0.7) / 2.9 is LOW; x1.5 clamps to 1.0
    assert result.confidence == 1.0
    assert result.tier == MatchTier.HIGH
    assert result.warnings == [EMAIL_CONFLICT]
    assert result.expected_confidence == 0.9
    assert result.confidence_ratio == pytest.approx(1.0 / 0.9)


def test_discounted_match_drops_conflict_warnings(engine):
    """A MEDIUM raw score discounted to LOW carries no contradiction warnings."""
    resolver = single_source_resolver(
        engine, 0.65, [reference("c1", "Ann", "Lee", "02139", "ann@x.com")]
    )
    outcome = resolver.resolve(incoming("r1", "Ann", "Lee", "02139", "lee@x.com"), MAPPINGS)
    result = outcome.matches[0].result
    # Raw (0.6 + 0.7 + 0.5 * 0.9 + 0.7) / 2.9 is MEDIUM
    assert result.confidence == pytest.approx(2.45 / 2.9 * 0.65)
    assert result.tier == MatchTier.LOW
    assert result.warnings == []
    assert result.confidence_ratio == pytest.approx(result.confidence / 0.9)


def test_failing_candidate_only_loses_that_pair():
    def exploding_email(a, b):
        if "boom@x.com" in (a, b):
            raise RuntimeError("comparator crashed")
        return email_similarity(a, b)

    engine = MatchEngine(
        MatchingConfig(max_workers=2),
        similarity=SimilarityLibrary(overrides={ST.EMAIL: exploding_email}),
    )
    resolver = single_source_resolver(
        engine,
        1.0,
        [
            reference("c1", "Ann", "Lee", "02139", "boom@x.com"),
            reference("c2", "Ann", "Lee", "02139", "ann@y.com"),
        ],
    )
    record = incoming("r1", "Ann", "Lee", "02139", "ann@x.com")
    outcome = resolver.resolve(record, MAPPINGS)
    assert [match.result.target_id for match in outcome.matches] == ["c2"]

    outcomes = resolver.resolve_all([record], MAPPINGS)
    assert [outcome.record_id for outcome in outcomes] == ["r1"]
    assert outcomes[0].is_match


# =============================================================================
# Batch resolution
# =============================================================================

def test_resolve_all_orders_by_confidence(engine):
    records = [
        incoming("r3", "Zed", "Quinn", "10001"),
        incoming("r2", "Bob", "Smith", "02139"),
        incoming("r1", "Robert", "Smith", "02139"),
    ]
    outcomes = make_resolver(engine).resolve_all(records, MAPPINGS)
    assert [outcome.record_id for outcome in outcomes] == ["r1", "r2", "r3"]
    assert outcomes[0].best_confidence == outcomes[1].best_confidence == 1.0
    assert not outcomes[2].is_match


# =============================================================================
# Configuration
# =============================================================================

def test_config_errors(engine):
    with pytest.raises(ConfigurationError):
        WaterfallResolver(MatchingConfig(), {}, engine)
    with pytest.raises(ConfigurationError):
        WaterfallResolver(make_config(), {"unknown": []}, engine)
    with pytest.raises(ValidationError):
        WaterfallResolver(make_config(), {"crm": CRM + CRM}, engine)


def test_waterfall_config_validation():
    with pytest.raises(ConfigurationError):
        WaterfallConfig(
            sources=(ReferenceSource(id="a", priority=1), ReferenceSource(id="b", priority=1)),
            default_scoring=ScoringRules(),
            default_blocking=(ZIP,),
        )
    with pytest.raises(ConfigurationError):
        WaterfallConfig(
            sources=(ReferenceSource(id="a", priority=1), ReferenceSource(id="a", priority=2)),
            default_scoring=ScoringRules(),
            default_blocking=(ZIP,),
        )
    with pytest.raises(ConfigurationError):
        WaterfallConfig(sources=(ReferenceSource(id="a", priority=1),), default_blocking=(ZIP,))
    with pytest.raises(ConfigurationError):
        WaterfallConfig(sources=(ReferenceSource(id="a", priority=1),), default_scoring=ScoringRules())
    with pytest.raises(ConfigurationError):
        ReferenceSource(id="a", priority=1, confidence_multiplier=0)


def test_waterfall_config_from_mapping():
    config = load_rules(
        {
            "sources": [
                {"id": "crm", "priority": 1, "blocking": ["zip", "phone"], "scoring": {}},
                {"id": "list", "priority": 2, "blocking": ["namePhonetic"], "scoring": {}},
            ],
            "allow_multiple_matches": True,
            "max_matches": 3,
        },
        WaterfallConfig,
    )
    crm = config.ordered_sources()[0]
    assert config.blocking_for(crm) == (ZIP, BlockingStrategy.PHONE)
    assert config.scoring_for(crm).field_weights[ST.EMAIL] == 0.9
