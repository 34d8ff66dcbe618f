"""
Match Engine

Builds semantic views, scores record pairs (trained capability first, rules
otherwise) and runs batch comparisons over a bounded worker pool.
"""

import itertools
import time
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from config.logging import logger
from config.settings import settings
from linkage.blocking import BlockingKeyGenerator
from linkage.errors import DeadlineExceededError, ValidationError
from linkage.matching.metrics import JellyfishMetrics, StringMetrics
from linkage.matching.similarity import SimilarityLibrary
from linkage.models import BlockingStrategy, MatchResult, MatchTier, Record, SemanticView
from linkage.resolution.scorer import MatchScorer
from linkage.resolution.trained import TrainedCapability, TrainedResolver
from linkage.resolution.validator import MatchValidator
from linkage.rules import FieldMapping, MatchingConfig, ScoringRules
from linkage.standardizer import FieldStandardizer

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


def check_deadline(deadline: Optional[float]) -> None:
    """Raise if a ``time.monotonic()`` deadline has passed."""
    if deadline is not None and time.monotonic() > deadline:
        raise DeadlineExceededError("Deadline exceeded before work could start")


def run_batch(
    items: Sequence[ItemT],
    work: Callable[[ItemT], ResultT],
    max_workers: int,
    deadline: Optional[float] = None,
    label: str = "item",
) -> list[tuple[ItemT, ResultT]]:
    """
    Apply ``work`` to every item over a bounded thread pool.

    Failures of individual items are logged and left out of the output. A
    passed deadline aborts the whole batch with DeadlineExceededError.

    Returns:
        (item, result) pairs in completion order; callers sort them
    """
    if not items:
        return []

    def guarded(item: ItemT) -> ResultT:
        check_deadline(deadline)
        return work(item)

    completed: list[tuple[ItemT, ResultT]] = []
    failed = 0
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as executor:
        future_to_item = {executor.submit(guarded, item): item for item in items}
        for future in as_completed(future_to_item):
            item = future_to_item[future]
            try:
                completed.append((item, future.result()))
            except DeadlineExceededError:
                for pending in future_to_item:
                    pending.cancel()
                raise
            except Exception as e:
                failed += 1
                logger.warning(f"Skipping {label} {item}: {type(e).__name__}: {e}")

    logger.info(f"Processed {len(completed)}/{len(items)} {label}s ({failed} failed)")
    return completed


def index_records(records: Iterable[Record], side: str) -> dict[str, Record]:
    indexed: dict[str, Record] = {}
    for record in records:
        if not isinstance(record, Record):
            raise ValidationError(f"Expected a Record in {side} records, got {type(record).__name__}")
        if record.record_id in indexed:
            raise ValidationError(f"Duplicate {side} record id: {record.record_id}", "record_id", record.record_id)
        indexed[record.record_id] = record
    return indexed


class MatchEngine:
    """
    Pairwise and batch record matching.

    Usage:
        engine = MatchEngine()
        result = engine.evaluate(customer, contact, mappings)
        matches = engine.find_matches(customers, contacts, mappings,
                                      blocking=[BlockingStrategy.ZIP])
    """

    def __init__(
        self,
        config: Optional[MatchingConfig] = None,
        metrics: Optional[StringMetrics] = None,
        similarity: Optional[SimilarityLibrary] = None,
        standardizer: Optional[FieldStandardizer] = None,
        trained: Optional[TrainedResolver] = None,
    ):
        self.config = config or MatchingConfig.from_settings(settings)
        self.metrics = metrics or JellyfishMetrics()
        self.similarity = similarity or SimilarityLibrary(
            self.metrics, self.config.geo, text_cosine=self.config.text_cosine
        )
        self.standardizer = standardizer or FieldStandardizer()
        self.scorer = MatchScorer(self.config.scoring, self.config.thresholds)
        self.validator = MatchValidator(
            self.config.merge_min_confidence,
            self.config.merge_required_fields,
        )
        self.trained = TrainedCapability(trained, self.scorer, self.validator)

    def scorer_for(self, scoring: Optional[ScoringRules] = None) -> MatchScorer:
        if scoring is None:
            return self.scorer
        return MatchScorer(scoring, self.config.thresholds)

    def semantic_view(
        self,
        record: Record,
        mappings: Sequence[FieldMapping],
        use_target_field: bool = False,
    ) -> SemanticView:
        """
        Standardized semantic view of a record.

        Args:
            record: Source record
            mappings: Field mappings; the first non-empty value wins per type
            use_target_field: Read ``target_field`` (falling back to
                ``source_field``) instead of ``source_field``

        Raises:
            ValidationError: If the record or a mapping is malformed
        """
        if not isinstance(record, Record):
            raise ValidationError(f"Expected a Record, got {type(record).__name__}", "record")
        if not isinstance(record.fields, Mapping):
            raise ValidationError("Record fields must be a mapping", "fields", record.fields)

        view: SemanticView = {}
        for mapping in mappings:
            if not isinstance(mapping, FieldMapping):
                raise ValidationError(
                    f"Expected a FieldMapping, got {type(mapping).__name__}", "mappings", mapping
                )
            if mapping.semantic_type in view:
                continue
            field_name = (mapping.target_field or mapping.source_field) if use_target_field else mapping.source_field
            value = self.standardizer.standardize(record.get(field_name), mapping.semantic_type)
            if value is not None:
                view[mapping.semantic_type] = value
        return view

    def compare_views(
        self,
        source: SemanticView,
        target: SemanticView,
        scorer: Optional[MatchScorer] = None,
        check_conflicts: bool = True,
    ) -> MatchResult:
        """Rule-based result for two semantic views, with false-positive warnings."""
        scorer = scorer or self.scorer
        components = self.similarity.compare_views(source, target)
        result = scorer.score(components, available_fields=components.keys())
        if not check_conflicts:
            return result
        return result.with_warnings(self.validator.check_false_positives(result, source, target))

    def score_pair(
        self,
        source: Record,
        target: Record,
        source_view: SemanticView,
        target_view: SemanticView,
        mappings: Sequence[FieldMapping],
        scorer: Optional[MatchScorer] = None,
        check_conflicts: bool = True,
    ) -> MatchResult:
        """
        Trained capability when it yields a result, rule-based scoring otherwise.

        With ``check_conflicts=False`` the false-positive scan is left to the
        caller, which must run it once the final tier is known.
        """
        result = None
        if self.trained.available:
            outcome = self.trained.resolve(source, target, mappings)
            if outcome.ok:
                result = outcome.result
                if check_conflicts:
                    result = result.with_warnings(
                        self.validator.check_false_positives(result, source_view, target_view)
                    )
            else:
                logger.debug(f"Falling back to rules for {source.record_id}->{target.record_id}: {outcome.error}")

        if result is None:
            result = self.compare_views(source_view, target_view, scorer, check_conflicts)
        return result.for_pair(source.record_id, target.record_id)

    def evaluate(
        self,
        source: Record,
        target: Record,
        mappings: Sequence[FieldMapping],
        target_mappings: Optional[Sequence[FieldMapping]] = None,
        scoring: Optional[ScoringRules] = None,
    ) -> MatchResult:
        """
        Compare two records.

        Args:
            source: Source record
            target: Target record
            mappings: Mappings for the source (and, via target_field, the target)
            target_mappings: Separate mappings for the target record
            scoring: Scoring rules overriding the engine's configuration

        Returns:
            MatchResult (possibly NO_MATCH) carrying both record ids
        """
        source_view = self.semantic_view(source, mappings)
        if target_mappings is None:
            target_view = self.semantic_view(target, mappings, use_target_field=True)
        else:
            target_view = self.semantic_view(target, target_mappings)
        return self.score_pair(source, target, source_view, target_view, mappings, self.scorer_for(scoring))

    def find_matches(
        self,
        sources: Iterable[Record],
        targets: Iterable[Record],
        mappings: Sequence[FieldMapping],
        target_mappings: Optional[Sequence[FieldMapping]] = None,
        blocking: Optional[Sequence[BlockingStrategy]] = None,
        min_tier: MatchTier = MatchTier.MINIMUM,
        scoring: Optional[ScoringRules] = None,
        deadline: Optional[float] = None,
    ) -> list[MatchResult]:
        """
        Match every source record against the target records.

        Args:
            sources: Source records
            targets: Target records
            mappings: Field mappings (see ``evaluate``)
            target_mappings: Separate mappings for the targets
            blocking: Strategies limiting candidate pairs; None compares all
            min_tier: Weakest tier kept in the output
            scoring: Scoring rules overriding the engine's configuration
            deadline: ``time.monotonic()`` value after which no pair starts

        Returns:
            Results sorted by confidence (desc), then source id, then target id

        Raises:
            ValidationError: On malformed records or mappings
            DeadlineExceededError: If the deadline passes mid-batch
        """
        source_records = index_records(sources, "source")
        target_records = index_records(targets, "target")
        source_views = {rid: self.semantic_view(r, mappings) for rid, r in source_records.items()}
        if target_mappings is None:
            target_views = {
                rid: self.semantic_view(r, mappings, use_target_field=True)
                for rid, r in target_records.items()
            }
        else:
            target_views = {rid: self.semantic_view(r, target_mappings) for rid, r in target_records.items()}

        if blocking:
            pairs = BlockingKeyGenerator(blocking, self.metrics).candidate_pairs(source_views, target_views)
        else:
            pairs = list(itertools.product(source_records, target_records))
        logger.info(
            f"Comparing {len(pairs)} candidate pairs "
            f"({len(source_records)} sources x {len(target_records)} targets)"
        )

        scorer = self.scorer_for(scoring)

        def score(pair: tuple[str, str]) -> MatchResult:
            source_id, target_id = pair
            return self.score_pair(
                source_records[source_id],
                target_records[target_id],
                source_views[source_id],
                target_views[target_id],
                mappings,
                scorer,
            )

        scored = run_batch(pairs, score, self.config.max_workers, deadline, label="pair")
        results = [result for _, result in scored if result.tier.rank <= min_tier.rank]
        results.sort(key=lambda r: (-r.confidence, r.source_id, r.target_id))
        return results

    def merge_candidates(self, results: Iterable[MatchResult]) -> list[MatchResult]:
        """Results that pass the merge gate."""
        return [result for result in results if self.validator.can_merge(result)]

    def describe(self) -> dict[str, Any]:
        """Serializable rule configuration in use."""
        return self.config.to_dict()
