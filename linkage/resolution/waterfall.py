"""
Waterfall Resolver

Resolves each record against several reference sources in strict priority
order and accepts the first source that yields a qualifying match. A source's
confidence multiplier only moves its own candidates relative to the LOW
threshold; it never lets a lower-priority source outrank a higher one.
"""

import threading
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, Sequence

from config.logging import logger
from linkage.blocking import BlockingKeyGenerator, BlockKey
from linkage.errors import ConfigurationError, ValidationError
from linkage.models import MatchResult, Record, SemanticView
from linkage.resolution.engine import MatchEngine, run_batch
from linkage.resolution.scorer import MatchScorer
from linkage.rules import FieldMapping, ReferenceSource, WaterfallConfig


@dataclass
class WaterfallMatch:
    """A match against one reference record, with copied reference fields."""
    reference_source: str
    result: MatchResult
    appended_fields: dict[str, Any] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        return self.result.confidence


@dataclass
class WaterfallOutcome:
    """Resolution of one source record."""
    record_id: str
    matched_source: Optional[str] = None
    matches: list[WaterfallMatch] = field(default_factory=list)
    skipped_sources: list[str] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return bool(self.matches)

    @property
    def best_confidence(self) -> float:
        return max((match.confidence for match in self.matches), default=0.0)

    def __repr__(self) -> str:
        if self.matched_source:
            return (
                f"<WaterfallOutcome({self.record_id} -> {self.matched_source}, "
                f"{len(self.matches)} match(es), conf={self.best_confidence:.2f})>"
            )
        return f"<WaterfallOutcome({self.record_id}, no match)>"


@dataclass
class _ReferenceData:
    records: dict[str, Record]
    views: dict[str, SemanticView]
    index: dict[BlockKey, list[str]]


class WaterfallResolver:
    """
    Priority-ordered multi-source resolver.

    Resolution strategy, per source record:
    1. Walk reference sources by ascending priority
    2. Skip a source whose required fields the record lacks
    3. Block, score and apply the source's confidence multiplier
    4. Accept the first source with a candidate at or above LOW

    Usage:
        resolver = WaterfallResolver(config, {"crm": crm_records, "list": list_records})
        outcome = resolver.resolve(record, mappings)
        if outcome.is_match:
            best = outcome.matches[0]
    """

    def __init__(
        self,
        config: WaterfallConfig,
        reference_records: Mapping[str, Iterable[Record]],
        engine: Optional[MatchEngine] = None,
    ):
        if not isinstance(config, WaterfallConfig):
            raise ConfigurationError("Waterfall resolution requires a WaterfallConfig", "waterfall")

        known = {source.id for source in config.sources}
        unknown = sorted(set(reference_records) - known)
        if unknown:
            raise ConfigurationError(
                f"Reference records supplied for unknown sources: {', '.join(unknown)}",
                "sources",
            )

        self.config = config
        self.engine = engine or MatchEngine()
        self.sources = config.ordered_sources()
        self._records: dict[str, dict[str, Record]] = {}
        for source in self.sources:
            indexed: dict[str, Record] = {}
            for record in reference_records.get(source.id, ()):
                if record.record_id in indexed:
                    raise ValidationError(
                        f"Duplicate record id {record.record_id} in reference source {source.id}",
                        "record_id",
                        record.record_id,
                    )
                indexed[record.record_id] = record
            self._records[source.id] = indexed

        self._scorers = {
            source.id: MatchScorer(config.scoring_for(source), config.thresholds)
            for source in self.sources
        }
        self._blockers = {
            source.id: BlockingKeyGenerator(config.blocking_for(source), self.engine.metrics)
            for source in self.sources
        }
        self._reference_cache: dict[tuple[str, tuple[FieldMapping, ...]], _ReferenceData] = {}
        self._cache_lock = threading.Lock()

        logger.debug(
            "Waterfall order: "
            + ", ".join(f"{source.id} (priority {source.priority})" for source in self.sources)
        )

    def _reference_data(self, source: ReferenceSource, mappings: Sequence[FieldMapping]) -> _ReferenceData:
        """Views and block index of a source's records, built once per mapping set."""
        own_mappings = tuple(source.field_mappings)
        key = (source.id, own_mappings or tuple(mappings))
        with self._cache_lock:
            cached = self._reference_cache.get(key)
            if cached is not None:
                return cached

            records = self._records[source.id]
            if own_mappings:
                views = {rid: self.engine.semantic_view(r, own_mappings) for rid, r in records.items()}
            else:
                views = {
                    rid: self.engine.semantic_view(r, mappings, use_target_field=True)
                    for rid, r in records.items()
                }
            data = _ReferenceData(records, views, self._blockers[source.id].block_index(views))
            self._reference_cache[key] = data
            return data

    def _appended(self, source: ReferenceSource, reference: Record) -> dict[str, Any]:
        return {name: reference.get(name) for name in source.append_fields if name in reference.fields}

    def _adjust(self, raw: MatchResult, source: ReferenceSource, scorer: MatchScorer) -> MatchResult:
        """Apply the source's multiplier and re-tier; ratio follows the new confidence."""
        adjusted = min(1.0, raw.confidence * source.confidence_multiplier)
        expected = raw.expected_confidence
        return replace(
            raw,
            confidence=adjusted,
            tier=scorer.classify(adjusted),
            confidence_ratio=(adjusted / expected) if expected else None,
        )

    def _match_source(
        self,
        record: Record,
        view: SemanticView,
        source: ReferenceSource,
        mappings: Sequence[FieldMapping],
    ) -> list[MatchResult]:
        """Candidates from one source at or above LOW after the multiplier, best first."""
        data = self._reference_data(source, mappings)
        scorer = self._scorers[source.id]
        low = self.config.thresholds.low

        qualified = []
        for candidate_id in self._blockers[source.id].candidates_for(view, data.index):
            candidate_view = data.views[candidate_id]
            try:
                raw = self.engine.score_pair(
                    record,
                    data.records[candidate_id],
                    view,
                    candidate_view,
                    mappings,
                    scorer,
                    check_conflicts=False,
                )
            except Exception as e:
                logger.warning(
                    f"Skipping candidate {source.id}/{candidate_id} for {record.record_id}: "
                    f"{type(e).__name__}: {e}"
                )
                continue

            result = self._adjust(raw, source, scorer)
            if result.confidence < low:
                continue
            # Contradictions are judged against the tier actually returned
            qualified.append(
                result.with_warnings(self.engine.validator.check_false_positives(result, view, candidate_view))
            )

        qualified.sort(key=lambda result: (-result.confidence, result.target_id))
        return qualified

    def resolve(self, record: Record, mappings: Sequence[FieldMapping]) -> WaterfallOutcome:
        """
        Resolve one record.

        Args:
            record: Source record
            mappings: Field mappings for the source record

        Returns:
            WaterfallOutcome; unmatched when no source qualifies
        """
        view = self.engine.semantic_view(record, mappings)
        outcome = WaterfallOutcome(record_id=record.record_id)

        for source in self.sources:
            missing = [t.value for t in source.required_fields if t not in view]
            if missing:
                logger.debug(
                    f"Skipping source {source.id} for {record.record_id}: "
                    f"missing {', '.join(missing)}"
                )
                outcome.skipped_sources.append(source.id)
                continue

            qualified = self._match_source(record, view, source, mappings)
            if not qualified:
                continue

            limit = self.config.max_matches if self.config.allow_multiple_matches else 1
            data = self._reference_data(source, mappings)
            outcome.matched_source = source.id
            outcome.matches = [
                WaterfallMatch(
                    reference_source=source.id,
                    result=result,
                    appended_fields=self._appended(source, data.records[result.target_id]),
                )
                for result in qualified[:limit]
            ]
            logger.debug(f"{record.record_id} resolved by {source.id}: {outcome}")
            return outcome

        return outcome

    def resolve_all(
        self,
        records: Iterable[Record],
        mappings: Sequence[FieldMapping],
        deadline: Optional[float] = None,
    ) -> list[WaterfallOutcome]:
        """
        Resolve many records in parallel.

        Returns:
            Outcomes sorted by best confidence (desc), then record id
        """
        records = list(records)
        # Build reference views up front rather than racing for the cache lock
        for source in self.sources:
            self._reference_data(source, mappings)

        resolved = run_batch(
            records,
            lambda record: self.resolve(record, mappings),
            self.config.max_workers,
            deadline,
            label="record",
        )
        outcomes = [outcome for _, outcome in resolved]
        outcomes.sort(key=lambda outcome: (-outcome.best_confidence, outcome.record_id))

        matched = sum(1 for outcome in outcomes if outcome.is_match)
        logger.info(f"Waterfall resolved {matched}/{len(outcomes)} records")
        return outcomes
