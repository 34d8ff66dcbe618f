"""
Clustering Resolver

Groups mutually matching records under one shared rule set.

GREEDY is a single pass: each unvisited record opens a cluster and pulls in
any later unvisited record whose score against a current member meets the
threshold. It is single-linkage and order dependent. TRANSITIVE takes the
connected components of the thresholded match graph instead.
"""

import itertools
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

import networkx as nx

from config.logging import logger
from config.settings import settings
from linkage.blocking import BlockingKeyGenerator
from linkage.errors import ConfigurationError
from linkage.models import BlockingStrategy, Cluster, Record
from linkage.resolution.engine import MatchEngine, index_records, run_batch
from linkage.rules import FieldMapping

PairKey = tuple[str, str]


class ClusteringMode(Enum):
    """How clusters are closed over the match graph."""
    GREEDY = "greedy"
    TRANSITIVE = "transitive"


def _pair_key(a: str, b: str) -> PairKey:
    return (a, b) if a <= b else (b, a)


class ClusteringResolver:
    """
    Clusters records that refer to the same entity.

    Usage:
        resolver = ClusteringResolver(engine, mappings, threshold=0.7)
        clusters = resolver.cluster(records)
    """

    def __init__(
        self,
        engine: MatchEngine,
        mappings: Sequence[FieldMapping],
        threshold: Optional[float] = None,
        mode: ClusteringMode = ClusteringMode.GREEDY,
        blocking: Optional[Sequence[BlockingStrategy]] = None,
    ):
        self.engine = engine
        self.mappings = tuple(mappings)
        self.threshold = settings.CLUSTER_THRESHOLD if threshold is None else threshold
        if not 0.0 <= self.threshold <= 1.0:
            raise ConfigurationError(
                f"Cluster threshold must be between 0 and 1, got {self.threshold}",
                "clusterThreshold",
            )
        if not isinstance(mode, ClusteringMode):
            raise ConfigurationError(f"Unknown clustering mode: {mode!r}", "clusterMode")
        self.mode = mode
        self.blocker = BlockingKeyGenerator(blocking, engine.metrics) if blocking else None

    def pairwise_scores(
        self,
        records: Iterable[Record],
        deadline: Optional[float] = None,
    ) -> dict[PairKey, float]:
        """Confidence for every compared pair, keyed by (smaller id, larger id)."""
        by_id = index_records(records, "input")
        views = {rid: self.engine.semantic_view(r, self.mappings) for rid, r in by_id.items()}

        if self.blocker is not None:
            pairs = self.blocker.candidate_pairs(views)
        else:
            pairs = [_pair_key(a, b) for a, b in itertools.combinations(by_id, 2)]

        def score(pair: PairKey) -> float:
            first, second = pair
            return self.engine.score_pair(
                by_id[first], by_id[second], views[first], views[second], self.mappings
            ).confidence

        return dict(run_batch(pairs, score, self.engine.config.max_workers, deadline, label="pair"))

    def cluster(self, records: Iterable[Record], deadline: Optional[float] = None) -> list[Cluster]:
        """
        Cluster records.

        Args:
            records: Records to group, in the order the greedy pass visits them
            deadline: ``time.monotonic()`` value after which no pair starts

        Returns:
            Clusters of two or more records, sorted by confidence (desc) then id
        """
        records = list(records)
        order = [record.record_id for record in records]
        scores = self.pairwise_scores(records, deadline)

        if self.mode == ClusteringMode.TRANSITIVE:
            groups = self._transitive(order, scores)
        else:
            groups = self._greedy(order, scores)

        clusters = []
        for members, links in groups:
            ids = tuple(sorted(members))
            clusters.append(Cluster(
                cluster_id=f"cluster:{ids[0]}",
                record_ids=ids,
                confidence=sum(links) / len(links),
            ))
        clusters.sort(key=lambda c: (-c.confidence, c.cluster_id))

        logger.info(
            f"Clustered {sum(c.size for c in clusters)}/{len(order)} records "
            f"into {len(clusters)} clusters ({self.mode.value})"
        )
        return clusters

    def _greedy(self, order: list[str], scores: dict[PairKey, float]) -> list[tuple[list[str], list[float]]]:
        visited: set[str] = set()
        groups = []
        for index, seed in enumerate(order):
            if seed in visited:
                continue
            visited.add(seed)
            members = [seed]
            links = []
            for candidate in order[index + 1:]:
                if candidate in visited:
                    continue
                best = max(scores.get(_pair_key(member, candidate), 0.0) for member in members)
                if best >= self.threshold:
                    members.append(candidate)
                    links.append(best)
                    visited.add(candidate)
            if len(members) > 1:
                groups.append((members, links))
        return groups

    def _transitive(self, order: list[str], scores: dict[PairKey, float]) -> list[tuple[list[str], list[float]]]:
        graph = nx.Graph()
        graph.add_nodes_from(order)
        for (first, second), confidence in scores.items():
            if confidence >= self.threshold:
                graph.add_edge(first, second, weight=confidence)

        groups = []
        for component in nx.connected_components(graph):
            if len(component) < 2:
                continue
            links = [data["weight"] for _, _, data in graph.subgraph(component).edges(data=True)]
            groups.append((list(component), links))
        return groups

    def cluster_metrics(self, clusters: Sequence[Cluster]) -> dict[str, Any]:
        """Cluster count and size summary for the output of ``cluster``."""
        sizes = [cluster.size for cluster in clusters]
        return {
            "cluster_count": len(clusters),
            "clustered_records": sum(sizes),
            "average_size": sum(sizes) / len(sizes) if sizes else 0.0,
            "max_size": max(sizes, default=0),
            "average_confidence": (
                sum(cluster.confidence for cluster in clusters) / len(clusters) if clusters else 0.0
            ),
        }
