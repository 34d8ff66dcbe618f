"""
Resolution Module

Record resolution built on the similarity library:
- Scoring and tiering (weighted composite confidence)
- Validation (merge gate, contradiction warnings)
- Pairwise and batch matching, optional trained resolver
- Waterfall (priority-ordered multi-source) resolution
- Clustering (greedy single-linkage or transitive)
"""

from linkage.resolution.scorer import MatchScorer
from linkage.resolution.validator import MatchValidator
from linkage.resolution.trained import ResolverOutcome, TrainedCapability, TrainedResolver
from linkage.resolution.engine import MatchEngine
from linkage.resolution.waterfall import WaterfallMatch, WaterfallOutcome, WaterfallResolver
from linkage.resolution.clustering import ClusteringMode, ClusteringResolver

__all__ = [
    "MatchScorer",
    "MatchValidator",
    "ResolverOutcome",
    "TrainedCapability",
    "TrainedResolver",
    "MatchEngine",
    "WaterfallMatch",
    "WaterfallOutcome",
    "WaterfallResolver",
    "ClusteringMode",
    "ClusteringResolver",
]
