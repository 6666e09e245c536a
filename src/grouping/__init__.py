"""
Post Grouping Engine

Incrementally clusters analyzed social-media posts into per-tenant topics
and narratives:
- Matching: normalization plus exact, fuzzy and semantic term comparison
- GroupResolver: finds candidate clusters for a post
- ClusterMutator: creates clusters and links posts into them
- ClusterAnalytics: recomputes cluster statistics from full membership
- GroupingService: per-post entry point running both pipelines
"""

from .constants import CLUSTER_KINDS, NARRATIVE, TOPIC
from .errors import DuplicateLabelError, GroupingError, SetupError
from .types import (
    Cluster,
    ClusterStats,
    GroupingOutcome,
    GroupingResult,
    GroupMatch,
    Membership,
    NarrativeCluster,
    NarrativeStats,
    Post,
    TopicCluster,
)
from .matching import (
    SemanticLookup,
    check_cluster_match,
    is_exact_match,
    is_similar_term,
    normalize_term,
)
from .analytics import (
    ClusterAnalytics,
    calculate_persistence_days,
    calculate_risk_level,
    compute_cluster_stats,
)
from .resolver import GroupResolver
from .mutator import ClusterMutator
from .orchestrator import GroupingService

__all__ = [
    # Constants
    "CLUSTER_KINDS",
    "TOPIC",
    "NARRATIVE",
    # Errors
    "GroupingError",
    "DuplicateLabelError",
    "SetupError",
    # Types
    "Post",
    "Cluster",
    "TopicCluster",
    "NarrativeCluster",
    "ClusterStats",
    "NarrativeStats",
    "Membership",
    "GroupMatch",
    "GroupingOutcome",
    "GroupingResult",
    # Matching
    "normalize_term",
    "is_exact_match",
    "is_similar_term",
    "SemanticLookup",
    "check_cluster_match",
    # Analytics
    "ClusterAnalytics",
    "calculate_risk_level",
    "calculate_persistence_days",
    "compute_cluster_stats",
    # Components
    "GroupResolver",
    "ClusterMutator",
    "GroupingService",
]
