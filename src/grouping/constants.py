"""
Constants for the grouping engine.

Defines matching thresholds, risk-level boundaries and the table layout
used for each cluster kind.
"""

from typing import Dict, List, Tuple

# ============================================================================
# Cluster kinds
# ============================================================================

TOPIC = "topic"
NARRATIVE = "narrative"
CLUSTER_KINDS: Tuple[str, str] = (TOPIC, NARRATIVE)

# Per-kind storage layout. Topics and narratives share most columns but
# name their label/description columns differently.
CLUSTER_TABLES: Dict[str, Dict[str, str]] = {
    TOPIC: {
        "table": "topics",
        "membership_table": "topic_posts",
        "id_field": "topic_id",
        "label_column": "name",
        "description_column": "description",
    },
    NARRATIVE: {
        "table": "narratives",
        "membership_table": "narrative_posts",
        "id_field": "narrative_id",
        "label_column": "title",
        "description_column": "summary",
    },
}

GROUPING_TABLES: List[str] = [
    "posts",
    "topics",
    "narratives",
    "topic_posts",
    "narrative_posts",
    "semantic_similarity",
]

# ============================================================================
# Matching
# ============================================================================

# Containment match: shorter/longer normalized length must reach this ratio
FUZZY_CONTAINMENT_RATIO = 0.6

MATCH_CONFIDENCE = 1.0

# ============================================================================
# Analytics
# ============================================================================

SENTIMENTS: Tuple[str, str, str] = ("positive", "neutral", "negative")

# Always reported in platform_distribution, even at 0%
KNOWN_PLATFORMS: Tuple[str, ...] = ("twitter", "reddit", "facebook", "news")

# Upper bounds (exclusive) on average risk score; anything above is critical
RISK_LEVEL_THRESHOLDS: List[Tuple[float, str]] = [
    (4.0, "low"),
    (6.0, "medium"),
    (7.0, "high"),
]
CRITICAL_RISK_LEVEL = "critical"

STRENGTH_SCORE_MULTIPLIER = 10
STRENGTH_SCORE_MAX = 100

SECONDS_PER_DAY = 86400

DEFAULT_CLUSTER_STATUS = "active"

# PostgreSQL SQLSTATE for unique_violation
UNIQUE_VIOLATION_CODE = "23505"
