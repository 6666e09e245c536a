"""
Cluster analytics.

Statistics are always re-derived from the full membership of a cluster,
never updated incrementally. The pure functions below are shared by the
create path (single-post seed) and by ClusterAnalytics.recompute.
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .constants import (
    CRITICAL_RISK_LEVEL,
    KNOWN_PLATFORMS,
    NARRATIVE,
    RISK_LEVEL_THRESHOLDS,
    SECONDS_PER_DAY,
    SENTIMENTS,
    STRENGTH_SCORE_MAX,
    STRENGTH_SCORE_MULTIPLIER,
)
from .types import ClusterStats, NarrativeStats, Post
from ..utils.logger import get_logger

logger = get_logger(__name__)


def round_half_up(value: float) -> int:
    """Round .5 away from zero instead of Python's banker's rounding."""
    return int(math.floor(value + 0.5)) if value >= 0 else -int(math.floor(-value + 0.5))


def calculate_risk_level(risk_score: float) -> str:
    """
    Map an average risk score to a risk level.

    Examples:
        3.99 -> 'low'
        4.0  -> 'medium'
        6.0  -> 'high'
        7.0  -> 'critical'
    """
    for upper_bound, level in RISK_LEVEL_THRESHOLDS:
        if risk_score < upper_bound:
            return level
    return CRITICAL_RISK_LEVEL


def calculate_strength_score(average_risk_score: float) -> int:
    return min(STRENGTH_SCORE_MAX, round_half_up(average_risk_score * STRENGTH_SCORE_MULTIPLIER))


def calculate_persistence_days(created_at: Sequence[datetime]) -> int:
    """Whole days between the oldest and newest post (0 for zero or one post)."""
    if len(created_at) < 2:
        return 0
    span = max(created_at) - min(created_at)
    return int(span.total_seconds() // SECONDS_PER_DAY)


def calculate_average_risk(posts: Iterable[Post]) -> float:
    scores = [p.risk_score for p in posts if p.risk_score is not None]
    return sum(scores) / len(scores) if scores else 0.0


def _percentages(counts: Dict[str, int]) -> Dict[str, int]:
    total = sum(counts.values())
    return {
        key: round_half_up(count / total * 100) if total > 0 else 0
        for key, count in counts.items()
    }


def calculate_sentiment_distribution(posts: Iterable[Post]) -> Dict[str, int]:
    """
    Integer percentages over posts that carry a sentiment.

    Rounding may make the total drift from 100 by one point.
    """
    counts = {sentiment: 0 for sentiment in SENTIMENTS}
    for post in posts:
        if post.sentiment:
            counts[post.sentiment] += 1
    return _percentages(counts)


def calculate_platform_distribution(posts: Iterable[Post]) -> Dict[str, int]:
    """Integer percentages per platform; known platforms are always listed."""
    counts = {platform: 0 for platform in KNOWN_PLATFORMS}
    for post in posts:
        counts[post.platform] = counts.get(post.platform, 0) + 1
    return _percentages(counts)


def _ordered_union(term_lists: Iterable[List[str]]) -> List[str]:
    seen = set()
    merged = []
    for terms in term_lists:
        for term in terms:
            if term not in seen:
                seen.add(term)
                merged.append(term)
    return merged


def compute_cluster_stats(posts: List[Post], kind: str) -> ClusterStats:
    """
    Derive every cluster statistic from the member posts.

    Returns NarrativeStats for narratives, ClusterStats otherwise.
    """
    average_risk = calculate_average_risk(posts)
    aggregated_topics = _ordered_union(p.topics for p in posts)

    common: Dict[str, Any] = dict(
        post_count=len(posts),
        average_risk_score=average_risk,
        sentiment_distribution=calculate_sentiment_distribution(posts),
        platform_distribution=calculate_platform_distribution(posts),
        total_engagement=sum(p.engagement for p in posts),
        aggregated_topics=aggregated_topics,
        aggregated_keywords=_ordered_union(p.keywords for p in posts),
    )

    if kind != NARRATIVE:
        return ClusterStats(**common)

    created = [p.created_at for p in posts]
    return NarrativeStats(
        **common,
        strength_score=calculate_strength_score(average_risk),
        risk_level=calculate_risk_level(average_risk),
        persistence_days=calculate_persistence_days(created),
        contributing_topics_count=len(aggregated_topics),
        first_emergence_at=min(created) if created else None,
    )


class ClusterAnalytics:
    """
    Recomputes a cluster's statistics from its current membership.

    Concurrent recomputes of the same cluster are not merged: each one writes
    a full snapshot and the last write wins.
    """

    def __init__(self, store):
        self.store = store

    def recompute(self, cluster_id: str, kind: str) -> Optional[ClusterStats]:
        """
        Reload members of `cluster_id` and overwrite its statistics.

        Returns the written stats, or None when the cluster has no members.
        """
        memberships = self.store.get_memberships(kind, cluster_id)
        if not memberships:
            logger.debug(f"No members for {kind} {cluster_id}, skipping recompute")
            return None

        post_ids = [m['post_id'] for m in memberships]
        rows = self.store.get_posts_by_ids(post_ids)
        if not rows:
            return None

        posts = [Post.from_row(row) for row in rows]
        stats = compute_cluster_stats(posts, kind)
        self.store.update_cluster_stats(kind, cluster_id, stats.to_row())

        logger.debug(
            f"Recomputed {kind} {cluster_id}: {stats.post_count} posts, "
            f"avg risk {stats.average_risk_score:.2f}"
        )
        return stats
