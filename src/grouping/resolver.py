"""
Group resolution: find existing clusters a post belongs to.
"""

from typing import Callable, List, Optional

from .constants import MATCH_CONFIDENCE
from .matching import (
    SemanticLookup,
    check_cluster_match,
    check_deterministic_match,
    semantic_candidates,
)
from .types import Cluster, GroupMatch, Post, cluster_from_row
from ..utils.logger import get_logger

logger = get_logger(__name__)


class GroupResolver:
    """
    Matches a post against every cluster of one kind in the post's tenant.

    All cluster statuses are eligible. The store returns clusters oldest
    first (created_at, id), so the first match is the earliest-created
    matching cluster. No ranking by overlap is applied.
    """

    def __init__(self, store, semantic_factory: Optional[Callable[[], SemanticLookup]] = None):
        self.store = store
        self.semantic_factory = semantic_factory or (lambda: SemanticLookup(store.find_semantic_pairs))

    def load_clusters(self, configuration_id: str, kind: str) -> List[Cluster]:
        rows = self.store.get_clusters(configuration_id, kind)
        return [cluster_from_row(kind, row) for row in rows]

    def find_matching_clusters(self, post: Post, kind: str) -> List[GroupMatch]:
        """
        Return one GroupMatch per cluster matching the post, in store order.

        Exact and fuzzy checks run first for every cluster. Clusters still
        unmatched then share a single batched semantic lookup.
        """
        clusters = self.load_clusters(post.configuration_id, kind)
        if not clusters:
            return []

        results = [
            check_deterministic_match(post, c.aggregated_topics, c.aggregated_keywords)
            for c in clusters
        ]

        unmatched = [c for c, r in zip(clusters, results) if not r.matched]
        if unmatched:
            semantic = self.semantic_factory()
            semantic.prefetch(
                pair
                for c in unmatched
                for pair in semantic_candidates(post, c.aggregated_topics, c.aggregated_keywords)
            )
            results = [
                r if r.matched else check_cluster_match(
                    post, c.aggregated_topics, c.aggregated_keywords, semantic
                )
                for c, r in zip(clusters, results)
            ]

        matches = [
            GroupMatch(
                cluster_id=c.id,
                kind=kind,
                matched_by=r.matched_by,
                matched_value=r.matched_value,
                confidence=MATCH_CONFIDENCE,
            )
            for c, r in zip(clusters, results)
            if r.matched
        ]

        logger.debug(
            f"Post {post.id}: {len(matches)}/{len(clusters)} {kind} clusters matched "
            f"in configuration {post.configuration_id}"
        )
        return matches
