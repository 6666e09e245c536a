"""
Group mutation: create clusters from posts and link posts into clusters.
"""

from typing import Optional

from .analytics import ClusterAnalytics, compute_cluster_stats
from .constants import NARRATIVE
from .types import CLUSTER_TYPES, Cluster, Membership, Post
from ..utils.logger import get_logger

logger = get_logger(__name__)


def build_label(post: Post, kind: str) -> str:
    """First topic, else first keyword, else a placeholder."""
    terms = post.terms
    return terms[0] if terms else f"New {kind}"


def build_description(post: Post, kind: str) -> str:
    leading = ", ".join(post.terms[:3])
    if kind == NARRATIVE:
        return f"Narrative emerging from posts about {leading}"
    return f"Topic group for {leading}"


class ClusterMutator:
    """
    Writes clusters and memberships.

    Creates are guarded by the store's (configuration_id, label) uniqueness
    constraint; links are made idempotent by checking for an existing
    membership first.
    """

    def __init__(self, store, analytics: Optional[ClusterAnalytics] = None):
        self.store = store
        self.analytics = analytics or ClusterAnalytics(store)

    def build_cluster(self, post: Post, kind: str) -> Cluster:
        """Seed a new cluster and its statistics from a single post."""
        stats = compute_cluster_stats([post], kind)
        return CLUSTER_TYPES[kind](
            configuration_id=post.configuration_id,
            label=build_label(post, kind),
            description=build_description(post, kind),
            aggregated_topics=stats.aggregated_topics,
            aggregated_keywords=stats.aggregated_keywords,
            stats=stats,
        )

    def create_from_post(self, post: Post, kind: str) -> str:
        """
        Create a cluster from `post` and record its membership.

        Raises:
            DuplicateLabelError: a cluster with the same label already exists
                in the tenant. Callers should re-resolve and link.
        """
        cluster = self.build_cluster(post, kind)
        membership = Membership(
            cluster_id="",
            post_id=post.id,
            matched_by="topic",
            matched_value=post.terms[0] if post.terms else "",
        )

        cluster_id = self.store.insert_cluster_with_membership(kind, cluster, membership)
        logger.info(f"Created {kind} {cluster_id} '{cluster.label}' from post {post.id}")
        return cluster_id

    def link_to_existing(
        self,
        post: Post,
        cluster_id: str,
        kind: str,
        matched_by: str,
        matched_value: str
    ) -> bool:
        """
        Add `post` to an existing cluster and recompute the cluster's stats.

        Returns:
            True if a new membership was inserted, False if the post was
            already a member (stats are recomputed either way).
        """
        existing = self.store.get_membership(kind, cluster_id, post.id)

        if existing:
            logger.debug(f"Post {post.id} already in {kind} {cluster_id}")
            inserted = False
        else:
            self.store.insert_membership(kind, Membership(
                cluster_id=cluster_id,
                post_id=post.id,
                matched_by=matched_by,
                matched_value=matched_value,
            ))
            logger.info(
                f"Merged post {post.id} into {kind} {cluster_id} "
                f"(matched by {matched_by}: {matched_value})"
            )
            inserted = True

        self.analytics.recompute(cluster_id, kind)
        return inserted
