"""
Grouping Orchestrator - per-post entry point of the grouping engine

For every analyzed post:
1. Topic pipeline: resolve candidate topics, link into the first one or create
2. Narrative pipeline: same procedure against narratives, fully independent

Cluster creation is optimistic. When a concurrent writer wins the race on
the (configuration_id, label) constraint, the loser re-resolves once and
links into whatever cluster now matches.
"""

from typing import Callable, Optional

from .analytics import ClusterAnalytics
from .constants import CLUSTER_KINDS, CLUSTER_TABLES
from .errors import DuplicateLabelError
from .matching import SemanticLookup
from .mutator import ClusterMutator
from .resolver import GroupResolver
from .types import GroupingOutcome, GroupingResult, Post
from ..utils.logger import get_logger

logger = get_logger(__name__)


class GroupingService:
    """
    Assigns posts to topic and narrative clusters.

    All collaborators are passed in explicitly so tenants or tests can run
    isolated instances against different stores.

    Args:
        store: DatabaseManager (or any object with the same grouping methods)
        semantic_factory: builds a fresh SemanticLookup per resolution pass;
            defaults to one backed by store.find_semantic_pairs
    """

    def __init__(
        self,
        store,
        semantic_factory: Optional[Callable[[], SemanticLookup]] = None
    ):
        self.store = store
        self.analytics = ClusterAnalytics(store)
        self.resolver = GroupResolver(store, semantic_factory=semantic_factory)
        self.mutator = ClusterMutator(store, analytics=self.analytics)

    # =========================================================================
    # PUBLIC INTERFACE
    # =========================================================================

    def group_post(self, post_id: str, configuration_id: str) -> GroupingResult:
        """
        Group one post into a topic and a narrative.

        Store errors propagate; whatever the topic pipeline already wrote is
        kept even if the narrative pipeline never runs.
        """
        result = GroupingResult(post_id=str(post_id))

        row = self.store.get_post(post_id)
        if not row:
            logger.warning(f"Post {post_id} not found, skipping grouping")
            return result

        post = Post.from_row(row, configuration_id=configuration_id)

        if not post.has_terms:
            logger.debug(f"Post {post_id} has no topics or keywords, skipping")
            return result

        for kind in CLUSTER_KINDS:
            setattr(result, kind, self._assign(post, kind))

        return result

    def group_post_safe(self, post_id: str, configuration_id: str) -> Optional[GroupingResult]:
        """
        Ingestion hook: group a freshly analyzed post without ever raising.

        Grouping is not critical for ingestion, so failures are only logged.
        """
        try:
            return self.group_post(post_id, configuration_id)
        except Exception as e:
            logger.error(f"Error grouping post {post_id}: {e}")
            return None

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _assign(self, post: Post, kind: str) -> GroupingOutcome:
        """Link into the first matching cluster of `kind`, or create one."""
        id_field = CLUSTER_TABLES[kind]['id_field']

        # A post belongs to at most one cluster per kind; replays keep it there
        existing = self.store.get_post_membership(kind, post.id, post.configuration_id)
        if existing:
            cluster_id = str(existing[id_field])
            logger.debug(f"Post {post.id} already grouped in {kind} {cluster_id}")
            self.analytics.recompute(cluster_id, kind)
            return GroupingOutcome(kind=kind, action="linked", cluster_id=cluster_id)

        matches = self.resolver.find_matching_clusters(post, kind)
        if matches:
            best = matches[0]
            self.mutator.link_to_existing(post, best.cluster_id, kind, best.matched_by, best.matched_value)
            return GroupingOutcome(kind=kind, action="linked", cluster_id=best.cluster_id)

        try:
            cluster_id = self.mutator.create_from_post(post, kind)
            return GroupingOutcome(kind=kind, action="created", cluster_id=cluster_id)
        except DuplicateLabelError as e:
            logger.info(f"{e}, attempting to merge post {post.id}")

        # Single retry: a concurrent writer created the cluster first
        retry_matches = self.resolver.find_matching_clusters(post, kind)
        if not retry_matches:
            logger.warning(
                f"Post {post.id}: {kind} label conflict but no matching cluster on retry, "
                f"leaving post ungrouped"
            )
            return GroupingOutcome(kind=kind, action="skipped")

        best = retry_matches[0]
        self.mutator.link_to_existing(post, best.cluster_id, kind, best.matched_by, best.matched_value)
        return GroupingOutcome(kind=kind, action="merged_after_conflict", cluster_id=best.cluster_id)
