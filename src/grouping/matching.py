"""
Term matching for the grouping engine.

Three comparison modes, cheapest first:
1. Exact: equal after normalization
2. Fuzzy: one normalized term contains the other and is long enough
3. Semantic: a precomputed pair exists in the semantic_similarity table

Only the semantic mode performs I/O. SemanticLookup batches pair lookups
into a single store query and caches answers, so a whole resolution pass
costs at most one round-trip.
"""

import re
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .constants import FUZZY_CONTAINMENT_RATIO
from .types import MatchResult, NO_MATCH, Post
from ..utils.logger import get_logger

logger = get_logger(__name__)

_NON_WORD = re.compile(r'[^\w\s]')
_WHITESPACE = re.compile(r'\s+')

TermPair = Tuple[str, str]


def normalize_term(term: str) -> str:
    """
    Lowercase, strip non-word characters and collapse whitespace.

    Punctuation is replaced by a space so "Election-Fraud!" and
    "election fraud" normalize to the same term.
    """
    spaced = _NON_WORD.sub(' ', term.lower())
    return _WHITESPACE.sub(' ', spaced).strip()


def is_exact_match(term1: str, term2: str) -> bool:
    return normalize_term(term1) == normalize_term(term2)


def is_similar_term(term1: str, term2: str) -> bool:
    """
    Fuzzy comparison.

    True on exact match, or when one normalized term contains the other and
    the shorter is at least 60% as long as the longer.
    """
    norm1 = normalize_term(term1)
    norm2 = normalize_term(term2)

    if norm1 == norm2:
        return True

    if norm1 in norm2 or norm2 in norm1:
        shorter, longer = sorted((norm1, norm2), key=len)
        return len(shorter) / len(longer) >= FUZZY_CONTAINMENT_RATIO

    return False


def pair_key(term1: str, term2: str) -> TermPair:
    """Order-independent key for a pair of normalized terms."""
    norm1 = normalize_term(term1)
    norm2 = normalize_term(term2)
    return (norm1, norm2) if norm1 <= norm2 else (norm2, norm1)


class SemanticLookup:
    """
    Symmetric pairwise similarity lookup with batching and caching.

    Args:
        fetch_pairs: callable taking a list of normalized (term1, term2) pairs
            and returning the subset that exists in the similarity table, in
            either order. Usually DatabaseManager.find_semantic_pairs.
    """

    def __init__(self, fetch_pairs: Callable[[List[TermPair]], Set[TermPair]]):
        self._fetch_pairs = fetch_pairs
        self._cache: Dict[TermPair, bool] = {}
        self.queries = 0

    def prefetch(self, pairs: Iterable[TermPair]) -> None:
        """Resolve every uncached pair with one store query."""
        pending = []
        seen = set()
        for term1, term2 in pairs:
            key = pair_key(term1, term2)
            if key in self._cache or key in seen or not key[0] or not key[1]:
                continue
            seen.add(key)
            pending.append(key)

        if not pending:
            return

        self.queries += 1
        found = {pair_key(a, b) for a, b in self._fetch_pairs(pending)}
        for key in pending:
            self._cache[key] = key in found

        logger.debug(f"Semantic lookup: {len(pending)} pairs queried, {len(found)} similar")

    def is_semantically_similar(self, term1: str, term2: str) -> bool:
        key = pair_key(term1, term2)
        if not key[0] or not key[1]:
            return False
        if key not in self._cache:
            self.prefetch([key])
        return self._cache[key]


# ============================================================================
# CLUSTER MATCHING
# ============================================================================

def iter_term_pairs(
    post: Post,
    cluster_topics: List[str],
    cluster_keywords: List[str]
) -> Iterator[Tuple[str, str, str]]:
    """
    Yield (post_term, cluster_term, matched_by) in matching priority order:
    post topic x cluster topic, post topic x cluster keyword,
    post keyword x cluster topic, post keyword x cluster keyword.
    """
    for post_terms in (post.topics, post.keywords):
        for post_term in post_terms:
            for cluster_topic in cluster_topics:
                yield post_term, cluster_topic, 'topic'
            for cluster_keyword in cluster_keywords:
                yield post_term, cluster_keyword, 'keyword'


def semantic_candidates(
    post: Post,
    cluster_topics: List[str],
    cluster_keywords: List[str]
) -> Iterator[TermPair]:
    """Term pairs the semantic stage would look up for one cluster."""
    for post_term, cluster_term, _ in iter_term_pairs(post, cluster_topics, cluster_keywords):
        yield post_term, cluster_term


def check_deterministic_match(
    post: Post,
    cluster_topics: List[str],
    cluster_keywords: List[str]
) -> MatchResult:
    """Exact then fuzzy stages, no I/O."""
    stages = (('exact', is_exact_match), ('fuzzy', is_similar_term))
    for stage, compare in stages:
        for post_term, cluster_term, matched_by in iter_term_pairs(post, cluster_topics, cluster_keywords):
            if compare(post_term, cluster_term):
                return MatchResult(True, matched_by, post_term, stage)
    return NO_MATCH


def check_cluster_match(
    post: Post,
    cluster_topics: List[str],
    cluster_keywords: List[str],
    semantic: Optional[SemanticLookup] = None
) -> MatchResult:
    """
    Decide whether a post belongs to a cluster with the given terms.

    Stages run exact -> fuzzy -> semantic and the first hit wins. The
    semantic stage is skipped when no lookup is provided.
    """
    result = check_deterministic_match(post, cluster_topics, cluster_keywords)
    if result.matched or semantic is None:
        return result

    for post_term, cluster_term, matched_by in iter_term_pairs(post, cluster_topics, cluster_keywords):
        if semantic.is_semantically_similar(post_term, cluster_term):
            return MatchResult(True, matched_by, post_term, 'semantic')

    return NO_MATCH
