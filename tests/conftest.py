"""
Pytest configuration and shared fixtures.

Loaded automatically by pytest: fixtures defined here are available to
every test module without importing them.

FakeGroupingStore mirrors the grouping methods of DatabaseManager in
memory, so end-to-end grouping scenarios run without PostgreSQL.
"""

import itertools
import uuid
from datetime import datetime, timedelta

import pytest

from src.grouping.constants import CLUSTER_TABLES, GROUPING_TABLES, NARRATIVE, TOPIC
from src.grouping.errors import DuplicateLabelError


BASE_TIME = datetime(2025, 11, 28, 10, 0, 0)


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class FakeGroupingStore:
    """In-memory stand-in for DatabaseManager's grouping methods."""

    def __init__(self):
        self.posts = {}
        self.clusters = {TOPIC: [], NARRATIVE: []}
        self.memberships = {TOPIC: [], NARRATIVE: []}
        self.semantic_pairs = set()
        self.semantic_queries = 0
        self.stats_updates = []
        self.missing_tables = []
        self.max_connections = 10
        self._clock = itertools.count()

    # --- helpers -----------------------------------------------------------

    def add_post(self, post_id=None, configuration_id='tenant-a', **fields):
        post_id = post_id or str(uuid.uuid4())
        row = {
            'id': post_id,
            'configuration_id': configuration_id,
            'platform': 'twitter',
            'topics': [],
            'keywords': [],
            'sentiment': None,
            'risk_score': None,
            'likes_count': 0,
            'comments_count': 0,
            'shares_count': 0,
            'created_at': BASE_TIME,
        }
        row.update(fields)
        self.posts[post_id] = row
        return post_id

    def add_cluster(self, kind, configuration_id, label, topics=(), keywords=()):
        """Insert a cluster directly, as a concurrent writer would."""
        layout = CLUSTER_TABLES[kind]
        cluster_id = str(uuid.uuid4())
        self.clusters[kind].append({
            'id': cluster_id,
            'configuration_id': configuration_id,
            layout['label_column']: label,
            layout['description_column']: '',
            'status': 'active',
            'aggregated_topics': list(topics),
            'aggregated_keywords': list(keywords),
            'created_at': BASE_TIME + timedelta(seconds=next(self._clock)),
        })
        return cluster_id

    def add_semantic_pair(self, term1, term2):
        self.semantic_pairs.add((term1, term2))

    def cluster(self, kind, cluster_id):
        return next(c for c in self.clusters[kind] if c['id'] == cluster_id)

    def members(self, kind, cluster_id):
        id_field = CLUSTER_TABLES[kind]['id_field']
        return [m for m in self.memberships[kind] if m[id_field] == cluster_id]

    def clusters_for(self, kind, configuration_id):
        return [c for c in self.clusters[kind] if c['configuration_id'] == configuration_id]

    # --- DatabaseManager interface -------------------------------------------

    def get_post(self, post_id):
        row = self.posts.get(str(post_id))
        return dict(row) if row else None

    def get_posts_by_ids(self, post_ids):
        return [dict(self.posts[pid]) for pid in post_ids if pid in self.posts]

    def get_posts_page(self, offset, limit, configuration_id=None):
        rows = [
            p for p in self.posts.values()
            if p['configuration_id'] is not None
            and (configuration_id is None or p['configuration_id'] == configuration_id)
        ]
        rows.sort(key=lambda p: (-p['created_at'].timestamp(), p['id']))
        return [
            {k: p[k] for k in ('id', 'configuration_id', 'topics', 'keywords')}
            for p in rows[offset:offset + limit]
        ]

    def get_clusters(self, configuration_id, kind):
        rows = self.clusters_for(kind, configuration_id)
        return [dict(r) for r in sorted(rows, key=lambda r: (r['created_at'], r['id']))]

    def insert_cluster_with_membership(self, kind, cluster, membership):
        layout = CLUSTER_TABLES[kind]
        for existing in self.clusters_for(kind, cluster.configuration_id):
            if existing[layout['label_column']] == cluster.label:
                raise DuplicateLabelError(kind, cluster.configuration_id, cluster.label)

        cluster_id = str(uuid.uuid4())
        row = cluster.to_row()
        row.update({
            'id': cluster_id,
            'created_at': BASE_TIME + timedelta(seconds=next(self._clock)),
        })
        self.clusters[kind].append(row)

        membership.cluster_id = cluster_id
        self.insert_membership(kind, membership)
        return cluster_id

    def update_cluster_stats(self, kind, cluster_id, stats):
        self.stats_updates.append((kind, cluster_id))
        self.cluster(kind, cluster_id).update(stats)

    def get_membership(self, kind, cluster_id, post_id):
        for m in self.members(kind, cluster_id):
            if m['post_id'] == post_id:
                return dict(m)
        return None

    def get_post_membership(self, kind, post_id, configuration_id):
        id_field = CLUSTER_TABLES[kind]['id_field']
        owned = {c['id'] for c in self.clusters_for(kind, configuration_id)}
        for m in self.memberships[kind]:
            if m['post_id'] == post_id and m[id_field] in owned:
                return dict(m)
        return None

    def get_memberships(self, kind, cluster_id):
        return [dict(m) for m in self.members(kind, cluster_id)]

    def insert_membership(self, kind, membership):
        if self.get_membership(kind, membership.cluster_id, membership.post_id):
            return
        row = membership.to_row(kind)
        row['created_at'] = BASE_TIME
        self.memberships[kind].append(row)

    def find_semantic_pairs(self, pairs):
        self.semantic_queries += 1
        return {
            (a, b) for a, b in pairs
            if (a, b) in self.semantic_pairs or (b, a) in self.semantic_pairs
        }

    def reset_groups(self, configuration_id=None):
        deleted = {}
        for kind, layout in CLUSTER_TABLES.items():
            keep = [
                c for c in self.clusters[kind]
                if configuration_id is not None and c['configuration_id'] != configuration_id
            ]
            keep_ids = {c['id'] for c in keep}
            kept_members = [m for m in self.memberships[kind] if m[layout['id_field']] in keep_ids]
            deleted[layout['membership_table']] = len(self.memberships[kind]) - len(kept_members)
            deleted[layout['table']] = len(self.clusters[kind]) - len(keep)
            self.clusters[kind] = keep
            self.memberships[kind] = kept_members
        return deleted

    def missing_grouping_tables(self):
        return [t for t in GROUPING_TABLES if t in self.missing_tables]


@pytest.fixture
def store():
    """Empty in-memory grouping store."""
    return FakeGroupingStore()


# ============================================================================
# SAMPLE DATA
# ============================================================================

@pytest.fixture
def sample_post_row():
    """
    Post row as written by the ingestion pipeline.

    Returns:
        dict: Row with every column the grouping engine reads
    """
    return {
        'id': 'post-1',
        'configuration_id': 'tenant-a',
        'platform': 'twitter',
        'content': 'Claims of election fraud are spreading again',
        'topics': ['Election Fraud', 'Voting'],
        'keywords': ['ballots', 'fraud'],
        'sentiment': 'negative',
        'risk_score': 7.5,
        'likes_count': 10,
        'comments_count': 5,
        'shares_count': 2,
        'created_at': BASE_TIME,
    }


@pytest.fixture
def sample_post(sample_post_row):
    from src.grouping.types import Post
    return Post.from_row(sample_post_row)


@pytest.fixture
def make_post():
    """Factory for Post objects with sensible defaults."""
    from src.grouping.types import Post

    def _make(post_id='p', topics=(), keywords=(), configuration_id='tenant-a', **fields):
        row = {
            'id': post_id,
            'configuration_id': configuration_id,
            'topics': list(topics),
            'keywords': list(keywords),
            'platform': 'twitter',
            'created_at': BASE_TIME,
        }
        row.update(fields)
        return Post.from_row(row)

    return _make


# ============================================================================
# MARKERS
# ============================================================================

def pytest_configure(config):
    """
    Register custom markers so tests can be selected:
    - pytest -m unit          # Unit tests only
    - pytest -m integration   # Integration tests only
    - pytest -m "not slow"    # Skip slow tests
    """
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (slower, multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow tests (can be skipped with -m 'not slow')"
    )
