"""
Database Storage Module

Handles connection to PostgreSQL, schema initialization for the grouping
tables, and the reads/writes the grouping engine performs on posts,
topics, narratives, their membership tables and the semantic similarity
lookup table.
"""

import os
from typing import Any, Dict, List, Optional, Set, Tuple
from contextlib import contextmanager

import psycopg2
from psycopg2 import errors, sql
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..grouping.constants import CLUSTER_TABLES, GROUPING_TABLES
from ..grouping.errors import DuplicateLabelError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Cluster columns stored as JSONB
JSON_COLUMNS = {'sentiment_distribution', 'platform_distribution'}


class DatabaseManager:
    """
    Manages the PostgreSQL store used by the grouping engine.
    """

    def __init__(self, connection_url: Optional[str] = None):
        """
        Initialize database manager with connection pooling.

        Args:
            connection_url: PostgreSQL connection URL. If None, reads from environment.
        """
        # Get connection URL from environment or parameter
        if connection_url is None:
            connection_url = os.getenv('DATABASE_URL')
            if not connection_url:
                # Fallback to individual env vars
                db_host = os.getenv("DB_HOST", "localhost")
                db_name = os.getenv("DB_NAME", "repushield")
                db_user = os.getenv("DB_USER", "postgres")
                db_pass = os.getenv("DB_PASS", "")
                db_port = os.getenv("DB_PORT", "5432")
                connection_url = f"postgresql://{db_user}:{db_pass}@{db_host}:{db_port}/{db_name}"

        self.connection_url = connection_url

        # Threaded pool: the backfill driver groups tenants on worker threads.
        # getconn() raises PoolError past maxconn instead of blocking.
        self.max_connections = int(os.getenv("DB_POOL_MAX", "10"))

        try:
            self.pool = ThreadedConnectionPool(
                minconn=int(os.getenv("DB_POOL_MIN", "1")),
                maxconn=self.max_connections,
                dsn=connection_url
            )
            logger.info("✓ Database connection pool initialized")
        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}")
            raise

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Automatically returns connection to pool after use.
        """
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except psycopg2.IntegrityError:
            # Constraint conflicts are expected on optimistic creates
            conn.rollback()
            raise
        except Exception as e:
            conn.rollback()
            logger.error(f"Database error: {e}")
            raise
        finally:
            self.pool.putconn(conn)

    def init_db(self):
        """
        Initialize database schema for grouping: posts, clusters, membership
        tables and the semantic similarity table.
        """
        logger.info("Initializing grouping schema...")

        schema_sql = """
        -- Posts (written by the ingestion pipeline, read-only here)
        CREATE TABLE IF NOT EXISTS posts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            configuration_id UUID,
            platform TEXT NOT NULL,
            content TEXT,
            topics TEXT[] DEFAULT '{}',
            keywords TEXT[] DEFAULT '{}',
            sentiment TEXT,
            risk_score NUMERIC(4, 2),
            likes_count INTEGER DEFAULT 0,
            comments_count INTEGER DEFAULT 0,
            shares_count INTEGER DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );

        -- Topic clusters
        CREATE TABLE IF NOT EXISTS topics (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            configuration_id UUID NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            status TEXT DEFAULT 'active',
            aggregated_topics TEXT[] DEFAULT '{}',
            aggregated_keywords TEXT[] DEFAULT '{}',
            post_count INTEGER DEFAULT 0,
            average_risk_score NUMERIC(6, 3) DEFAULT 0,
            sentiment_distribution JSONB DEFAULT '{}'::jsonb,
            platform_distribution JSONB DEFAULT '{}'::jsonb,
            total_engagement BIGINT DEFAULT 0,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            last_updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (configuration_id, name)
        );

        -- Narrative clusters
        CREATE TABLE IF NOT EXISTS narratives (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            configuration_id UUID NOT NULL,
            title TEXT NOT NULL,
            summary TEXT,
            status TEXT DEFAULT 'active',
            aggregated_topics TEXT[] DEFAULT '{}',
            aggregated_keywords TEXT[] DEFAULT '{}',
            post_count INTEGER DEFAULT 0,
            average_risk_score NUMERIC(6, 3) DEFAULT 0,
            sentiment_distribution JSONB DEFAULT '{}'::jsonb,
            platform_distribution JSONB DEFAULT '{}'::jsonb,
            total_engagement BIGINT DEFAULT 0,
            strength_score INTEGER DEFAULT 0,
            risk_level TEXT DEFAULT 'low',
            persistence_days INTEGER DEFAULT 0,
            amplification_velocity NUMERIC(8, 3) DEFAULT 0,
            contributing_topics_count INTEGER DEFAULT 0,
            first_emergence_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            last_updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (configuration_id, title)
        );

        -- Membership tables
        CREATE TABLE IF NOT EXISTS topic_posts (
            id SERIAL PRIMARY KEY,
            topic_id UUID REFERENCES topics(id) ON DELETE CASCADE,
            post_id UUID REFERENCES posts(id) ON DELETE CASCADE,
            matched_by TEXT NOT NULL,
            matched_value TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (topic_id, post_id)
        );

        CREATE TABLE IF NOT EXISTS narrative_posts (
            id SERIAL PRIMARY KEY,
            narrative_id UUID REFERENCES narratives(id) ON DELETE CASCADE,
            post_id UUID REFERENCES posts(id) ON DELETE CASCADE,
            matched_by TEXT NOT NULL,
            matched_value TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (narrative_id, post_id)
        );

        -- Precomputed symmetric term similarity
        CREATE TABLE IF NOT EXISTS semantic_similarity (
            id SERIAL PRIMARY KEY,
            term1 TEXT NOT NULL,
            term2 TEXT NOT NULL,
            similarity_score NUMERIC(4, 3),
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (term1, term2)
        );

        -- Performance indexes
        CREATE INDEX IF NOT EXISTS idx_posts_configuration ON posts(configuration_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_topics_configuration ON topics(configuration_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_narratives_configuration ON narratives(configuration_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_topic_posts_topic ON topic_posts(topic_id);
        CREATE INDEX IF NOT EXISTS idx_narrative_posts_narrative ON narrative_posts(narrative_id);
        CREATE INDEX IF NOT EXISTS idx_semantic_similarity_term2 ON semantic_similarity(term2);
        """

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(schema_sql)
            logger.info("✓ Grouping schema initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize grouping schema: {e}")
            raise

    def missing_grouping_tables(self) -> List[str]:
        """Return the grouping tables that do not exist yet."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_schema = 'public' AND table_name = ANY(%s)
                """, (GROUPING_TABLES,))
                existing = {row[0] for row in cur.fetchall()}

        return [t for t in GROUPING_TABLES if t not in existing]

    # ===================================================================
    # Posts
    # ===================================================================

    def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a post by ID.

        Returns:
            Post dictionary or None if not found
        """
        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("SELECT * FROM posts WHERE id = %s", (post_id,))
                row = cur.fetchone()
                return dict(row) if row else None

    def get_posts_by_ids(self, post_ids: List[str]) -> List[Dict[str, Any]]:
        if not post_ids:
            return []

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT * FROM posts WHERE id = ANY(%s::uuid[])",
                    ([str(pid) for pid in post_ids],)
                )
                return [dict(row) for row in cur.fetchall()]

    def get_posts_page(
        self,
        offset: int,
        limit: int,
        configuration_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Get one page of posts that have a tenant assigned, newest first.

        Args:
            offset: Rows to skip
            limit: Page size
            configuration_id: Optional tenant filter

        Returns:
            List of dicts with id, configuration_id, topics, keywords
        """
        query = """
            SELECT id, configuration_id, topics, keywords
            FROM posts
            WHERE configuration_id IS NOT NULL
        """
        params: List[Any] = []

        if configuration_id:
            query += " AND configuration_id = %s"
            params.append(configuration_id)

        query += " ORDER BY created_at DESC, id LIMIT %s OFFSET %s"
        params.extend([limit, offset])

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [dict(row) for row in cur.fetchall()]

    # ===================================================================
    # Clusters
    # ===================================================================

    def get_clusters(self, configuration_id: str, kind: str) -> List[Dict[str, Any]]:
        """
        Get every cluster of `kind` for a tenant, regardless of status.

        Ordered oldest first so that "first match" is deterministic.
        """
        layout = CLUSTER_TABLES[kind]
        query = sql.SQL("""
            SELECT id, configuration_id, {label}, {description}, status,
                   aggregated_topics, aggregated_keywords, created_at
            FROM {table}
            WHERE configuration_id = %s
            ORDER BY created_at ASC, id ASC
        """).format(
            label=sql.Identifier(layout['label_column']),
            description=sql.Identifier(layout['description_column']),
            table=sql.Identifier(layout['table']),
        )

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, (configuration_id,))
                return [dict(row) for row in cur.fetchall()]

    def insert_cluster_with_membership(self, kind: str, cluster, membership) -> str:
        """
        Insert a new cluster and its first membership in one transaction.

        Args:
            kind: 'topic' or 'narrative'
            cluster: Cluster to persist (its to_row() gives the columns)
            membership: Membership of the seeding post; cluster_id is filled in

        Returns:
            The new cluster ID

        Raises:
            DuplicateLabelError: the (configuration_id, label) constraint was violated
        """
        layout = CLUSTER_TABLES[kind]
        row = self._adapt_row(cluster.to_row())
        columns = list(row.keys())

        insert_cluster = sql.SQL(
            "INSERT INTO {table} ({columns}, last_updated_at) VALUES ({values}, NOW()) RETURNING id"
        ).format(
            table=sql.Identifier(layout['table']),
            columns=sql.SQL(', ').join(sql.Identifier(c) for c in columns),
            values=sql.SQL(', ').join(sql.Placeholder() for _ in columns),
        )

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(insert_cluster, [row[c] for c in columns])
                    cluster_id = str(cur.fetchone()[0])

                    membership.cluster_id = cluster_id
                    self._insert_membership(cur, kind, membership)

            return cluster_id

        except errors.UniqueViolation:
            raise DuplicateLabelError(kind, cluster.configuration_id, cluster.label)

    def update_cluster_stats(self, kind: str, cluster_id: str, stats: Dict[str, Any]) -> None:
        """Overwrite the derived statistics of a cluster."""
        layout = CLUSTER_TABLES[kind]
        row = self._adapt_row(stats)
        columns = list(row.keys())

        query = sql.SQL(
            "UPDATE {table} SET {assignments}, last_updated_at = NOW() WHERE id = %s"
        ).format(
            table=sql.Identifier(layout['table']),
            assignments=sql.SQL(', ').join(
                sql.SQL("{} = %s").format(sql.Identifier(c)) for c in columns
            ),
        )

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, [row[c] for c in columns] + [cluster_id])

    # ===================================================================
    # Membership
    # ===================================================================

    def get_membership(self, kind: str, cluster_id: str, post_id: str) -> Optional[Dict[str, Any]]:
        layout = CLUSTER_TABLES[kind]
        query = sql.SQL("""
            SELECT * FROM {table}
            WHERE {id_field} = %s AND post_id = %s
            LIMIT 1
        """).format(
            table=sql.Identifier(layout['membership_table']),
            id_field=sql.Identifier(layout['id_field']),
        )

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, (cluster_id, post_id))
                row = cur.fetchone()
                return dict(row) if row else None

    def get_post_membership(
        self,
        kind: str,
        post_id: str,
        configuration_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get the membership of `post_id` in any cluster of `kind` owned by the tenant.

        Returns:
            Membership row (cluster id under the kind's id field) or None
        """
        layout = CLUSTER_TABLES[kind]
        query = sql.SQL("""
            SELECT m.*
            FROM {members} m
            JOIN {table} c ON c.id = m.{id_field}
            WHERE m.post_id = %s AND c.configuration_id = %s
            ORDER BY m.created_at ASC, m.id ASC
            LIMIT 1
        """).format(
            members=sql.Identifier(layout['membership_table']),
            table=sql.Identifier(layout['table']),
            id_field=sql.Identifier(layout['id_field']),
        )

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, (post_id, configuration_id))
                row = cur.fetchone()
                return dict(row) if row else None

    def get_memberships(self, kind: str, cluster_id: str) -> List[Dict[str, Any]]:
        layout = CLUSTER_TABLES[kind]
        query = sql.SQL("""
            SELECT post_id, matched_by, matched_value, created_at
            FROM {table}
            WHERE {id_field} = %s
        """).format(
            table=sql.Identifier(layout['membership_table']),
            id_field=sql.Identifier(layout['id_field']),
        )

        with self.get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, (cluster_id,))
                return [dict(row) for row in cur.fetchall()]

    def insert_membership(self, kind: str, membership) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                self._insert_membership(cur, kind, membership)

    def _insert_membership(self, cur, kind: str, membership) -> None:
        layout = CLUSTER_TABLES[kind]
        query = sql.SQL("""
            INSERT INTO {table} ({id_field}, post_id, matched_by, matched_value)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT ({id_field}, post_id) DO NOTHING
        """).format(
            table=sql.Identifier(layout['membership_table']),
            id_field=sql.Identifier(layout['id_field']),
        )
        cur.execute(query, (
            membership.cluster_id,
            membership.post_id,
            membership.matched_by,
            membership.matched_value,
        ))

    # ===================================================================
    # Semantic similarity
    # ===================================================================

    def find_semantic_pairs(self, pairs: List[Tuple[str, str]]) -> Set[Tuple[str, str]]:
        """
        Return the requested term pairs that exist in semantic_similarity.

        The table is symmetric: a row (a, b) answers both (a, b) and (b, a).
        All pairs are resolved with a single query.
        """
        if not pairs:
            return set()

        terms = sorted({term for pair in pairs for term in pair})
        requested = set(pairs)

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT term1, term2
                    FROM semantic_similarity
                    WHERE term1 = ANY(%s) AND term2 = ANY(%s)
                """, (terms, terms))
                rows = cur.fetchall()

        found = set()
        for term1, term2 in rows:
            if (term1, term2) in requested:
                found.add((term1, term2))
            if (term2, term1) in requested:
                found.add((term2, term1))
        return found

    # ===================================================================
    # Maintenance
    # ===================================================================

    def reset_groups(self, configuration_id: Optional[str] = None) -> Dict[str, int]:
        """
        Delete memberships and clusters, for one tenant or for all of them.

        Returns:
            Deleted row counts per table
        """
        deleted = {}

        with self.get_connection() as conn:
            with conn.cursor() as cur:
                for layout in CLUSTER_TABLES.values():
                    if configuration_id:
                        cur.execute(sql.SQL("""
                            DELETE FROM {members} WHERE {id_field} IN (
                                SELECT id FROM {table} WHERE configuration_id = %s
                            )
                        """).format(
                            members=sql.Identifier(layout['membership_table']),
                            id_field=sql.Identifier(layout['id_field']),
                            table=sql.Identifier(layout['table']),
                        ), (configuration_id,))
                    else:
                        cur.execute(sql.SQL("DELETE FROM {members}").format(
                            members=sql.Identifier(layout['membership_table'])
                        ))
                    deleted[layout['membership_table']] = cur.rowcount

                for layout in CLUSTER_TABLES.values():
                    if configuration_id:
                        cur.execute(sql.SQL("DELETE FROM {table} WHERE configuration_id = %s").format(
                            table=sql.Identifier(layout['table'])
                        ), (configuration_id,))
                    else:
                        cur.execute(sql.SQL("DELETE FROM {table}").format(
                            table=sql.Identifier(layout['table'])
                        ))
                    deleted[layout['table']] = cur.rowcount

        logger.info(f"Reset grouping tables: {deleted}")
        return deleted

    @staticmethod
    def _adapt_row(row: Dict[str, Any]) -> Dict[str, Any]:
        """Wrap dict columns for JSONB."""
        return {
            key: Json(value) if key in JSON_COLUMNS else value
            for key, value in row.items()
        }

    def close(self):
        """Close all connections in the pool."""
        if hasattr(self, 'pool'):
            self.pool.closeall()
            logger.info("Database connection pool closed")
