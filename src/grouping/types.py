"""
Data types for the grouping engine.

Post is validated with pydantic because it comes straight from store rows
written by the ingestion pipeline. Clusters, memberships and statistics are
plain dataclasses built by the engine itself.

Clusters are a tagged variant: TopicCluster and NarrativeCluster share the
Cluster base and differ by their `kind` tag and by the statistics they
carry (ClusterStats vs NarrativeStats).
"""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, field_validator

from .constants import CLUSTER_TABLES, DEFAULT_CLUSTER_STATUS, NARRATIVE, SENTIMENTS, TOPIC

ClusterKind = Literal["topic", "narrative"]
MatchedBy = Literal["topic", "keyword"]
Sentiment = Literal["positive", "neutral", "negative"]

_WORD_CHAR = re.compile(r"\w")


def clean_terms(value: Any) -> List[str]:
    """
    Keep the terms of a topics/keywords column that can match anything.

    NULL, blank and punctuation-only terms are dropped: they normalize to an
    empty string and would otherwise match each other.
    """
    if not value:
        return []
    return [str(term) for term in value if term is not None and _WORD_CHAR.search(str(term))]


class Post(BaseModel):
    """An analyzed social-media post, read-only for the grouping engine."""

    id: str
    configuration_id: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    sentiment: Optional[Sentiment] = None
    risk_score: Optional[float] = None
    platform: str = "unknown"
    likes_count: int = 0
    comments_count: int = 0
    shares_count: int = 0
    created_at: datetime

    @field_validator("id", "configuration_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        # UUID columns come back as uuid.UUID
        return str(value) if value is not None else None

    @field_validator("topics", "keywords", mode="before")
    @classmethod
    def _clean_terms(cls, value: Any) -> List[str]:
        return clean_terms(value)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _known_sentiment(cls, value: Any) -> Optional[str]:
        if not value:
            return None
        value = str(value).lower()
        return value if value in SENTIMENTS else None

    @field_validator("likes_count", "comments_count", "shares_count", mode="before")
    @classmethod
    def _missing_counter(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("platform", mode="before")
    @classmethod
    def _platform(cls, value: Any) -> str:
        return str(value).lower() if value else "unknown"

    @property
    def terms(self) -> List[str]:
        """Topics first, then keywords."""
        return [*self.topics, *self.keywords]

    @property
    def has_terms(self) -> bool:
        return bool(self.topics or self.keywords)

    @property
    def engagement(self) -> int:
        return self.likes_count + self.comments_count + self.shares_count

    @classmethod
    def from_row(cls, row: Dict[str, Any], configuration_id: Optional[str] = None) -> "Post":
        """Build a Post from a store row, optionally forcing the tenant scope."""
        post = cls.model_validate(dict(row))
        if configuration_id is not None:
            post = post.model_copy(update={"configuration_id": str(configuration_id)})
        return post


# ============================================================================
# STATISTICS
# ============================================================================

@dataclass
class ClusterStats:
    """Derived statistics shared by every cluster kind."""
    post_count: int
    average_risk_score: float
    sentiment_distribution: Dict[str, int]
    platform_distribution: Dict[str, int]
    total_engagement: int
    aggregated_topics: List[str]
    aggregated_keywords: List[str]

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NarrativeStats(ClusterStats):
    """Narrative statistics: shared fields plus risk and persistence metrics."""
    strength_score: int
    risk_level: str
    persistence_days: int
    contributing_topics_count: int
    first_emergence_at: Optional[datetime]


# ============================================================================
# CLUSTERS
# ============================================================================

@dataclass
class Cluster:
    """
    Common shape of a topic or narrative cluster.

    `label` and `description` map to name/description for topics and to
    title/summary for narratives (see CLUSTER_TABLES).
    """
    configuration_id: str
    label: str
    description: str = ""
    id: Optional[str] = None
    status: str = DEFAULT_CLUSTER_STATUS
    aggregated_topics: List[str] = field(default_factory=list)
    aggregated_keywords: List[str] = field(default_factory=list)
    stats: Optional[ClusterStats] = None
    created_at: Optional[datetime] = None

    kind: ClassVar[str] = TOPIC

    def to_row(self) -> Dict[str, Any]:
        """Column values for inserting this cluster."""
        layout = CLUSTER_TABLES[self.kind]
        row: Dict[str, Any] = {
            "configuration_id": self.configuration_id,
            layout["label_column"]: self.label,
            layout["description_column"]: self.description,
            "status": self.status,
            "aggregated_topics": self.aggregated_topics,
            "aggregated_keywords": self.aggregated_keywords,
        }
        if self.stats is not None:
            row.update(self.stats.to_row())
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Cluster":
        layout = CLUSTER_TABLES[cls.kind]
        return cls(
            id=str(row["id"]) if row.get("id") is not None else None,
            configuration_id=str(row.get("configuration_id")),
            label=row.get(layout["label_column"]) or "",
            description=row.get(layout["description_column"]) or "",
            status=row.get("status") or DEFAULT_CLUSTER_STATUS,
            aggregated_topics=list(row.get("aggregated_topics") or []),
            aggregated_keywords=list(row.get("aggregated_keywords") or []),
            created_at=row.get("created_at"),
        )


@dataclass
class TopicCluster(Cluster):
    kind: ClassVar[str] = TOPIC


@dataclass
class NarrativeCluster(Cluster):
    kind: ClassVar[str] = NARRATIVE
    amplification_velocity: float = 0.0

    def to_row(self) -> Dict[str, Any]:
        row = super().to_row()
        row["amplification_velocity"] = self.amplification_velocity
        return row


CLUSTER_TYPES: Dict[str, Type[Cluster]] = {
    TOPIC: TopicCluster,
    NARRATIVE: NarrativeCluster,
}


def cluster_from_row(kind: str, row: Dict[str, Any]) -> Cluster:
    """Parse a store row into the cluster variant for `kind`."""
    return CLUSTER_TYPES[kind].from_row(row)


# ============================================================================
# MEMBERSHIP & MATCHES
# ============================================================================

@dataclass
class Membership:
    """Join fact linking one post to one cluster."""
    cluster_id: str
    post_id: str
    matched_by: str
    matched_value: str
    created_at: Optional[datetime] = None

    def to_row(self, kind: str) -> Dict[str, Any]:
        return {
            CLUSTER_TABLES[kind]["id_field"]: self.cluster_id,
            "post_id": self.post_id,
            "matched_by": self.matched_by,
            "matched_value": self.matched_value,
        }


@dataclass
class MatchResult:
    """Outcome of comparing one post against one cluster's terms."""
    matched: bool
    matched_by: Optional[str] = None
    matched_value: Optional[str] = None
    stage: Optional[str] = None  # exact, fuzzy or semantic


NO_MATCH = MatchResult(matched=False)


@dataclass
class GroupMatch:
    """A candidate cluster for a post."""
    cluster_id: str
    kind: str
    matched_by: str
    matched_value: str
    confidence: float = 1.0


@dataclass
class GroupingOutcome:
    """What happened to a post in one pipeline (topic or narrative)."""
    kind: str
    action: Literal["created", "linked", "merged_after_conflict", "skipped"]
    cluster_id: Optional[str] = None


@dataclass
class GroupingResult:
    """Per-post result of GroupingService.group_post."""
    post_id: str
    topic: Optional[GroupingOutcome] = None
    narrative: Optional[GroupingOutcome] = None

    @property
    def grouped(self) -> bool:
        return any(
            outcome is not None and outcome.cluster_id is not None
            for outcome in (self.topic, self.narrative)
        )
