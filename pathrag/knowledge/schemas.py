"""
Pydantic Schemas for the Knowledge Layer.

Defines the graph records (entities, relationships), their vector
projections, extraction candidates and text units.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator

from pathrag.utils.formatting import split_field

# Type given to entities created only because a relationship referenced them
UNKNOWN_ENTITY_TYPE = "UNKNOWN"


def normalize_name(name: str) -> str:
    """Canonical entity identity: stripped and upper-cased."""
    return name.strip().upper()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """
    A node of the knowledge graph.

    ``name`` is unique within a document scope; re-extraction of the same
    name merges into this record. Multi-valued text fields are ``<SEP>``
    joined strings.
    """

    entity_id: UUID = Field(default_factory=uuid4, description="Unique entity ID")
    name: str = Field(..., min_length=1, description="Normalized (upper-cased) entity name")
    entity_type: str = Field(..., description="Free-text category, e.g. ORGANIZATION")
    description: str = Field(default="", description="<SEP> joined descriptions or a summary")
    source_id: str = Field(default="", description="<SEP> joined text-unit ids")
    document_id: UUID = Field(..., description="Document scope owning this entity")
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def source_ids(self) -> list[str]:
        """Originating text-unit ids, in stored order."""
        return split_field(self.source_id)

    def vector_content(self) -> str:
        """Exact text embedded for the entity vector index."""
        return self.name + self.description


class Relationship(BaseModel):
    """
    An edge of the knowledge graph.

    Stored with a nominal direction but treated as undirected when
    retrieved. ``weight`` accumulates across merges.
    """

    relationship_id: UUID = Field(default_factory=uuid4, description="Unique relationship ID")
    source_name: str = Field(..., min_length=1)
    target_name: str = Field(..., min_length=1)
    weight: float = Field(default=1.0, ge=0.0, description="Accumulated evidence weight")
    description: str = Field(default="")
    keywords: str = Field(default="", description="<SEP> joined keyword groups")
    source_id: str = Field(default="", description="<SEP> joined text-unit ids")
    document_id: UUID = Field(...)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def source_ids(self) -> list[str]:
        return split_field(self.source_id)

    def vector_content(self) -> str:
        """Exact text embedded for the relationship vector index."""
        return self.keywords + self.source_name + self.target_name + self.description


class ExtractedEntity(BaseModel):
    """An entity candidate produced by one extraction pass over one text unit."""

    name: str = Field(..., min_length=1)
    entity_type: str = Field(default=UNKNOWN_ENTITY_TYPE)
    description: str = Field(default="")
    source_id: str = Field(default="", description="Text unit the candidate came from")
    document_id: UUID

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = normalize_name(value)
        if not normalized:
            raise ValueError("entity name must not be blank")
        return normalized


class ExtractedRelationship(BaseModel):
    """A relationship candidate produced by one extraction pass."""

    source_name: str = Field(..., min_length=1)
    target_name: str = Field(..., min_length=1)
    description: str = Field(default="")
    keywords: str = Field(default="")
    weight: float = Field(default=1.0, ge=0.0)
    source_id: str = Field(default="")
    document_id: UUID

    @field_validator("source_name", "target_name")
    @classmethod
    def _normalize_names(cls, value: str) -> str:
        normalized = normalize_name(value)
        if not normalized:
            raise ValueError("relationship endpoint must not be blank")
        return normalized

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_name, self.target_name)


class EntityVector(BaseModel):
    """Entity projection in embedding space (also a search hit)."""

    name: str
    document_id: UUID
    content: str
    embedding: list[float] | None = None
    distance: float = 0.0

    @property
    def similarity(self) -> float:
        """Convert cosine distance to similarity score (0-1)."""
        return max(0.0, 1.0 - self.distance)


class RelationshipVector(BaseModel):
    """Relationship projection in embedding space (also a search hit)."""

    source_name: str
    target_name: str
    document_id: UUID
    content: str
    embedding: list[float] | None = None
    distance: float = 0.0

    @property
    def similarity(self) -> float:
        return max(0.0, 1.0 - self.distance)


class TextChunk(BaseModel):
    """A text unit: a token window of a document, the unit of extraction."""

    chunk_id: str = Field(..., description="'<document_id>-chunk-<index>'")
    document_id: UUID
    content: str
    tokens: int = Field(default=0, ge=0)
    chunk_index: int = Field(default=0, ge=0)


class ExtractionResult(BaseModel):
    """
    Candidates extracted from one text (a chunk, or the orphan-repair window).
    """

    source_id: str = Field(..., description="Text unit the candidates are attributed to")
    document_id: UUID
    entities: list[ExtractedEntity] = Field(default_factory=list)
    relationships: list[ExtractedRelationship] = Field(default_factory=list)
    extraction_time_seconds: float = Field(default=0.0)
    skipped_records: int = Field(default=0, description="Malformed records ignored by the parser")

    @property
    def entity_count(self) -> int:
        return len(self.entities)

    @property
    def relationship_count(self) -> int:
        return len(self.relationships)
