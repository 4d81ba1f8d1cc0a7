"""
Context Builder - Dual-Level Context Assembly.

Turns query keywords into the five prompt blocks of a PathRAG answer:

- low level (local): entities matched by the low-level keywords, the
  weighted paths connecting them, and their source text units
- high level (global): relationships matched by the high-level keywords,
  the entities they connect, and their source text units

Every block is a CSV table (header row plus numbered rows) cut to its own
token budget. Zero matches produce header-only tables.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.keyword_extractor import QueryKeywords
from pathrag.knowledge.schemas import Entity, Relationship, TextChunk
from pathrag.knowledge.vector_store import VectorStore
from pathrag.retrieval.path_finder import PathFinder
from pathrag.utils.formatting import numbered_table, truncate_by_token_budget
from pathrag.utils.llm_factory import EmbedFunc
from pathrag.utils.logger import get_logger
from pathrag.utils.observer import LoggingObserver, PipelineObserver, observe_stage

if TYPE_CHECKING:
    from pathrag.config import Settings

logger = get_logger(__name__)


ENTITY_HEADER = ["id", "entity", "type", "description", "rank"]
PATH_HEADER = ["id", "context"]
EDGE_HEADER = ["id", "source", "target", "description", "keywords", "weight", "rank"]
TEXT_UNIT_HEADER = ["id", "content"]

QUERY_CONTEXT_TEMPLATE = """
-----global-information-----
-----high-level entity information-----
```csv
{high_level_entities}
```
-----high-level relationship information-----
```csv
{high_level_relations}
```
-----Sources-----
```csv
{text_units}
```
-----local-information-----
-----low-level entity information-----
```csv
{low_level_entities}
```
-----low-level relationship information-----
```csv
{low_level_relations}
```
"""


class QueryParams(BaseModel):
    """Per-query retrieval options."""

    top_k: int = Field(default=40, ge=1, description="Vector search breadth")
    max_token_for_text_unit: int = Field(default=4000, ge=0)
    max_token_for_global_context: int = Field(default=3000, ge=0)
    max_token_for_local_context: int = Field(default=5000, ge=0)
    document_ids: list[UUID] | None = Field(
        default=None,
        description="Resolved document scope; None searches every document",
    )

    @field_validator("document_ids")
    @classmethod
    def _empty_scope_means_all(cls, value: list[UUID] | None) -> list[UUID] | None:
        return value or None

    @classmethod
    def from_settings(cls, settings: "Settings", **overrides) -> "QueryParams":
        """Query defaults from engine settings."""
        values = {
            "top_k": settings.top_k,
            "max_token_for_text_unit": settings.max_token_for_text_unit,
            "max_token_for_global_context": settings.max_token_for_global_context,
            "max_token_for_local_context": settings.max_token_for_local_context,
        }
        values.update(overrides)
        return cls(**values)


class QueryContext(BaseModel):
    """The five CSV blocks handed to the answering LLM."""

    high_level_entities: str
    high_level_relations: str
    low_level_entities: str
    low_level_relations: str
    text_units: str

    def format(self) -> str:
        """Render the blocks into the fixed prompt layout."""
        return QUERY_CONTEXT_TEMPLATE.format(**self.model_dump())


@dataclass
class RankedEntity:
    entity: Entity
    rank: int


@dataclass
class RankedRelationship:
    relationship: Relationship
    rank: int


@dataclass
class LowLevelContext:
    """Entity-seeded (local) retrieval result."""

    entities: list[RankedEntity] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    text_units: list[TextChunk] = field(default_factory=list)


@dataclass
class HighLevelContext:
    """Relationship-seeded (global) retrieval result."""

    entities: list[RankedEntity] = field(default_factory=list)
    edges: list[RankedRelationship] = field(default_factory=list)
    text_units: list[TextChunk] = field(default_factory=list)


def entities_table(entities: list[RankedEntity]) -> str:
    return numbered_table(
        ENTITY_HEADER,
        ([r.entity.name, r.entity.entity_type, r.entity.description, r.rank] for r in entities),
    )


def paths_table(paths: list[str]) -> str:
    return numbered_table(PATH_HEADER, ([path] for path in paths))


def edges_table(edges: list[RankedRelationship]) -> str:
    return numbered_table(
        EDGE_HEADER,
        (
            [
                r.relationship.source_name,
                r.relationship.target_name,
                r.relationship.description,
                r.relationship.keywords,
                r.relationship.weight,
                r.rank,
            ]
            for r in edges
        ),
    )


def text_units_table(text_units: list[TextChunk]) -> str:
    return numbered_table(TEXT_UNIT_HEADER, ([chunk.content] for chunk in text_units))


def combine_text_units(*groups: list[TextChunk]) -> list[TextChunk]:
    """Concatenate text-unit lists, keeping the first occurrence of each chunk id."""
    combined: dict[str, TextChunk] = {}
    for group in groups:
        for chunk in group:
            combined.setdefault(chunk.chunk_id, chunk)
    return list(combined.values())


class ContextBuilder:
    """
    Assembles query context from the graph and vector stores.

    Usage:
        builder = ContextBuilder(graph_store, vector_store, embed)
        context = await builder.build_from_keywords(keywords, QueryParams())
        prompt_context = context.format()
    """

    def __init__(
        self,
        graph_store: GraphStore,
        vector_store: VectorStore,
        embed: EmbedFunc,
        path_finder: PathFinder | None = None,
        observer: PipelineObserver | None = None,
    ) -> None:
        """
        Initialize the context builder.

        Args:
            graph_store: Knowledge graph
            vector_store: Entity/relationship/chunk vector index
            embed: Embedding capability for the keyword strings
            path_finder: Traversal engine (defaults to one over graph_store)
            observer: Stage observer (defaults to logging)
        """
        self.graph_store = graph_store
        self.vector_store = vector_store
        self.embed = embed
        self.path_finder = path_finder or PathFinder(graph_store)
        self.observer = observer or LoggingObserver()

    async def build_from_keywords(
        self,
        keywords: QueryKeywords,
        params: QueryParams | None = None,
    ) -> QueryContext:
        """
        Build the five context blocks for already-extracted keywords.

        Args:
            keywords: High- and low-level query keywords
            params: Retrieval options

        Returns:
            QueryContext (header-only tables where nothing matched)
        """
        params = params or QueryParams()

        with observe_stage(self.observer, "query", "low_level") as stage:
            low = await self.build_low_level_context(keywords.low_level, params)
            stage.update(entities=len(low.entities), paths=len(low.paths))

        with observe_stage(self.observer, "query", "high_level") as stage:
            high = await self.build_high_level_context(keywords.high_level, params)
            stage.update(relationships=len(high.edges), entities=len(high.entities))

        context = QueryContext(
            high_level_entities=entities_table(high.entities),
            high_level_relations=edges_table(high.edges),
            low_level_entities=entities_table(low.entities),
            low_level_relations=paths_table(low.paths),
            text_units=text_units_table(combine_text_units(high.text_units, low.text_units)),
        )

        logger.info(
            f"Built query context: {len(low.entities)} local entities, {len(low.paths)} paths, "
            f"{len(high.edges)} global relationships, {len(high.entities)} global entities"
        )
        return context

    async def _embed_keywords(self, keywords: list[str]) -> list[float] | None:
        text = ", ".join(kw for kw in keywords if kw.strip())
        if not text:
            return None
        return (await self.embed([text]))[0]

    async def build_low_level_context(
        self,
        keywords: list[str],
        params: QueryParams,
    ) -> LowLevelContext:
        """
        Entity-seeded context.

        Matched entities are ranked by neighbor count, connected through
        path-weighted traversal and backed by the text units they came from.
        """
        embedding = await self._embed_keywords(keywords)
        if embedding is None:
            return LowLevelContext()

        hits = self.vector_store.search_entities(embedding, params.top_k, params.document_ids)

        entities: list[RankedEntity] = []
        seen: set[str] = set()
        for hit in hits:
            if hit.name in seen:
                continue
            entity = self.graph_store.get_entity(hit.name, hit.document_id)
            if entity is None:
                logger.debug(f"Entity vector {hit.name} has no graph node; skipping")
                continue
            seen.add(hit.name)
            entities.append(RankedEntity(entity, self.graph_store.node_degree(hit.name, params.document_ids)))

        if not entities:
            return LowLevelContext()

        paths = self.path_finder.find_related_paths(
            [r.entity.name for r in entities],
            max_tokens=params.max_token_for_local_context,
            document_ids=params.document_ids,
        )
        text_units = self._related_text_units([r.entity for r in entities], params)

        return LowLevelContext(entities=entities, paths=paths, text_units=text_units)

    async def build_high_level_context(
        self,
        keywords: list[str],
        params: QueryParams,
    ) -> HighLevelContext:
        """
        Relationship-seeded context.

        Matched edges are ranked by the summed neighbor counts of their
        endpoints (then by weight) and cut to the global budget; the
        entities they connect keep edge order and are cut to the local budget.
        """
        embedding = await self._embed_keywords(keywords)
        if embedding is None:
            return HighLevelContext()

        hits = self.vector_store.search_relationships(embedding, params.top_k, params.document_ids)

        edges: list[RankedRelationship] = []
        for hit in hits:
            relationship = self.graph_store.get_relationship(hit.source_name, hit.target_name, hit.document_id)
            if relationship is None:
                logger.debug(f"Relationship vector {hit.source_name} -> {hit.target_name} has no edge; skipping")
                continue
            rank = self.graph_store.node_degree(
                hit.source_name, params.document_ids
            ) + self.graph_store.node_degree(hit.target_name, params.document_ids)
            edges.append(RankedRelationship(relationship, rank))

        edges.sort(key=lambda r: (r.rank, r.relationship.weight), reverse=True)
        edges = truncate_by_token_budget(
            edges,
            key=lambda r: r.relationship.description,
            max_tokens=params.max_token_for_global_context,
        )

        endpoints: dict[str, UUID] = {}
        for r in edges:
            endpoints.setdefault(r.relationship.source_name, r.relationship.document_id)
            endpoints.setdefault(r.relationship.target_name, r.relationship.document_id)

        all_entities: list[Entity] = []
        for name, document_id in endpoints.items():
            entity = self.graph_store.get_entity(name, document_id)
            if entity is not None:
                all_entities.append(entity)

        entities = truncate_by_token_budget(
            [RankedEntity(e, self.graph_store.node_degree(e.name, params.document_ids)) for e in all_entities],
            key=lambda r: r.entity.description,
            max_tokens=params.max_token_for_local_context,
        )
        text_units = self._related_text_units(all_entities, params)

        return HighLevelContext(entities=entities, edges=edges, text_units=text_units)

    def _related_text_units(self, entities: list[Entity], params: QueryParams) -> list[TextChunk]:
        """Text units the entities were extracted from, first-seen order, within the text-unit budget."""
        chunk_ids = list(dict.fromkeys(
            source_id for entity in entities for source_id in entity.source_ids
        ))
        chunks = self.vector_store.get_chunks(chunk_ids)
        return truncate_by_token_budget(
            chunks,
            key=lambda chunk: chunk.content,
            max_tokens=params.max_token_for_text_unit,
        )
