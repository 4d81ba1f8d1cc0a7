"""
Ingestion Pipeline - Document to Knowledge Graph.

    text -> text units -> chunk embeddings
         -> extraction per text unit
         -> candidates grouped by identity
         -> merge + upsert (graph)
         -> entity / relationship vectors
         -> orphan repair

Also owns the reverse direction: cascading deletion of everything a
document contributed.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID, uuid4

from pathrag.ingestion.chunker import TokenChunker
from pathrag.knowledge.entity_extractor import EntityExtractor
from pathrag.knowledge.entity_merger import EntityMerger
from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.schemas import (
    Entity,
    EntityVector,
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionResult,
    Relationship,
    RelationshipVector,
)
from pathrag.knowledge.vector_store import VectorStore
from pathrag.utils.llm_factory import EmbedFunc
from pathrag.utils.logger import get_logger
from pathrag.utils.observer import LoggingObserver, PipelineObserver, observe_stage

logger = get_logger(__name__)

# Source id given to candidates found by orphan repair
ORPHAN_REPAIR_SOURCE_ID = "OrphanRepair"
ORPHAN_REPAIR_MAX_CHARACTERS = 8000

C = TypeVar("C")
R = TypeVar("R")


@dataclass
class IngestionResult:
    """Summary of one document ingestion."""

    document_id: UUID
    chunk_count: int = 0
    total_tokens: int = 0
    entity_count: int = 0
    relationship_count: int = 0
    orphan_count: int = 0
    repaired_relationships: int = 0
    elapsed_seconds: float = 0.0


@dataclass
class DeletionResult:
    """Summary of one cascading document deletion."""

    document_id: UUID
    entities: int = 0
    relationships: int = 0
    vectors: dict[str, int] | None = None


def group_entities(results: Iterable[ExtractionResult]) -> dict[str, list[ExtractedEntity]]:
    """Entity candidates grouped by name, in first-seen order."""
    groups: dict[str, list[ExtractedEntity]] = {}
    for result in results:
        for entity in result.entities:
            groups.setdefault(entity.name, []).append(entity)
    return groups


def group_relationships(
    results: Iterable[ExtractionResult],
) -> dict[tuple[str, str], list[ExtractedRelationship]]:
    """Relationship candidates grouped by (source, target), in first-seen order."""
    groups: dict[tuple[str, str], list[ExtractedRelationship]] = {}
    for result in results:
        for relationship in result.relationships:
            groups.setdefault(relationship.key, []).append(relationship)
    return groups


class DocumentIngestor:
    """
    Builds and tears down a document's share of the knowledge graph.

    Usage:
        ingestor = DocumentIngestor(graph_store, vector_store, embed, extractor, merger)
        result = await ingestor.ingest_text(text)
        await ingestor.delete_document(result.document_id)
    """

    def __init__(
        self,
        graph_store: GraphStore,
        vector_store: VectorStore,
        embed: EmbedFunc,
        extractor: EntityExtractor,
        merger: EntityMerger,
        chunker: TokenChunker | None = None,
        embedding_batch_num: int = 32,
        max_async: int = 16,
        repair_orphans: bool = True,
        observer: PipelineObserver | None = None,
    ) -> None:
        """
        Initialize the ingestor.

        Args:
            graph_store: Knowledge graph
            vector_store: Vector index for chunks, entities and relationships
            embed: Embedding capability
            extractor: Extraction collaborator
            merger: Merge engine writing to ``graph_store``
            chunker: Text unit chunker
            embedding_batch_num: Texts per embedding call
            max_async: Identity groups merged concurrently
            repair_orphans: Run orphan repair after each ingestion
            observer: Stage observer (defaults to logging)
        """
        self.graph_store = graph_store
        self.vector_store = vector_store
        self.embed = embed
        self.extractor = extractor
        self.merger = merger
        self.chunker = chunker or TokenChunker()
        self.embedding_batch_num = embedding_batch_num
        self.max_async = max_async
        self.repair_orphans_enabled = repair_orphans
        self.observer = observer or LoggingObserver()

    async def ingest_text(self, text: str, document_id: UUID | None = None) -> IngestionResult:
        """
        Ingest one decoded document.

        Args:
            text: Document text
            document_id: Document scope (generated when omitted)

        Returns:
            IngestionResult summary
        """
        document_id = document_id or uuid4()
        result = IngestionResult(document_id=document_id)
        start_time = time.time()

        with observe_stage(self.observer, "ingest", "chunk", document_id=str(document_id)) as stage:
            chunks = self.chunker.chunk(text, document_id)
            result.chunk_count = len(chunks)
            result.total_tokens = sum(chunk.tokens for chunk in chunks)
            stage.update(chunks=result.chunk_count, tokens=result.total_tokens)

        if not chunks:
            result.elapsed_seconds = time.time() - start_time
            return result

        with observe_stage(self.observer, "ingest", "embed_chunks") as stage:
            embeddings = await self.embed_batched([chunk.content for chunk in chunks])
            stage.update(stored=self.vector_store.add_chunks(chunks, embeddings))

        with observe_stage(self.observer, "ingest", "extract") as stage:
            extractions = await self.extractor.extract_batch(chunks)
            entity_groups = group_entities(extractions)
            relationship_groups = group_relationships(extractions)
            stage.update(entities=len(entity_groups), relationships=len(relationship_groups))

        with observe_stage(self.observer, "ingest", "merge_entities") as stage:
            entities = await self._merge_groups(entity_groups.values(), self.merger.merge_entity)
            stage.update(merged=len(entities))

        with observe_stage(self.observer, "ingest", "merge_relationships") as stage:
            relationships = await self._merge_groups(
                relationship_groups.values(), self.merger.merge_relationship
            )
            stage.update(merged=len(relationships))

        with observe_stage(self.observer, "ingest", "embed_graph"):
            await self.upsert_entity_vectors(entities)
            await self.upsert_relationship_vectors(relationships)

        result.entity_count = len(entities)
        result.relationship_count = len(relationships)

        if self.repair_orphans_enabled:
            with observe_stage(self.observer, "ingest", "repair_orphans") as stage:
                result.orphan_count, result.repaired_relationships = await self.repair_orphans(document_id)
                stage.update(orphans=result.orphan_count, repaired=result.repaired_relationships)

        result.elapsed_seconds = time.time() - start_time
        logger.info(
            f"Ingested document {document_id}: {result.chunk_count} chunks, "
            f"{result.entity_count} entities, {result.relationship_count} relationships "
            f"in {result.elapsed_seconds:.2f}s"
        )
        return result

    async def embed_batched(self, texts: list[str]) -> list[list[float]]:
        """Embed ``texts`` in batches of ``embedding_batch_num``."""
        embeddings: list[list[float]] = []
        for i in range(0, len(texts), self.embedding_batch_num):
            batch = texts[i:i + self.embedding_batch_num]
            vectors = await self.embed(batch)
            if len(vectors) != len(batch):
                raise ValueError(f"Embedding returned {len(vectors)} vectors for {len(batch)} texts")
            embeddings.extend(vectors)
        return embeddings

    async def _merge_groups(
        self,
        groups: Iterable[list[C]],
        merge: Callable[[C], Awaitable[R]],
    ) -> list[R]:
        """
        Merge each identity group; candidates within a group go one at a time.

        Distinct groups run concurrently, at most ``max_async`` at once.
        Returns the final merged record of every group.
        """
        semaphore = asyncio.Semaphore(self.max_async)

        async def merge_group(candidates: list[C]) -> R:
            async with semaphore:
                merged = await merge(candidates[0])
                for candidate in candidates[1:]:
                    merged = await merge(candidate)
                return merged

        return list(await asyncio.gather(*(merge_group(group) for group in groups if group)))

    async def upsert_entity_vectors(self, entities: list[Entity]) -> int:
        """(Re)build entity vectors from ``name + description``."""
        if not entities:
            return 0
        contents = [entity.vector_content() for entity in entities]
        embeddings = await self.embed_batched(contents)
        return self.vector_store.upsert_entities([
            EntityVector(name=e.name, document_id=e.document_id, content=content, embedding=embedding)
            for e, content, embedding in zip(entities, contents, embeddings)
        ])

    async def upsert_relationship_vectors(self, relationships: list[Relationship]) -> int:
        """(Re)build relationship vectors from ``keywords + source + target + description``."""
        if not relationships:
            return 0
        contents = [relationship.vector_content() for relationship in relationships]
        embeddings = await self.embed_batched(contents)
        return self.vector_store.upsert_relationships([
            RelationshipVector(
                source_name=r.source_name,
                target_name=r.target_name,
                document_id=r.document_id,
                content=content,
                embedding=embedding,
            )
            for r, content, embedding in zip(relationships, contents, embeddings)
        ])

    async def repair_orphans(self, document_id: UUID) -> tuple[int, int]:
        """
        Try to connect entities of a document that have no relationship.

        Re-extracts from the start of the document and merges only the
        relationships touching an orphan.

        Args:
            document_id: Document to repair

        Returns:
            (orphan_count, relationships_created)
        """
        connected: set[str] = set()
        for relationship in self.graph_store.get_all_relationships([document_id]):
            connected.update((relationship.source_name, relationship.target_name))

        orphans = {
            entity.name
            for entity in self.graph_store.get_all_entities([document_id])
            if entity.name not in connected
        }
        if not orphans:
            return 0, 0

        context = self._repair_context(document_id)
        if not context.strip():
            return len(orphans), 0

        logger.info(f"Repairing {len(orphans)} orphan entities in document {document_id}")
        extraction = await self.extractor.extract_text(context, ORPHAN_REPAIR_SOURCE_ID, document_id)

        relevant = [
            candidate
            for candidate in extraction.relationships
            if candidate.source_name in orphans or candidate.target_name in orphans
        ]
        merged = [await self.merger.merge_relationship(candidate) for candidate in relevant]
        await self.upsert_relationship_vectors(merged)

        logger.info(f"Orphan repair created {len(merged)} relationships for document {document_id}")
        return len(orphans), len(merged)

    def _repair_context(self, document_id: UUID) -> str:
        """Document text for orphan repair, capped at ORPHAN_REPAIR_MAX_CHARACTERS."""
        parts: list[str] = []
        length = 0
        for chunk in self.vector_store.get_chunks_by_document(document_id):
            if length >= ORPHAN_REPAIR_MAX_CHARACTERS:
                break
            text = chunk.content[:ORPHAN_REPAIR_MAX_CHARACTERS - length]
            if parts:
                length += 1
            parts.append(text)
            length += len(text)
        return "\n".join(parts)

    async def delete_document(self, document_id: UUID) -> DeletionResult:
        """
        Cascade-delete a document's entities, relationships, vectors and text units.

        Args:
            document_id: Document to remove

        Returns:
            DeletionResult with per-store counts
        """
        with observe_stage(self.observer, "delete", "cascade", document_id=str(document_id)) as stage:
            vectors = self.vector_store.delete_document(document_id)
            entities, relationships = self.graph_store.delete_document(document_id)
            stage.update(
                entities=entities,
                relationships=relationships,
                **{f"{name}_vectors": count for name, count in vectors.items()},
            )

        return DeletionResult(
            document_id=document_id,
            entities=entities,
            relationships=relationships,
            vectors=vectors,
        )
