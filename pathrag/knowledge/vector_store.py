"""
Vector Store - ChromaDB Integration.

Three collections share one persistent client:

- entities:       ``name + description`` projections of graph nodes
- relationships:  ``keywords + source + target + description`` projections of edges
- text_chunks:    the text units extraction ran over

Embeddings are always computed by the caller (the injected embed
capability) and passed in, so the collections carry no embedding function.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import UUID

import chromadb
from chromadb.config import Settings as ChromaSettings

from pathrag.knowledge.schemas import EntityVector, RelationshipVector, TextChunk
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


class VectorStoreError(Exception):
    """Raised when vector store operations fail."""
    pass


@dataclass
class VectorStoreConfig:
    """Configuration for the vector store."""

    persist_directory: Path = Path("./data/chroma")
    entity_collection: str = "entities"
    relationship_collection: str = "relationships"
    chunk_collection: str = "text_chunks"
    distance_metric: str = "cosine"
    cosine_better_than_threshold: float = 0.2


def compute_vector_id(prefix: str, *parts: str) -> str:
    """Stable id for a vector record from its identity parts."""
    return prefix + hashlib.md5(":".join(parts).encode("utf-8")).hexdigest()


def _where_documents(document_ids: list[UUID] | None) -> dict[str, Any] | None:
    if document_ids is None:
        return None
    if len(document_ids) == 1:
        return {"document_id": {"$eq": str(document_ids[0])}}
    return {"document_id": {"$in": [str(doc_id) for doc_id in document_ids]}}


class VectorStore:
    """
    ChromaDB-based vector index for entities, relationships and text units.

    Usage:
        store = VectorStore(config)
        store.upsert_entities(vectors)
        hits = store.search_entities(query_embedding, top_k=40)
    """

    def __init__(self, config: VectorStoreConfig | None = None) -> None:
        """
        Initialize the vector store.

        Args:
            config: Vector store configuration
        """
        self.config = config or VectorStoreConfig()
        self._client: chromadb.ClientAPI | None = None
        self._collections: dict[str, chromadb.Collection] = {}

    def _ensure_initialized(self) -> None:
        """Lazy initialization of the ChromaDB client and collections."""
        if self._client is not None:
            return

        logger.info(f"Initializing ChromaDB at {self.config.persist_directory}")
        self.config.persist_directory.mkdir(parents=True, exist_ok=True)

        try:
            self._client = chromadb.PersistentClient(
                path=str(self.config.persist_directory),
                settings=ChromaSettings(
                    anonymized_telemetry=False,
                    allow_reset=True,
                ),
            )
            for name in (
                self.config.entity_collection,
                self.config.relationship_collection,
                self.config.chunk_collection,
            ):
                self._collections[name] = self._client.get_or_create_collection(
                    name=name,
                    metadata={"hnsw:space": self.config.distance_metric},
                    embedding_function=None,
                )
        except Exception as e:
            self._client = None
            self._collections = {}
            logger.error(f"Failed to initialize ChromaDB: {e}")
            raise VectorStoreError(f"Failed to initialize ChromaDB: {e}") from e

        logger.info(
            "ChromaDB initialized: "
            + ", ".join(f"{name}={col.count()}" for name, col in self._collections.items())
        )

    def _collection(self, name: str) -> chromadb.Collection:
        self._ensure_initialized()
        return self._collections[name]

    @property
    def entities(self) -> chromadb.Collection:
        return self._collection(self.config.entity_collection)

    @property
    def relationships(self) -> chromadb.Collection:
        return self._collection(self.config.relationship_collection)

    @property
    def chunks(self) -> chromadb.Collection:
        return self._collection(self.config.chunk_collection)

    # ------------------------------------------------------------------
    # Entity / relationship vectors
    # ------------------------------------------------------------------

    def upsert_entities(self, vectors: list[EntityVector]) -> int:
        """
        Insert or replace entity vectors keyed by (document, name).

        Args:
            vectors: Entity projections with embeddings set

        Returns:
            Number of vectors written
        """
        if not vectors:
            return 0

        try:
            self.entities.upsert(
                ids=[compute_vector_id("ent-", str(v.document_id), v.name) for v in vectors],
                documents=[v.content for v in vectors],
                embeddings=[v.embedding for v in vectors],
                metadatas=[
                    {"document_id": str(v.document_id), "entity_name": v.name}
                    for v in vectors
                ],
            )
        except Exception as e:
            logger.error(f"Failed to upsert entity vectors: {e}")
            raise VectorStoreError(f"Failed to upsert entity vectors: {e}") from e

        logger.debug(f"Upserted {len(vectors)} entity vectors")
        return len(vectors)

    def upsert_relationships(self, vectors: list[RelationshipVector]) -> int:
        """Insert or replace relationship vectors keyed by (document, source, target)."""
        if not vectors:
            return 0

        try:
            self.relationships.upsert(
                ids=[
                    compute_vector_id("rel-", str(v.document_id), v.source_name, v.target_name)
                    for v in vectors
                ],
                documents=[v.content for v in vectors],
                embeddings=[v.embedding for v in vectors],
                metadatas=[
                    {
                        "document_id": str(v.document_id),
                        "source_name": v.source_name,
                        "target_name": v.target_name,
                    }
                    for v in vectors
                ],
            )
        except Exception as e:
            logger.error(f"Failed to upsert relationship vectors: {e}")
            raise VectorStoreError(f"Failed to upsert relationship vectors: {e}") from e

        logger.debug(f"Upserted {len(vectors)} relationship vectors")
        return len(vectors)

    def _query(
        self,
        collection: chromadb.Collection,
        embedding: list[float],
        top_k: int,
        document_ids: list[UUID] | None,
    ) -> list[tuple[str, dict[str, Any], float]]:
        """Top-K cosine query returning (content, metadata, distance) above the threshold."""
        if document_ids is not None and not document_ids:
            return []

        try:
            available = collection.count()
            if available == 0:
                return []

            results = collection.query(
                query_embeddings=[embedding],
                n_results=min(top_k, available),
                where=_where_documents(document_ids),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            logger.error(f"Search failed on {collection.name}: {e}")
            raise VectorStoreError(f"Search failed: {e}") from e

        hits: list[tuple[str, dict[str, Any], float]] = []
        if results["ids"] and results["ids"][0]:
            for i in range(len(results["ids"][0])):
                distance = results["distances"][0][i] if results["distances"] else 0.0
                if max(0.0, 1.0 - distance) < self.config.cosine_better_than_threshold:
                    continue
                hits.append((
                    results["documents"][0][i] if results["documents"] else "",
                    results["metadatas"][0][i] if results["metadatas"] else {},
                    distance,
                ))
        return hits

    def search_entities(
        self,
        embedding: list[float],
        top_k: int = 40,
        document_ids: list[UUID] | None = None,
    ) -> list[EntityVector]:
        """
        Nearest entity vectors to a query embedding.

        Args:
            embedding: Query embedding
            top_k: Maximum number of hits
            document_ids: Optional document scope (an empty list matches nothing)

        Returns:
            Hits ordered by increasing distance
        """
        hits = [
            EntityVector(
                name=metadata["entity_name"],
                document_id=UUID(metadata["document_id"]),
                content=content,
                distance=distance,
            )
            for content, metadata, distance in self._query(self.entities, embedding, top_k, document_ids)
        ]
        logger.debug(f"Entity search returned {len(hits)} hits")
        return hits

    def search_relationships(
        self,
        embedding: list[float],
        top_k: int = 40,
        document_ids: list[UUID] | None = None,
    ) -> list[RelationshipVector]:
        """Nearest relationship vectors to a query embedding."""
        hits = [
            RelationshipVector(
                source_name=metadata["source_name"],
                target_name=metadata["target_name"],
                document_id=UUID(metadata["document_id"]),
                content=content,
                distance=distance,
            )
            for content, metadata, distance in self._query(self.relationships, embedding, top_k, document_ids)
        ]
        logger.debug(f"Relationship search returned {len(hits)} hits")
        return hits

    # ------------------------------------------------------------------
    # Text units
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: list[TextChunk], embeddings: list[list[float]]) -> int:
        """
        Add text units with their embeddings.

        Args:
            chunks: Text units to store
            embeddings: One embedding per chunk

        Returns:
            Number of chunks added
        """
        if not chunks:
            return 0
        if len(chunks) != len(embeddings):
            raise VectorStoreError(
                f"Got {len(embeddings)} embeddings for {len(chunks)} chunks"
            )

        logger.info(f"Adding {len(chunks)} chunks to vector store")

        try:
            self.chunks.upsert(
                ids=[chunk.chunk_id for chunk in chunks],
                documents=[chunk.content for chunk in chunks],
                embeddings=embeddings,
                metadatas=[
                    {
                        "document_id": str(chunk.document_id),
                        "chunk_index": chunk.chunk_index,
                        "tokens": chunk.tokens,
                    }
                    for chunk in chunks
                ],
            )
        except Exception as e:
            logger.error(f"Failed to add chunks: {e}")
            raise VectorStoreError(f"Failed to add chunks: {e}") from e

        return len(chunks)

    @staticmethod
    def _chunks_from(results: dict[str, Any]) -> list[TextChunk]:
        chunks: list[TextChunk] = []
        for i, chunk_id in enumerate(results["ids"]):
            metadata = results["metadatas"][i] if results["metadatas"] else {}
            chunks.append(TextChunk(
                chunk_id=chunk_id,
                document_id=UUID(metadata["document_id"]),
                content=results["documents"][i] if results["documents"] else "",
                tokens=metadata.get("tokens", 0),
                chunk_index=metadata.get("chunk_index", 0),
            ))
        return chunks

    def get_chunks(self, chunk_ids: list[str]) -> list[TextChunk]:
        """
        Fetch text units by id.

        Unknown ids are skipped; the result follows the order of ``chunk_ids``.
        """
        if not chunk_ids:
            return []

        try:
            results = self.chunks.get(ids=list(chunk_ids), include=["documents", "metadatas"])
        except Exception as e:
            logger.error(f"Failed to get chunks: {e}")
            raise VectorStoreError(f"Failed to get chunks: {e}") from e

        by_id = {chunk.chunk_id: chunk for chunk in self._chunks_from(results)}
        return [by_id[chunk_id] for chunk_id in chunk_ids if chunk_id in by_id]

    def get_chunk(self, chunk_id: str) -> TextChunk | None:
        found = self.get_chunks([chunk_id])
        return found[0] if found else None

    def get_chunks_by_document(self, document_id: UUID) -> list[TextChunk]:
        """All text units of a document, in chunk order."""
        try:
            results = self.chunks.get(
                where={"document_id": {"$eq": str(document_id)}},
                include=["documents", "metadatas"],
            )
        except Exception as e:
            logger.error(f"Failed to get chunks for document {document_id}: {e}")
            raise VectorStoreError(f"Failed to get chunks: {e}") from e

        return sorted(self._chunks_from(results), key=lambda chunk: chunk.chunk_index)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def delete_document(self, document_id: UUID) -> dict[str, int]:
        """
        Delete every vector and text unit owned by a document.

        Args:
            document_id: UUID of the document

        Returns:
            Number of records deleted per collection
        """
        deleted: dict[str, int] = {}
        self._ensure_initialized()

        try:
            for name, collection in self._collections.items():
                results = collection.get(
                    where={"document_id": {"$eq": str(document_id)}},
                    include=[],
                )
                if results["ids"]:
                    collection.delete(ids=results["ids"])
                deleted[name] = len(results["ids"])
        except Exception as e:
            logger.error(f"Failed to delete document {document_id}: {e}")
            raise VectorStoreError(f"Delete failed: {e}") from e

        logger.info(f"Deleted vectors for document {document_id}: {deleted}")
        return deleted

    def count(self) -> dict[str, int]:
        """Record counts per collection."""
        self._ensure_initialized()
        return {name: collection.count() for name, collection in self._collections.items()}
