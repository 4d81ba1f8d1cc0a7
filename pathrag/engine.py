"""
PathRAG Engine - Facade.

Wires the stores, the merge engine, the extraction collaborators and the
context builder into the operations callers use:

    build_query_context(query, params)        -> QueryContext
    merge_and_upsert_entity(candidate)        -> Entity
    merge_and_upsert_relationship(candidate)  -> Relationship
    ingest_document(text)                     -> IngestionResult
    delete_document(document_id)              -> DeletionResult
"""

from uuid import UUID

from pathrag.config import Settings, get_settings
from pathrag.ingestion.chunker import TokenChunker
from pathrag.ingestion.pipeline import DeletionResult, DocumentIngestor, IngestionResult
from pathrag.knowledge.entity_extractor import EntityExtractor
from pathrag.knowledge.entity_merger import EntityMerger
from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.keyword_extractor import KeywordExtractor, QueryKeywords
from pathrag.knowledge.schemas import (
    Entity,
    ExtractedEntity,
    ExtractedRelationship,
    Relationship,
)
from pathrag.knowledge.vector_store import VectorStore, VectorStoreConfig
from pathrag.retrieval.context_builder import ContextBuilder, QueryContext, QueryParams
from pathrag.utils.llm_factory import CompleteFunc, EmbedFunc
from pathrag.utils.logger import get_logger
from pathrag.utils.observer import LoggingObserver, PipelineObserver, observe_stage

logger = get_logger(__name__)


class PathRAG:
    """
    Graph-based retrieval engine.

    Usage:
        rag = PathRAG.from_settings()
        await rag.ingest_document(text)
        context = await rag.build_query_context("Who founded Acme?")
        prompt_context = context.format()
    """

    def __init__(
        self,
        graph_store: GraphStore,
        vector_store: VectorStore,
        embed: EmbedFunc,
        complete: CompleteFunc | None = None,
        settings: Settings | None = None,
        chunker: TokenChunker | None = None,
        observer: PipelineObserver | None = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            graph_store: Knowledge graph
            vector_store: Vector index
            embed: Embedding capability
            complete: Completion capability (summaries, extraction, keywords)
            settings: Engine settings (defaults to the environment)
            chunker: Text unit chunker (built from settings when omitted)
            observer: Stage observer shared by every component
        """
        self.settings = settings or get_settings()
        self.graph_store = graph_store
        self.vector_store = vector_store
        self.observer = observer or LoggingObserver()

        self.merger = EntityMerger(
            graph_store,
            complete=complete,
            summary_max_tokens=self.settings.entity_summary_to_max_tokens,
        )
        self.extractor = EntityExtractor(
            complete,
            max_gleaning=self.settings.entity_extract_max_gleaning,
        )
        self.keyword_extractor = KeywordExtractor(complete)
        self.ingestor = DocumentIngestor(
            graph_store,
            vector_store,
            embed,
            self.extractor,
            self.merger,
            chunker=chunker or TokenChunker(
                chunk_size=self.settings.chunk_token_size,
                chunk_overlap=self.settings.chunk_overlap_token_size,
            ),
            embedding_batch_num=self.settings.embedding_batch_num,
            max_async=self.settings.llm_model_max_async,
            observer=self.observer,
        )
        self.context_builder = ContextBuilder(
            graph_store,
            vector_store,
            embed,
            observer=self.observer,
        )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PathRAG":
        """Build an engine with persistent stores and the configured LLM backends."""
        from pathrag.utils.llm_factory import get_complete_func, get_embed_func

        settings = settings or get_settings()
        return cls(
            graph_store=GraphStore(persist_path=settings.graph_persist_path),
            vector_store=VectorStore(VectorStoreConfig(
                persist_directory=settings.chroma_persist_dir,
                cosine_better_than_threshold=settings.cosine_better_than_threshold,
            )),
            embed=get_embed_func(),
            complete=get_complete_func(),
            settings=settings,
        )

    def default_query_params(self, **overrides) -> QueryParams:
        return QueryParams.from_settings(self.settings, **overrides)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def build_query_context(
        self,
        query: str,
        params: QueryParams | None = None,
    ) -> QueryContext:
        """
        Build the five prompt blocks for a question.

        Args:
            query: User question
            params: Retrieval options (settings defaults when omitted)

        Returns:
            QueryContext; header-only tables when nothing matches
        """
        params = params or self.default_query_params()

        with observe_stage(self.observer, "query", "keywords") as stage:
            keywords = await self.keyword_extractor.extract(query)
            stage.update(high=len(keywords.high_level), low=len(keywords.low_level))

        return await self.context_builder.build_from_keywords(keywords, params)

    async def build_context_from_keywords(
        self,
        high_level: list[str],
        low_level: list[str],
        params: QueryParams | None = None,
    ) -> QueryContext:
        """Build the context from keywords extracted elsewhere."""
        return await self.context_builder.build_from_keywords(
            QueryKeywords(high_level=high_level, low_level=low_level),
            params or self.default_query_params(),
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge_and_upsert_entity(self, candidate: ExtractedEntity) -> Entity:
        """Merge one entity candidate and refresh its vector."""
        entity = await self.merger.merge_entity(candidate)
        try:
            await self.ingestor.upsert_entity_vectors([entity])
        finally:
            self._persist()
        return entity

    async def merge_and_upsert_relationship(self, candidate: ExtractedRelationship) -> Relationship:
        """Merge one relationship candidate and refresh its vector."""
        relationship = await self.merger.merge_relationship(candidate)
        try:
            await self.ingestor.upsert_relationship_vectors([relationship])
        finally:
            self._persist()
        return relationship

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    # Stages write to the stores as they go. The graph is saved even when a
    # later stage fails so it matches what already reached the vector index.
    async def ingest_document(self, text: str, document_id: UUID | None = None) -> IngestionResult:
        try:
            return await self.ingestor.ingest_text(text, document_id)
        finally:
            self._persist()

    async def delete_document(self, document_id: UUID) -> DeletionResult:
        try:
            return await self.ingestor.delete_document(document_id)
        finally:
            self._persist()

    def _persist(self) -> None:
        if self.graph_store.persist_path is not None:
            self.graph_store.save()
