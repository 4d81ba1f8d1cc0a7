"""
Knowledge Layer - Graph and Vector Components.

Graph store for entities and relationships, vector index for semantic
search, and the extraction/merge path that fills them.
"""

from pathrag.knowledge.entity_extractor import EntityExtractionError, EntityExtractor
from pathrag.knowledge.entity_merger import EntityMerger
from pathrag.knowledge.graph_store import GraphStore, GraphStoreError
from pathrag.knowledge.keyword_extractor import KeywordExtractor, QueryKeywords
from pathrag.knowledge.schemas import (
    Entity,
    EntityVector,
    ExtractedEntity,
    ExtractedRelationship,
    ExtractionResult,
    Relationship,
    RelationshipVector,
    TextChunk,
)
from pathrag.knowledge.vector_store import VectorStore, VectorStoreConfig, VectorStoreError

__all__ = [
    # Stores
    "GraphStore",
    "GraphStoreError",
    "VectorStore",
    "VectorStoreConfig",
    "VectorStoreError",
    # Extraction
    "EntityExtractor",
    "EntityExtractionError",
    "KeywordExtractor",
    "QueryKeywords",
    # Merge
    "EntityMerger",
    # Schemas
    "Entity",
    "Relationship",
    "EntityVector",
    "RelationshipVector",
    "ExtractedEntity",
    "ExtractedRelationship",
    "ExtractionResult",
    "TextChunk",
]
