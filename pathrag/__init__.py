"""
PathRAG - Graph-Based Retrieval Engine.

This package contains:
- Knowledge graph and vector index storage
- Entity/relationship extraction and merge-and-upsert
- Path-weighted traversal and dual-level context assembly
- Document ingestion and cascade deletion
"""

from pathrag.config import Settings, get_settings
from pathrag.engine import PathRAG
from pathrag.ingestion import DocumentIngestor, TokenChunker
from pathrag.knowledge import (
    EntityExtractor,
    EntityMerger,
    GraphStore,
    KeywordExtractor,
    VectorStore,
)
from pathrag.retrieval import ContextBuilder, PathFinder, QueryContext, QueryParams

__all__ = [
    "PathRAG",
    "Settings",
    "get_settings",
    # Ingestion
    "TokenChunker",
    "DocumentIngestor",
    # Knowledge
    "GraphStore",
    "VectorStore",
    "EntityMerger",
    "EntityExtractor",
    "KeywordExtractor",
    # Retrieval
    "PathFinder",
    "ContextBuilder",
    "QueryParams",
    "QueryContext",
]
