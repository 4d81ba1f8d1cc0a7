"""
Ingestion Layer.

Token chunking and the document -> knowledge graph pipeline.
"""

from pathrag.ingestion.chunker import TokenChunker
from pathrag.ingestion.pipeline import DeletionResult, DocumentIngestor, IngestionResult

__all__ = [
    "TokenChunker",
    "DocumentIngestor",
    "IngestionResult",
    "DeletionResult",
]
