"""
Token Chunker - Text Unit Creation.

Splits raw document text into overlapping token windows ("text units"),
the granularity entity extraction runs at and source ids point to.
"""

from collections.abc import Callable
from uuid import UUID

from llama_index.core.node_parser import SentenceSplitter
from llama_index.core.utils import get_tokenizer

from pathrag.knowledge.schemas import TextChunk
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


class ChunkerError(Exception):
    """Raised when chunking fails."""

    pass


def make_chunk_id(document_id: UUID, index: int) -> str:
    return f"{document_id}-chunk-{index}"


class TokenChunker:
    """
    Token-window chunker with overlap.

    Windows are measured with the llama-index default tokenizer and cut on
    sentence boundaries where possible.

    Usage:
        chunker = TokenChunker(chunk_size=1200, chunk_overlap=100)
        chunks = chunker.chunk(text, document_id)
    """

    def __init__(
        self,
        chunk_size: int = 1200,
        chunk_overlap: int = 100,
        tokenizer: Callable[[str], list] | None = None,
    ) -> None:
        """
        Initialize chunker.

        Args:
            chunk_size: Maximum tokens per text unit
            chunk_overlap: Tokens shared by consecutive text units
            tokenizer: Text -> tokens function (llama-index default when None)
        """
        if chunk_overlap >= chunk_size:
            raise ChunkerError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._tokenizer = tokenizer or get_tokenizer()
        self._splitter = SentenceSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            tokenizer=self._tokenizer,
        )

    def count_tokens(self, text: str) -> int:
        if not text.strip():
            return 0
        return len(self._tokenizer(text))

    def chunk(self, text: str, document_id: UUID) -> list[TextChunk]:
        """
        Split a document into text units.

        Args:
            text: Decoded document text
            document_id: Owning document

        Returns:
            Text units with ids ``"<document_id>-chunk-<index>"``
        """
        if not text.strip():
            logger.warning(f"Empty document: {document_id}")
            return []

        chunks: list[TextChunk] = []
        for piece in self._splitter.split_text(text):
            content = piece.strip()
            if not content:
                continue
            index = len(chunks)
            chunks.append(TextChunk(
                chunk_id=make_chunk_id(document_id, index),
                document_id=document_id,
                content=content,
                tokens=self.count_tokens(content),
                chunk_index=index,
            ))

        logger.info(
            f"Created {len(chunks)} chunks ({sum(c.tokens for c in chunks)} tokens) "
            f"from document {document_id}"
        )
        return chunks
