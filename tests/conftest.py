"""
Pytest Configuration and Fixtures.

The LLM and the embedding backend are replaced by deterministic stand-ins
(scripted completions, hashed character-trigram embeddings) so the graph,
vector and retrieval layers run for real without network access.
"""

import math
import zlib
from pathlib import Path
from uuid import UUID, uuid4

import pytest

from pathrag.config import Settings
from pathrag.engine import PathRAG
from pathrag.ingestion.chunker import TokenChunker
from pathrag.knowledge.entity_extractor import (
    COMPLETION_DELIMITER,
    CONTINUE_EXTRACTION_PROMPT,
    IF_LOOP_EXTRACTION_PROMPT,
    RECORD_DELIMITER,
    TUPLE_DELIMITER,
)
from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.vector_store import VectorStore, VectorStoreConfig


# ============================================================================
# LLM Stand-ins
# ============================================================================

EMBEDDING_DIM = 64


def hash_embedding(text: str) -> list[float]:
    """Normalized bag of hashed character trigrams."""
    vector = [0.0] * EMBEDDING_DIM
    vector[0] = 1.0
    lowered = f"  {text.lower()}  "
    for i in range(len(lowered) - 2):
        vector[zlib.crc32(lowered[i:i + 3].encode("utf-8")) % EMBEDDING_DIM] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


class HashEmbedder:
    """Embedding capability that records every batch it was given."""

    def __init__(self) -> None:
        self.batches: list[list[str]] = []

    async def __call__(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        return [hash_embedding(text) for text in texts]


def entity_record(name: str, entity_type: str, description: str) -> str:
    return f'("entity"{TUPLE_DELIMITER}"{name}"{TUPLE_DELIMITER}"{entity_type}"{TUPLE_DELIMITER}"{description}")'


def relationship_record(
    source: str,
    target: str,
    description: str,
    keywords: str,
    strength: float | None = 1.0,
) -> str:
    fields = ['"relationship"', f'"{source}"', f'"{target}"', f'"{description}"', f'"{keywords}"']
    if strength is not None:
        fields.append(str(strength))
    return "(" + TUPLE_DELIMITER.join(fields) + ")"


def extraction_output(*records: str) -> str:
    return f"{RECORD_DELIMITER}\n".join(records) + f"\n{COMPLETION_DELIMITER}"


class ScriptedComplete:
    """
    Completion capability answering from fixed scripts.

    Extraction prompts are answered by the first ``extractions`` marker found
    in the prompt's text section. A list value is consumed one answer per
    call, repeating its last answer.
    """

    def __init__(
        self,
        extractions: dict[str, str | list[str]] | None = None,
        gleanings: dict[str, str] | None = None,
        keywords: str = "{}",
        summary: str = "SUMMARY",
    ) -> None:
        self.extractions = extractions or {}
        self.gleanings = gleanings or {}
        self.keywords = keywords
        self.summary = summary
        self.calls: list[tuple[str, list[dict[str, str]] | None]] = []

    @staticmethod
    def _text_section(prompt: str) -> str:
        return prompt.split("-Real Data-")[-1]

    async def __call__(self, prompt: str, history: list[dict[str, str]] | None = None) -> str:
        self.calls.append((prompt, history))

        if prompt == CONTINUE_EXTRACTION_PROMPT:
            original = self._text_section(history[0]["content"]) if history else ""
            for marker, output in self.gleanings.items():
                if marker in original:
                    return output
            return ""
        if prompt == IF_LOOP_EXTRACTION_PROMPT:
            return "no"
        if "Description List:" in prompt:
            return self.summary
        if prompt.startswith("---Role---"):
            return self.keywords

        text = self._text_section(prompt)
        for marker, output in self.extractions.items():
            if marker in text:
                if isinstance(output, list):
                    return output.pop(0) if len(output) > 1 else output[0]
                return output
        return COMPLETION_DELIMITER


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def document_id() -> UUID:
    """A consistent document ID for testing."""
    return uuid4()


@pytest.fixture
def graph_store() -> GraphStore:
    """In-memory graph store."""
    return GraphStore()


@pytest.fixture
def temp_chroma_dir(tmp_path: Path) -> Path:
    """Temporary directory for ChromaDB."""
    chroma_dir = tmp_path / "chroma"
    chroma_dir.mkdir()
    return chroma_dir


@pytest.fixture
def vector_store(temp_chroma_dir: Path) -> VectorStore:
    """Vector store in a temporary directory that keeps every hit."""
    return VectorStore(VectorStoreConfig(
        persist_directory=temp_chroma_dir,
        cosine_better_than_threshold=0.0,
    ))


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def word_chunker() -> TokenChunker:
    """Chunker counting whitespace-separated words as tokens."""
    return TokenChunker(chunk_size=200, chunk_overlap=20, tokenizer=str.split)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        chroma_persist_dir=tmp_path / "chroma",
        graph_persist_path=tmp_path / "graph.json",
        top_k=10,
        entity_extract_max_gleaning=1,
        cosine_better_than_threshold=0.0,
    )


# ============================================================================
# Engine Fixtures
# ============================================================================

ALICE_BOB_TEXT = "Alice and Bob worked together on the Orion project for three years."


@pytest.fixture
def alice_bob_llm() -> ScriptedComplete:
    """
    LLM extracting ALICE and BOB from ALICE_BOB_TEXT.

    The first pass finds a friendship edge, the gleaning pass a collaboration
    edge between the same pair.
    """
    return ScriptedComplete(
        extractions={
            "Orion": extraction_output(
                entity_record("Alice", "person", "Alice is an engineer."),
                entity_record("Bob", "person", "Bob is a designer."),
                relationship_record("Alice", "Bob", "Alice and Bob are friends.", "friendship"),
            ),
        },
        gleanings={
            "Orion": extraction_output(
                relationship_record("Alice", "Bob", "Alice and Bob work together.", "collaboration"),
            ),
        },
        keywords='{"high_level_keywords": ["friendship"], "low_level_keywords": ["Alice", "Bob"]}',
    )


def make_engine(
    graph_store: GraphStore,
    vector_store: VectorStore,
    embedder: HashEmbedder,
    complete: ScriptedComplete,
    settings: Settings,
    chunker: TokenChunker,
) -> PathRAG:
    return PathRAG(
        graph_store=graph_store,
        vector_store=vector_store,
        embed=embedder,
        complete=complete,
        settings=settings,
        chunker=chunker,
    )


@pytest.fixture
def engine(graph_store, vector_store, embedder, alice_bob_llm, settings, word_chunker) -> PathRAG:
    """Engine over temporary stores with the ALICE/BOB scripted LLM."""
    return make_engine(graph_store, vector_store, embedder, alice_bob_llm, settings, word_chunker)
