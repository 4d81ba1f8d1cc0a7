"""
Engine Configuration.

Pydantic settings for type-safe environment configuration.
Supports swappable LLM backends (OpenAI, Ollama) and carries the
retrieval knobs (chunk sizes, token budgets, search breadth).
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMBackend(str, Enum):
    """Supported LLM backends."""

    OPENAI = "openai"
    OLLAMA = "ollama"


class EmbeddingBackend(str, Enum):
    """Supported embedding backends."""

    HUGGINGFACE = "huggingface"
    OPENAI = "openai"


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === LLM Backend Selection ===
    llm_backend: LLMBackend = Field(
        default=LLMBackend.OLLAMA,
        description="LLM backend to use: 'openai' or 'ollama'",
    )

    # === OpenAI Configuration ===
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (required if llm_backend='openai')",
    )
    openai_model: str = Field(
        default="gpt-4o",
        description="OpenAI model to use",
    )

    # === Ollama Configuration ===
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama API base URL",
    )
    ollama_model: str = Field(
        default="llama3",
        description="Ollama model to use",
    )
    ollama_request_timeout: float = Field(
        default=120.0,
        description="Request timeout for Ollama in seconds",
    )

    # === Embedding Configuration ===
    embedding_backend: EmbeddingBackend = Field(
        default=EmbeddingBackend.HUGGINGFACE,
        description="Embedding backend: 'huggingface' or 'openai'",
    )
    embedding_model: str = Field(
        default="BAAI/bge-large-en-v1.5",
        description="Embedding model to use",
    )
    embedding_batch_num: int = Field(
        default=32,
        ge=1,
        description="Number of texts sent to the embedding backend per call",
    )

    # === Storage ===
    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for engine data",
    )
    chroma_persist_dir: Path = Field(
        default=Path("./data/chroma"),
        description="Directory for ChromaDB persistence",
    )
    graph_persist_path: Path = Field(
        default=Path("./data/graphs/knowledge_graph.json"),
        description="File the knowledge graph is saved to",
    )

    # === Chunking ===
    chunk_token_size: int = Field(default=1200, ge=1)
    chunk_overlap_token_size: int = Field(default=100, ge=0)

    # === Extraction & Merge ===
    entity_extract_max_gleaning: int = Field(
        default=1,
        ge=0,
        description="Extra 'continue extraction' passes per chunk",
    )
    entity_summary_to_max_tokens: int = Field(
        default=500,
        ge=1,
        description="Merged descriptions at or above this size are summarized by the LLM",
    )
    llm_model_max_async: int = Field(
        default=16,
        ge=1,
        description="Maximum concurrent LLM-bound merge groups",
    )
    llm_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per LLM/embedding call before giving up",
    )

    # === Query ===
    top_k: int = Field(default=40, ge=1)
    max_token_for_text_unit: int = Field(default=4000, ge=0)
    max_token_for_global_context: int = Field(default=3000, ge=0)
    max_token_for_local_context: int = Field(default=5000, ge=0)
    cosine_better_than_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Vector hits with a lower cosine similarity are discarded",
    )

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [
            self.data_dir,
            self.chroma_persist_dir,
            self.graph_persist_path.parent,
        ]:
            dir_path.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    settings.ensure_directories()
    return settings
