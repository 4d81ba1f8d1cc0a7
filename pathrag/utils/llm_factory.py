"""
LLM Factory - Backend Abstraction.

Provides a unified interface for LLM backends (OpenAI, Ollama) and embedding
backends (HuggingFace, OpenAI), and adapts them to the two capabilities the
engine consumes:

    complete(prompt, history=None) -> str
    embed(texts) -> list[list[float]]

Retry/backoff for these remote calls lives here, not in the engine.
"""

from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol

from llama_index.core.base.llms.types import ChatMessage, MessageRole
from llama_index.core.embeddings import BaseEmbedding
from llama_index.core.llms import LLM
from tenacity import retry, stop_after_attempt, wait_exponential

from pathrag.config import EmbeddingBackend, LLMBackend, get_settings
from pathrag.utils.logger import get_logger

if TYPE_CHECKING:
    from pathrag.config import Settings

logger = get_logger(__name__)


class LLMFactoryError(Exception):
    """Raised when LLM factory encounters an error."""

    pass


class CompleteFunc(Protocol):
    """Chat/completion capability: prompt plus optional prior turns -> text."""

    def __call__(
        self,
        prompt: str,
        history: list[dict[str, str]] | None = None,
    ) -> Awaitable[str]: ...


EmbedFunc = Callable[[list[str]], Awaitable[list[list[float]]]]


def _create_openai_llm(settings: "Settings") -> LLM:
    """Create OpenAI LLM instance."""
    try:
        from llama_index.llms.openai import OpenAI
    except ImportError as e:
        raise LLMFactoryError(
            "OpenAI LLM not installed. Run: pip install llama-index-llms-openai"
        ) from e

    if not settings.openai_api_key:
        raise LLMFactoryError(
            "OPENAI_API_KEY not set. Required when llm_backend='openai'"
        )

    logger.info(f"Initializing OpenAI LLM with model: {settings.openai_model}")
    return OpenAI(
        model=settings.openai_model,
        api_key=settings.openai_api_key,
    )


def _create_ollama_llm(settings: "Settings") -> LLM:
    """Create Ollama LLM instance for local inference."""
    try:
        from llama_index.llms.ollama import Ollama
    except ImportError as e:
        raise LLMFactoryError(
            "Ollama LLM not installed. Run: pip install llama-index-llms-ollama"
        ) from e

    logger.info(
        f"Initializing Ollama LLM with model: {settings.ollama_model} "
        f"at {settings.ollama_base_url}"
    )
    return Ollama(
        model=settings.ollama_model,
        base_url=settings.ollama_base_url,
        request_timeout=settings.ollama_request_timeout,
    )


def _create_huggingface_embedding(settings: "Settings") -> BaseEmbedding:
    """Create HuggingFace embedding model for local embeddings."""
    try:
        from llama_index.embeddings.huggingface import HuggingFaceEmbedding
    except ImportError as e:
        raise LLMFactoryError(
            "HuggingFace embeddings not installed. "
            "Run: pip install llama-index-embeddings-huggingface"
        ) from e

    logger.info(f"Initializing HuggingFace embeddings with model: {settings.embedding_model}")
    return HuggingFaceEmbedding(model_name=settings.embedding_model)


def _create_openai_embedding(settings: "Settings") -> BaseEmbedding:
    """Create OpenAI embedding model."""
    try:
        from llama_index.embeddings.openai import OpenAIEmbedding
    except ImportError as e:
        raise LLMFactoryError(
            "OpenAI embeddings not installed. "
            "Run: pip install llama-index-embeddings-openai"
        ) from e

    if not settings.openai_api_key:
        raise LLMFactoryError(
            "OPENAI_API_KEY not set. Required when embedding_backend='openai'"
        )

    logger.info(f"Initializing OpenAI embeddings with model: {settings.embedding_model}")
    return OpenAIEmbedding(
        model_name=settings.embedding_model,
        api_key=settings.openai_api_key,
    )


@lru_cache
def get_llm() -> LLM:
    """
    Get configured LLM instance based on settings.

    Returns:
        LLM instance (OpenAI or Ollama)

    Raises:
        LLMFactoryError: If configuration is invalid or dependencies missing
    """
    settings = get_settings()

    match settings.llm_backend:
        case LLMBackend.OPENAI:
            return _create_openai_llm(settings)
        case LLMBackend.OLLAMA:
            return _create_ollama_llm(settings)
        case _:
            raise LLMFactoryError(f"Unsupported LLM backend: {settings.llm_backend}")


@lru_cache
def get_embedding_model() -> BaseEmbedding:
    """
    Get configured embedding model based on settings.

    Returns:
        Embedding model instance (HuggingFace or OpenAI)

    Raises:
        LLMFactoryError: If configuration is invalid or dependencies missing
    """
    settings = get_settings()

    match settings.embedding_backend:
        case EmbeddingBackend.HUGGINGFACE:
            return _create_huggingface_embedding(settings)
        case EmbeddingBackend.OPENAI:
            return _create_openai_embedding(settings)
        case _:
            raise LLMFactoryError(
                f"Unsupported embedding backend: {settings.embedding_backend}"
            )


_ROLES = {
    "user": MessageRole.USER,
    "assistant": MessageRole.ASSISTANT,
    "system": MessageRole.SYSTEM,
}


def make_complete_func(llm: LLM, max_retries: int = 3) -> CompleteFunc:
    """
    Wrap a llama-index LLM as the engine's completion capability.

    A plain prompt goes through ``acomplete``; a prompt with history is sent
    as a chat (history turns followed by the prompt as the user turn).
    """

    @retry(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def complete(prompt: str, history: list[dict[str, str]] | None = None) -> str:
        if not history:
            response = await llm.acomplete(prompt)
            return response.text

        messages = [
            ChatMessage(role=_ROLES.get(turn["role"], MessageRole.USER), content=turn["content"])
            for turn in history
        ]
        messages.append(ChatMessage(role=MessageRole.USER, content=prompt))
        chat_response = await llm.achat(messages)
        return chat_response.message.content or ""

    return complete


def make_embed_func(embed_model: BaseEmbedding, max_retries: int = 3) -> EmbedFunc:
    """Wrap a llama-index embedding model as the engine's batched embed capability."""

    @retry(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def embed(texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return await embed_model.aget_text_embedding_batch(texts)

    return embed


def get_complete_func() -> CompleteFunc:
    """Completion capability backed by the configured LLM."""
    return make_complete_func(get_llm(), max_retries=get_settings().llm_max_retries)


def get_embed_func() -> EmbedFunc:
    """Embedding capability backed by the configured embedding model."""
    return make_embed_func(get_embedding_model(), max_retries=get_settings().llm_max_retries)
