"""
Utility modules for the engine.

Provides LLM/embedding factory, logging, stage observers and text helpers.
"""

from pathrag.utils.llm_factory import (
    CompleteFunc,
    EmbedFunc,
    LLMFactoryError,
    get_complete_func,
    get_embed_func,
    get_embedding_model,
    get_llm,
)
from pathrag.utils.logger import get_logger, setup_logging
from pathrag.utils.observer import LoggingObserver, PipelineObserver

__all__ = [
    # LLM Factory
    "get_llm",
    "get_embedding_model",
    "get_complete_func",
    "get_embed_func",
    "CompleteFunc",
    "EmbedFunc",
    "LLMFactoryError",
    # Logging
    "get_logger",
    "setup_logging",
    # Observers
    "PipelineObserver",
    "LoggingObserver",
]
