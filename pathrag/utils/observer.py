"""
Stage observers.

Ingestion and query operations report stage entry/exit to an injected
observer instead of keeping timers in shared state. The default observer
just logs stage timings.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


class PipelineObserver:
    """No-op observer. Subclass and override the hooks you need."""

    def on_stage_start(self, operation: str, stage: str, **details: Any) -> None:
        pass

    def on_stage_end(
        self,
        operation: str,
        stage: str,
        elapsed_seconds: float,
        error: BaseException | None = None,
        **details: Any,
    ) -> None:
        pass


class LoggingObserver(PipelineObserver):
    """Writes stage boundaries and timings to the engine logger."""

    def on_stage_start(self, operation: str, stage: str, **details: Any) -> None:
        logger.debug(f"[{operation}] {stage} started {details or ''}")

    def on_stage_end(
        self,
        operation: str,
        stage: str,
        elapsed_seconds: float,
        error: BaseException | None = None,
        **details: Any,
    ) -> None:
        if error is not None:
            logger.error(f"[{operation}] {stage} failed after {elapsed_seconds:.2f}s: {error}")
            return
        logger.info(f"[{operation}] {stage} done in {elapsed_seconds:.2f}s {details or ''}")


@contextmanager
def observe_stage(
    observer: PipelineObserver,
    operation: str,
    stage: str,
    **details: Any,
) -> Iterator[dict[str, Any]]:
    """
    Report a stage to ``observer``.

    Yields a dict the caller may fill with result details; they are passed
    to ``on_stage_end``.
    """
    observer.on_stage_start(operation, stage, **details)
    result: dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield result
    except BaseException as e:
        observer.on_stage_end(operation, stage, time.perf_counter() - start, error=e, **result)
        raise
    observer.on_stage_end(operation, stage, time.perf_counter() - start, **result)
