"""
Text helpers shared by the merge engine and context assembly.

- ``<SEP>`` joined multi-value fields
- approximate token counting and token-budget truncation
- CSV tables for prompt interpolation
"""

import csv
import io
from collections.abc import Callable, Iterable, Sequence
from typing import Any, TypeVar

# Reserved separator for multi-valued fields (descriptions, keywords, source ids)
GRAPH_FIELD_SEP = "<SEP>"

T = TypeVar("T")


def split_field(value: str | None) -> list[str]:
    """Split a ``<SEP>`` joined field, dropping empty parts."""
    if not value:
        return []
    return [part.strip() for part in value.split(GRAPH_FIELD_SEP) if part.strip()]


def join_sorted_unique(values: Iterable[str]) -> str:
    """Deduplicate exact strings, sort lexicographically and join with ``<SEP>``."""
    return GRAPH_FIELD_SEP.join(sorted({v for v in values if v}))


def join_unique_ordered(values: Iterable[str]) -> str:
    """Deduplicate preserving first-seen order and join with ``<SEP>``."""
    return GRAPH_FIELD_SEP.join(dict.fromkeys(v for v in values if v))


def estimate_tokens(text: str | None) -> int:
    """Approximate token count: four characters per token."""
    return len(text or "") // 4


def truncate_by_token_budget(
    items: Sequence[T],
    key: Callable[[T], str],
    max_tokens: int,
) -> list[T]:
    """
    Keep the longest prefix of ``items`` whose estimated size fits ``max_tokens``.

    Stops at the first item that would overflow the budget; partial items
    are never admitted.
    """
    kept: list[T] = []
    total = 0
    for item in items:
        tokens = estimate_tokens(key(item))
        if total + tokens > max_tokens:
            break
        total += tokens
        kept.append(item)
    return kept


def rows_to_csv(rows: list[list[Any]]) -> str:
    """Render rows as CSV; fields with commas, quotes or newlines are quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def numbered_table(header: list[str], records: Iterable[list[Any]]) -> str:
    """CSV table with ``header`` and one row per record prefixed by its index."""
    rows: list[list[Any]] = [header]
    rows.extend([i, *record] for i, record in enumerate(records))
    return rows_to_csv(rows)
