"""
Entity Merger - Merge-and-Upsert for Graph Records.

Folds a freshly extracted entity or relationship candidate into the record
already stored under the same identity:

- type:          majority vote over {candidate, existing}, first seen wins ties
- description:   exact-duplicate removal, sorted, ``<SEP>`` joined
- keywords:      same rule as description (relationships only)
- source ids:    ordered union, candidate first
- weight:        sum (relationships only)

Over-long descriptions are replaced by an LLM summary. Same-identity merges
are serialised with a per-key asyncio lock; different identities may
interleave freely.
"""

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from uuid import UUID

from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.schemas import (
    UNKNOWN_ENTITY_TYPE,
    Entity,
    ExtractedEntity,
    ExtractedRelationship,
    Relationship,
)
from pathrag.utils.formatting import (
    estimate_tokens,
    join_sorted_unique,
    join_unique_ordered,
    split_field,
)
from pathrag.utils.llm_factory import CompleteFunc
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


SUMMARIZE_DESCRIPTIONS_PROMPT = """You are a helpful assistant responsible for generating a comprehensive summary of the data provided below.
Given one or two entities, and a list of descriptions, all related to the same entity or group of entities.
Please concatenate all of these into a single, comprehensive description. Make sure to include information collected from all the descriptions.
If the provided descriptions are contradictory, please resolve the contradictions and provide a single, coherent summary.
Make sure it is written in third person, and include the entity names so we the have full context.
Use English as output language.

#######
-Data-
Entities: {entity_name}
Description List: {description_list}
#######
Output:
"""


class KeyedLocks:
    """
    One asyncio lock per key, held only while some task uses it.

    A key's lock is dropped when its last holder or waiter leaves, so the
    registry never outgrows the merges currently in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def __call__(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class EntityMerger:
    """
    Merge engine for entities and relationships.

    Every merge reads the existing record (absence means "create"),
    computes the merged record and upserts it before returning.
    Storage and summarization failures propagate unchanged.

    Usage:
        merger = EntityMerger(graph_store, complete=complete_func)
        entity = await merger.merge_entity(candidate)
        relationship = await merger.merge_relationship(edge_candidate)
    """

    def __init__(
        self,
        graph_store: GraphStore,
        complete: CompleteFunc | None = None,
        summary_max_tokens: int = 500,
    ) -> None:
        """
        Initialize the merger.

        Args:
            graph_store: Store the merged records are written to
            complete: Completion capability used to summarize long descriptions
            summary_max_tokens: Estimated size at which a description is summarized
        """
        self.graph_store = graph_store
        self._complete = complete
        self.summary_max_tokens = summary_max_tokens
        self._entity_locks = KeyedLocks()
        self._relationship_locks = KeyedLocks()

    async def merge_entity(self, candidate: ExtractedEntity) -> Entity:
        """
        Merge an entity candidate into the stored entity of the same name and document.

        Args:
            candidate: Extracted entity candidate

        Returns:
            The stored, merged entity
        """
        async with self._entity_locks((candidate.document_id, candidate.name)):
            existing = self.graph_store.get_entity(candidate.name, candidate.document_id)

            types = [candidate.entity_type]
            descriptions = [candidate.description]
            source_ids = [candidate.source_id]
            if existing is not None:
                types.append(existing.entity_type)
                descriptions.extend(split_field(existing.description))
                source_ids.extend(existing.source_ids)

            entity_type = Counter(types).most_common(1)[0][0]
            description = await self._summarize_if_needed(
                candidate.name, join_sorted_unique(descriptions)
            )

            merged = Entity(
                name=candidate.name,
                entity_type=entity_type,
                description=description,
                source_id=join_unique_ordered(source_ids),
                document_id=candidate.document_id,
            )
            if existing is not None:
                merged.entity_id = existing.entity_id
                merged.created_at = existing.created_at

            stored = self.graph_store.upsert_entity(merged)

        logger.debug(
            f"Merged entity {stored.name} ({stored.entity_type}), "
            f"{len(stored.source_ids)} source(s), existed={existing is not None}"
        )
        return stored

    async def merge_relationship(self, candidate: ExtractedRelationship) -> Relationship:
        """
        Merge a relationship candidate into the stored edge (source, target).

        Both endpoints are guaranteed to exist afterwards; missing ones are
        created as ``UNKNOWN`` placeholders carrying the merged description
        and source ids.

        Args:
            candidate: Extracted relationship candidate

        Returns:
            The stored, merged relationship
        """
        key = (candidate.document_id, candidate.source_name, candidate.target_name)
        async with self._relationship_locks(key):
            existing = self.graph_store.get_relationship(
                candidate.source_name, candidate.target_name, candidate.document_id
            )

            weight = candidate.weight
            descriptions = [candidate.description]
            keywords = [candidate.keywords]
            source_ids = [candidate.source_id]
            if existing is not None:
                weight += existing.weight
                descriptions.extend(split_field(existing.description))
                keywords.extend(split_field(existing.keywords))
                source_ids.extend(existing.source_ids)

            description = join_sorted_unique(descriptions)
            source_id = join_unique_ordered(source_ids)

            for name in (candidate.source_name, candidate.target_name):
                await self._ensure_entity(name, source_id, description, candidate.document_id)

            description = await self._summarize_if_needed(
                f"({candidate.source_name}, {candidate.target_name})", description
            )

            merged = Relationship(
                source_name=candidate.source_name,
                target_name=candidate.target_name,
                weight=weight,
                description=description,
                keywords=join_sorted_unique(keywords),
                source_id=source_id,
                document_id=candidate.document_id,
            )
            if existing is not None:
                merged.relationship_id = existing.relationship_id
                merged.created_at = existing.created_at

            stored = self.graph_store.upsert_relationship(merged)

        logger.debug(
            f"Merged relationship {stored.source_name} -> {stored.target_name} "
            f"(weight={stored.weight})"
        )
        return stored

    async def _ensure_entity(
        self,
        name: str,
        source_id: str,
        description: str,
        document_id: UUID,
    ) -> None:
        async with self._entity_locks((document_id, name)):
            if self.graph_store.entity_exists(name, document_id):
                return
            logger.debug(f"Creating placeholder entity {name} for relationship endpoint")
            self.graph_store.upsert_entity(
                Entity(
                    name=name,
                    entity_type=UNKNOWN_ENTITY_TYPE,
                    description=description,
                    source_id=source_id,
                    document_id=document_id,
                )
            )

    async def _summarize_if_needed(self, entity_name: str, description: str) -> str:
        """Replace ``description`` with an LLM summary once it reaches the size threshold."""
        if estimate_tokens(description) < self.summary_max_tokens:
            return description

        if self._complete is None:
            logger.warning(
                f"Description of {entity_name} exceeds {self.summary_max_tokens} tokens "
                "but no completion function is configured; keeping it unsummarized"
            )
            return description

        prompt = SUMMARIZE_DESCRIPTIONS_PROMPT.format(
            entity_name=entity_name,
            description_list="\n".join(split_field(description)),
        )
        logger.debug(f"Summarizing description of {entity_name} (~{estimate_tokens(description)} tokens)")
        summary = await self._complete(prompt)
        return summary.strip() or description
