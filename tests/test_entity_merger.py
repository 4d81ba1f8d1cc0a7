"""
Tests for the Merge-and-Upsert Engine.
"""

import asyncio

import pytest

from pathrag.knowledge.entity_merger import EntityMerger, KeyedLocks
from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.schemas import (
    UNKNOWN_ENTITY_TYPE,
    ExtractedEntity,
    ExtractedRelationship,
)
from tests.conftest import ScriptedComplete


def candidate_entity(document_id, description: str, source_id: str, entity_type: str = "PERSON") -> ExtractedEntity:
    return ExtractedEntity(
        name="Alice",
        entity_type=entity_type,
        description=description,
        source_id=source_id,
        document_id=document_id,
    )


def candidate_edge(document_id, keywords: str = "friendship", description: str = "friends", source_id: str = "c1") -> ExtractedRelationship:
    return ExtractedRelationship(
        source_name="Alice",
        target_name="Bob",
        description=description,
        keywords=keywords,
        weight=1.0,
        source_id=source_id,
        document_id=document_id,
    )


class TestEntityMerge:
    """Tests for EntityMerger.merge_entity."""

    @pytest.fixture
    def merger(self, graph_store: GraphStore) -> EntityMerger:
        return EntityMerger(graph_store)

    @pytest.mark.asyncio
    async def test_first_merge_creates(self, merger: EntityMerger, graph_store: GraphStore, document_id) -> None:
        """Test that a merge without an existing record stores the candidate."""
        entity = await merger.merge_entity(candidate_entity(document_id, "an engineer", "c1"))

        assert entity.name == "ALICE"
        assert entity.description == "an engineer"
        assert graph_store.get_entity("ALICE", document_id).entity_id == entity.entity_id

    @pytest.mark.asyncio
    async def test_descriptions_are_sorted_unique(self, merger: EntityMerger, document_id) -> None:
        """Test description union: deduplicated, sorted, <SEP> joined."""
        await merger.merge_entity(candidate_entity(document_id, "b", "c1"))
        await merger.merge_entity(candidate_entity(document_id, "a", "c2"))
        entity = await merger.merge_entity(candidate_entity(document_id, "b", "c3"))

        assert entity.description == "a<SEP>b"

    @pytest.mark.asyncio
    async def test_descriptions_sorted_in_either_order(self, merger: EntityMerger, document_id) -> None:
        """Test that merging "a" then "b" gives the same union as "b" then "a"."""
        await merger.merge_entity(candidate_entity(document_id, "a", "c1"))
        entity = await merger.merge_entity(candidate_entity(document_id, "b", "c2"))

        assert entity.description == "a<SEP>b"

    @pytest.mark.asyncio
    async def test_source_ids_new_first(self, merger: EntityMerger, document_id) -> None:
        """Test that source ids form an ordered union with the newest first."""
        await merger.merge_entity(candidate_entity(document_id, "x", "c1"))
        entity = await merger.merge_entity(candidate_entity(document_id, "x", "c2"))
        entity = await merger.merge_entity(candidate_entity(document_id, "x", "c1"))

        assert entity.source_ids == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_identity_is_preserved(self, merger: EntityMerger, document_id) -> None:
        """Test that re-merging keeps the original id and creation time."""
        first = await merger.merge_entity(candidate_entity(document_id, "x", "c1"))
        second = await merger.merge_entity(candidate_entity(document_id, "y", "c2"))

        assert second.entity_id == first.entity_id
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_type_replaces_placeholder_on_tie(self, merger: EntityMerger, graph_store: GraphStore, document_id) -> None:
        """Test that on a tie the candidate's type wins over the stored one."""
        await merger.merge_relationship(candidate_edge(document_id))
        assert graph_store.get_entity("ALICE", document_id).entity_type == UNKNOWN_ENTITY_TYPE

        entity = await merger.merge_entity(candidate_entity(document_id, "an engineer", "c2"))

        assert entity.entity_type == "PERSON"


class TestRelationshipMerge:
    """Tests for EntityMerger.merge_relationship."""

    @pytest.fixture
    def merger(self, graph_store: GraphStore) -> EntityMerger:
        return EntityMerger(graph_store)

    @pytest.mark.asyncio
    async def test_weight_accumulates(self, merger: EntityMerger, document_id) -> None:
        """Test that merging the same edge twice doubles a unit weight."""
        await merger.merge_relationship(candidate_edge(document_id, keywords="friendship"))
        relationship = await merger.merge_relationship(candidate_edge(document_id, keywords="collaboration"))

        assert relationship.weight == pytest.approx(2.0)
        assert relationship.keywords == "collaboration<SEP>friendship"

    @pytest.mark.asyncio
    async def test_placeholder_endpoints(self, merger: EntityMerger, graph_store: GraphStore, document_id) -> None:
        """Test that missing endpoints become UNKNOWN entities sharing the edge's sources."""
        await merger.merge_relationship(candidate_edge(document_id, description="friends", source_id="c9"))

        for name in ("ALICE", "BOB"):
            endpoint = graph_store.get_entity(name, document_id)
            assert endpoint.entity_type == UNKNOWN_ENTITY_TYPE
            assert endpoint.description == "friends"
            assert endpoint.source_ids == ["c9"]

    @pytest.mark.asyncio
    async def test_existing_endpoint_untouched(self, merger: EntityMerger, graph_store: GraphStore, document_id) -> None:
        """Test that an existing endpoint is not overwritten by a placeholder."""
        await merger.merge_entity(candidate_entity(document_id, "an engineer", "c1"))

        await merger.merge_relationship(candidate_edge(document_id))

        alice = graph_store.get_entity("ALICE", document_id)
        assert alice.entity_type == "PERSON"
        assert alice.description == "an engineer"

    @pytest.mark.asyncio
    async def test_concurrent_merges_are_serialized(self, merger: EntityMerger, document_id) -> None:
        """Test that concurrent merges of one edge lose no weight."""
        await asyncio.gather(*(
            merger.merge_relationship(candidate_edge(document_id, source_id=f"c{i}"))
            for i in range(5)
        ))

        relationship = merger.graph_store.get_relationship("ALICE", "BOB", document_id)
        assert relationship.weight == pytest.approx(5.0)
        assert len(relationship.source_ids) == 5

    @pytest.mark.asyncio
    async def test_locks_are_released(self, merger: EntityMerger, document_id) -> None:
        """Test that no per-key lock outlives the merges that used it."""
        await asyncio.gather(*(
            merger.merge_relationship(candidate_edge(document_id, source_id=f"c{i}"))
            for i in range(3)
        ))
        await merger.merge_entity(candidate_entity(document_id, "x", "c9"))

        assert len(merger._entity_locks) == 0
        assert len(merger._relationship_locks) == 0


class TestSummarization:
    """Tests for description summarization."""

    @pytest.mark.asyncio
    async def test_long_description_is_summarized(self, graph_store: GraphStore, document_id) -> None:
        """Test that a description at the size threshold is replaced by a summary."""
        llm = ScriptedComplete(summary="Alice is an engineer and a designer.")
        merger = EntityMerger(graph_store, complete=llm, summary_max_tokens=5)

        await merger.merge_entity(candidate_entity(document_id, "Alice builds bridges.", "c1"))

        entity = graph_store.get_entity("ALICE", document_id)
        assert entity.description == "Alice is an engineer and a designer."
        prompt = llm.calls[0][0]
        assert "Entities: ALICE" in prompt
        assert "Alice builds bridges." in prompt

    @pytest.mark.asyncio
    async def test_short_description_is_kept(self, graph_store: GraphStore, document_id) -> None:
        """Test that short descriptions never reach the LLM."""
        llm = ScriptedComplete()
        merger = EntityMerger(graph_store, complete=llm, summary_max_tokens=500)

        entity = await merger.merge_entity(candidate_entity(document_id, "short", "c1"))

        assert entity.description == "short"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_without_llm_description_is_kept(self, graph_store: GraphStore, document_id) -> None:
        """Test that a missing completion capability keeps the long description."""
        merger = EntityMerger(graph_store, complete=None, summary_max_tokens=1)

        entity = await merger.merge_entity(candidate_entity(document_id, "a fairly long description", "c1"))

        assert entity.description == "a fairly long description"

    @pytest.mark.asyncio
    async def test_relationship_summary(self, graph_store: GraphStore, document_id) -> None:
        """Test that relationship descriptions are summarized under the pair name."""
        llm = ScriptedComplete(summary="They are close friends.")
        merger = EntityMerger(graph_store, complete=llm, summary_max_tokens=3)

        relationship = await merger.merge_relationship(
            candidate_edge(document_id, description="Alice and Bob have been friends since school")
        )

        assert relationship.description == "They are close friends."
        assert "Entities: (ALICE, BOB)" in llm.calls[0][0]


class TestKeyedLocks:
    """Tests for the per-key lock registry."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        """Test that holders of one key run one after another and the lock is dropped."""
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(tag: str) -> None:
            async with locks("ALICE"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0)
                order.append(f"{tag}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_is_dropped_after_error(self) -> None:
        """Test that a holder raising still releases its key."""
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks("ALICE"):
                raise RuntimeError("merge failed")

        assert len(locks) == 0
