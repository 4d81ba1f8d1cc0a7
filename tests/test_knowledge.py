"""
Tests for Knowledge Layer.
"""

from pathlib import Path
from uuid import uuid4

import pytest

from pathrag.knowledge.graph_store import GraphStore, GraphStoreError
from pathrag.knowledge.schemas import (
    UNKNOWN_ENTITY_TYPE,
    Entity,
    EntityVector,
    ExtractedEntity,
    Relationship,
    RelationshipVector,
    TextChunk,
)
from pathrag.knowledge.vector_store import VectorStore, VectorStoreConfig
from tests.conftest import hash_embedding


def make_entity(name: str, document_id, entity_type: str = "PERSON", description: str = "") -> Entity:
    return Entity(
        name=name,
        entity_type=entity_type,
        description=description or f"{name} description",
        source_id="chunk-0",
        document_id=document_id,
    )


def make_relationship(source: str, target: str, document_id, keywords: str = "related") -> Relationship:
    return Relationship(
        source_name=source,
        target_name=target,
        description=f"{source} relates to {target}",
        keywords=keywords,
        source_id="chunk-0",
        document_id=document_id,
    )


class TestSchemas:
    """Tests for graph record schemas."""

    def test_extracted_names_are_normalized(self, document_id) -> None:
        """Test that candidate names are stripped and upper-cased."""
        candidate = ExtractedEntity(name="  Acme Corp ", document_id=document_id)

        assert candidate.name == "ACME CORP"
        assert candidate.entity_type == UNKNOWN_ENTITY_TYPE

    def test_vector_content(self, document_id) -> None:
        """Test the exact text embedded for entity and relationship vectors."""
        entity = make_entity("ALICE", document_id, description="An engineer")
        relationship = make_relationship("ALICE", "BOB", document_id, keywords="friendship")

        assert entity.vector_content() == "ALICEAn engineer"
        assert relationship.vector_content() == "friendshipALICEBOBALICE relates to BOB"

    def test_similarity_from_distance(self, document_id) -> None:
        """Test cosine distance to similarity conversion."""
        hit = EntityVector(name="ALICE", document_id=document_id, content="", distance=0.25)

        assert hit.similarity == pytest.approx(0.75)


class TestGraphStore:
    """Tests for GraphStore."""

    def test_upsert_and_get_entity(self, graph_store: GraphStore, document_id) -> None:
        """Test storing and retrieving an entity in its document scope."""
        entity = make_entity("ALICE", document_id)

        graph_store.upsert_entity(entity)

        assert graph_store.get_entity("ALICE", document_id).model_dump() == entity.model_dump()
        assert graph_store.get_entity("ALICE").entity_id == entity.entity_id
        assert graph_store.get_entity("ALICE", uuid4()) is None
        assert graph_store.node_count() == 1

    def test_upsert_replaces_same_name(self, graph_store: GraphStore, document_id) -> None:
        """Test that a name is unique within a document scope."""
        graph_store.upsert_entity(make_entity("ALICE", document_id, description="old"))
        graph_store.upsert_entity(make_entity("ALICE", document_id, description="new"))

        assert graph_store.node_count() == 1
        assert graph_store.get_entity("ALICE", document_id).description == "new"

    def test_same_name_in_two_documents(self, graph_store: GraphStore) -> None:
        """Test that different documents hold separate same-named entities."""
        doc_a, doc_b = uuid4(), uuid4()
        graph_store.upsert_entity(make_entity("ALICE", doc_a))
        graph_store.upsert_entity(make_entity("ALICE", doc_b))

        assert graph_store.node_count() == 2
        assert len(graph_store.get_all_entities([doc_a])) == 1
        assert graph_store.find_entity("ALICE", [doc_b]).document_id == doc_b

    def test_relationship_creates_placeholder_endpoints(self, graph_store: GraphStore, document_id) -> None:
        """Test that an edge never dangles."""
        graph_store.upsert_relationship(make_relationship("ALICE", "BOB", document_id))

        for name in ("ALICE", "BOB"):
            endpoint = graph_store.get_entity(name, document_id)
            assert endpoint is not None
            assert endpoint.entity_type == UNKNOWN_ENTITY_TYPE
        assert graph_store.edge_count() == 1

    def test_get_relationship_is_directional(self, graph_store: GraphStore, document_id) -> None:
        """Test that lookup uses the stored (source, target) orientation."""
        graph_store.upsert_relationship(make_relationship("ALICE", "BOB", document_id))

        assert graph_store.get_relationship("ALICE", "BOB", document_id) is not None
        assert graph_store.get_relationship("BOB", "ALICE", document_id) is None

    def test_neighbors_ignore_direction(self, graph_store: GraphStore, document_id) -> None:
        """Test that neighbor counts include incoming and outgoing edges."""
        graph_store.upsert_relationship(make_relationship("ALICE", "BOB", document_id))
        graph_store.upsert_relationship(make_relationship("CAROL", "ALICE", document_id))

        assert set(graph_store.get_neighbors("ALICE")) == {"BOB", "CAROL"}
        assert graph_store.node_degree("ALICE") == 2
        assert graph_store.node_degree("BOB") == 1
        assert graph_store.node_degree("NOBODY") == 0

    def test_name_graph_snapshot(self, graph_store: GraphStore, document_id) -> None:
        """Test the undirected snapshot, including isolated entities."""
        graph_store.upsert_relationship(make_relationship("ALICE", "BOB", document_id))
        graph_store.upsert_entity(make_entity("DAVE", document_id))

        snapshot = graph_store.name_graph()
        graph_store.upsert_entity(make_entity("EVE", document_id))

        assert set(snapshot.nodes) == {"ALICE", "BOB", "DAVE"}
        assert snapshot.has_edge("BOB", "ALICE")

    def test_name_graph_scope(self, graph_store: GraphStore) -> None:
        """Test that the snapshot only holds the requested documents."""
        doc_a, doc_b = uuid4(), uuid4()
        graph_store.upsert_relationship(make_relationship("ALICE", "BOB", doc_a))
        graph_store.upsert_relationship(make_relationship("CAROL", "DAVE", doc_b))

        assert set(graph_store.name_graph([doc_b]).nodes) == {"CAROL", "DAVE"}

    def test_delete_document(self, graph_store: GraphStore) -> None:
        """Test that deletion removes only the document's records."""
        doc_a, doc_b = uuid4(), uuid4()
        graph_store.upsert_relationship(make_relationship("ALICE", "BOB", doc_a))
        graph_store.upsert_relationship(make_relationship("ALICE", "CAROL", doc_b))

        entities, relationships = graph_store.delete_document(doc_a)

        assert (entities, relationships) == (2, 1)
        assert graph_store.get_entity("ALICE", doc_a) is None
        assert graph_store.get_entity("ALICE", doc_b) is not None
        assert graph_store.get_neighbors("ALICE") == ["CAROL"]

    def test_save_and_load(self, tmp_path: Path, document_id) -> None:
        """Test persisting the graph to JSON and reading it back."""
        path = tmp_path / "graph.json"
        store = GraphStore(persist_path=path)
        store.upsert_relationship(make_relationship("ALICE", "BOB", document_id, keywords="friendship"))
        store.save()

        reloaded = GraphStore(persist_path=path)

        assert reloaded.node_count() == 2
        assert reloaded.get_relationship("ALICE", "BOB", document_id).keywords == "friendship"
        assert reloaded.get_neighbors("BOB") == ["ALICE"]

    def test_load_invalid_file(self, tmp_path: Path) -> None:
        """Test that an unreadable graph file raises GraphStoreError."""
        path = tmp_path / "graph.json"
        path.write_text("not json")

        with pytest.raises(GraphStoreError):
            GraphStore(persist_path=path)

    def test_save_without_path(self, graph_store: GraphStore) -> None:
        """Test saving an in-memory store without a target path."""
        with pytest.raises(GraphStoreError):
            graph_store.save()


class TestVectorStore:
    """Tests for VectorStore."""

    def _entity_vector(self, name: str, document_id) -> EntityVector:
        content = f"{name} works at Acme"
        return EntityVector(name=name, document_id=document_id, content=content, embedding=hash_embedding(content))

    def test_count_empty_store(self, vector_store: VectorStore) -> None:
        """Test counting an empty store."""
        assert vector_store.count() == {"entities": 0, "relationships": 0, "text_chunks": 0}

    def test_search_empty_store(self, vector_store: VectorStore) -> None:
        """Test searching an empty store."""
        assert vector_store.search_entities(hash_embedding("anything")) == []
        assert vector_store.search_relationships(hash_embedding("anything")) == []

    def test_upsert_entities_is_idempotent(self, vector_store: VectorStore, document_id) -> None:
        """Test that vectors are keyed by (document, name)."""
        vector_store.upsert_entities([self._entity_vector("ALICE", document_id)])
        vector_store.upsert_entities([self._entity_vector("ALICE", document_id)])

        assert vector_store.count()["entities"] == 1

    def test_search_entities(self, vector_store: VectorStore, document_id) -> None:
        """Test nearest-neighbor search over entity vectors."""
        vector_store.upsert_entities([
            self._entity_vector("ALICE", document_id),
            self._entity_vector("BOB", document_id),
        ])

        hits = vector_store.search_entities(hash_embedding("ALICE works at Acme"), top_k=5)

        assert [hit.name for hit in hits][0] == "ALICE"
        assert len(hits) == 2
        assert hits[0].document_id == document_id

    def test_search_scope(self, vector_store: VectorStore) -> None:
        """Test document filtering of vector search."""
        doc_a, doc_b = uuid4(), uuid4()
        vector_store.upsert_entities([self._entity_vector("ALICE", doc_a), self._entity_vector("BOB", doc_b)])

        hits = vector_store.search_entities(hash_embedding("ALICE"), top_k=5, document_ids=[doc_b])

        assert [hit.name for hit in hits] == ["BOB"]
        assert vector_store.search_entities(hash_embedding("ALICE"), top_k=5, document_ids=[]) == []

    def test_similarity_threshold(self, temp_chroma_dir: Path, document_id) -> None:
        """Test that hits below the cosine threshold are dropped."""
        store = VectorStore(VectorStoreConfig(persist_directory=temp_chroma_dir, cosine_better_than_threshold=0.99))
        store.upsert_entities([self._entity_vector("ALICE", document_id)])

        assert len(store.search_entities(hash_embedding("ALICE works at Acme"))) == 1
        assert store.search_entities(hash_embedding("completely unrelated words")) == []

    def test_search_relationships(self, vector_store: VectorStore, document_id) -> None:
        """Test relationship hits carry their endpoints."""
        content = "friendshipALICEBOB"
        vector_store.upsert_relationships([
            RelationshipVector(
                source_name="ALICE",
                target_name="BOB",
                document_id=document_id,
                content=content,
                embedding=hash_embedding(content),
            )
        ])

        hits = vector_store.search_relationships(hash_embedding("friendship"))

        assert [(h.source_name, h.target_name) for h in hits] == [("ALICE", "BOB")]

    def test_chunks_keep_requested_order(self, vector_store: VectorStore, document_id) -> None:
        """Test that chunk lookup follows the id order and skips unknown ids."""
        chunks = [
            TextChunk(chunk_id=f"{document_id}-chunk-{i}", document_id=document_id, content=f"text {i}", chunk_index=i)
            for i in range(3)
        ]
        vector_store.add_chunks(chunks, [hash_embedding(c.content) for c in chunks])

        found = vector_store.get_chunks([chunks[2].chunk_id, "missing", chunks[0].chunk_id])

        assert [c.content for c in found] == ["text 2", "text 0"]
        assert [c.chunk_index for c in vector_store.get_chunks_by_document(document_id)] == [0, 1, 2]
        assert vector_store.get_chunk("missing") is None

    def test_delete_document(self, vector_store: VectorStore) -> None:
        """Test that deletion removes every collection's records for a document."""
        doc_a, doc_b = uuid4(), uuid4()
        vector_store.upsert_entities([self._entity_vector("ALICE", doc_a), self._entity_vector("BOB", doc_b)])
        chunk = TextChunk(chunk_id=f"{doc_a}-chunk-0", document_id=doc_a, content="text")
        vector_store.add_chunks([chunk], [hash_embedding("text")])

        deleted = vector_store.delete_document(doc_a)

        assert deleted == {"entities": 1, "relationships": 0, "text_chunks": 1}
        assert vector_store.count() == {"entities": 1, "relationships": 0, "text_chunks": 0}
