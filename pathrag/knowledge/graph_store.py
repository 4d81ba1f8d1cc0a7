"""
Graph Store - NetworkX Integration.

Stores entities and relationships as a knowledge graph keyed by
(document scope, entity name). This is the "Graph" part of PathRAG:
exact lookups for the merge engine, neighbor counts for ranking and an
undirected name-level snapshot for path search.
"""

import json
from collections.abc import Iterable
from pathlib import Path
from uuid import UUID

import networkx as nx

from pathrag.knowledge.schemas import UNKNOWN_ENTITY_TYPE, Entity, Relationship
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


class GraphStoreError(Exception):
    """Raised when graph store operations fail."""
    pass


def _scope(document_ids: Iterable[UUID] | None) -> set[str] | None:
    if document_ids is None:
        return None
    return {str(doc_id) for doc_id in document_ids}


class GraphStore:
    """
    NetworkX-based graph store for entity-relationship storage.

    Nodes are keyed ``"<document_id>::<NAME>"`` so a name is unique per
    document scope. Edges carry the full relationship record. Every upsert
    is a single in-process mutation, which makes it atomic with respect to
    other coroutines.

    Usage:
        store = GraphStore()
        store.upsert_entity(entity)
        store.upsert_relationship(relationship)
        snapshot = store.name_graph(document_ids=[doc_id])
    """

    def __init__(self, persist_path: Path | None = None) -> None:
        """
        Initialize the graph store.

        Args:
            persist_path: Optional path to persist the graph
        """
        self.persist_path = persist_path
        self._graph: nx.DiGraph = nx.DiGraph()
        # name -> node keys in insertion order
        self._names: dict[str, dict[str, None]] = {}

        if persist_path and persist_path.exists():
            self._load()

    @staticmethod
    def node_key(name: str, document_id: UUID | str) -> str:
        return f"{document_id}::{name}"

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def upsert_entity(self, entity: Entity) -> Entity:
        """
        Insert or replace the entity with the same name in the same document.

        Args:
            entity: The merged entity record

        Returns:
            The stored entity
        """
        key = self.node_key(entity.name, entity.document_id)

        self._graph.add_node(
            key,
            name=entity.name,
            document_id=str(entity.document_id),
            entity_type=entity.entity_type,
            data=entity.model_dump(mode="json"),
        )
        self._names.setdefault(entity.name, {})[key] = None

        logger.debug(f"Upserted entity node: {entity.name} ({entity.entity_type})")
        return entity

    def get_entity(self, name: str, document_id: UUID | None = None) -> Entity | None:
        """
        Get an entity by name.

        Args:
            name: Normalized entity name
            document_id: Exact document scope; any scope when omitted

        Returns:
            Entity or None if not found
        """
        if document_id is not None:
            return self._entity_at(self.node_key(name, document_id))
        return self.find_entity(name)

    def find_entity(self, name: str, document_ids: Iterable[UUID] | None = None) -> Entity | None:
        """First entity with ``name`` inside the given scope (all documents when None)."""
        allowed = _scope(document_ids)
        for key in self._names.get(name, {}):
            if allowed is None or self._graph.nodes[key]["document_id"] in allowed:
                return self._entity_at(key)
        return None

    def entity_exists(self, name: str, document_id: UUID | None = None) -> bool:
        return self.get_entity(name, document_id) is not None

    def get_all_entities(self, document_ids: Iterable[UUID] | None = None) -> list[Entity]:
        """
        Get all entities in the graph.

        Args:
            document_ids: Optional filter by owning documents

        Returns:
            List of entities
        """
        allowed = _scope(document_ids)
        return [
            Entity.model_validate(data["data"])
            for _, data in self._graph.nodes(data=True)
            if allowed is None or data["document_id"] in allowed
        ]

    def _entity_at(self, key: str) -> Entity | None:
        if not self._graph.has_node(key):
            return None
        return Entity.model_validate(self._graph.nodes[key]["data"])

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def upsert_relationship(self, relationship: Relationship) -> Relationship:
        """
        Insert or replace the edge (source, target) in the relationship's document.

        Missing endpoints are created as ``UNKNOWN`` placeholder entities so
        the graph never holds a dangling edge.

        Args:
            relationship: The merged relationship record

        Returns:
            The stored relationship
        """
        for name in (relationship.source_name, relationship.target_name):
            if not self.entity_exists(name, relationship.document_id):
                logger.warning(f"Endpoint {name} not found, creating placeholder")
                self.upsert_entity(
                    Entity(
                        name=name,
                        entity_type=UNKNOWN_ENTITY_TYPE,
                        description=relationship.description,
                        source_id=relationship.source_id,
                        document_id=relationship.document_id,
                    )
                )

        self._graph.add_edge(
            self.node_key(relationship.source_name, relationship.document_id),
            self.node_key(relationship.target_name, relationship.document_id),
            weight=relationship.weight,
            data=relationship.model_dump(mode="json"),
        )

        logger.debug(
            f"Upserted relationship: {relationship.source_name} --[{relationship.keywords}]--> "
            f"{relationship.target_name} (weight={relationship.weight})"
        )
        return relationship

    def get_relationship(
        self,
        source_name: str,
        target_name: str,
        document_id: UUID | None = None,
    ) -> Relationship | None:
        """
        Get the edge stored as (source, target).

        Args:
            source_name: Nominal source entity name
            target_name: Nominal target entity name
            document_id: Exact document scope; any scope when omitted

        Returns:
            Relationship or None if not found
        """
        if document_id is not None:
            return self._relationship_at(
                self.node_key(source_name, document_id),
                self.node_key(target_name, document_id),
            )
        return self.find_relationship(source_name, target_name)

    def find_relationship(
        self,
        source_name: str,
        target_name: str,
        document_ids: Iterable[UUID] | None = None,
    ) -> Relationship | None:
        """First edge stored as (source, target) inside the given scope."""
        allowed = _scope(document_ids)
        for key in self._names.get(source_name, {}):
            document_id = self._graph.nodes[key]["document_id"]
            if allowed is not None and document_id not in allowed:
                continue
            found = self._relationship_at(key, self.node_key(target_name, document_id))
            if found is not None:
                return found
        return None

    def get_all_relationships(self, document_ids: Iterable[UUID] | None = None) -> list[Relationship]:
        allowed = _scope(document_ids)
        relationships: list[Relationship] = []
        for source, _, data in self._graph.edges(data=True):
            if allowed is None or self._graph.nodes[source]["document_id"] in allowed:
                relationships.append(Relationship.model_validate(data["data"]))
        return relationships

    def _relationship_at(self, source_key: str, target_key: str) -> Relationship | None:
        if not self._graph.has_edge(source_key, target_key):
            return None
        return Relationship.model_validate(self._graph.edges[source_key, target_key]["data"])

    # ------------------------------------------------------------------
    # Traversal support
    # ------------------------------------------------------------------

    def get_neighbors(self, name: str, document_ids: Iterable[UUID] | None = None) -> list[str]:
        """
        Distinct names one hop away from ``name``, ignoring edge direction.

        Args:
            name: Entity name
            document_ids: Optional scope filter

        Returns:
            Neighbor names in discovery order
        """
        allowed = _scope(document_ids)
        neighbors: dict[str, None] = {}
        for key in self._names.get(name, {}):
            if allowed is not None and self._graph.nodes[key]["document_id"] not in allowed:
                continue
            for other in (*self._graph.successors(key), *self._graph.predecessors(key)):
                other_name = self._graph.nodes[other]["name"]
                if other_name != name:
                    neighbors[other_name] = None
        return list(neighbors)

    def node_degree(self, name: str, document_ids: Iterable[UUID] | None = None) -> int:
        """Number of distinct one-hop neighbors."""
        return len(self.get_neighbors(name, document_ids))

    def name_graph(self, document_ids: Iterable[UUID] | None = None) -> nx.Graph:
        """
        Undirected name-level snapshot of the graph.

        Same-named entities from different documents collapse into one node.
        The result is a new graph; later upserts do not affect it.
        """
        allowed = _scope(document_ids)
        snapshot = nx.Graph()
        for _, data in self._graph.nodes(data=True):
            if allowed is None or data["document_id"] in allowed:
                snapshot.add_node(data["name"])
        for source, target in self._graph.edges():
            if allowed is None or self._graph.nodes[source]["document_id"] in allowed:
                snapshot.add_edge(self._graph.nodes[source]["name"], self._graph.nodes[target]["name"])
        return snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def delete_document(self, document_id: UUID) -> tuple[int, int]:
        """
        Remove every entity and relationship owned by a document.

        Args:
            document_id: Document whose graph records are removed

        Returns:
            (entities_removed, relationships_removed)
        """
        doc = str(document_id)
        keys = [key for key, data in self._graph.nodes(data=True) if data["document_id"] == doc]
        edge_count = sum(1 for source, _ in self._graph.edges() if self._graph.nodes[source]["document_id"] == doc)

        for key in keys:
            name = self._graph.nodes[key]["name"]
            self._graph.remove_node(key)
            owners = self._names.get(name, {})
            owners.pop(key, None)
            if not owners:
                self._names.pop(name, None)

        logger.info(f"Deleted {len(keys)} entities and {edge_count} relationships for document {document_id}")
        return len(keys), edge_count

    def node_count(self) -> int:
        """Get total number of nodes."""
        return self._graph.number_of_nodes()

    def edge_count(self) -> int:
        """Get total number of edges."""
        return self._graph.number_of_edges()

    def save(self, path: Path | None = None) -> None:
        """
        Save the graph to disk.

        Args:
            path: Path to save to (uses persist_path if not specified)
        """
        save_path = path or self.persist_path
        if not save_path:
            raise GraphStoreError("No save path specified")

        save_path.parent.mkdir(parents=True, exist_ok=True)

        data = nx.node_link_data(self._graph, edges="edges")

        with open(save_path, "w") as f:
            json.dump(data, f, indent=2, default=str)

        logger.info(f"Saved graph to {save_path} ({self.node_count()} nodes, {self.edge_count()} edges)")

    def _load(self) -> None:
        """Load the graph from disk."""
        if not self.persist_path or not self.persist_path.exists():
            return

        try:
            with open(self.persist_path) as f:
                data = json.load(f)
            self._graph = nx.node_link_graph(data, directed=True, edges="edges")
        except (OSError, ValueError, KeyError, nx.NetworkXError) as e:
            logger.error(f"Failed to load graph: {e}")
            raise GraphStoreError(f"Failed to load graph from {self.persist_path}: {e}") from e

        self._names = {}
        for key, node_data in self._graph.nodes(data=True):
            self._names.setdefault(node_data["name"], {})[key] = None

        logger.info(
            f"Loaded graph from {self.persist_path} "
            f"({self.node_count()} nodes, {self.edge_count()} edges)"
        )
