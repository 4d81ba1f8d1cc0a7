"""
Path Finder - Path-Weighted Graph Traversal.

Connects the entities matched by a query through the knowledge graph:

1. enumerate every simple path of at most three hops between each ordered
   pair of seed entities (undirected view of the graph)
2. score the paths of each pair by spreading a unit of flow from the source
   over the pair's path tree, decaying it at every hop and only propagating
   past edges whose flow exceeds a threshold
3. keep the best distinct paths, bounded by how many paths were found
4. render each kept path as a sentence for the LLM prompt

All of this runs on an immutable name-level snapshot of the graph, so the
work for different seed pairs never shares mutable state.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from uuid import UUID

import networkx as nx

from pathrag.knowledge.graph_store import GraphStore
from pathrag.knowledge.schemas import Entity, Relationship
from pathrag.utils.formatting import truncate_by_token_budget
from pathrag.utils.logger import get_logger

logger = get_logger(__name__)


MAX_PATH_HOPS = 3
PATH_THRESHOLD = 0.3
PATH_DECAY = 0.8
MAX_SELECTED_PATHS = 15

Path = tuple[str, ...]


@dataclass
class PairPaths:
    """Paths found between one ordered (source, target) seed pair."""

    paths: list[Path] = field(default_factory=list)
    # direction-normalized (min, max) name pairs
    edges: set[tuple[str, str]] = field(default_factory=set)


@dataclass
class PathSearchResult:
    """Paths grouped by seed pair, plus how many were found at each depth."""

    pairs: dict[tuple[str, str], PairPaths] = field(default_factory=dict)
    one_hop: int = 0
    two_hop: int = 0
    three_hop: int = 0

    @property
    def total_paths(self) -> int:
        return self.one_hop + self.two_hop + self.three_hop

    @property
    def selection_quota(self) -> int:
        """Half of the paths found at each depth, summed."""
        return self.one_hop // 2 + self.two_hop // 2 + self.three_hop // 2


def find_seed_to_seed_paths(
    graph: nx.Graph,
    seed_names: Sequence[str],
    max_hops: int = MAX_PATH_HOPS,
) -> PathSearchResult:
    """
    Enumerate simple paths between every ordered pair of distinct seeds.

    Args:
        graph: Undirected name-level graph snapshot
        seed_names: Seed entity names; duplicates are ignored
        max_hops: Maximum path length in edges (1, 2 or 3)

    Returns:
        PathSearchResult keyed by (source, target)
    """
    if max_hops not in (1, 2, 3):
        raise ValueError(f"max_hops must be 1, 2 or 3, got {max_hops}")

    seeds = [name for name in dict.fromkeys(seed_names) if name in graph]
    result = PathSearchResult()

    for source in seeds:
        for target in seeds:
            if source == target:
                continue
            for found in nx.all_simple_paths(graph, source, target, cutoff=max_hops):
                path = tuple(found)
                pair = result.pairs.setdefault((source, target), PairPaths())
                pair.paths.append(path)
                for a, b in zip(path, path[1:]):
                    pair.edges.add((a, b) if a < b else (b, a))

                hops = len(path) - 1
                if hops == 1:
                    result.one_hop += 1
                elif hops == 2:
                    result.two_hop += 1
                else:
                    result.three_hop += 1

    return result


def score_pair_paths(
    paths: Sequence[Path],
    source: str,
    target: str,
    threshold: float = PATH_THRESHOLD,
    decay: float = PATH_DECAY,
) -> list[tuple[Path, float]]:
    """
    Score the paths of one seed pair by decayed flow propagation.

    The source splits a unit of flow evenly over its next hops in the
    pair's path tree. An edge whose accumulated flow exceeds ``threshold``
    passes ``flow * decay`` on, split evenly over the following hops. The
    propagation is unrolled for exactly three hops. A path scores the mean
    flow of its (directed) edges.

    Args:
        paths: All paths found for (source, target)
        source: Pair source name
        target: Pair target name
        threshold: Flow an edge must exceed before propagating further
        decay: Multiplier applied to flow at every propagation step

    Returns:
        (path, score) for every input path, in input order
    """
    follow: dict[str, dict[str, None]] = {}
    for path in paths:
        for current, nxt in zip(path, path[1:]):
            follow.setdefault(current, {})[nxt] = None

    flow: defaultdict[tuple[str, str], float] = defaultdict(float)
    first_hops = follow.get(source, {})

    for first in first_hops:
        flow[(source, first)] += 1.0 / len(first_hops)
        if first == target or flow[(source, first)] <= threshold or first not in follow:
            continue

        second_hops = follow[first]
        for second in second_hops:
            flow[(first, second)] += flow[(source, first)] * decay / len(second_hops)
            if second == target or flow[(first, second)] <= threshold or second not in follow:
                continue

            third_hops = follow[second]
            for third in third_hops:
                flow[(second, third)] += flow[(first, second)] * decay / len(third_hops)

    return [
        (path, sum(flow.get(edge, 0.0) for edge in zip(path, path[1:])) / (len(path) - 1))
        for path in paths
    ]


def select_paths(
    scored: Iterable[tuple[Path, float]],
    quota: int,
    cap: int = MAX_SELECTED_PATHS,
) -> list[Path]:
    """
    Best distinct paths, at most ``min(cap, quota)``.

    Paths visiting the same set of nodes (e.g. a path and its reverse)
    collapse into the highest-scored one; ties keep input order.
    """
    ranked = sorted(scored, key=lambda item: item[1], reverse=True)

    seen: set[str] = set()
    unique: list[Path] = []
    for path, _ in ranked:
        signature = "-".join(sorted(path))
        if signature in seen:
            continue
        seen.add(signature)
        unique.append(path)

    return unique[:min(cap, quota)]


def _entity_sentence(entity: Entity) -> str:
    return f"The entity {entity.name} is a {entity.entity_type} with the description({entity.description})"


def _edge_sentence(relationship: Relationship, a: str, b: str) -> str:
    return f" through edge({relationship.keywords}) to connect to {a} and {b}. "


class PathFinder:
    """
    Path-weighted traversal over a graph store.

    Usage:
        finder = PathFinder(graph_store)
        sentences = finder.find_related_paths(["ALICE", "BOB"], max_tokens=5000)
    """

    def __init__(
        self,
        graph_store: GraphStore,
        threshold: float = PATH_THRESHOLD,
        decay: float = PATH_DECAY,
        max_paths: int = MAX_SELECTED_PATHS,
    ) -> None:
        self.graph_store = graph_store
        self.threshold = threshold
        self.decay = decay
        self.max_paths = max_paths

    def find_related_paths(
        self,
        seed_names: Sequence[str],
        max_tokens: int,
        document_ids: list[UUID] | None = None,
    ) -> list[str]:
        """
        Describe the best paths connecting the seed entities.

        Args:
            seed_names: Entity names matched by the query
            max_tokens: Token budget for the rendered descriptions
            document_ids: Optional document scope

        Returns:
            Rendered path sentences, lowest-scored first
        """
        if len(set(seed_names)) < 2:
            return []

        snapshot = self.graph_store.name_graph(document_ids)
        search = find_seed_to_seed_paths(snapshot, seed_names)

        scored: list[tuple[Path, float]] = []
        for (source, target), pair in search.pairs.items():
            scored.extend(score_pair_paths(pair.paths, source, target, self.threshold, self.decay))

        selected = select_paths(scored, search.selection_quota, self.max_paths)

        descriptions: list[str] = []
        for path in selected:
            description = self.describe_path(path, document_ids)
            if description is None:
                logger.debug(f"Dropping path {' -> '.join(path)}: entity or edge no longer exists")
                continue
            descriptions.append(description)

        kept = truncate_by_token_budget(descriptions, key=lambda d: d, max_tokens=max_tokens)
        kept.reverse()

        logger.debug(
            f"Path search over {len(search.pairs)} seed pairs: {search.total_paths} paths "
            f"(1-hop={search.one_hop}, 2-hop={search.two_hop}, 3-hop={search.three_hop}), "
            f"{len(selected)} selected, {len(kept)} kept"
        )
        return kept

    def describe_path(
        self,
        path: Sequence[str],
        document_ids: list[UUID] | None = None,
    ) -> str | None:
        """
        Render a 1-3 hop path as text; None if any entity or edge is missing.

        Each hop reads "<entity a> through edge(<keywords>) ... <entity b>";
        hops are joined with " and ".
        """
        if not 2 <= len(path) <= MAX_PATH_HOPS + 1:
            return None

        entities: list[Entity] = []
        for name in path:
            entity = self.graph_store.find_entity(name, document_ids)
            if entity is None:
                return None
            entities.append(entity)

        segments: list[str] = []
        for i, (a, b) in enumerate(zip(path, path[1:])):
            relationship = self.find_edge(a, b, document_ids)
            if relationship is None:
                return None
            segments.append(
                _entity_sentence(entities[i])
                + _edge_sentence(relationship, a, b)
                + _entity_sentence(entities[i + 1])
            )

        return " and ".join(segments)

    def find_edge(
        self,
        a: str,
        b: str,
        document_ids: list[UUID] | None = None,
    ) -> Relationship | None:
        """Edge between ``a`` and ``b`` in either stored direction."""
        return (
            self.graph_store.find_relationship(a, b, document_ids)
            or self.graph_store.find_relationship(b, a, document_ids)
        )
