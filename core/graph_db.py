"""
ANNOGRAPH GRAPH - The Immutable Knowledge Graph Value

A built Graph is never patched. Every settings or data change produces a
new Graph, and consumers (Renderer, QueryEngine, NeighborhoodIndex) hold a
reference to whichever instance is current without locking.

Architecture (The Bridge Pattern):
  Python Layer (Business Logic)
  - Uses string ids: "folder-1", "img-42", "entity:Person"
  - Calls: graph.get_node("img-42"), graph.get_links_for("img-42")

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (id -> index)
  - _inv_map: Dict[int, str]   (index -> id)

  Rust Layer (rustworkx.PyDiGraph)
  - Integer indices, one edge per unordered node pair (self-loops allowed)

Performance Characteristics:
- Node lookup: O(1) via _node_map
- Incident links: O(deg) via in_edges/out_edges
- Construction: single Rust call for nodes and one for links
"""
import rustworkx as rx
from typing import Dict, List, Optional, Set, Tuple, Iterable, FrozenSet, Any
from pathlib import Path
import polars as pl

from core.schemas import GraphNode, GraphLink, GraphStats
from core.ontology import EdgeDirection
from core.degree_index import DegreeIndex
from core.aggregator import pair_key


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph operations."""
    pass


class NodeNotFoundError(GraphError):
    """Raised when a node id is not in the graph."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id}")


class DuplicateNodeError(GraphError):
    """Raised when two nodes share an id."""
    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")


class DuplicateLinkError(GraphError):
    """Raised when two links connect the same unordered node pair."""
    def __init__(self, source_id: str, target_id: str):
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(f"Link already exists: {source_id} -- {target_id}")


# =============================================================================
# GRAPH (The Immutable Value)
# =============================================================================

class Graph:
    """
    Immutable knowledge graph backed by rustworkx.

    Nodes are stored with their computed degree; the four scaling
    statistics are computed once, at construction.

    Usage:
        graph = Graph(nodes, links)

        graph.get_node("img-1")
        graph.get_links_for("img-1")
        graph.stats.max_degree

    Thread Safety:
        Safe to share read-only. There are no mutating methods.
    """

    def __init__(self, nodes: Iterable[GraphNode] = (), links: Iterable[GraphLink] = ()):
        """
        Build the graph.

        Args:
            nodes: Nodes with unique ids. Incoming degree values are ignored.
            links: At most one link per unordered pair of known node ids.

        Raises:
            DuplicateNodeError: If two nodes share an id
            NodeNotFoundError: If a link references an unknown node
            DuplicateLinkError: If two links share an unordered pair
        """
        nodes = list(nodes)
        links = list(links)

        seen: Set[str] = set()
        for node in nodes:
            if node.id in seen:
                raise DuplicateNodeError(node.id)
            seen.add(node.id)

        pairs: Set[Tuple[str, str]] = set()
        for link in links:
            for end in (link.source, link.target):
                if end not in seen:
                    raise NodeNotFoundError(end)
            pair = pair_key(link.source, link.target)
            if pair in pairs:
                raise DuplicateLinkError(link.source, link.target)
            pairs.add(pair)

        self._degree_index = DegreeIndex.compute(nodes, links)
        nodes = self._degree_index.apply(nodes)

        # Core storage: Rust-native directed graph, one edge per pair
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=False)

        # The Bridge: bidirectional id <-> index mapping
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}

        for node, idx in zip(nodes, self._graph.add_nodes_from(nodes)):
            self._node_map[node.id] = idx
            self._inv_map[idx] = node.id

        self._graph.add_edges_from([
            (self._node_map[link.source], self._node_map[link.target], link)
            for link in links
        ])

        self._nodes: Tuple[GraphNode, ...] = tuple(nodes)
        self._links: Tuple[GraphLink, ...] = tuple(links)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def node_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def link_count(self) -> int:
        return self._graph.num_edges()

    @property
    def is_empty(self) -> bool:
        """True if graph has no nodes."""
        return self.node_count == 0

    @property
    def nodes(self) -> Tuple[GraphNode, ...]:
        """All nodes, in build order."""
        return self._nodes

    @property
    def links(self) -> Tuple[GraphLink, ...]:
        """All links, in aggregation order."""
        return self._links

    @property
    def degree_index(self) -> DegreeIndex:
        return self._degree_index

    @property
    def stats(self) -> GraphStats:
        return self._degree_index.stats

    @property
    def min_degree(self) -> int:
        return self.stats.min_degree

    @property
    def max_degree(self) -> int:
        return self.stats.max_degree

    @property
    def min_link_weight(self) -> int:
        return self.stats.min_link_weight

    @property
    def max_link_weight(self) -> int:
        return self.stats.max_link_weight

    # =========================================================================
    # NODE QUERIES
    # =========================================================================

    def get_node(self, node_id: str) -> GraphNode:
        """
        Retrieve a node by id.

        Raises:
            NodeNotFoundError: If node doesn't exist
        """
        return self._graph[self._get_index(node_id)]

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_map

    def get_nodes_by_type(self, node_type: str) -> List[GraphNode]:
        return [n for n in self._nodes if n.type == node_type]

    def node_ids(self, node_type: Optional[str] = None) -> FrozenSet[str]:
        """Ids of every node, or of every node of one type."""
        if node_type is None:
            return frozenset(self._node_map)
        return frozenset(n.id for n in self._nodes if n.type == node_type)

    # =========================================================================
    # LINK QUERIES
    # =========================================================================

    def get_link(self, a: str, b: str) -> Optional[GraphLink]:
        """The link between two nodes, in either direction, if any."""
        if a not in self._node_map or b not in self._node_map:
            return None
        ia, ib = self._node_map[a], self._node_map[b]
        if self._graph.has_edge(ia, ib):
            return self._graph.get_edge_data(ia, ib)
        if self._graph.has_edge(ib, ia):
            return self._graph.get_edge_data(ib, ia)
        return None

    def has_link(self, a: str, b: str) -> bool:
        return self.get_link(a, b) is not None

    def get_links_for(self, node_id: str, direction: EdgeDirection = "any") -> List[GraphLink]:
        """
        Links incident to a node. A self-loop is returned once.

        Unknown ids yield an empty list.
        """
        if node_id not in self._node_map:
            return []

        idx = self._node_map[node_id]
        result: List[GraphLink] = []

        if direction in ("outgoing", "any"):
            result.extend(link for _, _, link in self._graph.out_edges(idx))

        if direction in ("incoming", "any"):
            for source_idx, _, link in self._graph.in_edges(idx):
                # Self-loops already came through out_edges
                if direction == "any" and source_idx == idx:
                    continue
                result.append(link)

        return result

    def get_incoming_links(self, node_id: str) -> List[GraphLink]:
        """Links whose recorded direction points TO a node."""
        return self.get_links_for(node_id, "incoming")

    def get_outgoing_links(self, node_id: str) -> List[GraphLink]:
        """Links whose recorded direction points FROM a node."""
        return self.get_links_for(node_id, "outgoing")

    def neighbor_ids(self, node_id: str) -> Set[str]:
        """
        Ids of nodes sharing a link with `node_id`, in either direction.

        `node_id` itself is included only if it carries a self-loop.
        """
        return {link.other_end(node_id) for link in self.get_links_for(node_id)}

    # =========================================================================
    # COMPARISON
    # =========================================================================

    def canonical_form(self) -> Tuple[FrozenSet[GraphNode], FrozenSet[Any]]:
        """
        Order-independent view of the graph.

        Two builds from identical input compare equal here even when
        primitive order inside a link or link direction differs.
        """
        links = frozenset(
            (
                frozenset((link.source, link.target)),
                tuple(sorted(
                    (p.type, p.value or "", p.annotation_id or "")
                    for p in link.primitives
                )),
            )
            for link in self._links
        )
        return frozenset(self._nodes), links

    # =========================================================================
    # PERSISTENCE (Polars-Compatible)
    # =========================================================================

    def to_polars_nodes(self) -> pl.DataFrame:
        """Export nodes to a Polars DataFrame."""
        return pl.DataFrame(
            {
                "id": [n.id for n in self._nodes],
                "type": [n.type for n in self._nodes],
                "label": [n.label for n in self._nodes],
                "degree": [n.degree for n in self._nodes],
            },
            schema={"id": pl.Utf8, "type": pl.Utf8, "label": pl.Utf8, "degree": pl.Int64},
        )

    def to_polars_links(self) -> pl.DataFrame:
        """
        Export links to a Polars DataFrame.

        Multi-type links list every type in `types`; `values` holds the
        distinct relation labels.
        """
        return pl.DataFrame(
            {
                "source_id": [link.source for link in self._links],
                "target_id": [link.target for link in self._links],
                "weight": [link.weight for link in self._links],
                "types": [list(link.types) for link in self._links],
                "values": [list(link.values) for link in self._links],
            },
            schema={
                "source_id": pl.Utf8,
                "target_id": pl.Utf8,
                "weight": pl.Int64,
                "types": pl.List(pl.Utf8),
                "values": pl.List(pl.Utf8),
            },
        )

    def save_parquet(self, path: Path) -> None:
        """
        Save graph state to parquet files.

        Creates two files:
        - {path}.nodes.parquet
        - {path}.links.parquet
        """
        path = Path(path)
        self.to_polars_nodes().write_parquet(path.with_suffix(".nodes.parquet"))
        self.to_polars_links().write_parquet(path.with_suffix(".links.parquet"))

    def save_arrow(self, path: Path) -> None:
        """Save graph state to Arrow IPC files."""
        path = Path(path)
        self.to_polars_nodes().write_ipc(path.with_suffix(".nodes.arrow"))
        self.to_polars_links().write_ipc(path.with_suffix(".links.arrow"))

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    def _get_index(self, node_id: str) -> int:
        if node_id not in self._node_map:
            raise NodeNotFoundError(node_id)
        return self._node_map[node_id]

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._node_map

    def __repr__(self) -> str:
        return f"Graph(nodes={self.node_count}, links={self.link_count})"


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

def create_empty_graph() -> Graph:
    """An empty Graph. All four statistics are 0."""
    return Graph()
