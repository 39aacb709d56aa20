"""
ANNOGRAPH DEGREE INDEX - Consistent Visual Scaling

Derived from the finished node/link set, once per build:
- degree of every node (incident links; a self-loop counts once)
- min/max degree and min/max link weight

Scaling contract for the Renderer:

    size(node) = MIN_NODE_SIZE + (degree - min_degree) * factor
    factor     = (MAX_NODE_SIZE - MIN_NODE_SIZE) / (max_degree - min_degree)

When the range is degenerate (max == min) the factor is 0 and every node
renders at MIN_NODE_SIZE. Link width follows the same contract on weight.
"""
from typing import Dict, Iterable, List, Sequence

import msgspec

from core.schemas import GraphNode, GraphLink, GraphStats


MIN_NODE_SIZE = 5.0
MAX_NODE_SIZE = 10.0

MIN_LINK_WIDTH = 1.0
MAX_LINK_WIDTH = 3.0


def compute_degrees(nodes: Iterable[GraphNode], links: Iterable[GraphLink]) -> Dict[str, int]:
    """Number of links incident to each node. Self-loops count once."""
    degrees = {node.id: 0 for node in nodes}
    for link in links:
        degrees[link.source] = degrees.get(link.source, 0) + 1
        if link.target != link.source:
            degrees[link.target] = degrees.get(link.target, 0) + 1
    return degrees


def compute_stats(degrees: Dict[str, int], links: Sequence[GraphLink]) -> GraphStats:
    """Min/max degree and link weight. An empty graph yields all zeros."""
    weights = [link.weight for link in links]
    return GraphStats(
        min_degree=min(degrees.values(), default=0),
        max_degree=max(degrees.values(), default=0),
        min_link_weight=min(weights, default=0),
        max_link_weight=max(weights, default=0),
    )


def scale_factor(lo: float, hi: float, min_out: float, max_out: float) -> float:
    """Output units per input unit. 0 for a degenerate input range."""
    if hi <= lo:
        return 0.0
    return (max_out - min_out) / (hi - lo)


def scale(value: float, lo: float, hi: float, min_out: float, max_out: float) -> float:
    """Map `value` from [lo, hi] onto [min_out, max_out]."""
    return min_out + (value - lo) * scale_factor(lo, hi, min_out, max_out)


class DegreeIndex:
    """Degrees and range statistics of one built graph."""

    def __init__(self, degrees: Dict[str, int], stats: GraphStats):
        self._degrees = degrees
        self.stats = stats

    @classmethod
    def compute(cls, nodes: Sequence[GraphNode], links: Sequence[GraphLink]) -> "DegreeIndex":
        degrees = compute_degrees(nodes, links)
        return cls(degrees, compute_stats(degrees, links))

    def degree(self, node_id: str) -> int:
        return self._degrees.get(node_id, 0)

    def apply(self, nodes: Iterable[GraphNode]) -> List[GraphNode]:
        """Copies of `nodes` carrying their computed degree."""
        return [
            msgspec.structs.replace(node, degree=self.degree(node.id))
            for node in nodes
        ]

    def size(
        self,
        node: GraphNode,
        min_size: float = MIN_NODE_SIZE,
        max_size: float = MAX_NODE_SIZE,
    ) -> float:
        return scale(
            self.degree(node.id),
            self.stats.min_degree,
            self.stats.max_degree,
            min_size,
            max_size,
        )

    def width(
        self,
        link: GraphLink,
        min_width: float = MIN_LINK_WIDTH,
        max_width: float = MAX_LINK_WIDTH,
    ) -> float:
        return scale(
            link.weight,
            self.stats.min_link_weight,
            self.stats.max_link_weight,
            min_width,
            max_width,
        )
