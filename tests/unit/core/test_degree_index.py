"""
Unit tests for core/degree_index.py - DegreeIndex and scaling
"""
import pytest

from core.degree_index import (
    DegreeIndex,
    MAX_LINK_WIDTH,
    MAX_NODE_SIZE,
    MIN_LINK_WIDTH,
    MIN_NODE_SIZE,
    compute_degrees,
    compute_stats,
    scale,
    scale_factor,
)
from core.schemas import GraphLink, GraphNode, primitive
from core.ontology import NodeType, PrimitiveType


def node(node_id):
    return GraphNode(id=node_id, type=NodeType.IMAGE.value, label=node_id)


def link(source, target, weight=1):
    return GraphLink(
        source=source,
        target=target,
        primitives=tuple(primitive(PrimitiveType.HAS_RELATED_ANNOTATION_IN) for _ in range(weight)),
    )


def test_self_loop_counts_once():
    degrees = compute_degrees([node("a")], [link("a", "a")])

    assert degrees == {"a": 1}


def test_stats_of_empty_input():
    stats = compute_stats({}, [])

    assert (stats.min_degree, stats.max_degree) == (0, 0)
    assert (stats.min_link_weight, stats.max_link_weight) == (0, 0)


def test_degenerate_range_scales_to_minimum():
    """max == min never divides by zero; everything renders at the minimum."""
    assert scale_factor(2, 2, MIN_NODE_SIZE, MAX_NODE_SIZE) == 0.0
    assert scale(2, 2, 2, MIN_NODE_SIZE, MAX_NODE_SIZE) == MIN_NODE_SIZE


def test_scale_endpoints():
    assert scale(1, 1, 5, MIN_NODE_SIZE, MAX_NODE_SIZE) == MIN_NODE_SIZE
    assert scale(5, 1, 5, MIN_NODE_SIZE, MAX_NODE_SIZE) == MAX_NODE_SIZE
    assert scale(3, 1, 5, MIN_NODE_SIZE, MAX_NODE_SIZE) == pytest.approx(7.5)


def test_index_size_and_width():
    nodes = [node("a"), node("b"), node("c")]
    links = [link("a", "b", weight=1), link("a", "c", weight=3)]
    index = DegreeIndex.compute(nodes, links)

    assert index.degree("a") == 2
    assert index.size(nodes[0]) == MAX_NODE_SIZE
    assert index.size(nodes[1]) == MIN_NODE_SIZE
    assert index.width(links[0]) == MIN_LINK_WIDTH
    assert index.width(links[1]) == MAX_LINK_WIDTH


def test_apply_returns_copies_with_degree():
    nodes = [node("a"), node("b")]
    index = DegreeIndex.compute(nodes, [link("a", "b")])

    applied = index.apply(nodes)

    assert [n.degree for n in applied] == [1, 1]
    assert nodes[0].degree == 0


def test_single_node_graph_sizes_at_minimum():
    nodes = [node("a")]
    index = DegreeIndex.compute(nodes, [])

    assert index.size(nodes[0]) == MIN_NODE_SIZE
