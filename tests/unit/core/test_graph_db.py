"""
Unit tests for core/graph_db.py - Graph

Tests the immutable graph value:
- Construction and validation (duplicate ids, dangling links, duplicate pairs)
- Node and link queries in both directions
- Self-loop handling
- Degrees and statistics computed at construction
- Polars export
"""
import pytest
import polars as pl

from core.graph_db import (
    Graph,
    NodeNotFoundError,
    DuplicateNodeError,
    DuplicateLinkError,
    create_empty_graph,
)
from core.schemas import GraphNode, GraphLink, primitive
from core.ontology import NodeType, PrimitiveType


def image(node_id):
    return GraphNode(id=node_id, type=NodeType.IMAGE.value, label=node_id)


def entity_type(node_id):
    return GraphNode(id=node_id, type=NodeType.ENTITY_TYPE.value, label=node_id)


def link(source, target, kind=PrimitiveType.HAS_ENTITY_ANNOTATION, count=1, value=None):
    return GraphLink(
        source=source,
        target=target,
        primitives=tuple(primitive(kind, value=value) for _ in range(count)),
    )


@pytest.fixture
def small_graph():
    """img1 -> E1, img1 -> E2, img2 -> E1 (weight 2), img1 self-loop."""
    nodes = [image("img1"), image("img2"), entity_type("E1"), entity_type("E2")]
    links = [
        link("img1", "E1"),
        link("img1", "E2"),
        link("img2", "E1", count=2),
        link("img1", "img1", PrimitiveType.HAS_RELATED_ANNOTATION_IN, value="depicts"),
    ]
    return Graph(nodes, links)


# =============================================================================
# CONSTRUCTION TESTS
# =============================================================================

def test_graph_counts(small_graph):
    assert small_graph.node_count == 4
    assert small_graph.link_count == 4
    assert len(small_graph) == 4
    assert not small_graph.is_empty


def test_duplicate_node_id_fails():
    with pytest.raises(DuplicateNodeError) as exc_info:
        Graph([image("img1"), image("img1")])

    assert "img1" in str(exc_info.value)


def test_link_to_unknown_node_fails():
    with pytest.raises(NodeNotFoundError) as exc_info:
        Graph([image("img1")], [link("img1", "E9")])

    assert exc_info.value.node_id == "E9"


def test_two_links_on_one_pair_fail_regardless_of_direction():
    """At most one link per unordered pair."""
    nodes = [image("img1"), entity_type("E1")]

    with pytest.raises(DuplicateLinkError):
        Graph(nodes, [link("img1", "E1"), link("E1", "img1")])


def test_empty_graph_statistics_are_zero():
    graph = create_empty_graph()

    assert graph.is_empty
    assert graph.min_degree == 0
    assert graph.max_degree == 0
    assert graph.min_link_weight == 0
    assert graph.max_link_weight == 0


# =============================================================================
# NODE QUERY TESTS
# =============================================================================

def test_get_node_carries_computed_degree(small_graph):
    """
    Degrees are derived at construction, whatever the input nodes say.

    img1: E1, E2 and its own self-loop (counted once) -> 3
    """
    assert small_graph.get_node("img1").degree == 3
    assert small_graph.get_node("img2").degree == 1
    assert small_graph.get_node("E1").degree == 2
    assert small_graph.get_node("E2").degree == 1


def test_get_node_not_found(small_graph):
    with pytest.raises(NodeNotFoundError):
        small_graph.get_node("nope")

    assert not small_graph.has_node("nope")
    assert "nope" not in small_graph


def test_node_ids_by_type(small_graph):
    assert small_graph.node_ids(NodeType.IMAGE.value) == frozenset({"img1", "img2"})
    assert small_graph.node_ids() == frozenset({"img1", "img2", "E1", "E2"})
    assert [n.id for n in small_graph.get_nodes_by_type(NodeType.ENTITY_TYPE.value)] == ["E1", "E2"]


# =============================================================================
# LINK QUERY TESTS
# =============================================================================

def test_get_link_either_direction(small_graph):
    forward = small_graph.get_link("img2", "E1")
    backward = small_graph.get_link("E1", "img2")

    assert forward is not None
    assert forward == backward
    assert forward.weight == 2
    assert small_graph.get_link("img2", "E2") is None
    assert small_graph.get_link("img2", "unknown") is None


def test_self_loop_returned_once(small_graph):
    links = small_graph.get_links_for("img1")
    loops = [l for l in links if l.is_self_loop]

    assert len(links) == 3
    assert len(loops) == 1


def test_directional_link_queries(small_graph):
    outgoing = {l.target for l in small_graph.get_outgoing_links("img1")}
    incoming = {l.source for l in small_graph.get_incoming_links("E1")}

    assert outgoing == {"E1", "E2", "img1"}
    assert incoming == {"img1", "img2"}


def test_neighbor_ids(small_graph):
    assert small_graph.neighbor_ids("img1") == {"E1", "E2", "img1"}
    assert small_graph.neighbor_ids("E1") == {"img1", "img2"}
    assert small_graph.neighbor_ids("unknown") == set()


# =============================================================================
# STATISTICS TESTS
# =============================================================================

def test_statistics(small_graph):
    assert small_graph.min_degree == 1
    assert small_graph.max_degree == 3
    assert small_graph.min_link_weight == 1
    assert small_graph.max_link_weight == 2
    assert small_graph.min_degree <= small_graph.max_degree
    assert small_graph.min_link_weight <= small_graph.max_link_weight


def test_isolated_node_has_degree_zero():
    graph = Graph([image("img1"), image("lonely"), entity_type("E1")], [link("img1", "E1")])

    assert graph.get_node("lonely").degree == 0
    assert graph.min_degree == 0


# =============================================================================
# COMPARISON TESTS
# =============================================================================

def test_canonical_form_ignores_direction_and_primitive_order():
    nodes = [image("img1"), entity_type("E1")]
    a = Graph(nodes, [GraphLink(source="img1", target="E1", primitives=(
        primitive(PrimitiveType.HAS_ENTITY_ANNOTATION, annotation_id="x"),
        primitive(PrimitiveType.HAS_ENTITY_ANNOTATION, annotation_id="y"),
    ))])
    b = Graph(nodes, [GraphLink(source="E1", target="img1", primitives=(
        primitive(PrimitiveType.HAS_ENTITY_ANNOTATION, annotation_id="y"),
        primitive(PrimitiveType.HAS_ENTITY_ANNOTATION, annotation_id="x"),
    ))])

    assert a.canonical_form() == b.canonical_form()


# =============================================================================
# PERSISTENCE TESTS
# =============================================================================

def test_to_polars(small_graph):
    nodes_df = small_graph.to_polars_nodes()
    links_df = small_graph.to_polars_links()

    assert nodes_df.height == 4
    assert links_df.height == 4
    assert nodes_df.filter(pl.col("id") == "img1")["degree"][0] == 3
    assert links_df["weight"].max() == 2


def test_save_parquet_and_arrow(small_graph, tmp_path):
    small_graph.save_parquet(tmp_path / "graph")
    small_graph.save_arrow(tmp_path / "graph")

    assert pl.read_parquet(tmp_path / "graph.nodes.parquet").height == 4
    assert pl.read_ipc(tmp_path / "graph.links.arrow").height == 4


def test_empty_graph_exports_typed_frames():
    df = create_empty_graph().to_polars_links()

    assert df.height == 0
    assert df.schema["weight"] == pl.Int64
