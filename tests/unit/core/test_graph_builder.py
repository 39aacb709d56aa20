"""
Unit tests for core/graph_builder.py - GraphBuilder and the fact reducer

Tests:
- Containment, hierarchy, entity and relation links from the sample corpus
- Weighted aggregation of repeated relations
- Skipping of dangling references
- Build scope (root folder, folders excluded)
- Intra-image relation policy
- Idempotent rebuilds
- Journal and event bus notifications
"""
import pytest

from core.graph_builder import (
    ContainmentFact,
    EntityFact,
    GraphBuilder,
    HierarchyFact,
    NodeFact,
    RelationFact,
    SkippedFact,
    build_graph,
    reduce_facts,
)
from core.graph_db import NodeNotFoundError
from core.ontology import NodeType, PrimitiveType
from core.schemas import GraphNode
from infrastructure.config import KnowledgeGraphSettings
from infrastructure.event_bus import EventType, get_event_bus
from infrastructure.logger import get_logger
from infrastructure.store import InMemoryAnnotationStore


def entity(annotation_id, type_id, **properties):
    return {"id": annotation_id, "body": {"purpose": "classifying", "source": type_id, "properties": properties}}


def relation(link_id, source_annotation, target_annotation, label):
    return [
        {"id": link_id, "motivation": "linking", "target": source_annotation, "body": target_annotation},
        {"id": f"{link_id}-tag", "motivation": "tagging", "target": link_id, "body": {"value": label}},
    ]


def links_of(graph, kind):
    return [l for l in graph.links if l.types == (kind.value,)]


# =============================================================================
# CORPUS BUILD TESTS
# =============================================================================

def test_sample_corpus_counts(sample_store):
    graph, report = build_graph(sample_store)

    assert graph.node_count == 11
    assert graph.link_count == 17
    assert report.nodes == 11
    assert report.links == 17
    assert report.skipped == 1


def test_folder_containment(sample_graph):
    """A folder with 2 subfolders and 3 images -> 2 + 3 containment links of weight 1."""
    from_root = [l for l in sample_graph.get_outgoing_links("root")]
    subfolders = [l for l in from_root if l.types == (PrimitiveType.FOLDER_CONTAINS_SUBFOLDER.value,)]
    images = [l for l in from_root if l.types == (PrimitiveType.FOLDER_CONTAINS_IMAGE.value,)]

    assert {l.target for l in subfolders} == {"sub-a", "sub-b"}
    assert {l.target for l in images} == {"img1", "img2", "img3"}
    assert all(l.weight == 1 for l in from_root)


def test_class_hierarchy(sample_graph):
    hierarchy = links_of(sample_graph, PrimitiveType.IS_PARENT_TYPE_OF)

    assert [(l.source, l.target) for l in hierarchy] == [("Person", "Artist")]


def test_entity_annotations(sample_graph):
    annotated = links_of(sample_graph, PrimitiveType.HAS_ENTITY_ANNOTATION)
    pairs = {(l.source, l.target) for l in annotated}

    assert pairs == {
        ("img1", "Person"), ("img1", "Artwork"),
        ("img2", "Artist"), ("img2", "Place"),
        ("img3", "Artwork"), ("img4", "Place"),
    }
    assert sample_graph.get_link("img1", "Person").primitives[0].annotation_id == "ann-e1"


def test_relation_links_carry_provenance(sample_graph):
    link = sample_graph.get_link("Artwork", "Person")
    p = link.primitives[0]

    assert link.types == (PrimitiveType.IS_RELATED_VIA_ANNOTATION.value,)
    assert p.value == "depicts"
    assert p.annotation_id == "rel-1"
    assert p.data["source_entity_type"] == "Artwork"
    assert p.data["target_properties"] == {"name": "Leonardo"}
    assert p.data["source_properties"] == {"title": "Mona Lisa"}


def test_cross_image_relation(sample_graph):
    link = sample_graph.get_link("img3", "img2")

    assert link is not None
    assert (link.source, link.target) == ("img3", "img2")
    assert link.types == (PrimitiveType.HAS_RELATED_ANNOTATION_IN.value,)


def test_intra_image_relation_is_self_loop(sample_graph):
    loop = sample_graph.get_link("img1", "img1")

    assert loop is not None
    assert loop.is_self_loop
    assert loop.values == ("depicts",)


def test_intra_image_relations_can_be_disabled(sample_store):
    settings = KnowledgeGraphSettings(intra_image_relations=False)
    graph = GraphBuilder(sample_store, settings).build()

    assert graph.get_link("img1", "img1") is None
    # The entity-type link is kept either way
    assert graph.get_link("Artwork", "Person") is not None


def test_dangling_relation_is_skipped_not_fatal(sample_store):
    builder = GraphBuilder(sample_store)
    graph = builder.build()

    assert builder.last_report.skipped == 1
    assert all(p.annotation_id != "rel-3" for l in graph.links for p in l.primitives)


def test_repeated_relations_aggregate(store_data):
    """Three 'depicts' annotations from type A to type B -> one link, weight 3."""
    store_data["annotations"].append({"image_id": "img4", "annotations": [
        entity("a1", "Artwork", title="Study"),
        entity("b1", "Place", name="Venice"),
        *relation("r1", "a1", "b1", "depicts"),
        *relation("r2", "a1", "b1", "depicts"),
        *relation("r3", "a1", "b1", "depicts"),
    ]})
    graph = GraphBuilder(InMemoryAnnotationStore.from_dict(store_data)).build()

    link = graph.get_link("Artwork", "Place")

    assert link.weight == 3
    assert len(link.primitives) == 3
    assert link.values == ("depicts",)
    assert [p.value for p in link.primitives] == ["depicts"] * 3


# =============================================================================
# SCOPE TESTS
# =============================================================================

def test_without_folders(sample_store):
    graph = GraphBuilder(sample_store, KnowledgeGraphSettings(include_folders=False)).build()

    assert graph.get_nodes_by_type(NodeType.FOLDER.value) == []
    assert links_of(graph, PrimitiveType.FOLDER_CONTAINS_IMAGE) == []
    assert graph.has_node("img1")


def test_root_folder_scope(sample_store):
    graph = GraphBuilder(sample_store, KnowledgeGraphSettings(root_folder_id="sub-a")).build()

    assert graph.node_ids(NodeType.IMAGE.value) == frozenset({"img4"})
    assert graph.node_ids(NodeType.FOLDER.value) == frozenset({"sub-a"})
    assert graph.has_link("sub-a", "img4")
    # Relations involving out-of-scope images are skipped
    assert graph.get_link("Artwork", "Person") is None


def test_unknown_root_folder_raises(sample_store):
    with pytest.raises(NodeNotFoundError):
        GraphBuilder(sample_store, KnowledgeGraphSettings(root_folder_id="nowhere")).build()


def test_empty_store_builds_empty_graph():
    graph, report = build_graph(InMemoryAnnotationStore())

    assert graph.is_empty
    assert report.skipped == 0
    assert graph.max_degree == 0


# =============================================================================
# REBUILD TESTS
# =============================================================================

def test_rebuild_is_idempotent(sample_store):
    builder = GraphBuilder(sample_store)

    first = builder.build()
    second = builder.build()

    assert first is not second
    assert first.canonical_form() == second.canonical_form()


def test_rebuild_with_new_settings(sample_store):
    builder = GraphBuilder(sample_store)
    before = builder.build()

    after = builder.rebuild(KnowledgeGraphSettings(include_folders=False))

    assert before.node_count == 11
    assert after.node_count == 8
    assert builder.settings.include_folders is False


def test_build_publishes_and_journals(sample_store):
    received = []
    get_event_bus().subscribe(EventType.GRAPH_REBUILT, received.append)

    GraphBuilder(sample_store).build()

    assert len(received) == 1
    assert received[0].payload == {"node_count": 11, "link_count": 17, "skipped": 1}
    events = get_logger().get_events_by_type("GRAPH_REBUILT")
    assert len(events) == 1
    assert events[0].skipped == 1


# =============================================================================
# REDUCER TESTS
# =============================================================================

def node(node_id, node_type=NodeType.IMAGE):
    return GraphNode(id=node_id, type=node_type.value, label=node_id)


def test_reducer_is_pure():
    facts = [
        NodeFact(node=node("f", NodeType.FOLDER)),
        NodeFact(node=node("img")),
        NodeFact(node=node("T", NodeType.ENTITY_TYPE)),
        ContainmentFact(folder_id="f", child_id="img", child_is_folder=False),
        EntityFact(image_id="img", entity_type_id="T", annotation_id="a"),
    ]

    assert reduce_facts(facts) == reduce_facts(facts)


def test_reducer_skips_unresolved_facts():
    facts = [
        NodeFact(node=node("img")),
        NodeFact(node=node("T", NodeType.ENTITY_TYPE)),
        EntityFact(image_id="img", entity_type_id="Unknown", annotation_id="a1"),
        HierarchyFact(parent_type_id="Missing", child_type_id="T"),
        ContainmentFact(folder_id="nofolder", child_id="img", child_is_folder=False),
        SkippedFact(annotation_id="x", reason="dangling relation endpoint"),
    ]

    raw = reduce_facts(facts)

    assert raw.instances == []
    assert raw.report.skipped == 4
    assert raw.report.facts == 6


def test_reducer_first_node_declaration_wins():
    raw = reduce_facts([
        NodeFact(node=GraphNode(id="img", type=NodeType.IMAGE.value, label="first")),
        NodeFact(node=GraphNode(id="img", type=NodeType.IMAGE.value, label="second")),
    ])

    assert [n.label for n in raw.nodes] == ["first"]


def test_reducer_relation_policy():
    facts = [
        NodeFact(node=node("img")),
        NodeFact(node=node("A", NodeType.ENTITY_TYPE)),
        NodeFact(node=node("B", NodeType.ENTITY_TYPE)),
        RelationFact(
            annotation_id="r",
            label="knows",
            source_image_id="img",
            target_image_id="img",
            source_type_id="A",
            target_type_id="B",
        ),
    ]

    with_loops = reduce_facts(facts, intra_image_relations=True)
    without = reduce_facts(facts, intra_image_relations=False)

    assert len(with_loops.instances) == 2
    assert len(without.instances) == 1
    assert without.instances[0].primitive.type == PrimitiveType.IS_RELATED_VIA_ANNOTATION.value
