"""
ANNOGRAPH GRAPH BUILDER - From Annotation Store to Graph

Three independent sources feed one graph:
- the folder tree (containment)
- the entity vocabulary (class hierarchy)
- per-image annotations (entity annotations and relations between them)

The builder never wires annotation records to graph objects directly. It
first flattens the store into an ordered sequence of typed facts, then
reduces those facts into nodes and raw relation instances keyed by stable
string ids:

    AnnotationStore --collect_facts()--> [Fact, ...]
                    --reduce_facts()---> RawGraph(nodes, instances, report)
                    --aggregate_links()-> [GraphLink, ...]
                    --Graph(...)-------> Graph (degrees + statistics)

Failure policy: a fact whose endpoints cannot be resolved (dangling
reference, unknown entity type, missing image or folder) is skipped and
counted in BuildReport.skipped. It never aborts the build.
"""
import logging
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

import msgspec

from core.ontology import PrimitiveType
from core.schemas import (
    Annotation,
    AnnotationBody,
    GraphNode,
    RelationInstance,
    entity_type_node,
    folder_node,
    image_node,
    primitive,
)
from core.aggregator import aggregate_links
from core.graph_db import Graph, NodeNotFoundError
from infrastructure.config import KnowledgeGraphSettings
from infrastructure.event_bus import publish_graph_rebuilt
from infrastructure.logger import get_logger as get_journal


logger = logging.getLogger(__name__)


# =============================================================================
# FACTS (The Reducer Input)
# =============================================================================

class NodeFact(msgspec.Struct, kw_only=True, frozen=True, tag="node"):
    """Declares a node. Later facts may only reference declared nodes."""
    node: GraphNode


class ContainmentFact(msgspec.Struct, kw_only=True, frozen=True, tag="containment"):
    """A folder contains a subfolder or an image."""
    folder_id: str
    child_id: str
    child_is_folder: bool


class HierarchyFact(msgspec.Struct, kw_only=True, frozen=True, tag="hierarchy"):
    """An entity type is the parent class of another."""
    parent_type_id: str
    child_type_id: str


class EntityFact(msgspec.Struct, kw_only=True, frozen=True, tag="entity"):
    """An image carries an entity annotation of a given type."""
    image_id: str
    entity_type_id: str
    annotation_id: str


class RelationFact(msgspec.Struct, kw_only=True, frozen=True, tag="relation"):
    """
    A relation annotation between two entity annotations.

    Source and target are the entity types of the first classifying body
    on each endpoint annotation.
    """
    annotation_id: str
    label: Optional[str]
    source_image_id: str
    target_image_id: str
    source_type_id: str
    target_type_id: str
    source_properties: Dict[str, Any] = msgspec.field(default_factory=dict)
    target_properties: Dict[str, Any] = msgspec.field(default_factory=dict)


class SkippedFact(msgspec.Struct, kw_only=True, frozen=True, tag="skipped"):
    """An annotation the collector could not turn into a fact."""
    annotation_id: Optional[str]
    reason: str


Fact = Union[NodeFact, ContainmentFact, HierarchyFact, EntityFact, RelationFact, SkippedFact]


class BuildReport(msgspec.Struct, kw_only=True):
    """Counters for one build."""
    facts: int = 0
    nodes: int = 0
    instances: int = 0
    links: int = 0
    skipped: int = 0


class RawGraph(msgspec.Struct, kw_only=True):
    """Reducer output: nodes plus unaggregated relation instances."""
    nodes: List[GraphNode]
    instances: List[RelationInstance]
    report: BuildReport


# =============================================================================
# REDUCER
# =============================================================================

def reduce_facts(facts: List[Fact], intra_image_relations: bool = True) -> RawGraph:
    """
    Fold an ordered fact sequence into nodes and raw instances.

    Pure: the same facts always produce the same output, in the same order.
    """
    nodes: Dict[str, GraphNode] = {}
    instances: List[RelationInstance] = []
    report = BuildReport()

    def skip(reason: str, ref: Optional[str]) -> None:
        report.skipped += 1
        logger.debug(f"Skipping {ref or '<unknown>'}: {reason}")

    def emit(source: str, target: str, p) -> None:
        instances.append(RelationInstance(source=source, target=target, primitive=p))

    for fact in facts:
        report.facts += 1

        match fact:
            case NodeFact(node=node):
                # First declaration wins; a node is never listed twice
                nodes.setdefault(node.id, node)

            case ContainmentFact(folder_id=folder_id, child_id=child_id, child_is_folder=is_folder):
                if folder_id not in nodes or child_id not in nodes:
                    skip("containment endpoint not in scope", child_id)
                    continue
                kind = (
                    PrimitiveType.FOLDER_CONTAINS_SUBFOLDER if is_folder
                    else PrimitiveType.FOLDER_CONTAINS_IMAGE
                )
                emit(folder_id, child_id, primitive(kind))

            case HierarchyFact(parent_type_id=parent_id, child_type_id=child_id):
                if parent_id not in nodes or child_id not in nodes:
                    skip("unknown parent entity type", child_id)
                    continue
                emit(parent_id, child_id, primitive(PrimitiveType.IS_PARENT_TYPE_OF))

            case EntityFact(image_id=image_id, entity_type_id=type_id, annotation_id=ann_id):
                if image_id not in nodes or type_id not in nodes:
                    skip("unknown image or entity type", ann_id)
                    continue
                emit(image_id, type_id, primitive(
                    PrimitiveType.HAS_ENTITY_ANNOTATION,
                    annotation_id=ann_id,
                ))

            case RelationFact() as rel:
                endpoints = (rel.source_image_id, rel.target_image_id, rel.source_type_id, rel.target_type_id)
                if any(end not in nodes for end in endpoints):
                    skip("relation endpoint not in graph", rel.annotation_id)
                    continue

                provenance = dict(
                    source_image=rel.source_image_id,
                    target_image=rel.target_image_id,
                    source_entity_type=rel.source_type_id,
                    target_entity_type=rel.target_type_id,
                    source_properties=rel.source_properties,
                    target_properties=rel.target_properties,
                )
                emit(rel.source_type_id, rel.target_type_id, primitive(
                    PrimitiveType.IS_RELATED_VIA_ANNOTATION,
                    value=rel.label,
                    annotation_id=rel.annotation_id,
                    **provenance,
                ))

                if rel.source_image_id != rel.target_image_id or intra_image_relations:
                    emit(rel.source_image_id, rel.target_image_id, primitive(
                        PrimitiveType.HAS_RELATED_ANNOTATION_IN,
                        value=rel.label,
                        annotation_id=rel.annotation_id,
                        **provenance,
                    ))

            case SkippedFact(annotation_id=ann_id, reason=reason):
                skip(reason, ann_id)

    report.nodes = len(nodes)
    report.instances = len(instances)
    return RawGraph(nodes=list(nodes.values()), instances=instances, report=report)


# =============================================================================
# GRAPH BUILDER
# =============================================================================

class GraphBuilder:
    """
    Derives a Graph from an AnnotationStore under the given settings.

    Usage:
        builder = GraphBuilder(store, settings)
        graph = builder.build()
        builder.last_report.skipped
    """

    def __init__(self, store, settings: Optional[KnowledgeGraphSettings] = None):
        self.store = store
        self.settings = settings or KnowledgeGraphSettings()
        self.last_report: Optional[BuildReport] = None

    # =========================================================================
    # SCOPE
    # =========================================================================

    def _scope(self) -> Tuple[List, List]:
        """
        Folders and images reachable from the configured root folder.

        Raises:
            NodeNotFoundError: If root_folder_id names no folder
        """
        folders = self.store.list_folders()
        images = self.store.list_images()
        root_id = self.settings.root_folder_id
        if root_id is None:
            return folders, images

        children: Dict[str, List[str]] = {}
        known = set()
        for folder in folders:
            known.add(folder.id)
            if folder.parent_id:
                children.setdefault(folder.parent_id, []).append(folder.id)
        if root_id not in known:
            raise NodeNotFoundError(root_id)

        in_scope: Set[str] = set()
        stack = [root_id]
        while stack:
            current = stack.pop()
            if current in in_scope:
                continue
            in_scope.add(current)
            stack.extend(children.get(current, []))

        return (
            [f for f in folders if f.id in in_scope],
            [i for i in images if i.folder_id in in_scope],
        )

    # =========================================================================
    # FACT COLLECTION
    # =========================================================================

    def collect_facts(self) -> Iterator[Fact]:
        """
        Flatten the store into facts, in a fixed order: folders, images,
        entity types, containment, hierarchy, entity annotations, relations.
        """
        folders, images = self._scope()
        vocabulary = self.store.get_vocabulary()
        include_folders = self.settings.include_folders

        if include_folders:
            for folder in folders:
                yield NodeFact(node=folder_node(folder))
        for image in images:
            yield NodeFact(node=image_node(image))
        for entity_type in vocabulary.entity_types:
            yield NodeFact(node=entity_type_node(entity_type))

        if include_folders:
            folder_ids = {f.id for f in folders}
            for folder in folders:
                if folder.parent_id and folder.parent_id in folder_ids:
                    yield ContainmentFact(folder_id=folder.parent_id, child_id=folder.id, child_is_folder=True)
            for image in images:
                if image.folder_id and image.folder_id in folder_ids:
                    yield ContainmentFact(folder_id=image.folder_id, child_id=image.id, child_is_folder=False)

        for entity_type in vocabulary.entity_types:
            if entity_type.parent_id:
                yield HierarchyFact(parent_type_id=entity_type.parent_id, child_type_id=entity_type.id)

        # Entity annotations, indexed for relation resolution
        entities: Dict[str, Tuple[str, AnnotationBody]] = {}
        links: List[Annotation] = []
        labels: Dict[str, str] = {}

        for image in images:
            for annotation in self.store.get_annotations(image.id):
                if annotation.is_relation_link:
                    links.append(annotation)
                elif annotation.is_relation_meta:
                    link_id = annotation.target_ref()
                    label = next((b.value for b in annotation.bodies() if b.value), None)
                    if link_id and label and link_id not in labels:
                        labels[link_id] = label
                else:
                    bodies = annotation.entity_bodies()
                    if bodies:
                        entities[annotation.id] = (image.id, bodies[0])
                    for body in bodies:
                        yield EntityFact(image_id=image.id, entity_type_id=body.source, annotation_id=annotation.id)

        for link in links:
            source = entities.get(link.target_ref() or "")
            target = entities.get(link.body_ref() or "")
            if source is None or target is None:
                yield SkippedFact(annotation_id=link.id, reason="dangling relation endpoint")
                continue

            (source_image, source_body), (target_image, target_body) = source, target
            yield RelationFact(
                annotation_id=link.id,
                label=labels.get(link.id),
                source_image_id=source_image,
                target_image_id=target_image,
                source_type_id=source_body.source,
                target_type_id=target_body.source,
                source_properties=dict(source_body.properties),
                target_properties=dict(target_body.properties),
            )

    # =========================================================================
    # BUILD
    # =========================================================================

    def build_raw(self) -> RawGraph:
        return reduce_facts(list(self.collect_facts()), self.settings.intra_image_relations)

    def build(self) -> Graph:
        """
        Build a new Graph. Publishes GRAPH_REBUILT and journals the build.

        Raises:
            NodeNotFoundError: If root_folder_id names no folder
        """
        raw = self.build_raw()
        links = aggregate_links(raw.instances)
        graph = Graph(raw.nodes, links)

        report = raw.report
        report.links = graph.link_count
        self.last_report = report

        logger.info(
            f"Built graph: {graph.node_count} nodes, {graph.link_count} links, "
            f"{report.skipped} skipped"
        )
        get_journal().log_graph_rebuilt(graph.node_count, graph.link_count, report.skipped)
        publish_graph_rebuilt(graph.node_count, graph.link_count, report.skipped)
        return graph

    def rebuild(self, settings: KnowledgeGraphSettings) -> Graph:
        """Replace the settings and build from scratch."""
        self.settings = settings
        return self.build()


def build_graph(
    store,
    settings: Optional[KnowledgeGraphSettings] = None,
) -> Tuple[Graph, BuildReport]:
    """One-shot build. Returns the graph and its build report."""
    builder = GraphBuilder(store, settings)
    graph = builder.build()
    return graph, builder.last_report
