"""
ANNOGRAPH NEIGHBORHOOD INDEX - Hover, Selection and Inbound Relations

Read-only queries over one built Graph:
- get_linked_nodes(id): direct neighbours in either direction
- get_inbound_links(entity_type_id, property_filter): who points at an
  entity instance, with provenance
- emphasized(hovered, selected, query): the union the Renderer keeps
  opaque; everything else is drawn at DEEMPHASIZED_OPACITY, never hidden
"""
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from core.ontology import NodeType, PrimitiveType
from core.schemas import GraphNode, RelatedAnnotation
from core.graph_db import Graph


DEEMPHASIZED_OPACITY = 0.12
EMPHASIZED_OPACITY = 1.0


def _property_matches(properties: Dict[str, Any], property_filter: Dict[str, Any]) -> bool:
    for key, expected in property_filter.items():
        actual = properties.get(key)
        if isinstance(actual, (list, tuple)) and not isinstance(expected, (list, tuple)):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


class NeighborhoodIndex:
    """
    Neighbourhood queries for one Graph.

    Holds the Graph it was built for; a rebuilt Graph needs a new index.
    """

    def __init__(self, graph: Graph):
        self.graph = graph

    def get_linked_nodes(self, node_id: str) -> List[GraphNode]:
        """
        Nodes directly connected to `node_id` via any link, either direction.

        `node_id` itself is included only if it has a self-loop. Unknown
        ids yield an empty list.
        """
        return [self.graph.get_node(n) for n in self.linked_ids(node_id)]

    def linked_ids(self, node_id: str) -> Set[str]:
        return self.graph.neighbor_ids(node_id)

    def neighbourhood(self, node_id: str) -> Set[str]:
        """`node_id` plus its linked ids."""
        if not self.graph.has_node(node_id):
            return set()
        return {node_id} | self.linked_ids(node_id)

    def get_inbound_links(
        self,
        entity_type_id: str,
        property_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RelatedAnnotation]:
        """
        Provenance of relations pointing AT `entity_type_id` whose target
        entity carries every key/value in `property_filter`.

        An empty filter matches every inbound relation.
        """
        property_filter = property_filter or {}
        related = PrimitiveType.IS_RELATED_VIA_ANNOTATION.value
        result: List[RelatedAnnotation] = []

        for link in self.graph.get_links_for(entity_type_id):
            for p in link.primitives:
                if p.type != related:
                    continue
                if p.data.get("target_entity_type") != entity_type_id:
                    continue
                if not _property_matches(p.data.get("target_properties") or {}, property_filter):
                    continue
                result.append(RelatedAnnotation(
                    annotation_id=p.annotation_id,
                    relation_name=p.value,
                    source_entity_type=p.data.get("source_entity_type"),
                ))
        return result

    def annotated_images(self, entity_type_id: str) -> List[GraphNode]:
        """Images linked to an entity type."""
        return [
            n for n in self.get_linked_nodes(entity_type_id)
            if n.type == NodeType.IMAGE.value
        ]

    def emphasized(
        self,
        hovered: Optional[str] = None,
        selected: Iterable[str] = (),
        query: Optional[Iterable[str]] = None,
    ) -> Optional[FrozenSet[str]]:
        """
        Union of the hover neighbourhood, every selected node's
        neighbourhood and the active query's matches.

        Returns None when nothing is hovered, nothing is selected and no
        query is active: every node renders fully opaque.
        """
        selected = list(selected)
        if hovered is None and not selected and query is None:
            return None

        result: Set[str] = set()
        if hovered is not None:
            result |= self.neighbourhood(hovered)
        for node_id in selected:
            result |= self.neighbourhood(node_id)
        if query is not None:
            result |= set(query)
        return frozenset(result)

    @staticmethod
    def opacity(node_id: str, emphasized: Optional[FrozenSet[str]]) -> float:
        if emphasized is None or node_id in emphasized:
            return EMPHASIZED_OPACITY
        return DEEMPHASIZED_OPACITY
