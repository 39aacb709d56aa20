"""
ANNOGRAPH VISUALIZATION CORE - The Renderer's Data Model

Everything the Renderer needs to draw a built Graph, computed server-side:
- node colour, size, label and visibility
- link colour (per GraphMode), width, label, dash pattern and curvature
- emphasis opacity from the NeighborhoodIndex
- GraphSnapshot plus Arrow IPC export via polars

Key Principle: link styling is driven by the link's primitive type-set. A
link whose primitives span more than one type has no single type, so it
gets the default colour and no label.
"""
import msgspec
from typing import Optional, Dict, List, Any, Tuple, FrozenSet
from datetime import datetime, timezone
import io

import polars as pl

from core.ontology import GraphMode, NodeType, PrimitiveType, RELATIONS_MODE_VISIBLE
from core.schemas import GraphNode, GraphLink
from core.graph_db import Graph
from core.degree_index import MIN_NODE_SIZE, MAX_NODE_SIZE, MIN_LINK_WIDTH, MAX_LINK_WIDTH
from core.neighborhood import NeighborhoodIndex
from infrastructure.config import KnowledgeGraphSettings


# =============================================================================
# COLOR PALETTES (Consistent across views)
# =============================================================================

NODE_COLORS: Dict[str, str] = {
    NodeType.IMAGE.value: "#2A9D8F",        # Teal - images
    NodeType.FOLDER.value: "#F4A261",       # Orange - folders
    NodeType.ENTITY_TYPE.value: "#E63946",  # Red - vocabulary classes
    "default": "#6C757D",
}

LINK_COLORS: Dict[str, str] = {
    PrimitiveType.FOLDER_CONTAINS_SUBFOLDER.value: "#F4A261",
    PrimitiveType.FOLDER_CONTAINS_IMAGE.value: "#E9C46A",
    PrimitiveType.IS_PARENT_TYPE_OF.value: "#457B9D",
    PrimitiveType.HAS_ENTITY_ANNOTATION.value: "#A8DADC",
    PrimitiveType.HAS_RELATED_ANNOTATION_IN.value: "#E76F51",
    PrimitiveType.IS_RELATED_VIA_ANNOTATION.value: "#E83E8C",
    "default": "#ADB5BD",
}

TRANSPARENT = "#00000000"

# Line dash patterns (screen units) for single-primitive links
LINK_DASHES: Dict[str, Tuple[float, ...]] = {
    PrimitiveType.FOLDER_CONTAINS_SUBFOLDER.value: (2.0, 2.0),
    PrimitiveType.FOLDER_CONTAINS_IMAGE.value: (2.0, 2.0),
    PrimitiveType.IS_PARENT_TYPE_OF.value: (6.0, 3.0),
}

SELF_LOOP_CURVATURE = 0.5


# =============================================================================
# LINK RESOLUTION
# =============================================================================

def _plural(weight: int, noun: str) -> str:
    return f"{weight} {noun}{'' if weight == 1 else 's'}"


def link_label(link: GraphLink) -> Optional[str]:
    """Tooltip text for a link. Multi-type links have none."""
    if not link.is_homogeneous:
        return None

    t = link.types[0]
    relations = ", ".join(link.values)

    if t == PrimitiveType.FOLDER_CONTAINS_SUBFOLDER.value:
        return "is subfolder"
    if t == PrimitiveType.FOLDER_CONTAINS_IMAGE.value:
        return "image is in folder"
    if t == PrimitiveType.IS_PARENT_TYPE_OF.value:
        return "entity class hierarchy"
    if t == PrimitiveType.HAS_ENTITY_ANNOTATION.value:
        return f"image has {link.weight} entity annotations"
    if t == PrimitiveType.HAS_RELATED_ANNOTATION_IN.value:
        if link.is_self_loop:
            return f"{_plural(link.weight, 'relation')} inside this image ({relations})"
        return f"{_plural(link.weight, 'relation')} between images ({relations})"
    if t == PrimitiveType.IS_RELATED_VIA_ANNOTATION.value:
        if link.is_self_loop:
            return f"{_plural(link.weight, 'relation')} between entities of this class ({relations})"
        return f"connected via {_plural(link.weight, 'relation')} ({relations})"
    return None


def link_color(link: GraphLink, mode: GraphMode = GraphMode.HIERARCHY) -> str:
    """
    HIERARCHY: every single-type link gets its type colour.
    RELATIONS: only containment and relation links are coloured; the rest
    are transparent. Multi-type links get the default colour in both modes.
    """
    if not link.is_homogeneous:
        return LINK_COLORS["default"]

    t = link.types[0]
    if mode == GraphMode.RELATIONS and t not in RELATIONS_MODE_VISIBLE:
        return TRANSPARENT
    return LINK_COLORS.get(t, LINK_COLORS["default"])


def link_dash(link: GraphLink, zoom: float = 1.0) -> Optional[Tuple[float, ...]]:
    """Dash pattern for single-primitive links, scaled by zoom. None = solid."""
    if link.weight != 1:
        return None
    pattern = LINK_DASHES.get(link.primitives[0].type)
    if pattern is None:
        return None
    return tuple(n / zoom for n in pattern)


def link_curvature(link: GraphLink) -> float:
    return SELF_LOOP_CURVATURE if link.is_self_loop else 0.0


def link_width(graph: Graph, link: GraphLink) -> float:
    return graph.degree_index.width(link, MIN_LINK_WIDTH, MAX_LINK_WIDTH)


def node_size(graph: Graph, node: GraphNode) -> float:
    return graph.degree_index.size(node, MIN_NODE_SIZE, MAX_NODE_SIZE)


# =============================================================================
# NODE RESOLUTION
# =============================================================================

def node_color(node: GraphNode) -> str:
    return NODE_COLORS.get(node.type, NODE_COLORS["default"])


def node_visibility(node: GraphNode, settings: KnowledgeGraphSettings) -> bool:
    """Isolated nodes are hidden only when the setting asks for it."""
    return node.degree > 0 if settings.hide_isolated_nodes else True


def node_label(node: GraphNode, settings: KnowledgeGraphSettings) -> Optional[str]:
    """Display label, or None if labels are hidden for this node."""
    if settings.hide_all_labels or node.type in settings.hide_node_type_labels:
        return None
    return node.label or node.id


# =============================================================================
# VISUALIZATION DATA STRUCTURES
# =============================================================================

class VizNode(msgspec.Struct, kw_only=True):
    """Render-ready node."""
    id: str
    type: str
    label: Optional[str]
    color: str
    size: float = MIN_NODE_SIZE
    degree: int = 0
    opacity: float = 1.0
    visible: bool = True


class VizLink(msgspec.Struct, kw_only=True):
    """Render-ready link."""
    source: str
    target: str
    types: List[str]
    color: str
    width: float = MIN_LINK_WIDTH
    weight: int = 1
    label: Optional[str] = None
    dash: Optional[List[float]] = None
    curvature: float = 0.0


class GraphSnapshot(msgspec.Struct, kw_only=True):
    """
    Complete render state of one Graph under one set of settings.
    """
    timestamp: str
    node_count: int
    link_count: int
    nodes: List[VizNode]
    links: List[VizLink]

    graph_mode: str = GraphMode.HIERARCHY.value
    min_degree: int = 0
    max_degree: int = 0
    min_link_weight: int = 0
    max_link_weight: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return msgspec.to_builtins(self)


def create_snapshot(
    graph: Graph,
    settings: Optional[KnowledgeGraphSettings] = None,
    emphasized: Optional[FrozenSet[str]] = None,
) -> GraphSnapshot:
    """
    Create a GraphSnapshot from a built Graph.

    Args:
        graph: The current Graph
        settings: Mode, label and visibility settings
        emphasized: Output of NeighborhoodIndex.emphasized(); None = all opaque
    """
    settings = settings or KnowledgeGraphSettings()

    nodes = [
        VizNode(
            id=n.id,
            type=n.type,
            label=node_label(n, settings),
            color=node_color(n),
            size=node_size(graph, n),
            degree=n.degree,
            opacity=NeighborhoodIndex.opacity(n.id, emphasized),
            visible=node_visibility(n, settings),
        )
        for n in graph.nodes
    ]

    links = []
    for link in graph.links:
        dash = link_dash(link)
        links.append(VizLink(
            source=link.source,
            target=link.target,
            types=list(link.types),
            color=link_color(link, settings.graph_mode),
            width=link_width(graph, link),
            weight=link.weight,
            label=link_label(link),
            dash=list(dash) if dash else None,
            curvature=link_curvature(link),
        ))

    stats = graph.stats
    return GraphSnapshot(
        timestamp=datetime.now(timezone.utc).isoformat(),
        node_count=len(nodes),
        link_count=len(links),
        nodes=nodes,
        links=links,
        graph_mode=GraphMode(settings.graph_mode).value,
        min_degree=stats.min_degree,
        max_degree=stats.max_degree,
        min_link_weight=stats.min_link_weight,
        max_link_weight=stats.max_link_weight,
    )


# =============================================================================
# ARROW IPC SERIALIZATION
# =============================================================================

def serialize_to_arrow(snapshot: GraphSnapshot) -> Tuple[bytes, bytes]:
    """
    Serialize GraphSnapshot to Apache Arrow IPC format.

    Returns:
        Tuple of (nodes_arrow_bytes, links_arrow_bytes)
    """
    nodes_df = pl.DataFrame(
        {
            "id": [n.id for n in snapshot.nodes],
            "type": [n.type for n in snapshot.nodes],
            "label": [n.label for n in snapshot.nodes],
            "color": [n.color for n in snapshot.nodes],
            "size": [n.size for n in snapshot.nodes],
            "degree": [n.degree for n in snapshot.nodes],
            "opacity": [n.opacity for n in snapshot.nodes],
            "visible": [n.visible for n in snapshot.nodes],
        },
        schema={
            "id": pl.Utf8,
            "type": pl.Utf8,
            "label": pl.Utf8,
            "color": pl.Utf8,
            "size": pl.Float64,
            "degree": pl.Int64,
            "opacity": pl.Float64,
            "visible": pl.Boolean,
        },
    )

    links_df = pl.DataFrame(
        {
            "source": [e.source for e in snapshot.links],
            "target": [e.target for e in snapshot.links],
            "types": [e.types for e in snapshot.links],
            "color": [e.color for e in snapshot.links],
            "width": [e.width for e in snapshot.links],
            "weight": [e.weight for e in snapshot.links],
            "label": [e.label for e in snapshot.links],
            "curvature": [e.curvature for e in snapshot.links],
        },
        schema={
            "source": pl.Utf8,
            "target": pl.Utf8,
            "types": pl.List(pl.Utf8),
            "color": pl.Utf8,
            "width": pl.Float64,
            "weight": pl.Int64,
            "label": pl.Utf8,
            "curvature": pl.Float64,
        },
    )

    nodes_buffer = io.BytesIO()
    links_buffer = io.BytesIO()

    nodes_df.write_ipc(nodes_buffer)
    links_df.write_ipc(links_buffer)

    return nodes_buffer.getvalue(), links_buffer.getvalue()
