"""
ANNOGRAPH VISUALIZATION - Renderer-Facing Data

This package provides:
- core: colours, labels, scaling, snapshots, Arrow export
- interaction: pin state and layout reheat
"""

from viz.core import (
    VizNode,
    VizLink,
    GraphSnapshot,
    create_snapshot,
    serialize_to_arrow,
    link_color,
    link_label,
    node_color,
)
from viz.interaction import NodePosition, PinBoard

__all__ = [
    "VizNode",
    "VizLink",
    "GraphSnapshot",
    "create_snapshot",
    "serialize_to_arrow",
    "link_color",
    "link_label",
    "node_color",
    "NodePosition",
    "PinBoard",
]
