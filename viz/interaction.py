"""
ANNOGRAPH INTERACTION STATE - Pins and Layout Reheat

Layout coordinates are the one piece of mutable state tied to graph
nodes. They live here, outside the immutable GraphNode, keyed by node id.

Pinning fixes a node's position (fx, fy) so the force simulation leaves it
alone. unpin_all() releases every pinned node together and triggers a
single simulation reheat.
"""
import logging
from typing import Callable, Dict, List, Optional

import msgspec

from infrastructure.event_bus import publish_pins_released
from infrastructure.logger import get_logger as get_journal


logger = logging.getLogger(__name__)


class NodePosition(msgspec.Struct, kw_only=True):
    """Renderer-owned layout slots for one node."""
    x: Optional[float] = None
    y: Optional[float] = None
    fx: Optional[float] = None
    fy: Optional[float] = None

    @property
    def is_pinned(self) -> bool:
        return self.fx is not None or self.fy is not None


class PinBoard:
    """
    Layout positions and pin state for the current graph.

    Usage:
        board = PinBoard(reheat=simulation.reheat)
        board.move("img-1", 10.0, 20.0)
        board.pin("img-1")
        board.unpin_all()         # one reheat, however many pins
    """

    def __init__(self, reheat: Optional[Callable[[], None]] = None):
        self._positions: Dict[str, NodePosition] = {}
        self._pinned: List[str] = []
        self._reheat = reheat

    def position(self, node_id: str) -> NodePosition:
        """Position record for a node, created on first access."""
        if node_id not in self._positions:
            self._positions[node_id] = NodePosition()
        return self._positions[node_id]

    def move(self, node_id: str, x: float, y: float) -> None:
        pos = self.position(node_id)
        pos.x, pos.y = x, y

    def pin(self, node_id: str, x: Optional[float] = None, y: Optional[float] = None) -> None:
        """
        Fix a node at (x, y), or at its current position.

        Raises:
            ValueError: If no coordinates are given and none are known
        """
        pos = self.position(node_id)
        if x is not None and y is not None:
            pos.x, pos.y = x, y
        elif pos.x is None or pos.y is None:
            raise ValueError(f"No position known for {node_id}")
        pos.fx, pos.fy = pos.x, pos.y
        if node_id not in self._pinned:
            self._pinned.append(node_id)

    @property
    def pinned(self) -> List[str]:
        return list(self._pinned)

    def unpin_all(self) -> List[str]:
        """
        Release every pinned node, then reheat once.

        Returns the released ids. With nothing pinned this is a no-op and
        no reheat happens.
        """
        released = self._pinned
        if not released:
            return []

        for node_id in released:
            pos = self._positions[node_id]
            pos.fx = None
            pos.fy = None
        self._pinned = []

        if self._reheat is not None:
            self._reheat()

        logger.debug(f"Released {len(released)} pinned nodes")
        get_journal().log_pins_released(released)
        publish_pins_released(list(released))
        return list(released)

    def retain(self, node_ids) -> None:
        """Drop positions of nodes that no longer exist after a rebuild."""
        keep = set(node_ids)
        self._positions = {k: v for k, v in self._positions.items() if k in keep}
        self._pinned = [n for n in self._pinned if n in keep]
