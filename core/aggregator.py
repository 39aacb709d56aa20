"""
ANNOGRAPH LINK AGGREGATOR

Folds raw relation instances into one composite GraphLink per unordered
node pair.

Rules:
- Every instance becomes one primitive, in discovery order
- weight = number of primitives in the group
- The first instance to reach a pair fixes the link direction; later
  instances never re-orient it

Consumers must not assume a canonical direction for symmetric relation
types: (A, B) and (B, A) land on the same link, oriented by whichever came
first.
"""
from typing import Dict, Iterable, List, Tuple

from core.schemas import GraphLink, RelationInstance, RelationPrimitive


PairKey = Tuple[str, str]


def pair_key(a: str, b: str) -> PairKey:
    """Order-independent key for a node pair."""
    return (a, b) if a <= b else (b, a)


class LinkAggregator:
    """
    Incremental aggregator.

    Usage:
        aggregator = LinkAggregator()
        aggregator.add_all(instances)
        links = aggregator.links()
    """

    def __init__(self):
        self._direction: Dict[PairKey, Tuple[str, str]] = {}
        self._primitives: Dict[PairKey, List[RelationPrimitive]] = {}

    def add(self, instance: RelationInstance) -> None:
        key = pair_key(instance.source, instance.target)
        if key not in self._direction:
            self._direction[key] = (instance.source, instance.target)
            self._primitives[key] = []
        self._primitives[key].append(instance.primitive)

    def add_all(self, instances: Iterable[RelationInstance]) -> "LinkAggregator":
        for instance in instances:
            self.add(instance)
        return self

    def links(self) -> List[GraphLink]:
        """Composite links in the order their pairs were first seen."""
        return [
            GraphLink(
                source=source,
                target=target,
                primitives=tuple(self._primitives[key]),
            )
            for key, (source, target) in self._direction.items()
        ]

    def __len__(self) -> int:
        return len(self._direction)


def aggregate_links(instances: Iterable[RelationInstance]) -> List[GraphLink]:
    """One-shot aggregation of a raw instance list."""
    return LinkAggregator().add_all(instances).links()
