"""
ANNOGRAPH SEARCH - Sentences, Completeness and Condition Resolution

A search query is a list of conditions over one object type (IMAGE or
FOLDER). Each condition wraps a Sentence, a tagged variant:

    SimpleSentence  {condition_type, attribute, comparator, value}
    NestedSentence  {condition_type, value}

On the wire the variant is discriminated by the "kind" field:

    {"kind": "simple", "condition_type": "WHERE", "attribute": "folder", ...}
    {"kind": "nested", "condition_type": "WHERE", "value": "Person"}

Attributes of a simple sentence:
- "folder":          the containing folder (id or name)
- "entity_type":     entity types annotated on an image, including supertypes
- "relation":        labels of relations an image takes part in
- "property:<name>": entity property values, resolved through the
                     Annotation Store search index (may suspend)

A nested WHERE sentence selects every node linked to the entity type
named in its value.
"""
from difflib import SequenceMatcher
from typing import Dict, Iterable, Optional, Set, Union, FrozenSet, List

import msgspec

from core.ontology import (
    Comparator,
    ConditionType,
    ConditionState,
    NodeType,
    ObjectType,
    PrimitiveType,
    VALUELESS_COMPARATORS,
)
from core.schemas import Vocabulary
from core.graph_db import Graph


ATTRIBUTE_FOLDER = "folder"
ATTRIBUTE_ENTITY_TYPE = "entity_type"
ATTRIBUTE_RELATION = "relation"
PROPERTY_PREFIX = "property:"

GRAPH_ATTRIBUTES = frozenset({ATTRIBUTE_FOLDER, ATTRIBUTE_ENTITY_TYPE, ATTRIBUTE_RELATION})

DEFAULT_FUZZY_THRESHOLD = 0.6


class UnsupportedSentenceError(ValueError):
    """Raised when a complete sentence names an attribute nobody can resolve."""
    pass


# =============================================================================
# SENTENCES (Tagged Variant)
# =============================================================================

class SimpleSentence(msgspec.Struct, kw_only=True, frozen=True, tag="simple", tag_field="kind"):
    condition_type: Optional[ConditionType] = None
    attribute: Optional[str] = None
    comparator: Optional[Comparator] = None
    value: Optional[str] = None


class NestedSentence(msgspec.Struct, kw_only=True, frozen=True, tag="nested", tag_field="kind"):
    condition_type: Optional[ConditionType] = None
    value: Optional[str] = None


Sentence = Union[SimpleSentence, NestedSentence]

# Seeded whenever an object type is chosen or a condition is added
EMPTY_SENTENCE = SimpleSentence(condition_type=ConditionType.WHERE)


def is_complete(sentence: Sentence) -> bool:
    """
    True if the sentence is well-formed enough to resolve.

    Simple: condition type, attribute and comparator set.
    Nested: condition type and value set.
    """
    match sentence:
        case SimpleSentence(condition_type=ct, attribute=attr, comparator=cmp):
            return ct is not None and bool(attr) and cmp is not None
        case NestedSentence(condition_type=ct, value=value):
            return ct is not None and bool(value)
    raise TypeError(f"Not a sentence: {sentence!r}")


def needs_store(sentence: Sentence) -> bool:
    """True if resolving the sentence requires the store's search index."""
    match sentence:
        case SimpleSentence(attribute=attr):
            return bool(attr) and attr.startswith(PROPERTY_PREFIX)
        case NestedSentence():
            return False
    raise TypeError(f"Not a sentence: {sentence!r}")


def property_name(attribute: str) -> str:
    """"property:title" -> "title"."""
    return attribute[len(PROPERTY_PREFIX):] if attribute.startswith(PROPERTY_PREFIX) else attribute


_sentence_decoder = msgspec.json.Decoder(type=Sentence)
_sentence_encoder = msgspec.json.Encoder()


def decode_sentence(data: bytes) -> Sentence:
    return _sentence_decoder.decode(data)


def encode_sentence(sentence: Sentence) -> bytes:
    return _sentence_encoder.encode(sentence)


# =============================================================================
# CONDITIONS
# =============================================================================

class Condition(msgspec.Struct, kw_only=True):
    """
    One clause of a query.

    `matches` is None while the sentence is incomplete, while an
    asynchronous resolution is in flight, and after a failed resolution.
    `generation` is bumped on every edit; a resolution carrying an older
    generation is stale.
    """
    id: str
    sentence: Sentence
    matches: Optional[FrozenSet[str]] = None
    generation: int = 0
    state: ConditionState = ConditionState.INCOMPLETE
    error: Optional[str] = None


def intersect_matches(sets: Iterable[Optional[FrozenSet[str]]]) -> Optional[FrozenSet[str]]:
    """
    Left fold over match sets, seeded with the first.

    Returns None if there are no sets or any set is unresolved.
    """
    result: Optional[FrozenSet[str]] = None
    seeded = False
    for matches in sets:
        if matches is None:
            return None
        result = matches if not seeded else result & matches
        seeded = True
    return result


# =============================================================================
# COMPARATORS
# =============================================================================

def normalize(text: str) -> str:
    """Lowercase, strip, collapse whitespace."""
    return " ".join(text.lower().strip().split())


def similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, normalize(a), normalize(b)).ratio()


def compare(
    values: Iterable[str],
    comparator: Comparator,
    value: Optional[str] = None,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> bool:
    """
    Apply a comparator to the set of values one node carries for an attribute.

    is / contains / fuzzy hold if any value matches; is_not holds if none
    equals `value`; is_empty / is_not_empty ignore `value`.
    """
    values = [v for v in values if v is not None and v != ""]

    if comparator == Comparator.IS_EMPTY:
        return not values
    if comparator == Comparator.IS_NOT_EMPTY:
        return bool(values)

    if value is None:
        return False

    if comparator == Comparator.IS:
        return any(v == value for v in values)
    if comparator == Comparator.IS_NOT:
        return all(v != value for v in values)
    if comparator == Comparator.CONTAINS:
        needle = normalize(value)
        return any(needle in normalize(v) for v in values)
    if comparator == Comparator.FUZZY:
        needle = normalize(value)
        return any(
            needle in normalize(v) or similarity(v, value) >= threshold
            for v in values
        )
    raise UnsupportedSentenceError(f"Unknown comparator: {comparator}")


# =============================================================================
# GRAPH RESOLUTION (Synchronous)
# =============================================================================

def _folder_values(graph: Graph, node_ids: FrozenSet[str]) -> Dict[str, Set[str]]:
    values: Dict[str, Set[str]] = {node_id: set() for node_id in node_ids}
    for folder in graph.get_nodes_by_type(NodeType.FOLDER.value):
        for link in graph.get_outgoing_links(folder.id):
            if link.target in values and link.target != folder.id:
                values[link.target].update((folder.id, folder.label))
    return values


def _entity_type_values(
    graph: Graph,
    node_ids: FrozenSet[str],
    vocabulary: Optional[Vocabulary],
) -> Dict[str, Set[str]]:
    values: Dict[str, Set[str]] = {node_id: set() for node_id in node_ids}
    annotated = PrimitiveType.HAS_ENTITY_ANNOTATION.value
    for link in graph.links:
        if annotated not in link.types:
            continue
        for image_id, type_id in ((link.source, link.target), (link.target, link.source)):
            if image_id not in values:
                continue
            lineage = vocabulary.get_ancestor_ids(type_id) if vocabulary else [type_id]
            for ancestor in lineage:
                values[image_id].add(ancestor)
                if graph.has_node(ancestor):
                    values[image_id].add(graph.get_node(ancestor).label)
    return values


def _relation_values(graph: Graph, node_ids: FrozenSet[str]) -> Dict[str, Set[str]]:
    values: Dict[str, Set[str]] = {node_id: set() for node_id in node_ids}
    related = PrimitiveType.IS_RELATED_VIA_ANNOTATION.value
    for link in graph.links:
        for p in link.primitives:
            if p.type != related or not p.value:
                continue
            for key in ("source_image", "target_image"):
                image_id = p.data.get(key)
                if image_id in values:
                    values[image_id].add(p.value)
    return values


def resolve_in_graph(
    sentence: Sentence,
    graph: Graph,
    object_type: str,
    vocabulary: Optional[Vocabulary] = None,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> FrozenSet[str]:
    """
    Resolve a complete, graph-based sentence to a set of node ids.

    Raises:
        UnsupportedSentenceError: For store-backed or unknown attributes
    """
    candidates = graph.node_ids(object_type)

    match sentence:
        case NestedSentence(value=value):
            return frozenset(graph.neighbor_ids(value)) if value else frozenset()

        case SimpleSentence(attribute=attribute, comparator=comparator, value=value):
            if attribute == ATTRIBUTE_FOLDER:
                values = _folder_values(graph, candidates)
            elif attribute == ATTRIBUTE_ENTITY_TYPE:
                values = _entity_type_values(graph, candidates, vocabulary)
            elif attribute == ATTRIBUTE_RELATION:
                values = _relation_values(graph, candidates)
            else:
                raise UnsupportedSentenceError(f"Attribute not resolvable from graph: {attribute}")

            return frozenset(
                node_id for node_id, node_values in values.items()
                if compare(node_values, comparator, value, threshold)
            )

    raise TypeError(f"Not a sentence: {sentence!r}")


def available_attributes(
    vocabulary: Optional[Vocabulary] = None,
    object_type: str = ObjectType.IMAGE.value,
) -> List[str]:
    """
    Attributes a simple sentence may name.

    Property attributes are offered for IMAGE queries only; the store
    answers property searches with image ids.
    """
    attributes = [ATTRIBUTE_FOLDER, ATTRIBUTE_ENTITY_TYPE, ATTRIBUTE_RELATION]
    if vocabulary and object_type == ObjectType.IMAGE.value:
        names: Dict[str, None] = {}
        for entity_type in vocabulary.entity_types:
            for definition in entity_type.properties:
                names.setdefault(definition.name, None)
        attributes.extend(PROPERTY_PREFIX + name for name in names)
    return attributes


def comparator_needs_value(comparator: Comparator) -> bool:
    return comparator.value not in VALUELESS_COMPARATORS
