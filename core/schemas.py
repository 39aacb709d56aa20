"""
ANNOGRAPH SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure sentences).

This module defines two families of structures:
- The annotation model: what the Annotation Store hands us (folders,
  images, W3C-like annotations, the entity/relationship vocabulary)
- The graph model: what the engine produces (nodes, primitives, raw
  relation instances, composite links, statistics)

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. FROZEN GRAPH: Graph-side structs are immutable once built; a rebuild
   replaces them wholesale
4. STRING IDS: Nodes and links reference each other by stable string ids,
   never by object identity
"""
import msgspec
from typing import Optional, Dict, Any, List, Tuple, Union

from core.ontology import (
    NodeType,
    PrimitiveType,
    MOTIVATION_LINKING,
    MOTIVATION_TAGGING,
    PURPOSE_CLASSIFYING,
)


# =============================================================================
# ANNOTATION MODEL (Annotation Store shapes)
# =============================================================================

class Folder(msgspec.Struct, kw_only=True, frozen=True):
    """A folder in the image corpus. The root folder has no parent."""
    id: str
    name: str
    parent_id: Optional[str] = None


class ImageRecord(msgspec.Struct, kw_only=True, frozen=True):
    """An image file. `folder_id` is None for images in the corpus root."""
    id: str
    name: str
    folder_id: Optional[str] = None


class PropertyDefinition(msgspec.Struct, kw_only=True, frozen=True):
    """
    One property on an entity type.

    `type` is one of: text, number, enum, uri, geocoordinate, relation,
    external_authority. Relation properties name their `target_type`.
    """
    name: str
    type: str = "text"
    target_type: Optional[str] = None


class EntityType(msgspec.Struct, kw_only=True, frozen=True):
    """An entity class from the vocabulary, with optional parent class."""
    id: str
    label: Optional[str] = None
    parent_id: Optional[str] = None
    properties: List[PropertyDefinition] = msgspec.field(default_factory=list)

    @property
    def display_label(self) -> str:
        return self.label or self.id


class RelationshipType(msgspec.Struct, kw_only=True, frozen=True):
    """A named relationship type, optionally restricted by domain/range."""
    id: str
    name: str
    domain: Optional[str] = None
    range: Optional[str] = None


class Vocabulary(msgspec.Struct, kw_only=True):
    """Entity and relationship vocabulary."""
    entity_types: List[EntityType] = msgspec.field(default_factory=list)
    relationship_types: List[RelationshipType] = msgspec.field(default_factory=list)

    def get_entity_type(self, type_id: str) -> Optional[EntityType]:
        for entity_type in self.entity_types:
            if entity_type.id == type_id:
                return entity_type
        return None

    def get_descendant_ids(self, type_id: str) -> List[str]:
        """
        Return `type_id` plus the ids of all its (transitive) subtypes.

        Cycles in the parent links are tolerated: every id is visited once.
        """
        children: Dict[str, List[str]] = {}
        for entity_type in self.entity_types:
            if entity_type.parent_id:
                children.setdefault(entity_type.parent_id, []).append(entity_type.id)

        result: List[str] = []
        seen = set()
        stack = [type_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            result.append(current)
            stack.extend(children.get(current, []))
        return result

    def get_ancestor_ids(self, type_id: str) -> List[str]:
        """Return `type_id` plus every (transitive) parent id, nearest first."""
        by_id = {t.id: t for t in self.entity_types}
        result: List[str] = []
        current: Optional[str] = type_id
        while current and current not in result:
            result.append(current)
            entity_type = by_id.get(current)
            current = entity_type.parent_id if entity_type else None
        return result


class AnnotationBody(msgspec.Struct, kw_only=True):
    """
    One body of a W3C-like annotation.

    Entity classification bodies carry purpose "classifying", the entity
    type id in `source` and user-entered `properties`. Relation meta
    annotations carry the relation label in `value`.
    """
    type: Optional[str] = None
    purpose: Optional[str] = None
    source: Optional[str] = None
    value: Optional[str] = None
    properties: Dict[str, Any] = msgspec.field(default_factory=dict)


class Annotation(msgspec.Struct, kw_only=True):
    """
    A W3C-like annotation, discriminated by `motivation`.

    - "linking": a relation link. `target` is the source annotation id,
      `body` is the target annotation id.
    - "tagging": relation metadata. `target` is the link annotation id,
      `body.value` is the relation label.
    - anything else: an entity annotation on an image region.
    """
    id: str
    motivation: Optional[str] = None
    body: Union[str, AnnotationBody, List[AnnotationBody], None] = None
    target: Any = None

    @property
    def is_relation_link(self) -> bool:
        return self.motivation == MOTIVATION_LINKING

    @property
    def is_relation_meta(self) -> bool:
        return self.motivation == MOTIVATION_TAGGING

    def bodies(self) -> List[AnnotationBody]:
        """Structured bodies (string bodies are references, not bodies)."""
        if isinstance(self.body, AnnotationBody):
            return [self.body]
        if isinstance(self.body, list):
            return list(self.body)
        return []

    def entity_bodies(self) -> List[AnnotationBody]:
        """Bodies that classify this annotation as an entity instance."""
        return [
            b for b in self.bodies()
            if b.purpose == PURPOSE_CLASSIFYING and b.source
        ]

    def target_ref(self) -> Optional[str]:
        """The referenced annotation id of a link/meta annotation."""
        if isinstance(self.target, str):
            return self.target
        if isinstance(self.target, dict):
            source = self.target.get("source") or self.target.get("id")
            return source if isinstance(source, str) else None
        return None

    def body_ref(self) -> Optional[str]:
        """The referenced annotation id of a relation link body."""
        if isinstance(self.body, str):
            return self.body
        return None


class ImageAnnotations(msgspec.Struct, kw_only=True):
    """All annotations attached to one image."""
    image_id: str
    annotations: List[Annotation] = msgspec.field(default_factory=list)


class StoreSnapshot(msgspec.Struct, kw_only=True):
    """Complete Annotation Store contents, as loaded from a JSON export."""
    folders: List[Folder] = msgspec.field(default_factory=list)
    images: List[ImageRecord] = msgspec.field(default_factory=list)
    annotations: List[ImageAnnotations] = msgspec.field(default_factory=list)
    vocabulary: Vocabulary = msgspec.field(default_factory=Vocabulary)


# =============================================================================
# GRAPH MODEL (The Engine Output)
# =============================================================================

class GraphNode(msgspec.Struct, kw_only=True, frozen=True):
    """
    A vertex in the knowledge graph.

    `degree` is derived by the DegreeIndex on every build; the builder
    emits nodes with degree 0.
    """
    id: str
    type: str                                  # NodeType.value
    label: str
    degree: int = 0


class RelationPrimitive(msgspec.Struct, kw_only=True, frozen=True):
    """
    One underlying fact that contributed to a link.

    Primitives are never deduplicated: two identical annotations produce
    two primitives and double the link weight.

    Provenance (optional):
    - annotation_id: the annotation that produced this fact
    - data: for relation facts, the source entity type and the property
      values of the source and target entity bodies
    """
    type: str                                  # PrimitiveType.value
    value: Optional[str] = None
    annotation_id: Optional[str] = None
    data: Dict[str, Any] = msgspec.field(default_factory=dict)


class RelationInstance(msgspec.Struct, kw_only=True, frozen=True):
    """A raw, unaggregated relationship between two node ids."""
    source: str
    target: str
    primitive: RelationPrimitive


class GraphLink(msgspec.Struct, kw_only=True, frozen=True):
    """
    Composite edge between two node ids.

    Weight and type-set are derived from the primitives, never stored.
    """
    source: str
    target: str
    primitives: Tuple[RelationPrimitive, ...]

    @property
    def weight(self) -> int:
        return len(self.primitives)

    @property
    def types(self) -> Tuple[str, ...]:
        """Distinct primitive types, in first-seen order."""
        seen: Dict[str, None] = {}
        for p in self.primitives:
            seen.setdefault(p.type, None)
        return tuple(seen)

    @property
    def values(self) -> Tuple[str, ...]:
        """Distinct primitive values (relation labels), in first-seen order."""
        seen: Dict[str, None] = {}
        for p in self.primitives:
            if p.value:
                seen.setdefault(p.value, None)
        return tuple(seen)

    @property
    def is_self_loop(self) -> bool:
        return self.source == self.target

    @property
    def is_homogeneous(self) -> bool:
        """True if every primitive shares one type."""
        return len(self.types) == 1

    def touches(self, node_id: str) -> bool:
        return self.source == node_id or self.target == node_id

    def other_end(self, node_id: str) -> str:
        return self.target if self.source == node_id else self.source


class GraphStats(msgspec.Struct, kw_only=True, frozen=True):
    """Degree and weight ranges, computed once per build."""
    min_degree: int = 0
    max_degree: int = 0
    min_link_weight: int = 0
    max_link_weight: int = 0


class RelatedAnnotation(msgspec.Struct, kw_only=True, frozen=True):
    """Provenance of one inbound relation pointing at an entity instance."""
    annotation_id: Optional[str]
    relation_name: Optional[str]
    source_entity_type: Optional[str]


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders, reused across the application

_json_encoder = msgspec.json.Encoder()
_snapshot_decoder = msgspec.json.Decoder(type=StoreSnapshot)
_node_list_decoder = msgspec.json.Decoder(type=List[GraphNode])
_link_list_decoder = msgspec.json.Decoder(type=List[GraphLink])


def serialize_nodes(nodes: List[GraphNode]) -> bytes:
    """Serialize a list of GraphNode to JSON bytes."""
    return _json_encoder.encode(nodes)


def deserialize_nodes(data: bytes) -> List[GraphNode]:
    """Deserialize JSON bytes to a list of GraphNode."""
    return _node_list_decoder.decode(data)


def serialize_links(links: List[GraphLink]) -> bytes:
    """Serialize a list of GraphLink to JSON bytes."""
    return _json_encoder.encode(links)


def deserialize_links(data: bytes) -> List[GraphLink]:
    """Deserialize JSON bytes to a list of GraphLink."""
    return _link_list_decoder.decode(data)


def decode_snapshot(data: bytes) -> StoreSnapshot:
    """Decode a JSON store export. Raises msgspec.ValidationError on bad shape."""
    return _snapshot_decoder.decode(data)


def encode_snapshot(snapshot: StoreSnapshot) -> bytes:
    """Encode store contents as JSON bytes."""
    return _json_encoder.encode(snapshot)


# =============================================================================
# NODE FACTORIES
# =============================================================================

def folder_node(folder: Folder) -> GraphNode:
    return GraphNode(id=folder.id, type=NodeType.FOLDER.value, label=folder.name)


def image_node(image: ImageRecord) -> GraphNode:
    return GraphNode(id=image.id, type=NodeType.IMAGE.value, label=image.name)


def entity_type_node(entity_type: EntityType) -> GraphNode:
    return GraphNode(
        id=entity_type.id,
        type=NodeType.ENTITY_TYPE.value,
        label=entity_type.display_label,
    )


def primitive(
    type: PrimitiveType,
    value: Optional[str] = None,
    annotation_id: Optional[str] = None,
    **data: Any,
) -> RelationPrimitive:
    """Shorthand factory for a RelationPrimitive."""
    return RelationPrimitive(
        type=type.value,
        value=value,
        annotation_id=annotation_id,
        data=dict(data),
    )
