"""
ANNOGRAPH ONTOLOGY - The Dictionary of the Knowledge Graph

If schemas.py is the Grammar (how we structure facts and links),
ontology.py is the Dictionary (the words we can use).

This module defines:
- NodeType: the three kinds of vertices (images, folders, entity types)
- PrimitiveType: the fixed set of underlying facts that can produce a link
- ObjectType / ConditionType / Comparator: the search vocabulary
- GraphMode: which primitive types the renderer foregrounds

Key Principle: a link is never typed directly. It is typed by the
primitives that contributed to it, so a link whose primitives span several
types has no single type at all.
"""
from typing import FrozenSet, Literal
from enum import Enum


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeType(str, Enum):
    """Types of nodes in the knowledge graph."""
    IMAGE = "IMAGE"                  # An image in the corpus
    FOLDER = "FOLDER"                # A folder (or sub-folder) of images
    ENTITY_TYPE = "ENTITY_TYPE"      # A class from the entity vocabulary


class PrimitiveType(str, Enum):
    """
    Types of underlying facts that contribute to a link.

    Containment and hierarchy facts come from the folder tree and the
    vocabulary. The remaining three are derived from annotations.
    """
    FOLDER_CONTAINS_SUBFOLDER = "FOLDER_CONTAINS_SUBFOLDER"    # folder -> folder
    FOLDER_CONTAINS_IMAGE = "FOLDER_CONTAINS_IMAGE"            # folder -> image
    IS_PARENT_TYPE_OF = "IS_PARENT_TYPE_OF"                    # entity type -> entity type
    HAS_ENTITY_ANNOTATION = "HAS_ENTITY_ANNOTATION"            # image -> entity type
    HAS_RELATED_ANNOTATION_IN = "HAS_RELATED_ANNOTATION_IN"    # image -> image
    IS_RELATED_VIA_ANNOTATION = "IS_RELATED_VIA_ANNOTATION"    # entity type -> entity type


class ObjectType(str, Enum):
    """Node types a search session can look for."""
    IMAGE = "IMAGE"
    FOLDER = "FOLDER"


class ConditionType(str, Enum):
    """Leading keyword of a search sentence."""
    WHERE = "WHERE"


class Comparator(str, Enum):
    """Comparison operators for simple sentences."""
    IS = "is"
    IS_NOT = "is_not"
    CONTAINS = "contains"
    FUZZY = "fuzzy"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class GraphMode(str, Enum):
    """
    Rendering mode.

    HIERARCHY: folders, class hierarchy and annotations are all coloured.
    RELATIONS: only containment and relation links are coloured, the rest
               are drawn transparent.
    """
    HIERARCHY = "HIERARCHY"
    RELATIONS = "RELATIONS"


class ConditionState(str, Enum):
    """Resolution state of a single search condition."""
    INCOMPLETE = "INCOMPLETE"        # Sentence not yet well-formed
    RESOLVING = "RESOLVING"          # Waiting on an asynchronous resolution
    RESOLVED = "RESOLVED"            # matches available (possibly empty)
    FAILED = "FAILED"                # Resolution failed, matches stay undefined


# =============================================================================
# Type Aliases
# =============================================================================

EdgeDirection = Literal["incoming", "outgoing", "any"]

# Comparators that need no value to form a complete predicate
VALUELESS_COMPARATORS: FrozenSet[str] = frozenset({
    Comparator.IS_EMPTY.value,
    Comparator.IS_NOT_EMPTY.value,
})

# Primitive types that represent relation annotations
RELATION_PRIMITIVES: FrozenSet[str] = frozenset({
    PrimitiveType.HAS_RELATED_ANNOTATION_IN.value,
    PrimitiveType.IS_RELATED_VIA_ANNOTATION.value,
})

# Primitive types coloured in RELATIONS mode
RELATIONS_MODE_VISIBLE: FrozenSet[str] = frozenset({
    PrimitiveType.HAS_RELATED_ANNOTATION_IN.value,
    PrimitiveType.IS_RELATED_VIA_ANNOTATION.value,
    PrimitiveType.FOLDER_CONTAINS_SUBFOLDER.value,
    PrimitiveType.FOLDER_CONTAINS_IMAGE.value,
})


# =============================================================================
# ANNOTATION VOCABULARY
# =============================================================================

# W3C annotation motivations that discriminate relation annotations
MOTIVATION_LINKING = "linking"
MOTIVATION_TAGGING = "tagging"

# Body purpose marking an entity classification
PURPOSE_CLASSIFYING = "classifying"


def validate_node_type(type_str: str) -> bool:
    """Check if a string is a valid NodeType value."""
    return type_str in {nt.value for nt in NodeType}


def validate_primitive_type(type_str: str) -> bool:
    """Check if a string is a valid PrimitiveType value."""
    return type_str in {pt.value for pt in PrimitiveType}
