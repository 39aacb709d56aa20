"""
ANNOGRAPH ANNOTATION STORE - The Engine's Only Data Source

The engine never owns persistence. It reads folders, images, annotations
and the vocabulary through the AnnotationStore protocol, and resolves
property-based search conditions through the store's search index.

This module provides:
- AnnotationStore: the protocol the engine consumes
- InMemoryAnnotationStore: a store over a StoreSnapshot, with a property
  search index (exact, substring and difflib-based fuzzy matching)
- load_store(): build an in-memory store from a JSON export

Usage:
    store = load_store("export.json")
    images = await store.search("property:title", Comparator.FUZZY, "mona")
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Protocol, Set, Tuple, Union

import msgspec

from core.ontology import Comparator
from core.schemas import (
    Annotation,
    Folder,
    ImageRecord,
    StoreSnapshot,
    Vocabulary,
    decode_snapshot,
)
from core.search import DEFAULT_FUZZY_THRESHOLD, compare, property_name, similarity, normalize


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when store contents cannot be loaded."""
    pass


class AnnotationStore(Protocol):
    """Everything the knowledge graph engine reads from storage."""

    def list_folders(self) -> List[Folder]: ...

    def list_images(self) -> List[ImageRecord]: ...

    def get_annotations(self, image_id: str) -> List[Annotation]: ...

    def get_vocabulary(self) -> Vocabulary: ...

    async def search(
        self,
        attribute: str,
        comparator: Comparator,
        value: Optional[str] = None,
    ) -> FrozenSet[str]: ...


class SearchHit(msgspec.Struct, kw_only=True, frozen=True):
    """One ranked property value from the entity instance search."""
    value: str
    score: float
    annotation_ids: Tuple[str, ...] = ()


def flatten_value(value: Any) -> Iterator[str]:
    """
    Yield the searchable strings inside a property value.

    Lists are expanded, mappings contribute their values, scalars are
    stringified. None yields nothing.
    """
    if value is None:
        return
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from flatten_value(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from flatten_value(item)
    else:
        yield str(value)


# =============================================================================
# SEARCH INDEX
# =============================================================================

class PropertySearchIndex:
    """
    Entity property values, indexed per image and per entity type.

    Built once from the store contents; rebuilt by the store on reload.
    """

    def __init__(self, threshold: float = DEFAULT_FUZZY_THRESHOLD, limit: int = 100):
        self.threshold = threshold
        self.limit = limit
        # image_id -> property name -> values
        self._by_image: Dict[str, Dict[str, Set[str]]] = {}
        # (entity type id, property name) -> value -> annotation ids
        self._by_type: Dict[Tuple[str, str], Dict[str, List[str]]] = {}

    def add_image(self, image_id: str, annotations: List[Annotation]) -> None:
        properties = self._by_image.setdefault(image_id, {})
        for annotation in annotations:
            for body in annotation.entity_bodies():
                for name, raw in body.properties.items():
                    for text in flatten_value(raw):
                        properties.setdefault(name, set()).add(text)
                        by_value = self._by_type.setdefault((body.source, name), {})
                        by_value.setdefault(text, []).append(annotation.id)

    def match_images(
        self,
        name: str,
        comparator: Comparator,
        value: Optional[str],
    ) -> FrozenSet[str]:
        return frozenset(
            image_id for image_id, properties in self._by_image.items()
            if compare(properties.get(name, ()), comparator, value, self.threshold)
        )

    def suggest(self, entity_type_id: str, name: str, query: str, limit: Optional[int] = None) -> List[SearchHit]:
        """
        Distinct values of one property on one entity type, ranked by
        similarity to `query`. Values below the fuzzy threshold are dropped
        unless they contain the query.
        """
        limit = limit or self.limit
        needle = normalize(query)
        hits: List[SearchHit] = []
        for text, annotation_ids in self._by_type.get((entity_type_id, name), {}).items():
            score = 1.0 if needle and needle in normalize(text) else similarity(text, query)
            if score >= self.threshold:
                hits.append(SearchHit(value=text, score=score, annotation_ids=tuple(annotation_ids)))
        hits.sort(key=lambda h: (-h.score, h.value))
        return hits[:limit]

    def __len__(self) -> int:
        return len(self._by_image)


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryAnnotationStore:
    """AnnotationStore over a StoreSnapshot held in memory."""

    def __init__(
        self,
        snapshot: Optional[StoreSnapshot] = None,
        fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
        search_limit: int = 100,
    ):
        self._snapshot = snapshot or StoreSnapshot()
        self._annotations: Dict[str, List[Annotation]] = {}
        for entry in self._snapshot.annotations:
            self._annotations.setdefault(entry.image_id, []).extend(entry.annotations)

        self._index = PropertySearchIndex(fuzzy_threshold, search_limit)
        for image in self._snapshot.images:
            self._index.add_image(image.id, self._annotations.get(image.id, []))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **kwargs: Any) -> "InMemoryAnnotationStore":
        """Build a store from plain Python data shaped like a JSON export."""
        try:
            snapshot = msgspec.convert(data, type=StoreSnapshot)
        except msgspec.ValidationError as e:
            raise StoreError(f"Invalid store contents: {e}") from e
        return cls(snapshot, **kwargs)

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._snapshot

    @property
    def index(self) -> PropertySearchIndex:
        return self._index

    def list_folders(self) -> List[Folder]:
        return list(self._snapshot.folders)

    def list_images(self) -> List[ImageRecord]:
        return list(self._snapshot.images)

    def get_annotations(self, image_id: str) -> List[Annotation]:
        return list(self._annotations.get(image_id, []))

    def get_vocabulary(self) -> Vocabulary:
        return self._snapshot.vocabulary

    async def search(
        self,
        attribute: str,
        comparator: Comparator,
        value: Optional[str] = None,
    ) -> FrozenSet[str]:
        """Image ids whose entity annotations satisfy the property comparison."""
        # Yield once so callers see the same suspension point as a remote store
        await asyncio.sleep(0)
        matches = self._index.match_images(property_name(attribute), comparator, value)
        logger.debug(f"Property search {attribute} {comparator} {value!r}: {len(matches)} images")
        return matches

    def suggest(self, entity_type_id: str, name: str, query: str, limit: Optional[int] = None) -> List[SearchHit]:
        return self._index.suggest(entity_type_id, name, query, limit)


def load_store(
    path: Union[str, Path],
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD,
    search_limit: int = 100,
) -> InMemoryAnnotationStore:
    """
    Load a JSON store export.

    Raises:
        FileNotFoundError: If the file does not exist
        StoreError: If the file is not a valid export
    """
    data = Path(path).read_bytes()
    try:
        snapshot = decode_snapshot(data)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        raise StoreError(f"Invalid store export {path}: {e}") from e

    logger.info(
        f"Loaded store from {path}: {len(snapshot.folders)} folders, "
        f"{len(snapshot.images)} images"
    )
    return InMemoryAnnotationStore(snapshot, fuzzy_threshold, search_limit)
