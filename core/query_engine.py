"""
ANNOGRAPH QUERY ENGINE - Incremental Multi-Condition Search

One QueryEngine per search session.

State machine:
    IDLE         no object type; no predicate published
    TYPE_CHOSEN  object type set; conditions exist, at least one incomplete
                 (or none at all, after clear())
    EVALUATING   at least one condition is waiting on the store
    COMPLETE     every sentence is well-formed; another condition may be added

The published predicate is the intersection of every condition's matches,
restricted to nodes of the object type. It exists only while every
condition is resolved. "No active query" (None) is distinct from a
predicate that matches nothing.

Every edit stamps the edited condition with a fresh generation. An
asynchronous resolution that completes under an older generation, or for a
condition that was deleted in the meantime, is discarded.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, FrozenSet, Iterator, List, Optional, Set, Union

import msgspec

from core.ontology import ConditionState, ObjectType
from core.schemas import GraphNode, Vocabulary
from core.graph_db import Graph
from core.search import (
    Condition,
    EMPTY_SENTENCE,
    Sentence,
    intersect_matches,
    is_complete,
    needs_store,
    resolve_in_graph,
    DEFAULT_FUZZY_THRESHOLD,
)
from infrastructure.config import KnowledgeGraphSettings
from infrastructure.event_bus import publish_query_changed, publish, EventType
from infrastructure.logger import get_logger as get_journal


logger = logging.getLogger(__name__)

# A condition, its id, or the sentence it holds
ConditionRef = Union[Condition, str, Sentence]


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class QueryError(Exception):
    """Base exception for query operations."""
    pass


class QueryStateError(QueryError):
    """Raised when an operation is not allowed in the current state."""
    pass


class ConditionNotFoundError(QueryError):
    """Raised when no condition matches the given condition, id or sentence."""
    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Condition not found: {ref!r}")


# =============================================================================
# TYPES
# =============================================================================

class QueryState(str, Enum):
    IDLE = "IDLE"
    TYPE_CHOSEN = "TYPE_CHOSEN"
    EVALUATING = "EVALUATING"
    COMPLETE = "COMPLETE"


class QueryPredicate(msgspec.Struct, kw_only=True, frozen=True):
    """An active query: the node ids it matches, for one object type."""
    object_type: str
    matches: FrozenSet[str]

    def __call__(self, node: GraphNode) -> bool:
        return node.type == self.object_type and node.id in self.matches

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.matches

    def __iter__(self) -> Iterator[str]:
        return iter(self.matches)


class ConditionStatus(msgspec.Struct, kw_only=True, frozen=True):
    """What the UI shows next to one condition."""
    id: str
    state: ConditionState
    match_count: Optional[int] = None
    error: Optional[str] = None


# =============================================================================
# QUERY ENGINE
# =============================================================================

class QueryEngine:
    """
    Search session over the current Graph.

    Usage:
        engine = QueryEngine(graph, store=store, on_change=render)
        engine.set_object_type(ObjectType.IMAGE)
        engine.update_condition(EMPTY_SENTENCE, SimpleSentence(
            condition_type=ConditionType.WHERE,
            attribute="entity_type",
            comparator=Comparator.IS,
            value="Person",
        ))
        await engine.wait_idle()
        engine.predicate

    Thread Safety:
        NOT thread-safe. Designed for a single asyncio loop.
    """

    def __init__(
        self,
        graph: Graph,
        store=None,
        vocabulary: Optional[Vocabulary] = None,
        settings: Optional[KnowledgeGraphSettings] = None,
        on_change: Optional[Callable[[Optional[QueryPredicate]], None]] = None,
    ):
        self._graph = graph
        self._store = store
        self._vocabulary = vocabulary
        if self._vocabulary is None and store is not None:
            self._vocabulary = store.get_vocabulary()
        self._settings = settings or KnowledgeGraphSettings()
        self.on_change = on_change

        self._object_type: Optional[str] = None
        self._conditions: List[Condition] = []
        self._generation = 0
        self._next_id = 0
        self._pending: Set[asyncio.Task] = set()
        self._published: Optional[QueryPredicate] = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def graph(self) -> Graph:
        return self._graph

    @property
    def object_type(self) -> Optional[str]:
        return self._object_type

    @property
    def conditions(self) -> List[Condition]:
        """Copies of the current conditions, in order."""
        return [msgspec.structs.replace(c) for c in self._conditions]

    @property
    def sentences(self) -> List[Sentence]:
        return [c.sentence for c in self._conditions]

    @property
    def state(self) -> QueryState:
        if self._object_type is None:
            return QueryState.IDLE
        if any(c.state == ConditionState.RESOLVING for c in self._conditions):
            return QueryState.EVALUATING
        if self._conditions and self.can_add_condition():
            return QueryState.COMPLETE
        return QueryState.TYPE_CHOSEN

    @property
    def predicate(self) -> Optional[QueryPredicate]:
        """The active query, or None if any condition is unresolved."""
        if self._object_type is None or not self._conditions:
            return None
        matches = intersect_matches(c.matches for c in self._conditions)
        if matches is None:
            return None
        return QueryPredicate(
            object_type=self._object_type,
            matches=matches & self._graph.node_ids(self._object_type),
        )

    def can_add_condition(self) -> bool:
        return self._object_type is not None and all(
            is_complete(c.sentence) for c in self._conditions
        )

    def condition_status(self) -> List[ConditionStatus]:
        return [
            ConditionStatus(
                id=c.id,
                state=c.state,
                match_count=len(c.matches) if c.matches is not None else None,
                error=c.error,
            )
            for c in self._conditions
        ]

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def set_object_type(self, object_type: Optional[str]) -> None:
        """
        Choose what the query looks for, seeding one empty condition.
        None returns to IDLE and drops every condition.

        Raises:
            QueryStateError: For FOLDER while folders are excluded
        """
        if object_type is not None:
            object_type = ObjectType(object_type).value
            if object_type == ObjectType.FOLDER.value and not self._settings.include_folders:
                raise QueryStateError("FOLDER queries need include_folders")

        self._conditions = []
        self._object_type = object_type
        if object_type is not None:
            self._conditions.append(self._new_condition(EMPTY_SENTENCE))
        self._notify()

    def add_condition(self) -> Condition:
        """
        Append an empty condition.

        Raises:
            QueryStateError: If no object type is set or a sentence is incomplete
        """
        if self._object_type is None:
            raise QueryStateError("Choose an object type before adding conditions")
        if not self.can_add_condition():
            raise QueryStateError("Complete every condition before adding another")
        condition = self._new_condition(EMPTY_SENTENCE)
        self._conditions.append(condition)
        self._notify()
        return condition

    def update_condition(self, current: ConditionRef, next_sentence: Sentence) -> Optional[asyncio.Task]:
        """
        Replace the sentence of the condition `current` refers to with
        `next_sentence` and re-resolve. Any resolution still in flight for
        it becomes stale.

        `current` may be the Condition, its id, or the sentence it holds.

        Graph-based sentences resolve immediately. Store-backed sentences
        return the resolution task when a loop is running; without a loop
        they are resolved to completion before returning.

        Raises:
            ConditionNotFoundError: If `current` refers to no condition
            QueryStateError: For a property sentence in a FOLDER query
        """
        condition = self._find(current)
        if needs_store(next_sentence) and self._object_type == ObjectType.FOLDER.value:
            raise QueryStateError("Property conditions apply to IMAGE queries only")

        self._generation += 1
        condition.sentence = next_sentence
        condition.generation = self._generation
        condition.matches = None
        condition.error = None

        if not is_complete(next_sentence):
            condition.state = ConditionState.INCOMPLETE
            self._notify()
            return None

        if not needs_store(next_sentence):
            self._resolve_sync(condition)
            self._notify()
            return None

        condition.state = ConditionState.RESOLVING
        self._notify()

        coro = self._resolve_async(condition.id, condition.generation, next_sentence)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return None

        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def delete_condition(self, ref: ConditionRef) -> None:
        """
        Remove the condition `ref` refers to. Removing the last one
        returns to IDLE.

        Raises:
            ConditionNotFoundError: If `ref` refers to no condition
        """
        condition = self._find(ref)
        self._conditions.remove(condition)
        if not self._conditions:
            self._object_type = None
        self._notify()

    def clear(self) -> None:
        """Drop every condition, keeping the object type."""
        self._conditions = []
        self._notify()

    def set_graph(self, graph: Graph, vocabulary: Optional[Vocabulary] = None) -> None:
        """
        Switch to a rebuilt Graph and re-resolve graph-based conditions.

        The vocabulary is taken from `vocabulary`, else re-read from the
        store. Store-backed matches are kept; the predicate is
        re-restricted to the new graph's nodes.
        """
        self._graph = graph
        if vocabulary is not None:
            self._vocabulary = vocabulary
        elif self._store is not None:
            self._vocabulary = self._store.get_vocabulary()
        for condition in self._conditions:
            if is_complete(condition.sentence) and not needs_store(condition.sentence):
                self._resolve_sync(condition)
        self._notify()

    async def wait_idle(self) -> None:
        """Wait until no resolution is in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def _resolve_sync(self, condition: Condition) -> None:
        try:
            condition.matches = resolve_in_graph(
                condition.sentence,
                self._graph,
                self._object_type,
                self._vocabulary,
                self._threshold,
            )
        except Exception as e:
            self._fail(condition, e)
            return
        condition.state = ConditionState.RESOLVED
        get_journal().log_condition_resolved(condition.id, condition.generation, len(condition.matches))

    async def _resolve_async(self, condition_id: str, generation: int, sentence: Sentence) -> None:
        try:
            if self._store is None:
                raise QueryStateError(f"No store to resolve {sentence.attribute}")
            matches = frozenset(await self._store.search(
                sentence.attribute,
                sentence.comparator,
                sentence.value,
            ))
            error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            matches, error = None, e

        condition = self._find_by_id(condition_id)
        if condition is None or condition.generation != generation:
            logger.debug(f"Discarding stale resolution for {condition_id} (generation {generation})")
            get_journal().log_condition_discarded(condition_id, generation)
            publish(
                EventType.CONDITION_DISCARDED,
                {"condition_id": condition_id, "generation": generation},
                "query_engine",
            )
            return

        if error is not None:
            self._fail(condition, error)
        else:
            condition.matches = matches
            condition.state = ConditionState.RESOLVED
            get_journal().log_condition_resolved(condition_id, generation, len(matches))
            publish(
                EventType.CONDITION_RESOLVED,
                {"condition_id": condition_id, "generation": generation, "match_count": len(matches)},
                "query_engine",
            )
        self._notify()

    def _fail(self, condition: Condition, error: Exception) -> None:
        logger.warning(f"Condition {condition.id} failed to resolve: {error}")
        condition.matches = None
        condition.state = ConditionState.FAILED
        condition.error = str(error)
        get_journal().log_condition_failed(condition.id, condition.generation, str(error))
        publish(
            EventType.CONDITION_FAILED,
            {"condition_id": condition.id, "generation": condition.generation, "error": str(error)},
            "query_engine",
        )

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    @property
    def _threshold(self) -> float:
        return self._settings.fuzzy_threshold if self._settings else DEFAULT_FUZZY_THRESHOLD

    def _new_condition(self, sentence: Sentence) -> Condition:
        self._next_id += 1
        self._generation += 1
        return Condition(
            id=f"c{self._next_id}",
            sentence=sentence,
            generation=self._generation,
            state=ConditionState.INCOMPLETE,
        )

    def _find(self, ref: ConditionRef) -> Condition:
        """
        Look a condition up by Condition or id, else by the sentence it
        holds. Sentences match by identity first; equal sentences held by
        several conditions are only told apart that way.
        """
        if isinstance(ref, Condition):
            ref = ref.id
        if isinstance(ref, str):
            condition = self._find_by_id(ref)
            if condition is None:
                raise ConditionNotFoundError(ref)
            return condition

        for condition in self._conditions:
            if condition.sentence is ref:
                return condition
        for condition in self._conditions:
            if condition.sentence == ref:
                return condition
        raise ConditionNotFoundError(ref)

    def _find_by_id(self, condition_id: str) -> Optional[Condition]:
        for condition in self._conditions:
            if condition.id == condition_id:
                return condition
        return None

    def _notify(self) -> None:
        """Publish the predicate if it changed since the last publication."""
        predicate = self.predicate
        if predicate == self._published:
            return
        self._published = predicate

        active = predicate is not None
        match_count = len(predicate.matches) if predicate is not None else 0
        get_journal().log_query_changed(active, match_count)
        publish_query_changed(active, match_count, self._object_type)
        if self.on_change is not None:
            self.on_change(predicate)
