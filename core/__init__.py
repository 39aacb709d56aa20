"""
ANNOGRAPH CORE - Central exports for the knowledge graph engine.

This module provides access to:
- The graph value and its errors (Graph, GraphError)
- Aggregation and scaling (LinkAggregator, DegreeIndex)
- Read-side queries (NeighborhoodIndex, sentences)

GraphBuilder and QueryEngine depend on infrastructure and are imported
from their modules directly.
"""

from core.graph_db import (
    Graph,
    GraphError,
    NodeNotFoundError,
    DuplicateNodeError,
    DuplicateLinkError,
    create_empty_graph,
)
from core.aggregator import LinkAggregator, aggregate_links
from core.degree_index import DegreeIndex, compute_degrees, scale
from core.neighborhood import NeighborhoodIndex, DEEMPHASIZED_OPACITY
from core.search import SimpleSentence, NestedSentence, EMPTY_SENTENCE, is_complete

__all__ = [
    # Graph
    "Graph",
    "GraphError",
    "NodeNotFoundError",
    "DuplicateNodeError",
    "DuplicateLinkError",
    "create_empty_graph",
    # Construction
    "LinkAggregator",
    "aggregate_links",
    "DegreeIndex",
    "compute_degrees",
    "scale",
    # Queries
    "NeighborhoodIndex",
    "DEEMPHASIZED_OPACITY",
    "SimpleSentence",
    "NestedSentence",
    "EMPTY_SENTENCE",
    "is_complete",
]
