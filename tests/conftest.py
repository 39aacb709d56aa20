"""
Pytest configuration and shared fixtures for the Annograph test suite.

The sample corpus:

    root ("Corpus")
    ├── sub-a ("Sketches")
    │   └── img4
    ├── sub-b ("Studies")
    ├── img1   Person(Leonardo), Artwork(Mona Lisa); Artwork depicts Person (same image)
    ├── img2   Artist(Raphael), Place(Florence)
    └── img3   Artwork(School of Athens) depicts Artist on img2

    img4 carries Place(Rome) and a relation whose target does not exist.

Vocabulary: Person > Artist, Artwork, Place.
"""
import sys
from pathlib import Path

import msgspec
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def entity(annotation_id, type_id, **properties):
    return {
        "id": annotation_id,
        "body": {"purpose": "classifying", "source": type_id, "properties": properties},
        "target": {"source": "image"},
    }


def relation(link_id, source_annotation, target_annotation, label=None):
    """A relation link plus its tagging meta annotation."""
    annotations = [{
        "id": link_id,
        "motivation": "linking",
        "target": source_annotation,
        "body": target_annotation,
    }]
    if label:
        annotations.append({
            "id": f"{link_id}-tag",
            "motivation": "tagging",
            "target": link_id,
            "body": [{"purpose": "tagging", "value": label}],
        })
    return annotations


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the global event bus and journal before each test."""
    from infrastructure.event_bus import reset_event_bus
    from infrastructure.logger import reset_logger

    reset_event_bus()
    reset_logger()

    yield

    reset_event_bus()
    reset_logger()


@pytest.fixture
def store_data():
    """Plain-data store export for the sample corpus."""
    return {
        "folders": [
            {"id": "root", "name": "Corpus"},
            {"id": "sub-a", "name": "Sketches", "parent_id": "root"},
            {"id": "sub-b", "name": "Studies", "parent_id": "root"},
        ],
        "images": [
            {"id": "img1", "name": "mona.jpg", "folder_id": "root"},
            {"id": "img2", "name": "raphael.jpg", "folder_id": "root"},
            {"id": "img3", "name": "athens.jpg", "folder_id": "root"},
            {"id": "img4", "name": "rome.jpg", "folder_id": "sub-a"},
        ],
        "annotations": [
            {"image_id": "img1", "annotations": [
                entity("ann-e1", "Person", name="Leonardo"),
                entity("ann-e2", "Artwork", title="Mona Lisa"),
                *relation("rel-1", "ann-e2", "ann-e1", "depicts"),
            ]},
            {"image_id": "img2", "annotations": [
                entity("ann-e3", "Artist", name="Raphael"),
                entity("ann-e4", "Place", name="Florence"),
            ]},
            {"image_id": "img3", "annotations": [
                entity("ann-e5", "Artwork", title="School of Athens"),
                *relation("rel-2", "ann-e5", "ann-e3", "depicts"),
            ]},
            {"image_id": "img4", "annotations": [
                entity("ann-e6", "Place", name="Rome", tags=["city", "capital"]),
                *relation("rel-3", "ann-e6", "ann-missing", "located in"),
            ]},
        ],
        "vocabulary": {
            "entity_types": [
                {"id": "Person", "properties": [{"name": "name"}]},
                {"id": "Artist", "parent_id": "Person", "properties": [{"name": "name"}]},
                {"id": "Artwork", "label": "Work of art", "properties": [{"name": "title"}]},
                {"id": "Place", "properties": [{"name": "name"}, {"name": "tags"}]},
            ],
            "relationship_types": [
                {"id": "depicts", "name": "depicts", "domain": "Artwork", "range": "Person"},
            ],
        },
    }


@pytest.fixture
def sample_store(store_data):
    """In-memory store over the sample corpus."""
    from infrastructure.store import InMemoryAnnotationStore
    return InMemoryAnnotationStore.from_dict(store_data)


@pytest.fixture
def sample_graph(sample_store):
    """Graph built from the sample corpus with default settings."""
    from core.graph_builder import GraphBuilder
    return GraphBuilder(sample_store).build()


@pytest.fixture
def store_file(tmp_path, store_data):
    """The sample corpus written as a JSON export."""
    path = tmp_path / "store.json"
    path.write_bytes(msgspec.json.encode(store_data))
    return path
