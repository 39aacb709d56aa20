"""
Unit tests for infrastructure/store.py - in-memory Annotation Store
"""
import pytest

from core.ontology import Comparator
from infrastructure.store import (
    InMemoryAnnotationStore,
    PropertySearchIndex,
    StoreError,
    flatten_value,
    load_store,
)


def test_store_contents(sample_store):
    assert [f.id for f in sample_store.list_folders()] == ["root", "sub-a", "sub-b"]
    assert len(sample_store.list_images()) == 4
    assert [a.id for a in sample_store.get_annotations("img2")] == ["ann-e3", "ann-e4"]
    assert sample_store.get_annotations("unknown") == []
    assert sample_store.get_vocabulary().get_entity_type("Artist").parent_id == "Person"


def test_annotation_discrimination(sample_store):
    annotations = {a.id: a for a in sample_store.get_annotations("img1")}

    assert annotations["rel-1"].is_relation_link
    assert annotations["rel-1"].target_ref() == "ann-e2"
    assert annotations["rel-1"].body_ref() == "ann-e1"
    assert annotations["rel-1-tag"].is_relation_meta
    assert annotations["ann-e1"].entity_bodies()[0].source == "Person"


def test_invalid_contents_raise_store_error():
    with pytest.raises(StoreError):
        InMemoryAnnotationStore.from_dict({"images": [{"name": "no id"}]})


def test_load_store(store_file):
    store = load_store(store_file)

    assert len(store.list_images()) == 4
    assert len(store.index) == 4


def test_load_store_errors(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")

    with pytest.raises(StoreError):
        load_store(broken)

    with pytest.raises(FileNotFoundError):
        load_store(tmp_path / "missing.json")


@pytest.mark.asyncio
async def test_property_search(sample_store):
    exact = await sample_store.search("property:name", Comparator.IS, "Raphael")
    fuzzy = await sample_store.search("property:title", Comparator.FUZZY, "mona")
    contains = await sample_store.search("property:title", Comparator.CONTAINS, "athens")
    listed = await sample_store.search("property:tags", Comparator.IS, "capital")
    missing = await sample_store.search("property:title", Comparator.IS_EMPTY)

    assert exact == frozenset({"img2"})
    assert fuzzy == frozenset({"img1"})
    assert contains == frozenset({"img3"})
    assert listed == frozenset({"img4"})
    assert missing == frozenset({"img2", "img4"})


def test_suggest_ranks_by_similarity(sample_store):
    hits = sample_store.suggest("Person", "name", "leonard")

    assert [h.value for h in hits] == ["Leonardo"]
    assert hits[0].annotation_ids == ("ann-e1",)
    assert sample_store.suggest("Person", "name", "zzzz") == []


def test_suggest_limit():
    index = PropertySearchIndex(threshold=0.0, limit=2)
    store = InMemoryAnnotationStore.from_dict({
        "images": [{"id": "i", "name": "i"}],
        "annotations": [{"image_id": "i", "annotations": [
            {"id": f"a{n}", "body": {"purpose": "classifying", "source": "T", "properties": {"p": f"value {n}"}}}
            for n in range(5)
        ]}],
    })
    for image in store.list_images():
        index.add_image(image.id, store.get_annotations(image.id))

    assert len(index.suggest("T", "p", "value")) == 2
    assert len(index.suggest("T", "p", "value", limit=4)) == 4


def test_flatten_value():
    assert list(flatten_value(None)) == []
    assert list(flatten_value("x")) == ["x"]
    assert list(flatten_value(["a", ["b", 3]])) == ["a", "b", "3"]
    assert list(flatten_value({"lat": 1.5, "lng": 2})) == ["1.5", "2"]
