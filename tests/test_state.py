"""Tests for state stores."""

import json

import pytest

from resourcegraph import InMemoryStateStore, JsonFileStateStore, ResourceState
from resourcegraph.state import to_plain


def make_record(name, **outputs):
    return ResourceState(
        urn=f"urn:resourcegraph:t:Bucket::{name}",
        type="t:Bucket",
        name=name,
        id=f"{name}-1",
        inputs={"acl": "private"},
        outputs=dict(outputs, id=f"{name}-1"),
        dependencies=[],
    )


def test_in_memory_store_roundtrip():
    store = InMemoryStateStore()
    record = make_record("a")
    store.save(record.urn, record)
    assert store.load(record.urn) is record
    assert len(store) == 1
    store.delete(record.urn)
    assert store.load(record.urn) is None
    # Deleting twice is harmless
    store.delete(record.urn)


def test_list_keeps_first_save_order():
    store = InMemoryStateStore([make_record("b"), make_record("a")])
    store.save(make_record("b").urn, make_record("b", arn="new"))
    assert [r.name for r in store.list()] == ["b", "a"]


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "state" / "stack.json"
    store = JsonFileStateStore(str(path))
    store.save(make_record("a").urn, make_record("a", arn="arn:a"))
    store.save(make_record("b").urn, make_record("b"))

    reopened = JsonFileStateStore(str(path))

    assert [r.name for r in reopened.list()] == ["a", "b"]
    assert reopened.load(make_record("a").urn) == make_record("a", arn="arn:a")

    document = json.loads(path.read_text())
    assert document["version"] == 1
    assert len(document["resources"]) == 2


def test_json_store_delete_and_clear(tmp_path):
    path = tmp_path / "stack.json"
    store = JsonFileStateStore(str(path))
    for name in ("a", "b"):
        store.save(make_record(name).urn, make_record(name))

    store.delete(make_record("a").urn)
    assert [r.name for r in JsonFileStateStore(str(path)).list()] == ["b"]

    store.clear()
    assert JsonFileStateStore(str(path)).list() == []
    assert not (tmp_path / "stack.json.tmp").exists()


def test_missing_file_is_empty_store(tmp_path):
    store = JsonFileStateStore(str(tmp_path / "absent.json"))
    assert store.list() == []
    assert store.load("urn:resourcegraph:t:Bucket::a") is None


def test_to_plain_matches_json_round_trip():
    value = {"ports": (80, 443), "zones": {"b", "a"}, "nested": [{"n": (1,)}], 2: None}
    assert to_plain(value) == {
        "ports": [80, 443],
        "zones": ["a", "b"],
        "nested": [{"n": [1]}],
        "2": None,
    }
    assert to_plain(value) == json.loads(json.dumps(to_plain(value)))


def test_json_store_rejects_unencodable_values(tmp_path):
    path = tmp_path / "stack.json"
    store = JsonFileStateStore(str(path))
    store.save(make_record("a").urn, make_record("a"))
    before = path.read_text()

    with pytest.raises(TypeError):
        store.save(make_record("b").urn, make_record("b", handle=object()))

    assert path.read_text() == before
    assert not (tmp_path / "stack.json.tmp").exists()
