"""
Tests for the JSON node store and payload validation.

Tests cover:
- Create / update / delete / list semantics
- Wholesale replacement on update
- Duplicate and missing ids
- Coordinate parsing
- Atomic writes and storage failures
- Concurrent creates
"""

import json
import os
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from registry.errors import Conflict, NotFound, StorageFailure, ValidationError
from registry.models import NodeRecord, parse_new_node, parse_node_update
from registry.store import NodeStore


@pytest.fixture()
def store(tmp_path: Path) -> NodeStore:
    return NodeStore(tmp_path / "data" / "nodes.json")


def _node(node_id: str, **fields) -> NodeRecord:
    return parse_new_node({"id": node_id, "type": "client", **fields})


class TestParseNode:
    """Test payload validation and defaults."""

    def test_defaults(self):
        node = parse_new_node({"id": "X1", "type": "client"})
        assert node.status == "active"
        assert node.lat is None
        assert node.lon is None
        assert node.location == ""
        assert node.image == ""

    def test_empty_status_defaults_to_active(self):
        assert parse_new_node({"id": "X1", "type": "client", "status": ""}).status == "active"

    def test_missing_id_and_type(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_new_node({"notes": "hello"})
        assert set(exc_info.value.fields) == {"id", "type"}

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            parse_new_node({"id": "", "type": "client"})

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError):
            parse_new_node(["X1"])
        with pytest.raises(ValidationError):
            parse_new_node(None)

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_blank_coordinates_are_absent(self, blank):
        node = _node("X1", lat=blank, lon=blank)
        assert node.lat is None
        assert node.lon is None

    def test_numeric_strings_parsed(self):
        node = _node("X1", lat="51.5", lon="-0.12")
        assert node.lat == 51.5
        assert node.lon == -0.12

    def test_numbers_accepted(self):
        node = _node("X1", lat=40, lon=-74.25)
        assert node.lat == 40.0
        assert node.lon == -74.25

    @pytest.mark.parametrize("bad", ["north", "nan", "inf", True])
    def test_invalid_coordinates_rejected(self, bad):
        with pytest.raises(ValidationError) as exc_info:
            _node("X1", lat=bad)
        assert "lat" in exc_info.value.fields

    def test_unknown_fields_ignored(self):
        node = _node("X1", color="red")
        assert "color" not in node.model_dump()

    def test_update_uses_path_id(self):
        node = parse_node_update("X1", {"id": "X2", "type": "client"})
        assert node.id == "X1"


class TestCreateAndList:
    def test_empty_when_file_missing(self, store: NodeStore):
        assert store.list() == []

    def test_create_then_list_roundtrip(self, store: NodeStore):
        node = _node("X1", location="Roof", lat="1.5", lon="2.5", notes="n")
        store.create(node)
        assert store.list() == [node]

    def test_duplicate_id_conflicts(self, store: NodeStore):
        for i in range(5):
            store.create(_node(f"N{i}"))
        store.create(_node("X1"))
        with pytest.raises(Conflict):
            store.create(_node("X1", type="repeater"))
        assert len(store.list()) == 6

    def test_file_is_human_readable_json(self, store: NodeStore):
        store.create(_node("X1"))
        text = store.path.read_text(encoding="utf-8")
        assert "\n  " in text
        assert json.loads(text)[0]["id"] == "X1"

    def test_get(self, store: NodeStore):
        store.create(_node("X1"))
        assert store.get("X1").id == "X1"
        with pytest.raises(NotFound):
            store.get("X2")


class TestUpdate:
    def test_update_missing_raises_and_does_not_create(self, store: NodeStore):
        with pytest.raises(NotFound):
            store.update("X1", parse_node_update("X1", {"type": "client"}))
        assert store.list() == []

    def test_update_replaces_whole_record(self, store: NodeStore):
        store.create(_node("X1", status="inactive", lat="1", lon="2", location="Roof"))
        updated = store.update("X1", parse_node_update("X1", {"type": "client", "notes": "moved"}))
        assert updated.notes == "moved"
        assert updated.lat is None
        assert updated.lon is None
        assert updated.status == "active"
        assert updated.location == ""
        assert store.list() == [updated]

    def test_update_keeps_position(self, store: NodeStore):
        for node_id in ("A", "B", "C"):
            store.create(_node(node_id))
        store.update("B", parse_node_update("B", {"type": "repeater"}))
        assert [n.id for n in store.list()] == ["A", "B", "C"]
        assert store.list()[1].type == "repeater"

    def test_id_cannot_be_renamed(self, store: NodeStore):
        store.create(_node("X1"))
        updated = store.update("X1", NodeRecord(id="X2", type="client"))
        assert updated.id == "X1"
        assert [n.id for n in store.list()] == ["X1"]


class TestDelete:
    def test_delete_removes(self, store: NodeStore):
        store.create(_node("X1"))
        store.create(_node("X2"))
        store.delete("X1")
        assert [n.id for n in store.list()] == ["X2"]

    def test_delete_missing_raises(self, store: NodeStore):
        store.create(_node("X1"))
        with pytest.raises(NotFound):
            store.delete("nope")
        assert len(store.list()) == 1


class TestPersistenceFailures:
    def test_corrupt_file_raises_storage_failure(self, store: NodeStore):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json")
        with pytest.raises(StorageFailure) as exc_info:
            store.list()
        assert str(store.path) not in exc_info.value.message

    def test_failed_write_leaves_previous_file(self, store: NodeStore):
        store.create(_node("X1"))
        before = store.path.read_text(encoding="utf-8")
        with patch("registry.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageFailure):
                store.create(_node("X2"))
        assert store.path.read_text(encoding="utf-8") == before
        leftovers = [p for p in os.listdir(store.path.parent) if p.endswith(".tmp")]
        assert leftovers == []


class TestConcurrency:
    def test_concurrent_creates_lose_nothing(self, store: NodeStore):
        count = 40
        errors = []

        def create(i: int) -> None:
            try:
                store.create(_node(f"N{i:03d}"))
            except Exception as exc:  # pragma: no cover - reported below
                errors.append(exc)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        ids = [n.id for n in store.list()]
        assert len(ids) == count
        assert sorted(ids) == [f"N{i:03d}" for i in range(count)]

    def test_concurrent_duplicate_creates_one_wins(self, store: NodeStore):
        results = []

        def create() -> None:
            try:
                store.create(_node("X1"))
                results.append("ok")
            except Conflict:
                results.append("conflict")

        threads = [threading.Thread(target=create) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert len(store.list()) == 1
