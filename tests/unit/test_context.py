"""Data context tests."""

import pytest

from uispec.engine import DataContext, SourceEntry, initialize_data_context
from uispec.engine.context import MISSING, USER, lookup_path


@pytest.mark.unit
class TestInitialization:
    def test_entries_from_schema(self, schema, tasks):
        context = initialize_data_context(schema, {"id": "u1"})

        entry = context.entry("tasks")
        assert entry.data == tasks
        assert entry.selected is None
        assert entry.schema is schema["tasks"]
        assert context.user == {"id": "u1"}
        assert context.source_names() == ["tasks"]

    def test_sources_without_sample_data(self):
        context = initialize_data_context({"people": {"columns": {}}, "empty": None})

        assert context.entry("people").data == []
        assert context.entry("empty").data == []
        assert USER not in context


@pytest.mark.unit
class TestLookup:
    def test_paths(self, context, tasks):
        assert context.lookup("tasks.data.0") == tasks[0]
        assert context.lookup(["tasks", "selected"]) is None
        assert context.lookup("tasks.missing") is MISSING
        assert context.get_path("tasks.missing", "fallback") == "fallback"
        assert context.has_path("tasks.selected")
        assert not context.has_path("people")

    def test_lookup_path_on_plain_values(self):
        assert lookup_path({"a": [{"b": 2}]}, "a.0.b") == 2
        assert lookup_path({"a": [1]}, "a.5") is MISSING
        assert lookup_path({"a": 1}, "a.b", default=None) is None


@pytest.mark.unit
class TestCopyOnWrite:
    def test_set_path_returns_new_context(self, context, tasks):
        updated = context.set_path("tasks.selected", tasks[1])

        assert updated is not context
        assert updated.lookup("tasks.selected") == tasks[1]
        assert context.lookup("tasks.selected") is None
        # untouched fields of the entry are shared
        assert updated.entry("tasks").data is context.entry("tasks").data
        assert updated["user"] is context["user"]

    def test_set_creates_intermediate_mappings(self, context):
        updated = context.set_path("visibility.detail", True)
        assert updated.lookup("visibility") == {"detail": True}

    def test_set_list_index(self, context):
        updated = context.set_path("tasks.data.0.done", True)

        assert updated.lookup("tasks.data.0.done") is True
        assert context.lookup("tasks.data.0.done") is False

    def test_invalid_paths(self, context):
        with pytest.raises(KeyError):
            context.set_path("tasks.rows", [])
        with pytest.raises(KeyError):
            context.set_path("tasks.data.99.done", True)

    def test_with_entry_and_without(self, context):
        added = context.with_entry("people", SourceEntry(data=[{"id": 1}]))

        assert added.source_names() == ["tasks", "people"]
        assert added.without("people").source_names() == ["tasks"]
        assert "people" not in context


@pytest.mark.unit
class TestPopulation:
    def test_empty(self):
        assert not DataContext().is_meaningfully_populated()
        assert not DataContext({USER: {}}).is_meaningfully_populated()

    def test_user_only(self):
        assert DataContext({USER: {"id": "u"}}).is_meaningfully_populated()

    def test_source(self, context):
        assert context.is_meaningfully_populated()

    def test_to_dict(self, context, tasks):
        snapshot = context.to_dict()

        assert snapshot["tasks"]["data"] == tasks
        assert snapshot["tasks"]["selected"] is None
        assert snapshot["user"] == {"id": "u1", "role": "admin"}
