"""Spec parser tests."""

import pytest

from uispec.core import SpecValidator, ValidationError
from uispec.spec import SpecParser, UIEventType, find_node, parse_spec


@pytest.mark.unit
class TestExplicitFormat:
    def test_parse_json_string(self):
        tree = parse_spec(
            '{"id": "root", "type": "Container", "children": ['
            '{"id": "list", "type": "ListView", "bindings": {"data": "tasks"},'
            ' "events": {"onClick": {"action": "SHOW_DETAIL", "target": "detail"}}}]}'
        )

        node = find_node(tree, "list")
        assert node.bindings == {"data": "tasks"}
        assert node.events[UIEventType.CLICK].target == "detail"

    def test_fenced_output_with_wrapper(self):
        text = '```json\n{"layout": {"id": "root", "type": "Text", "props": {"text": "hi"}}}\n```'
        tree = parse_spec(text)

        assert tree.id == "root"
        assert tree.props == {"text": "hi"}

    def test_event_shorthand(self):
        tree = parse_spec(
            {"id": "b", "type": "Button", "props": {"label": "Go"}, "events": {"click": "SHOW_DETAIL:detail"}}
        )

        descriptor = tree.events[UIEventType.CLICK]
        assert (descriptor.action, descriptor.target) == ("SHOW_DETAIL", "detail")

    def test_string_children_and_layout_shortcuts(self):
        tree = parse_spec({"id": "root", "type": "Row", "children": ["Hello", "World"]})

        assert tree.node_type == "Container"
        assert tree.props["layout"] == "horizontal"
        assert [child.props["text"] for child in tree.children] == ["Hello", "World"]
        assert [child.id for child in tree.children] == ["text-0", "text-1"]

    def test_missing_ids_generated(self):
        tree = parse_spec({"type": "Container", "children": [{"type": "Text", "props": {"text": "x"}}]})

        assert tree.id == "container-0"
        assert tree.children[0].id == "text-1"


@pytest.mark.unit
class TestCompactFormat:
    def test_compact_node(self):
        tree = parse_spec(
            {
                "Container#root": {
                    "children": [
                        {"ListView#list": {"$data": "tasks", "@click": "SHOW_DETAIL:detail", "fields": ["title"]}},
                        {"Detail#detail": {"$data": "tasks.selected"}},
                    ]
                }
            }
        )

        listing = find_node(tree, "list")
        assert listing.bindings == {"data": "tasks"}
        assert listing.props == {"fields": ["title"]}
        assert listing.events[UIEventType.CLICK].action == "SHOW_DETAIL"
        assert find_node(tree, "detail").bindings == {"data": "tasks.selected"}


@pytest.mark.unit
class TestRejection:
    def test_invalid_json(self):
        with pytest.raises(ValidationError):
            parse_spec("not json at all")

    def test_duplicate_ids(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            parse_spec({"id": "a", "type": "Container", "children": [{"id": "a", "type": "Container"}]})

    def test_unknown_node_type(self):
        with pytest.raises(ValidationError, match="unknown type"):
            parse_spec({"id": "a", "type": "Hologram"})

    def test_missing_required_prop(self):
        with pytest.raises(ValidationError, match="missing required prop 'label'"):
            parse_spec({"id": "b", "type": "Button"})

    def test_unknown_event_kind(self):
        with pytest.raises(ValidationError):
            parse_spec({"id": "b", "type": "Button", "props": {"label": "x"}, "events": {"swipe": "NAVIGATE"}})

    def test_depth_limit(self):
        parser = SpecParser(validator=SpecValidator(max_depth=4))
        nested = {"id": "n0", "type": "Container"}
        current = nested
        for i in range(1, 6):
            child = {"id": f"n{i}", "type": "Container"}
            current["children"] = [child]
            current = child

        with pytest.raises(ValidationError, match="depth"):
            parser.parse(nested)


@pytest.mark.unit
class TestPartial:
    def test_truncated_stream(self):
        parser = SpecParser()
        tree = parser.parse_partial('{"id": "root", "type": "Container", "children": [{"id": "a", "type": "Text"')

        assert tree is not None
        assert tree.id == "root"

    def test_nothing_usable(self):
        assert SpecParser().parse_partial("Thinking...") is None

    def test_node_without_type_yet(self):
        parser = SpecParser()

        assert parser.parse_partial('{"id": "root"') is None
        assert parser.parse_partial('{"id": "root", "props": {"title": "Ta') is None


@pytest.mark.unit
def test_untyped_node_is_not_compact():
    with pytest.raises(ValidationError, match="root is not a node"):
        parse_spec({"id": "root", "props": {"title": "Tasks"}})

    with pytest.raises(ValidationError, match="root is not a node"):
        parse_spec({"props": {"title": "Tasks"}})
