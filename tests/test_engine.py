"""UI engine integration tests."""

import asyncio

import pytest

from uispec.adapters import TableSchemaAdapter, tables_from_dict
from uispec.core import EngineConfig, PlanningConfig, Settings, ValidationError
from uispec.engine import EngineStatus, RenderKey, SystemEventType, UIEngine, create_event_hook
from uispec.engine.render_cache import NO_SELECTION
from uispec.planner import LLMPlanner, PlannerError
from uispec.spec import SpecNode, UIEventType, add_child, find_node

S = EngineStatus


# ============================================================================
# Helpers
# ============================================================================

def _keys(engine) -> set[str]:
    return {str(key) for key in engine.render_cache.keys()}


def _since(engine, mark):
    return list(engine.transitions)[mark:]


def _screen(title: str) -> SpecNode:
    return SpecNode(
        id="root",
        node_type="Container",
        children=(SpecNode(id="header", node_type="Header", props={"title": title}),),
    )


class FailingPlanner:
    def __init__(self, tree: SpecNode) -> None:
        self.tree = tree
        self.fail = True

    async def plan(self, request, config=None):
        if self.fail:
            raise PlannerError("model down")
        return self.tree


class GatedPlanner:
    """Returns ``trees[n]`` for the n-th call, waiting on ``gates[n]`` first if set."""

    def __init__(self, trees) -> None:
        self.trees = list(trees)
        self.gates: dict[int, asyncio.Event] = {}
        self.calls = 0

    async def plan(self, request, config=None):
        index = self.calls
        self.calls += 1
        gate = self.gates.get(index)
        if gate is not None:
            await gate.wait()
        return self.trees[index]


@pytest.fixture
def engine(schema, static_planner, text_adapter, engine_config, settings):
    engine = UIEngine(schema, "Manage my tasks", static_planner, text_adapter, config=engine_config, settings=settings)
    yield engine
    engine.dispose()


@pytest.fixture
def table_adapter(tasks):
    tables = tables_from_dict(
        {
            "tasks": {
                "columns": {
                    "id": {"dataType": "serial", "primaryKey": True},
                    "title": {"dataType": "text", "notNull": True},
                    "done": {"dataType": "boolean"},
                    "priority": {"dataType": "varchar"},
                }
            }
        }
    )
    return TableSchemaAdapter(tables, rows={"tasks": tasks})


# ============================================================================
# Lifecycle
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_start_plans_and_renders(engine, static_planner, task_tree):
    state = await engine.start()

    assert state.status is S.IDLE
    assert engine.tree is task_tree
    assert state.resolved is not None
    assert state.loading is False
    assert state.history[0].type is UIEventType.INIT
    assert "# Tasks" in state.output
    assert "- Write report | high" in state.output
    assert static_planner.requests[0].action == "FULL_REFRESH"
    assert static_planner.requests[0].target_node_id is None
    assert [t for t in engine.transitions] == [
        (S.INITIALIZING, S.RESOLVING_BINDINGS),
        (S.RESOLVING_BINDINGS, S.RENDERING),
        (S.RENDERING, S.IDLE),
    ]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_start_emits_system_events(engine):
    seen = []
    engine.bus.on_all(lambda event: seen.append(event.type))

    await engine.start()

    assert seen == [
        SystemEventType.PLAN_START,
        SystemEventType.PLAN_PROMPT_CREATED,
        SystemEventType.PLAN_COMPLETE,
        SystemEventType.BINDING_RESOLUTION_START,
        SystemEventType.BINDING_RESOLUTION_COMPLETE,
        SystemEventType.RENDER_START,
        SystemEventType.RENDER_COMPLETE,
    ]


@pytest.mark.integration
def test_invalid_goal(schema, static_planner, text_adapter, settings):
    with pytest.raises(ValidationError, match="Invalid engine request"):
        UIEngine(schema, "   ", static_planner, text_adapter, settings=settings)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_placeholder_rendered_while_planning(schema, static_planner, text_adapter, settings):
    handle = []
    engine = UIEngine(schema, "Manage my tasks", static_planner, text_adapter, settings=settings, handle=handle)

    await engine.start()

    assert handle[0] == "Loading..."
    assert handle[-1] == engine.state.output


@pytest.mark.integration
@pytest.mark.asyncio
async def test_user_only_context_without_sources(static_planner, text_adapter, settings):
    engine = UIEngine({}, "Say hello", static_planner, text_adapter, settings=settings)

    state = await engine.start()

    # nothing to bind against yet: tree committed, no render pass
    assert state.tree is not None
    assert state.resolved is None
    assert state.status is S.IDLE


# ============================================================================
# Events and the render cache
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_show_and_hide_detail(engine, tasks):
    await engine.start()
    assert RenderKey("detail", False, NO_SELECTION) in engine.render_cache
    assert "detail:false:no-data-selected" in _keys(engine)

    mark = len(engine.transitions)
    future = engine.dispatch({"type": "click", "nodeId": "list", "payload": {"itemId": 3}})
    assert engine.status is S.EVENT_PROCESSING
    assert await future is True

    assert engine.status is S.IDLE
    assert engine.data_context.lookup("tasks.selected") == tasks[2]
    assert "detail:true:3" in _keys(engine)
    assert "detail:false:no-data-selected" not in _keys(engine)
    assert "Plan sprint (" in engine.state.output
    assert _since(engine, mark) == [
        (S.IDLE, S.EVENT_PROCESSING),
        (S.EVENT_PROCESSING, S.RESOLVING_BINDINGS),
        (S.RESOLVING_BINDINGS, S.RENDERING),
        (S.RENDERING, S.IDLE),
    ]

    assert await engine.handle_event({"type": "click", "nodeId": "back"}) is True

    assert engine.data_context.lookup("tasks.selected") is None
    assert "detail:false:no-data-selected" in _keys(engine)
    assert "detail:true:3" not in _keys(engine)
    assert "Plan sprint (" not in engine.state.output


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unchanged_nodes_served_from_cache(engine):
    await engine.start()
    header_key = RenderKey("header", True, NO_SELECTION)
    hits = engine.render_cache.stats.hits

    await engine.handle_event({"type": "click", "nodeId": "list", "payload": {"itemId": 1}})

    assert header_key in engine.render_cache
    assert engine.render_cache.stats.hits > hits


@pytest.mark.integration
@pytest.mark.asyncio
async def test_mutation_leaves_previous_context_untouched(engine, tasks):
    await engine.start()
    before = engine.data_context

    await engine.handle_event({"type": "click", "nodeId": "list", "payload": {"itemId": 2}})

    assert engine.data_context is not before
    assert before.lookup("tasks.selected") is None
    assert engine.data_context.lookup("tasks.selected") == tasks[1]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unrouted_event_returns_to_idle(engine):
    await engine.start()
    mark = len(engine.transitions)
    context = engine.data_context

    assert await engine.handle_event({"type": "mouseover", "nodeId": "header"}) is True

    assert engine.data_context is context
    assert _since(engine, mark) == [(S.IDLE, S.EVENT_PROCESSING), (S.EVENT_PROCESSING, S.IDLE)]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_prevent_default_skips_routing(engine):
    await engine.start()
    seen = []
    engine.events.register([UIEventType.CLICK], create_event_hook(lambda ctx: seen.append(ctx.original_event), prevent_default=True))
    mark = len(engine.transitions)
    context = engine.data_context

    assert await engine.handle_event({"type": "click", "nodeId": "list", "payload": {"itemId": 1}}) is False

    assert len(seen) == 1
    assert engine.data_context is context
    assert engine.status is S.IDLE
    assert S.RESOLVING_BINDINGS not in {to for _, to in _since(engine, mark)}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_back_to_back_events_processed_in_order(engine, tasks):
    await engine.start()

    first = engine.dispatch({"type": "click", "nodeId": "list", "payload": {"itemId": 1}})
    second = engine.dispatch({"type": "click", "nodeId": "list", "payload": {"itemId": 2}})
    assert await asyncio.gather(first, second) == [True, True]

    assert engine.status is S.IDLE
    assert engine.data_context.lookup("tasks.selected") == tasks[1]
    assert [e.node_id for e in engine.state.history[1:]] == ["list", "list"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_mutation_invalidates_output_rendered_after_event_was_raised(schema, make_planner, text_adapter, settings):
    tree = SpecNode.model_validate(
        {
            "id": "root",
            "type": "Container",
            "children": [
                {
                    "id": "list",
                    "type": "ListView",
                    "bindings": {"data": "tasks"},
                    "props": {"fields": ["title"]},
                    "events": {"click": "SHOW_DETAIL:detail"},
                },
                {
                    "id": "detail",
                    "type": "Detail",
                    "bindings": {"data": "tasks.selected"},
                    "props": {"title": "detail", "fields": ["title", "done"]},
                },
                {
                    "id": "toggle",
                    "type": "Button",
                    "props": {"label": "Done"},
                    "events": {"click": {"action": "TOGGLE_STATE", "payload": {"field": "done"}}},
                },
            ],
        }
    )
    engine = UIEngine(schema, "Manage my tasks", make_planner(tree), text_adapter, settings=settings)
    await engine.start()

    # both events are raised against the tree with the detail still hidden
    select = engine.dispatch({"type": "click", "nodeId": "list", "payload": {"itemId": 1}})
    toggle = engine.dispatch({"type": "click", "nodeId": "toggle", "payload": {"itemId": 1}})
    assert await asyncio.gather(select, toggle) == [True, True]

    assert engine.data_context.lookup("tasks.selected.done") is True
    assert "detail (title: Write report, done: True)" in engine.state.output
    assert "done: False" not in engine.state.output
    engine.dispose()


# ============================================================================
# Errors
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_routing_failure_enters_error(engine):
    await engine.start()

    assert await engine.handle_event({"type": "click", "nodeId": "list", "payload": {"itemId": 99}}) is False

    assert engine.status is S.ERROR
    assert engine.state.error.startswith("Routing failed")
    assert engine.state.output.startswith("Error: Routing failed")
    # events are ignored until a replan
    assert await engine.handle_event({"type": "click", "nodeId": "back"}) is False


@pytest.mark.integration
@pytest.mark.asyncio
async def test_planner_failure_and_recovery(schema, task_tree, text_adapter, settings):
    planner = FailingPlanner(task_tree)
    engine = UIEngine(schema, "Manage my tasks", planner, text_adapter, settings=settings)
    errors = []
    engine.bus.on(SystemEventType.PLAN_ERROR, errors.append)

    state = await engine.start()

    assert state.status is S.ERROR
    assert state.error == "Planning failed: model down"
    assert state.output == "Error: Planning failed: model down"
    assert isinstance(errors[0].error, PlannerError)
    assert (S.INITIALIZING, S.ERROR) in engine.transitions

    planner.fail = False
    state = await engine.replan()

    assert state.status is S.IDLE
    assert state.error is None
    assert state.tree is task_tree


# ============================================================================
# Replanning
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_stale_plan_discarded(schema, text_adapter, settings):
    planner = GatedPlanner([_screen("first"), _screen("slow"), _screen("fast")])
    engine = UIEngine(schema, "Manage my tasks", planner, text_adapter, settings=settings)
    await engine.start()

    gate = asyncio.Event()
    planner.gates[1] = gate
    slow = asyncio.create_task(engine.replan())
    await asyncio.sleep(0)
    assert engine.status is S.INITIALIZING
    assert await engine.dispatch({"type": "click", "nodeId": "header"}) is False

    await engine.replan()
    gate.set()
    await slow

    assert find_node(engine.tree, "header").props["title"] == "fast"
    assert "# fast" in engine.state.output
    assert engine.status is S.IDLE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_replan_supersedes_event_plan_in_flight(schema, text_adapter, settings):
    planner = GatedPlanner([_screen("first"), _screen("from event"), _screen("fresh")])
    engine = UIEngine(schema, "Manage my tasks", planner, text_adapter, settings=settings)
    await engine.start()

    gate = asyncio.Event()
    planner.gates[1] = gate
    clicked = engine.dispatch({"type": "click", "nodeId": "header"})
    while planner.calls < 2:
        await asyncio.sleep(0)
    assert engine.status is S.EVENT_PROCESSING

    await engine.replan()
    assert (S.EVENT_PROCESSING, S.INITIALIZING) in engine.transitions
    assert engine.status is S.IDLE

    gate.set()
    assert await clicked is True

    assert find_node(engine.tree, "header").props["title"] == "fresh"
    assert "# fresh" in engine.state.output
    assert engine.status is S.IDLE
    engine.dispose()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_replan_with_new_goal(engine, static_planner):
    await engine.start()

    await engine.replan("Triage bugs")

    assert engine.goal == "Triage bugs"
    assert static_planner.requests[-1].goal == "Triage bugs"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_navigate_triggers_full_replan(schema, task_tree, make_planner, text_adapter, settings):
    go = SpecNode.model_validate(
        {"id": "go", "type": "Button", "props": {"label": "Reports"}, "events": {"click": {"action": "NAVIGATE", "target": "reports"}}}
    )
    tree = add_child(task_tree, "root", go)
    planner = make_planner(tree)
    engine = UIEngine(schema, "Manage my tasks", planner, text_adapter, settings=settings)
    await engine.start()
    engine.render_cache.put(RenderKey("stale", True), "old")

    assert await engine.handle_event({"type": "click", "nodeId": "go"}) is True

    assert planner.requests[-1].action == "NAVIGATE"
    assert planner.requests[-1].user_context["targetNodeId"] == "reports"
    assert RenderKey("stale", True) not in engine.render_cache
    assert engine.status is S.IDLE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_partial_update_replaces_subtree(schema, make_planner, text_adapter, settings):
    tree = SpecNode.model_validate(
        {
            "id": "root",
            "type": "Container",
            "children": [
                {"id": "header", "type": "Header", "props": {"title": "Filters"}},
                {"id": "panel", "type": "Container", "children": [{"id": "old", "type": "Text", "props": {"text": "old filters"}}]},
                {
                    "id": "more",
                    "type": "Button",
                    "props": {"label": "More"},
                    "events": {"click": {"action": "ADD_DROPDOWN", "target": "panel"}},
                },
            ],
        }
    )
    partial = SpecNode.model_validate(
        {
            "id": "panel",
            "type": "Container",
            "children": [{"id": "status", "type": "Select", "props": {"name": "status", "options": ["open", "done"]}}],
        }
    )
    planner = make_planner(tree, partial)
    engine = UIEngine(schema, "Filter tasks", planner, text_adapter, config=EngineConfig(enable_partial_updates=True), settings=settings)
    await engine.start()
    header = find_node(engine.tree, "header")
    updates = []
    engine.bus.on(SystemEventType.PARTIAL_UPDATE, updates.append)

    assert await engine.handle_event({"type": "click", "nodeId": "more"}) is True

    assert planner.requests[-1].target_node_id == "panel"
    assert find_node(engine.tree, "status") is not None
    assert find_node(engine.tree, "old") is None
    assert find_node(engine.tree, "header") is header
    assert "old filters" not in engine.state.output
    assert "status: " in engine.state.output
    assert updates[0].target_node_id == "panel"
    assert updates[0].action == "ADD_DROPDOWN"


# ============================================================================
# Data refresh
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_context_from_schema_adapter(table_adapter, task_tree, make_planner, text_adapter, settings, tasks):
    engine = UIEngine(
        table_adapter.get_schema(), "Manage my tasks", make_planner(task_tree), text_adapter,
        schema_adapter=table_adapter, settings=settings,
    )

    await engine.start()

    assert engine.data_context.lookup("tasks.data") == tasks
    assert engine.data_context.lookup("tasks.schema.columns.id.type") == "integer"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_refresh_source(table_adapter, task_tree, make_planner, text_adapter, settings, tasks):
    engine = UIEngine(
        table_adapter.get_schema(), "Manage my tasks", make_planner(task_tree), text_adapter,
        schema_adapter=table_adapter, settings=settings,
    )
    await engine.start()
    fetches = []
    engine.bus.on(SystemEventType.DATA_FETCH_COMPLETE, fetches.append)

    table_adapter.rows["tasks"] = [*tasks, {"id": 5, "title": "Deploy", "done": False, "priority": "low"}]
    assert await engine.refresh_source("tasks") is True

    assert engine.data_context.lookup("tasks.data")[-1]["title"] == "Deploy"
    assert "- Deploy | low" in engine.state.output
    assert fetches[0].applied is True

    assert await engine.refresh_source("tasks", {"priority": "high"}) is True
    assert [t["id"] for t in engine.data_context.lookup("tasks.data")] == [1, 4]
    assert "Review PR" not in engine.state.output


@pytest.mark.integration
@pytest.mark.asyncio
async def test_stale_fetch_discarded(task_tree, make_planner, text_adapter, settings, tasks):
    gate = asyncio.Event()
    calls = []

    async def query_fn(source, query):
        calls.append(query)
        if len(calls) == 1:
            await gate.wait()
            return tasks[:1]
        return tasks[1:]

    adapter = TableSchemaAdapter(tables_from_dict({"tasks": {"columns": {"id": {"dataType": "serial"}}}}), query_fn=query_fn)
    engine = UIEngine(
        adapter.get_schema(), "Manage my tasks", make_planner(task_tree), text_adapter,
        schema_adapter=adapter, settings=settings,
    )
    await engine.start()
    fetches = []
    engine.bus.on(SystemEventType.DATA_FETCH_COMPLETE, fetches.append)

    slow = asyncio.create_task(engine.refresh_source("tasks", {"page": 1}))
    await asyncio.sleep(0)
    assert await engine.refresh_source("tasks", {"page": 2}) is True
    gate.set()
    assert await slow is False

    assert engine.data_context.lookup("tasks.data") == tasks[1:]
    assert [f.applied for f in fetches] == [True, False]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_failed_fetch(table_adapter, task_tree, make_planner, text_adapter, settings):
    engine = UIEngine(
        table_adapter.get_schema(), "Manage my tasks", make_planner(task_tree), text_adapter,
        schema_adapter=table_adapter, settings=settings,
    )
    await engine.start()

    assert await engine.refresh_source("people") is False
    assert engine.status is S.IDLE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_refresh_without_schema_adapter(engine):
    await engine.start()
    with pytest.raises(RuntimeError, match="no schema adapter"):
        await engine.refresh_source("tasks")


# ============================================================================
# Structural edits
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_add_and_remove_nodes(engine):
    await engine.start()

    await engine.add_node("root", SpecNode(id="footer", node_type="Text", props={"text": "v1.0"}))
    assert engine.state.output.splitlines()[-1].strip() == "v1.0"

    await engine.remove_node("header")
    assert "# Tasks" not in engine.state.output
    assert find_node(engine.tree, "header") is None
    assert engine.status is S.IDLE


# ============================================================================
# Streaming, prefetch, debug
# ============================================================================

@pytest.mark.integration
@pytest.mark.asyncio
async def test_streaming_plan(schema, mock_llm, text_adapter):
    settings = Settings(plan_cache_enabled=False, stream_batch_size=10)
    planner = LLMPlanner(mock_llm, settings=settings)
    config = EngineConfig(planning=PlanningConfig(streaming=True))
    handle = []
    engine = UIEngine(schema, "Say hi", planner, text_adapter, config=config, settings=settings, handle=handle)
    chunks = []
    engine.bus.on(SystemEventType.PLAN_RESPONSE_CHUNK, lambda event: chunks.append(event.chunk))

    state = await engine.start()

    assert state.status is S.IDLE
    assert "".join(chunks).startswith('{"id": "root"')
    assert "".join(chunks).endswith("}]}")
    assert handle[0] == "Loading..."
    assert state.tree.children[0].id == "t"
    assert "hi" in state.output
    mock_llm.bind.assert_called_with(temperature=0.2)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_prefetch_serves_next_replan(schema, task_tree, make_planner, text_adapter, settings):
    go = SpecNode.model_validate(
        {"id": "go", "type": "Button", "props": {"label": "Reports"}, "events": {"click": {"action": "NAVIGATE", "target": "reports"}}}
    )
    planner = make_planner(add_child(task_tree, "root", go))
    config = EngineConfig(planning=PlanningConfig(prefetch_depth=1))
    engine = UIEngine(schema, "Manage my tasks", planner, text_adapter, config=config, settings=settings)
    done = asyncio.Event()
    prefetched = {}

    def on_prefetch(event):
        prefetched.update(event.prefetched_layouts)
        done.set()

    engine.bus.on(SystemEventType.PREFETCH_COMPLETE, on_prefetch)

    await engine.start()
    await asyncio.wait_for(done.wait(), timeout=1)

    assert list(prefetched) == ["go:CLICK"]
    calls = len(planner.requests)

    assert await engine.handle_event({"type": "click", "nodeId": "go"}) is True

    assert len(planner.requests) == calls
    assert engine.status is S.IDLE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_debug_mode_subscribes_logger(schema, static_planner, text_adapter, settings):
    engine = UIEngine(schema, "Manage my tasks", static_planner, text_adapter, config=EngineConfig(debug_mode=True), settings=settings)
    assert engine.bus.listener_count() == len(SystemEventType) - 2

    await engine.start()
    engine.dispose()

    assert engine.bus.listener_count() == 0
    assert len(engine.render_cache) == 0
    assert await engine.dispatch({"type": "click", "nodeId": "list"}) is False
