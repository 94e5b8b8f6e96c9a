"""UI Engine.

Owns the specification tree lifecycle: initial planning, binding resolution
and rendering passes, event handling, full and partial replans, and
background data refreshes. Runs on a single asyncio event loop; overlapping
operations are ordered by the state machine and by per-operation ids, so a
completion that has been superseded is dropped instead of applied.
"""

import asyncio
import inspect
import time
from collections import deque
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from ..core import get_logger, get_settings, EngineConfig, GoalRequest, LogContext, Settings, ValidationError
from ..core.id import EngineID, new_engine_id, new_fetch_id, new_pass_id, new_plan_id
from ..planner.base import Planner, PlannerError, StreamingPlanner
from ..spec.models import SpecNode, UIEvent, UIEventType
from ..spec.registry import NodeTypeRegistry, default_registry
from ..spec.tree import TreeError, ancestors, find_node, walk
from .actions import ActionKind, RouteKind, RoutingError, classify
from .bindings import BindingResolver
from .context import DataContext, SourceEntry, initialize_data_context
from .events import EventPipeline
from .reducer import (
    Action,
    DataContextReplaced,
    EngineState,
    ErrorRaised,
    LoadingChanged,
    NodeAdded,
    NodeRemoved,
    PartialUpdateApplied,
    PlanCommitted,
    Rendered,
    Resolved,
    StatusChanged,
    UIEventReceived,
    reduce,
)
from .render_cache import RenderCache, RenderKey
from .router import ActionRouter, RouteResult, dependent_keys
from .state import EngineStatus
from .system_events import (
    BindingResolutionCompleteEvent,
    BindingResolutionStartEvent,
    DataFetchCompleteEvent,
    DataFetchStartEvent,
    PartialUpdateEvent,
    PlanCompleteEvent,
    PlanErrorEvent,
    PlanPromptCreatedEvent,
    PlanResponseChunkEvent,
    PlanStartEvent,
    PrefetchCompleteEvent,
    PrefetchStartEvent,
    RenderCompleteEvent,
    RenderStartEvent,
    SystemEventBus,
    attach_debug_logger,
)

if TYPE_CHECKING:
    from ..adapters.component import ComponentAdapter
    from ..adapters.schema import SchemaAdapter

logger = get_logger(__name__)

ROOT_NODE_ID = "root"

# Event arrivals are ignored in these states
_CLOSED_STATES = frozenset({EngineStatus.INITIALIZING, EngineStatus.ERROR})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class UIEngine:
    """Orchestrates planning, resolution, rendering and event handling."""

    def __init__(
        self,
        schema: Mapping[str, Any],
        goal: str,
        planner: Planner,
        adapter: "ComponentAdapter",
        config: EngineConfig | None = None,
        schema_adapter: "SchemaAdapter | None" = None,
        registry: NodeTypeRegistry | None = None,
        settings: Settings | None = None,
        handle: Any = None,
    ) -> None:
        """
        Create an engine. Nothing is planned until ``start()``.

        Args:
            schema: Data schema, one entry per source
            goal: Natural-language goal for the planner
            planner: Planner producing specification trees
            adapter: Component adapter producing presentation output
            config: Engine options (defaults from settings)
            schema_adapter: Optional data access layer for initial and refreshed rows
            registry: Node type registry (built-in types by default)
            settings: Process settings (cached environment settings by default)
            handle: Opaque presentation handle passed to the adapter

        Raises:
            ValidationError: If the goal is empty or too long
        """
        settings = settings or get_settings()
        try:
            request = GoalRequest(goal=goal, source_schema=dict(schema))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid engine request: {e}") from e

        self.id: EngineID = new_engine_id()
        self.goal = request.goal
        self.schema = request.source_schema
        self.config = config or EngineConfig.from_settings(settings)
        self.planner = planner
        self.adapter = adapter
        self.schema_adapter = schema_adapter
        self.registry = registry or default_registry()
        self.handle = handle

        self.bus = SystemEventBus()
        self.events = EventPipeline()
        self.resolver = BindingResolver(self.registry)
        self.router = ActionRouter(
            self.schema,
            self.goal,
            registry=self.registry,
            enable_partial_updates=self.config.enable_partial_updates,
            user_context=self.config.user_context,
        )
        self.render_cache: RenderCache = RenderCache(max_size=settings.render_cache_size)
        if hasattr(adapter, "attach_cache"):
            adapter.attach_cache(self.render_cache)

        self._state = EngineState()
        self.transitions: deque[tuple[EngineStatus, EngineStatus]] = deque(maxlen=100)
        self._plan_id: str | None = None
        self._pass_id: str | None = None
        self._fetch_ids: dict[str, str] = {}
        self._pending_events = 0
        self._prefetched: dict[str, SpecNode] = {}
        self._tasks: set[asyncio.Task] = set()
        self._disposed = False

        self._debug_unsubscribe = attach_debug_logger(self.bus) if self.config.debug_mode else None
        logger.info("engine_created", engine_id=self.id, sources=list(self.schema), debug=self.config.debug_mode)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def status(self) -> EngineStatus:
        return self._state.status

    @property
    def tree(self) -> SpecNode | None:
        return self._state.tree

    @property
    def data_context(self) -> DataContext:
        return self._state.data_context

    def _apply(self, action: Action) -> None:
        self._state = reduce(self._state, action)

    def _transition(self, status: EngineStatus) -> None:
        current = self._state.status
        if current is status:
            return
        self._apply(StatusChanged(status))
        self.transitions.append((current, status))
        logger.debug("status_changed", engine_id=self.id, from_status=current.value, to_status=status.value)

    def _settle(self) -> None:
        """Leave a pass: back to idle, or to event processing while events are pending."""
        if self._state.status is EngineStatus.ERROR:
            return
        self._transition(EngineStatus.EVENT_PROCESSING if self._pending_events else EngineStatus.IDLE)

    def _fail(self, message: str, error: BaseException | None = None) -> None:
        logger.error("engine_error", engine_id=self.id, message=message, error_type=type(error).__name__ if error else None)
        previous = self._state.status
        self._apply(ErrorRaised(message))
        if previous is not EngineStatus.ERROR:
            self.transitions.append((previous, EngineStatus.ERROR))
        try:
            self._apply(Rendered(self.adapter.render_error(message, self.handle)))
        except Exception as e:
            logger.error("render_error_failed", engine_id=self.id, error=str(e), exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> EngineState:
        """Populate the data context and run the initial planning cycle."""
        with LogContext(engine_id=self.id):
            self._transition(EngineStatus.INITIALIZING)
            try:
                context = await self._initial_context()
            except Exception as e:
                self._fail(f"Data context initialization failed: {e}", e)
                return self._state
            self._apply(DataContextReplaced(context))

            init_event = UIEvent(type=UIEventType.INIT, node_id=ROOT_NODE_ID)
            self._apply(UIEventReceived(init_event))
            route = self.router.route(init_event, None, context)
            await self._plan(route)

            if self.config.planning.prefetch_depth > 0 and self._state.status is EngineStatus.IDLE:
                self._spawn(self.prefetch())
            return self._state

    async def _initial_context(self) -> DataContext:
        user_context = self.config.user_context
        if self.schema_adapter is not None:
            return await self.schema_adapter.initialize_data_context(user_context)
        return initialize_data_context(self.schema, user_context)

    async def replan(self, goal: str | None = None) -> EngineState:
        """
        Start a fresh planning cycle; the way out of the error state.

        Args:
            goal: Optional replacement goal
        """
        with LogContext(engine_id=self.id):
            if goal is not None:
                self.goal = GoalRequest(goal=goal, source_schema=self.schema).goal
                self.router.goal = self.goal
            self._transition(EngineStatus.INITIALIZING)
            event = UIEvent(type=UIEventType.INIT, node_id=ROOT_NODE_ID)
            route = self.router.route(event, None, self._state.data_context)
            await self._plan(route)
            return self._state

    def dispose(self) -> None:
        """Cancel background work and drop all subscribers and cached output."""
        if self._disposed:
            return
        self._disposed = True
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._plan_id = self._pass_id = None
        self._fetch_ids.clear()
        if self._debug_unsubscribe:
            self._debug_unsubscribe()
        self.bus.dispose()
        self.events.clear()
        self.render_cache.clear()
        logger.info("engine_disposed", engine_id=self.id)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def dispatch(self, event: UIEvent | Mapping[str, Any]) -> "asyncio.Future[bool]":
        """
        Raise a UI event. Must be called from the running event loop.

        The resolved tree on display is captured now, and the engine enters
        ``event_processing`` before this returns. Processing continues in a
        task.

        Returns:
            Future resolving to True if the event reached the Action Router
        """
        if not isinstance(event, UIEvent):
            event = UIEvent.model_validate(event)

        if self._disposed or self._state.status in _CLOSED_STATES:
            logger.warning(
                "event_ignored",
                engine_id=self.id,
                status=self._state.status.value,
                event_type=event.type.value,
                node_id=event.node_id,
            )
            future = asyncio.get_running_loop().create_future()
            future.set_result(False)
            return future

        captured = self._state.resolved
        self._apply(UIEventReceived(event))
        self._pending_events += 1
        self._transition(EngineStatus.EVENT_PROCESSING)
        return self._spawn(self._process_event(event, captured))

    async def handle_event(self, event: UIEvent | Mapping[str, Any]) -> bool:
        """Dispatch an event and wait until it has been handled."""
        return await self.dispatch(event)

    async def _process_event(self, event: UIEvent, captured) -> bool:
        with LogContext(engine_id=self.id, event_type=event.type.value, node_id=event.node_id):
            routed = False
            try:
                proceed = await self.events.process_event(event)
                route = self.router.route(event, captured, self._state.data_context) if proceed else None
            except RoutingError as e:
                self._pending_events -= 1
                self._fail(f"Routing failed: {e}", e)
                return False
            except Exception as e:
                self._pending_events -= 1
                self._fail(f"Event processing failed: {e}", e)
                return False

            self._pending_events -= 1
            if self._state.status is EngineStatus.ERROR:
                return False
            if route is None:
                self._settle_event()
                return False
            routed = True

            match route.kind:
                case RouteKind.NONE:
                    self._settle_event()

                case RouteKind.MUTATION:
                    self._apply_mutation(route)
                    if route.context_changed and self._state.tree is not None:
                        await self._refresh()
                    else:
                        self._settle_event()

                case RouteKind.FULL_REPLAN | RouteKind.PARTIAL:
                    await self._plan(route)

            return routed

    def _settle_event(self) -> None:
        if self._state.status is EngineStatus.EVENT_PROCESSING and not self._pending_events:
            self._transition(EngineStatus.IDLE)

    def _apply_mutation(self, route: RouteResult) -> None:
        # route keys come from the tree the event was raised on; the cache may
        # already hold output of a newer pass
        live = dependent_keys(self._state.resolved, route.mutated)
        invalidated = self.render_cache.invalidate_many(dict.fromkeys((*route.invalidations, *live)))
        self._apply(DataContextReplaced(route.context))
        logger.info(
            "data_context_mutated",
            action=route.action.value if route.action else None,
            mutated=sorted(route.mutated),
            invalidated=invalidated,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def _plan(self, route: RouteResult) -> None:
        request = route.planner_input
        if request is None:
            self._settle()
            return

        plan_id = new_plan_id()
        self._plan_id = plan_id
        partial = route.kind is RouteKind.PARTIAL

        self.bus.emit(PlanStartEvent(plan_id=plan_id, goal=self.goal, target_node_id=request.target_node_id))
        if route.prompt:
            self.bus.emit(PlanPromptCreatedEvent(plan_id=plan_id, prompt=route.prompt))
        self._apply(LoadingChanged(True))
        if self._state.tree is None:
            self._render_placeholder(None)

        started = time.perf_counter()
        prefetch_key = f"{route.event.node_id}:{route.event.type.value}"
        try:
            tree = self._prefetched.pop(prefetch_key, None) if not partial else None
            if tree is None:
                tree = await self._run_planner(route, plan_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if plan_id != self._plan_id:
                logger.info("stale_plan_failure_discarded", plan_id=plan_id)
                return
            self.bus.emit(PlanErrorEvent(plan_id=plan_id, error=e, message=str(e)))
            self._fail(f"Planning failed: {e}", e)
            return

        if tree is None or plan_id != self._plan_id:
            logger.info("stale_plan_discarded", plan_id=plan_id)
            return

        self.bus.emit(PlanCompleteEvent(plan_id=plan_id, layout=tree, execution_time_ms=_elapsed_ms(started)))
        logger.info("plan_committed", plan_id=plan_id, root_id=tree.id, partial=partial, nodes=sum(1 for _ in walk(tree)))

        if partial:
            target = route.target_node_id
            subtree = find_node(tree, target) or tree
            invalidated = self.render_cache.invalidate_many(route.invalidations)
            try:
                self._apply(PartialUpdateApplied(target, subtree))
            except (TreeError, ValidationError) as e:
                self._fail(f"Partial update failed: {e}", e)
                return
            self.bus.emit(
                PartialUpdateEvent(target_node_id=target, action=route.action.value, invalidated=invalidated)
            )
        else:
            self._prefetched.clear()
            self.render_cache.clear()
            self._apply(PlanCommitted(tree))

        await self._refresh()

    async def _run_planner(self, route: RouteResult, plan_id: str) -> SpecNode | None:
        request = route.planner_input
        planning = self.config.planning

        if not (planning.streaming and isinstance(self.planner, StreamingPlanner)):
            return await self.planner.plan(request, planning)

        final = None
        async for update in self.planner.stream(request, planning):
            if plan_id != self._plan_id:
                return None
            if update.chunk:
                self.bus.emit(PlanResponseChunkEvent(plan_id=plan_id, chunk=update.chunk, is_complete=update.final))
            if update.final:
                final = update.tree
            elif update.tree is not None and route.kind is RouteKind.FULL_REPLAN:
                # provisional trees are shown, never committed
                self._render_placeholder(update.tree)

        if final is None:
            raise PlannerError("Planner stream ended without a final tree")
        return final

    def _render_placeholder(self, tree: SpecNode | None) -> None:
        try:
            self._apply(Rendered(self.adapter.render_placeholder(tree, self.handle)))
        except Exception as e:
            logger.warning("placeholder_render_failed", error=str(e))

    async def prefetch(self) -> dict[str, SpecNode]:
        """
        Plan ahead for the first ``prefetch_depth`` replan-triggering events.

        Prefetched trees are used instead of a planner call when that event
        is raised, and are dropped whenever a new full tree is committed.
        """
        depth = self.config.planning.prefetch_depth
        resolved = self._state.resolved
        if depth <= 0 or resolved is None:
            return {}

        self.bus.emit(PrefetchStartEvent(depth=depth))
        candidates = []
        for node in walk(resolved):
            for kind, descriptor in node.events.items():
                try:
                    action = ActionKind.parse(descriptor.action)
                except RoutingError:
                    continue
                if classify(action, self.config.enable_partial_updates) is RouteKind.FULL_REPLAN:
                    candidates.append(UIEvent(type=kind, node_id=node.id))

        prefetched: dict[str, SpecNode] = {}
        for event in candidates[:depth]:
            key = f"{event.node_id}:{event.type.value}"
            try:
                route = self.router.route(event, resolved, self._state.data_context)
                prefetched[key] = await self.planner.plan(route.planner_input, self.config.planning)
            except Exception as e:
                logger.warning("prefetch_failed", key=key, error=str(e))

        if self._state.resolved is resolved:
            self._prefetched.update(prefetched)
        self.bus.emit(PrefetchCompleteEvent(prefetched_layouts=prefetched))
        return prefetched

    # ------------------------------------------------------------------
    # Resolution and rendering
    # ------------------------------------------------------------------

    async def _refresh(self) -> None:
        """Run one resolution and render pass over the current tree and context."""
        if self._state.status is EngineStatus.ERROR:
            return
        tree = self._state.tree
        context = self._state.data_context
        if tree is None or not context.is_meaningfully_populated():
            self._settle()
            return

        pass_id = new_pass_id()
        self._pass_id = pass_id
        self._transition(EngineStatus.RESOLVING_BINDINGS)

        self.bus.emit(BindingResolutionStartEvent(pass_id=pass_id, layout=tree))
        try:
            result = self.resolver.resolve(tree, context)
        except Exception as e:
            self._fail(f"Binding resolution failed: {e}", e)
            return
        self.bus.emit(
            BindingResolutionCompleteEvent(
                pass_id=pass_id,
                original_layout=tree,
                resolved_layout=result.tree,
                issues=len(result.issues),
            )
        )

        self._transition(EngineStatus.RENDERING)
        self.bus.emit(RenderStartEvent(pass_id=pass_id, layout=result.tree))
        started = time.perf_counter()
        try:
            output = self.adapter.render(result.tree, self.handle, self.dispatch)
            if inspect.isawaitable(output):
                output = await output
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if pass_id == self._pass_id:
                self._fail(f"Render failed: {e}", e)
            return

        if pass_id != self._pass_id:
            logger.debug("stale_render_discarded", pass_id=pass_id)
            return

        self._apply(Resolved(result.tree))
        self._apply(Rendered(output))
        self.bus.emit(RenderCompleteEvent(pass_id=pass_id, layout=result.tree, render_time_ms=_elapsed_ms(started)))
        self._settle()

    # ------------------------------------------------------------------
    # Data and structural edits
    # ------------------------------------------------------------------

    async def refresh_source(self, source: str, query: Mapping[str, Any] | None = None) -> bool:
        """
        Re-query one source through the schema adapter and re-render.

        A completion is dropped if a newer fetch for the same source started
        meanwhile.

        Returns:
            True if the rows were applied
        """
        if self.schema_adapter is None:
            raise RuntimeError("Engine has no schema adapter")

        fetch_id = new_fetch_id()
        self._fetch_ids[source] = fetch_id
        self.bus.emit(DataFetchStartEvent(fetch_id=fetch_id, table_name=source, query=query))
        started = time.perf_counter()
        try:
            rows = await self.schema_adapter.query(source, query)
        except Exception as e:
            logger.error("data_fetch_failed", source=source, error=str(e))
            self.bus.emit(
                DataFetchCompleteEvent(
                    fetch_id=fetch_id, table_name=source, results=[], execution_time_ms=_elapsed_ms(started), applied=False
                )
            )
            return False

        current = self._fetch_ids.get(source) == fetch_id
        self.bus.emit(
            DataFetchCompleteEvent(
                fetch_id=fetch_id,
                table_name=source,
                results=list(rows),
                execution_time_ms=_elapsed_ms(started),
                applied=current,
            )
        )
        if not current:
            logger.info("stale_fetch_discarded", source=source, fetch_id=fetch_id)
            return False

        context = self._state.data_context
        if context.entry(source) is None:
            context = context.with_entry(source, SourceEntry(schema=self.schema.get(source) or {}, data=list(rows)))
        else:
            context = context.set_path([source, "data"], list(rows))
        self.render_cache.invalidate_many(dependent_keys(self._state.resolved, {source}))
        self._apply(DataContextReplaced(context))

        if self._state.status in (EngineStatus.IDLE, EngineStatus.EVENT_PROCESSING, EngineStatus.RENDERING):
            await self._refresh()
        return True

    def _invalidate_lineage(self, node_id: str) -> int:
        """Drop cached output of ``node_id`` and of every ancestor rendering it."""
        resolved = self._state.resolved
        node = find_node(resolved, node_id) if resolved is not None else None
        if node is None:
            return 0
        lineage = [node, *ancestors(resolved, node_id)]
        return self.render_cache.invalidate_many(RenderKey.for_node(n) for n in lineage)

    async def add_node(self, parent_id: str, node: SpecNode, index: int | None = None) -> None:
        """
        Insert a node into the current tree and re-render.

        Raises:
            TreeError: If the parent is missing or an id is already used
        """
        self._apply(NodeAdded(parent_id, node, index))
        self._invalidate_lineage(parent_id)
        await self._refresh()

    async def remove_node(self, node_id: str) -> None:
        """
        Remove a node from the current tree and re-render.

        Raises:
            TreeError: If the node is the root or missing
        """
        self._apply(NodeRemoved(node_id))
        self._invalidate_lineage(node_id)
        self.render_cache.invalidate_node(node_id)
        await self._refresh()


__all__ = ["UIEngine", "ROOT_NODE_ID"]
