"""
Tests for CascadeExecutor traversal: order, depth limit, exclusion,
failure isolation and cancellation.
"""

import pytest

from promptcascade.config import CascadeConfig
from promptcascade.errors import AlreadyRunning, ModelError, NodeNotFound
from promptcascade.llm.mock import MockModelBackend
from promptcascade.runner import CancellationToken, CascadeExecutor, CascadeOptions, PromptRunner
from promptcascade.runtime.event_bus import EventBus, EventType
from promptcascade.schemas.node import NodeType, PostActionConfig, PromptNode
from promptcascade.schemas.run import CancelReason, RunOutcome, RunState
from promptcascade.storage import InMemoryTreeStore


# ---- Fakes ----
class DismissingQuestionUI:
    async def ask(self, request):
        return None


class RecordingTracer:
    def __init__(self):
        self.calls = []

    async def start_trace(self, entry_node_id, execution_type):
        self.calls.append(("start_trace", entry_node_id, execution_type))
        return "trace-c"

    async def create_span(self, trace_id, node_id, span_type="generation"):
        self.calls.append(("create_span", trace_id, node_id))
        return f"span-{node_id}"

    async def complete_span(self, span_id, output="", latency_ms=0, usage=None, response_id=None):
        self.calls.append(("complete_span", span_id))

    async def fail_span(self, span_id, error_type, error_message):
        self.calls.append(("fail_span", span_id))

    async def complete_trace(self, trace_id, status, error_summary=None):
        self.calls.append(("complete_trace", trace_id, status))


class StubRunner:
    """Runner that only records order; raises AlreadyRunning for chosen nodes."""

    def __init__(self, busy: set[str] | None = None):
        self.busy = busy or set()
        self.order: list[str] = []

    async def run(self, node_id, **kwargs):
        if node_id in self.busy:
            raise AlreadyRunning(node_id)
        self.order.append(node_id)
        return RunOutcome(node_id=node_id, status=RunState.COMPLETED)


# ---- Helpers ----
def node(node_id, parent_id, key, **kwargs) -> PromptNode:
    return PromptNode(
        id=node_id, parent_id=parent_id, name=node_id.upper(), position_key=key, **kwargs
    )


def four_children() -> InMemoryTreeStore:
    return InMemoryTreeStore(
        [
            node("root", None, "a0"),
            node("c3", "root", "a2"),
            node("c1", "root", "a0"),
            node("c4", "root", "a3"),
            node("c2", "root", "a1"),
        ]
    )


def deep_chain() -> InMemoryTreeStore:
    return InMemoryTreeStore(
        [
            node("root", None, "a0"),
            node("c1", "root", "a0"),
            node("g1", "c1", "a0"),
            node("gg1", "g1", "a0"),
        ]
    )


def build(store, backend, **runner_kwargs) -> tuple[PromptRunner, CascadeExecutor]:
    bus = EventBus()
    config = CascadeConfig()
    runner = PromptRunner(store, backend, config=config, event_bus=bus, **runner_kwargs)
    executor = CascadeExecutor(
        runner, store, config=config, event_bus=bus, tracer=runner_kwargs.get("tracer")
    )
    return runner, executor


def ran(result) -> list[str]:
    return [outcome.node_id for outcome in result.results]


# === ORDER ===


@pytest.mark.asyncio
async def test_depth_first_in_position_order():
    store = InMemoryTreeStore(
        [
            node("root", None, "a0"),
            node("b", "root", "a1"),
            node("a", "root", "a0"),
            node("a2", "a", "a1"),
            node("a1", "a", "a0"),
        ]
    )
    backend = MockModelBackend(default_response="ok")
    _, executor = build(store, backend)

    result = await executor.execute("root")

    assert ran(result) == ["a", "a1", "a2", "b"]
    assert "root" not in ran(result)
    assert result.success


@pytest.mark.asyncio
async def test_failed_node_does_not_stop_siblings():
    def respond(node, variables, resume):
        return ModelError("boom") if node.id == "c2" else f"out {node.id}"

    store = four_children()
    runner, executor = build(store, MockModelBackend(handler=respond))

    result = await executor.execute("root")

    assert ran(result) == ["c1", "c2", "c3", "c4"]
    assert [o.status for o in result.results] == [
        RunState.COMPLETED,
        RunState.FAILED,
        RunState.COMPLETED,
        RunState.COMPLETED,
    ]
    assert not result.success
    assert result.summary()["failed"] == 1
    assert (await store.get_node("c4")).output_response == "out c4"
    failed = runner.event_bus.get_history(EventType.RUN_FAILED)
    assert [e.node_id for e in failed] == ["c2"]
    assert failed[0].cascade_id is not None
    completed = runner.event_bus.get_history(EventType.CASCADE_COMPLETED)
    assert completed[0].data["succeeded"] == 3


@pytest.mark.asyncio
async def test_already_running_is_recorded_as_failure():
    store = four_children()
    stub = StubRunner(busy={"c2"})
    executor = CascadeExecutor(stub, store)

    result = await executor.execute("root")

    assert stub.order == ["c1", "c3", "c4"]
    assert ran(result) == ["c1", "c2", "c3", "c4"]
    assert isinstance(result.results[1].error, AlreadyRunning)


# === DEPTH, EXCLUSION, DELETION ===


@pytest.mark.asyncio
async def test_depth_limit_stops_descent():
    store = deep_chain()
    runner, executor = build(store, MockModelBackend(default_response="ok"))

    result = await executor.execute("root", CascadeOptions(max_depth=2))

    assert ran(result) == ["c1", "g1"]
    assert result.depth_limit_reached
    limit = runner.event_bus.get_history(EventType.DEPTH_LIMIT_REACHED)
    assert limit[0].node_id == "g1"
    assert limit[0].data == {"max_depth": 2}


@pytest.mark.asyncio
async def test_depth_limit_not_flagged_for_leaves():
    store = deep_chain()
    _, executor = build(store, MockModelBackend(default_response="ok"))

    result = await executor.execute("root", CascadeOptions(max_depth=3))

    assert ran(result) == ["c1", "g1", "gg1"]
    assert not result.depth_limit_reached


@pytest.mark.asyncio
async def test_excluded_node_is_skipped_but_children_run():
    store = InMemoryTreeStore(
        [
            node("root", None, "a0"),
            node("c1", "root", "a0", exclude_from_cascade=True),
            node("g1", "c1", "a0"),
            node("c2", "root", "a1"),
        ]
    )
    runner, executor = build(store, MockModelBackend(default_response="ok"))

    result = await executor.execute("root")

    assert ran(result) == ["g1", "c2"]
    assert [s.node_id for s in result.skipped] == ["c1"]
    skipped = runner.event_bus.get_history(EventType.CASCADE_NODE_SKIPPED)
    assert skipped[0].data == {"reason": "excluded"}


@pytest.mark.asyncio
async def test_deleted_nodes_are_not_run():
    store = four_children()
    await store.soft_delete("c3")
    _, executor = build(store, MockModelBackend(default_response="ok"))

    result = await executor.execute("root")

    assert ran(result) == ["c1", "c2", "c4"]


@pytest.mark.asyncio
async def test_missing_root_raises():
    _, executor = build(InMemoryTreeStore(), MockModelBackend())

    with pytest.raises(NodeNotFound):
        await executor.execute("nowhere")


@pytest.mark.asyncio
async def test_has_children():
    store = deep_chain()
    _, executor = build(store, MockModelBackend())

    assert await executor.has_children("root")
    assert not await executor.has_children("gg1")


# === CANCELLATION ===


@pytest.mark.asyncio
async def test_cancel_stops_before_next_node():
    token = CancellationToken()

    def respond(node, variables, resume):
        if node.id == "c2":
            token.cancel()
        return "ok"

    store = four_children()
    backend = MockModelBackend(handler=respond)
    runner, executor = build(store, backend)

    result = await executor.execute("root", cancel_token=token)

    assert ran(result) == ["c1", "c2"]
    assert result.cancelled
    assert backend.call_count == 2
    assert len(runner.event_bus.get_history(EventType.CASCADE_CANCELLED)) == 1
    assert runner.event_bus.get_history(EventType.CASCADE_COMPLETED) == []


@pytest.mark.asyncio
async def test_dismissed_question_cancels_cascade():
    def respond(node, variables, resume):
        if node.id == "c1":
            return MockModelBackend.question("Which region?", "region")
        return "ok"

    store = four_children()
    backend = MockModelBackend(handler=respond)
    _, executor = build(store, backend, question_ui=DismissingQuestionUI())

    result = await executor.execute("root")

    assert ran(result) == ["c1"]
    assert result.results[0].reason == CancelReason.QUESTION_CANCELLED
    assert result.cancelled
    assert backend.call_count == 1


# === AUTO-RUN AND TRACING ===


@pytest.mark.asyncio
async def test_auto_run_children_are_not_run_twice():
    planner = node(
        "planner",
        "root",
        "a0",
        node_type=NodeType.ACTION,
        post_action="create_children_json",
        post_action_config=PostActionConfig(skip_preview=True, auto_run_children=True),
    )
    store = InMemoryTreeStore([node("root", None, "a0"), planner, node("after", "root", "a1")])

    def respond(node, variables, resume):
        if node.id == "planner":
            return '{"items": ["one", "two"]}'
        return f"ran {node.name}"

    backend = MockModelBackend(handler=respond)
    _, executor = build(store, backend)

    result = await executor.execute("root")

    created = await store.list_children("planner")
    assert len(created) == 2
    for child in created:
        assert len(backend.calls_for(child.id)) == 1
    assert ran(result) == ["planner", "after"]
    assert result.executed_node_ids() == {"planner", "after", *(c.id for c in created)}


@pytest.mark.asyncio
async def test_cascade_shares_one_trace():
    def respond(node, variables, resume):
        return ModelError("boom") if node.id == "c2" else "ok"

    tracer = RecordingTracer()
    _, executor = build(four_children(), MockModelBackend(handler=respond), tracer=tracer)

    await executor.execute("root")

    assert tracer.calls[0] == ("start_trace", "root", "cascade")
    spans = [call for call in tracer.calls if call[0] == "create_span"]
    assert [s[1] for s in spans] == ["trace-c"] * 4
    assert [c for c in tracer.calls if c[0] == "start_trace"] == [tracer.calls[0]]
    assert tracer.calls[-1] == ("complete_trace", "trace-c", "failed")


@pytest.mark.asyncio
async def test_execute_nodes_beyond_max_depth():
    store = deep_chain()
    _, executor = build(store, MockModelBackend(default_response="ok"))

    result = await executor.execute_nodes(["g1"], CascadeOptions(max_depth=1), start_depth=2)

    assert result.results == []
    assert result.depth_limit_reached


@pytest.mark.asyncio
async def test_auto_run_respects_cascade_max_depth():
    planner = node(
        "planner",
        "root",
        "a0",
        node_type=NodeType.ACTION,
        post_action="create_children_json",
        post_action_config=PostActionConfig(skip_preview=True, auto_run_children=True),
    )
    store = InMemoryTreeStore([node("root", None, "a0"), planner])

    def respond(node, variables, resume):
        return '{"items": ["one", "two"]}' if node.id == "planner" else "child output"

    backend = MockModelBackend(handler=respond)
    runner, executor = build(store, backend)

    result = await executor.execute("root", CascadeOptions(max_depth=1))

    created = await store.list_children("planner")
    assert len(created) == 2
    assert [call.node_id for call in backend.calls] == ["planner"]
    assert all(child.output_response is None for child in created)
    assert ran(result) == ["planner"]
    assert result.results[0].cascade.depth_limit_reached
    assert result.depth_limit_reached
    limit = runner.event_bus.get_history(EventType.DEPTH_LIMIT_REACHED)
    assert {e.node_id for e in limit} == {"planner"}
