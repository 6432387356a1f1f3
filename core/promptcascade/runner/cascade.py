"""
Cascade Executor - runs a subtree of prompt nodes depth-first.

Siblings run sequentially in position-key order, each node before its
children, so later nodes see the outputs and variables of earlier ones.
A failed node is recorded and the traversal moves on; a cancelled
question or an explicit cancel() stops it before the next node.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from promptcascade.config import DEFAULT_MAX_DEPTH, CascadeConfig
from promptcascade.errors import AlreadyRunning, NodeNotFound
from promptcascade.observability import set_trace_context
from promptcascade.runtime.event_bus import EventBus
from promptcascade.runtime.tracing import BestEffortTracer, Tracer
from promptcascade.schemas.node import PromptNode
from promptcascade.schemas.run import (
    CancelReason,
    CascadeResult,
    RunOutcome,
    RunState,
    SkippedNode,
)
from promptcascade.storage.tree_store import TreeStore

if TYPE_CHECKING:
    from promptcascade.runner.prompt_runner import PromptRunner

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation shared by a cascade and the runs inside it."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class CascadeOptions:
    max_depth: int = DEFAULT_MAX_DEPTH
    skip_previews: bool = False


@dataclass
class _CascadeRun:
    cascade_id: str
    options: CascadeOptions
    token: CancellationToken
    trace_id: str | None
    result: CascadeResult
    visited: set[str] = field(default_factory=set)


class CascadeExecutor:
    """
    Executes every non-excluded descendant of a node.

    Example:
        executor = CascadeExecutor(runner, store, event_bus=bus)
        result = await executor.execute(root_id, CascadeOptions(max_depth=3))
        print(result.summary())
    """

    def __init__(
        self,
        runner: "PromptRunner",
        store: TreeStore,
        config: CascadeConfig | None = None,
        event_bus: EventBus | None = None,
        tracer: Tracer | BestEffortTracer | None = None,
    ):
        self.runner = runner
        self.store = store
        self.config = config
        self.event_bus = event_bus
        self.tracer = tracer if isinstance(tracer, BestEffortTracer) else BestEffortTracer(tracer)

    async def has_children(self, node_id: str) -> bool:
        return bool(await self.store.list_children(node_id))

    def default_options(self) -> CascadeOptions:
        if self.config is None:
            return CascadeOptions()
        return CascadeOptions(max_depth=self.config.max_depth)

    async def execute(
        self,
        root_id: str,
        options: CascadeOptions | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CascadeResult:
        """
        Run every descendant of root_id; the root itself is not run.

        Children of the root are at depth 1. Nodes deeper than
        ``options.max_depth`` are not run and set ``depth_limit_reached``.

        Raises:
            NodeNotFound: root_id does not exist or is deleted
        """
        root = await self.store.get_node(root_id)
        if root is None or root.is_deleted:
            raise NodeNotFound(root_id)

        children = await self.store.list_children(root_id)
        return await self._execute(
            children, options or self.default_options(), cancel_token, 1, None, root_id
        )

    async def execute_nodes(
        self,
        node_ids: list[str],
        options: CascadeOptions | None = None,
        cancel_token: CancellationToken | None = None,
        start_depth: int = 1,
        trace_id: str | None = None,
    ) -> CascadeResult:
        """
        Run the given nodes, in order, and then their descendants.

        Used for auto-running freshly materialized children. Unknown or
        deleted ids are skipped.
        """
        nodes: list[PromptNode] = []
        for node_id in node_ids:
            node = await self.store.get_node(node_id)
            if node is None or node.is_deleted:
                logger.warning(f"Cascade skipping missing node {node_id}")
                continue
            nodes.append(node)

        entry_id = node_ids[0] if node_ids else ""
        return await self._execute(
            nodes, options or self.default_options(), cancel_token, start_depth, trace_id, entry_id
        )

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    async def _execute(
        self,
        nodes: list[PromptNode],
        options: CascadeOptions,
        cancel_token: CancellationToken | None,
        depth: int,
        trace_id: str | None,
        entry_id: str,
    ) -> CascadeResult:
        owns_trace = trace_id is None
        if owns_trace:
            trace_id = await self.tracer.start_trace(entry_id, "cascade")

        ctx = _CascadeRun(
            cascade_id=uuid.uuid4().hex,
            options=options,
            token=cancel_token or CancellationToken(),
            trace_id=trace_id,
            result=CascadeResult(trace_id=trace_id),
        )
        set_trace_context(cascade_id=ctx.cascade_id)
        logger.info(
            f"Cascade {ctx.cascade_id} starting with {len(nodes)} node(s) at depth {depth}",
            extra={"event": "cascade_started", "node_id": entry_id},
        )
        if self.event_bus is not None:
            await self.event_bus.emit_cascade_started(ctx.cascade_id, [n.id for n in nodes])

        await self._walk(nodes, depth, ctx)

        result = ctx.result
        result.cancelled = ctx.token.cancelled
        if result.cancelled:
            status = "cancelled"
        elif result.failed:
            status = "failed"
        else:
            status = "completed"
        if owns_trace:
            await self.tracer.complete_trace(
                trace_id, status, f"{len(result.failed)} node(s) failed" if result.failed else None
            )

        summary = result.summary()
        logger.info(f"Cascade {ctx.cascade_id} {status}: {summary}")
        if self.event_bus is not None:
            if result.cancelled:
                await self.event_bus.emit_cascade_cancelled(ctx.cascade_id, summary)
            else:
                await self.event_bus.emit_cascade_completed(ctx.cascade_id, summary)
        return result

    async def _walk(self, nodes: list[PromptNode], depth: int, ctx: _CascadeRun) -> None:
        if not nodes:
            return
        if depth > ctx.options.max_depth:
            ctx.result.depth_limit_reached = True
            boundary = nodes[0].parent_id or nodes[0].id
            logger.info(f"Depth limit {ctx.options.max_depth} reached below node {boundary}")
            if self.event_bus is not None:
                await self.event_bus.emit_depth_limit_reached(
                    ctx.cascade_id, boundary, ctx.options.max_depth
                )
            return

        for node in nodes:
            if ctx.token.cancelled:
                return

            if node.exclude_from_cascade:
                ctx.result.skipped.append(SkippedNode(node_id=node.id, reason="excluded"))
                if self.event_bus is not None:
                    await self.event_bus.emit_cascade_node_skipped(
                        ctx.cascade_id, node.id, "excluded"
                    )
            elif node.id not in ctx.visited:
                outcome = await self._run_node(node, depth, ctx)
                ctx.result.results.append(outcome)
                ctx.visited |= outcome.executed_node_ids()
                if (
                    outcome.status == RunState.CANCELLED
                    and outcome.reason == CancelReason.QUESTION_CANCELLED
                ):
                    ctx.token.cancel(CancelReason.QUESTION_CANCELLED)
                if ctx.token.cancelled:
                    return

            children = await self.store.list_children(node.id)
            await self._walk(children, depth + 1, ctx)

    async def _run_node(self, node: PromptNode, depth: int, ctx: _CascadeRun) -> RunOutcome:
        try:
            return await self.runner.run(
                node.id,
                depth=depth,
                trace_id=ctx.trace_id,
                skip_preview=ctx.options.skip_previews,
                cancel_token=ctx.token,
                cascade_id=ctx.cascade_id,
                max_depth=ctx.options.max_depth,
            )
        except AlreadyRunning as e:
            logger.warning(f"Node {node.id} already running; recorded as failed in cascade")
            return RunOutcome.failed(node.id, e)
