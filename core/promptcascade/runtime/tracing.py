"""Tracing and cost recording collaborators.

Both are optional and best effort: the BestEffort* wrappers catch every
exception from the underlying implementation and log it via the Python
logger. A tracing or billing failure must never fail a run.

Usage::

    tracer = BestEffortTracer(my_tracer)  # my_tracer may be None
    trace_id = await tracer.start_trace(node_id, "single")
    span_id = await tracer.create_span(trace_id, node_id)
    ...
    await tracer.complete_span(span_id, output=text, latency_ms=120)
    await tracer.complete_trace(trace_id, "completed")
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from promptcascade.llm.backend import TokenUsage

logger = logging.getLogger(__name__)


@dataclass
class CostRecord:
    node_id: str
    model: str | None
    usage: TokenUsage = field(default_factory=TokenUsage)
    response_id: str | None = None
    finish_reason: str | None = None
    latency_ms: int = 0
    node_name: str | None = None


@runtime_checkable
class Tracer(Protocol):
    async def start_trace(self, entry_node_id: str, execution_type: str) -> str | None: ...

    async def create_span(
        self, trace_id: str | None, node_id: str, span_type: str = "generation"
    ) -> str | None: ...

    async def complete_span(
        self,
        span_id: str | None,
        output: str = "",
        latency_ms: int = 0,
        usage: TokenUsage | None = None,
        response_id: str | None = None,
    ) -> None: ...

    async def fail_span(self, span_id: str | None, error_type: str, error_message: str): ...

    async def complete_trace(
        self, trace_id: str | None, status: str, error_summary: str | None = None
    ) -> None: ...


@runtime_checkable
class CostRecorder(Protocol):
    async def record_cost(self, record: CostRecord) -> None: ...


class BestEffortTracer:
    """Wraps an optional Tracer; every call swallows and logs failures."""

    def __init__(self, tracer: Tracer | None = None):
        self._tracer = tracer

    @property
    def enabled(self) -> bool:
        return self._tracer is not None

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        if self._tracer is None:
            return None
        try:
            return await getattr(self._tracer, method)(*args, **kwargs)
        except Exception:
            logger.warning(f"Tracing call {method} failed (non-fatal)", exc_info=True)
            return None

    async def start_trace(self, entry_node_id: str, execution_type: str) -> str | None:
        return await self._call("start_trace", entry_node_id, execution_type)

    async def create_span(
        self, trace_id: str | None, node_id: str, span_type: str = "generation"
    ) -> str | None:
        return await self._call("create_span", trace_id, node_id, span_type)

    async def complete_span(
        self,
        span_id: str | None,
        output: str = "",
        latency_ms: int = 0,
        usage: TokenUsage | None = None,
        response_id: str | None = None,
    ) -> None:
        await self._call(
            "complete_span",
            span_id,
            output=output,
            latency_ms=latency_ms,
            usage=usage,
            response_id=response_id,
        )

    async def fail_span(self, span_id: str | None, error_type: str, error_message: str):
        await self._call("fail_span", span_id, error_type, error_message)

    async def complete_trace(
        self, trace_id: str | None, status: str, error_summary: str | None = None
    ) -> None:
        await self._call("complete_trace", trace_id, status, error_summary)


class BestEffortCostRecorder:
    def __init__(self, recorder: CostRecorder | None = None):
        self._recorder = recorder

    async def record_cost(self, record: CostRecord) -> None:
        if self._recorder is None:
            return
        try:
            await self._recorder.record_cost(record)
        except Exception:
            logger.warning(
                f"Cost recording failed for node {record.node_id} (non-fatal)", exc_info=True
            )
