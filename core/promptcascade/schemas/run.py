"""
Run and cascade outcomes.

A run moves through RunState values and always ends in exactly one terminal
state. Outcomes are plain dataclasses; they are returned to callers and
published on the event bus but never persisted.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from promptcascade.llm.backend import ExecutionResult


class RunState(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    AWAITING_MODEL = "awaiting_model"
    QUESTION_INTERRUPT = "question_interrupt"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED)


class CancelReason(StrEnum):
    QUESTION_CANCELLED = "question_cancelled"
    PREVIEW_REJECTED = "preview_rejected"
    CASCADE_CANCELLED = "cascade_cancelled"


@dataclass
class RunOutcome:
    """Terminal outcome of one PromptRunner.run call."""

    node_id: str
    status: RunState
    run_id: str = ""
    result: ExecutionResult | None = None
    error: BaseException | None = None
    reason: str | None = None
    action: Any = None  # MaterializationResult when a post action ran
    cascade: "CascadeResult | None" = None
    questions_asked: int = 0
    latency_ms: int = 0
    variables: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == RunState.COMPLETED

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    def executed_node_ids(self) -> set[str]:
        """This node plus every node run by a nested auto-run cascade."""
        ids = {self.node_id}
        if self.cascade is not None:
            ids |= self.cascade.executed_node_ids()
        return ids

    @classmethod
    def failed(cls, node_id: str, error: BaseException, run_id: str = "") -> "RunOutcome":
        return cls(node_id=node_id, status=RunState.FAILED, error=error, run_id=run_id)


@dataclass
class SkippedNode:
    node_id: str
    reason: str


@dataclass
class CascadeResult:
    """Per-node outcomes of a cascade, in execution order."""

    results: list[RunOutcome] = field(default_factory=list)
    skipped: list[SkippedNode] = field(default_factory=list)
    depth_limit_reached: bool = False
    cancelled: bool = False
    trace_id: str | None = None

    @property
    def succeeded(self) -> list[RunOutcome]:
        return [r for r in self.results if r.status == RunState.COMPLETED]

    @property
    def failed(self) -> list[RunOutcome]:
        return [r for r in self.results if r.status == RunState.FAILED]

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled

    def executed_node_ids(self) -> set[str]:
        ids: set[str] = set()
        for outcome in self.results:
            ids |= outcome.executed_node_ids()
        return ids

    def summary(self) -> dict[str, Any]:
        return {
            "executed": len(self.results),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "depth_limit_reached": self.depth_limit_reached,
            "cancelled": self.cancelled,
        }
