"""Scripted model backend for tests and offline runs."""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from promptcascade.llm.backend import (
    ExecutionResult,
    ModelBackend,
    QuestionInterrupt,
    ResumeOptions,
    TokenUsage,
)
from promptcascade.schemas.node import PromptNode

logger = logging.getLogger(__name__)

ScriptedResponse = ExecutionResult | str | BaseException
ResponseHandler = Callable[[PromptNode, dict[str, str], ResumeOptions | None], Any]


@dataclass
class MockCall:
    node_id: str
    variables: dict[str, str] = field(default_factory=dict)
    resume: ResumeOptions | None = None


class MockModelBackend(ModelBackend):
    """
    Returns scripted responses in order.

    Each scripted entry may be a response string, a full ExecutionResult
    (e.g. one carrying a question interrupt) or an exception to raise. A
    handler function, sync or async, can be given instead to compute the
    response per call. Every call is recorded in ``calls``.

    Example:
        backend = MockModelBackend([
            MockModelBackend.question("Which market?", "market"),
            '{"items": [{"name": "A"}]}',
        ])
    """

    def __init__(
        self,
        responses: list[ScriptedResponse] | None = None,
        handler: ResponseHandler | None = None,
        default_response: str = "",
        model: str = "mock-model",
    ):
        self._responses = list(responses or [])
        self._handler = handler
        self.default_response = default_response
        self.model = model
        self.calls: list[MockCall] = []
        self.discarded: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_for(self, node_id: str) -> list[MockCall]:
        return [call for call in self.calls if call.node_id == node_id]

    def discard(self, response_id: str) -> None:
        self.discarded.append(response_id)

    async def invoke(
        self,
        node: PromptNode,
        variables: dict[str, str],
        resume: ResumeOptions | None = None,
    ) -> ExecutionResult:
        self.calls.append(MockCall(node_id=node.id, variables=dict(variables), resume=resume))

        if self._handler is not None:
            scripted = self._handler(node, variables, resume)
            if inspect.isawaitable(scripted):
                scripted = await scripted
        elif self._responses:
            scripted = self._responses.pop(0)
        else:
            scripted = self.default_response

        if isinstance(scripted, BaseException):
            raise scripted
        if isinstance(scripted, ExecutionResult):
            return scripted
        text = str(scripted)
        return ExecutionResult(
            response=text,
            usage=TokenUsage(
                input_tokens=len(node.system_prompt) // 4, output_tokens=len(text) // 4
            ),
            model=self.model,
            response_id=f"mock-{len(self.calls)}",
        )

    @staticmethod
    def question(
        question: str,
        variable_name: str,
        response_id: str | None = "mock-question",
        call_id: str | None = "call-1",
    ) -> ExecutionResult:
        """Build a result that interrupts the run with a question."""
        return ExecutionResult(
            response="",
            finish_reason="tool_calls",
            response_id=response_id,
            interrupt=QuestionInterrupt(
                question=question,
                variable_name=variable_name,
                response_id=response_id,
                call_id=call_id,
            ),
        )
