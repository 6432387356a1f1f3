"""Model backend contract - the one seam between the engine and any LLM provider."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from promptcascade.schemas.node import PromptNode


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self) -> None:
        if not self.total_tokens:
            self.total_tokens = self.input_tokens + self.output_tokens


@dataclass
class QuestionInterrupt:
    """The model paused to ask the user something before it can finish."""

    question: str
    variable_name: str
    response_id: str | None = None
    call_id: str | None = None
    description: str | None = None


@dataclass
class ResumeOptions:
    """Carries the user's answer back to the model on the next invocation."""

    response_id: str | None
    answer: str
    variable_name: str
    call_id: str | None = None


@dataclass
class ExecutionResult:
    """Result of one model invocation."""

    response: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str = "stop"
    model: str | None = None
    response_id: str | None = None
    interrupt: QuestionInterrupt | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_question(self) -> bool:
        return self.interrupt is not None


class ModelBackend(ABC):
    """
    Abstract model backend.

    Implementations invoke a model for a node's prompts, substituting the
    given variables, and may stop with a QuestionInterrupt. Provider failures
    are raised as ModelError.
    """

    @abstractmethod
    async def invoke(
        self,
        node: PromptNode,
        variables: dict[str, str],
        resume: ResumeOptions | None = None,
    ) -> ExecutionResult:
        """
        Run the node's prompt.

        Args:
            node: Node whose system/user prompts and model settings are used
            variables: Template variables, including answers collected so far
            resume: Answer to the previous invocation's question, if any

        Returns:
            ExecutionResult, with ``interrupt`` set when the model asks a question
        """
        pass

    def discard(self, response_id: str) -> None:
        """Drop state kept for a question that will never be answered."""


_VARIABLE_PATTERN = re.compile(r"\{\{\s*([A-Za-z][\w.\-]*)\s*\}\}")


def substitute_variables(text: str, variables: dict[str, str]) -> str:
    """Replace ``{{name}}`` with its value; unknown names are left untouched."""
    if not text or not variables:
        return text
    return _VARIABLE_PATTERN.sub(lambda m: variables.get(m.group(1), m.group(0)), text)
