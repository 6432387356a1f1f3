"""Model backends."""

from promptcascade.llm.backend import (
    ExecutionResult,
    ModelBackend,
    QuestionInterrupt,
    ResumeOptions,
    TokenUsage,
    substitute_variables,
)
from promptcascade.llm.litellm import LiteLLMBackend
from promptcascade.llm.mock import MockModelBackend

__all__ = [
    "ExecutionResult",
    "ModelBackend",
    "QuestionInterrupt",
    "ResumeOptions",
    "TokenUsage",
    "substitute_variables",
    "LiteLLMBackend",
    "MockModelBackend",
]
