"""Execution: single prompt runs and subtree cascades."""

from promptcascade.runner.cascade import CancellationToken, CascadeExecutor, CascadeOptions
from promptcascade.runner.hitl import (
    PendingEdits,
    PreviewRequest,
    PreviewUI,
    QuestionRequest,
    QuestionUI,
)
from promptcascade.runner.prompt_runner import PromptRunner, RunHandle

__all__ = [
    "CancellationToken",
    "CascadeExecutor",
    "CascadeOptions",
    "PendingEdits",
    "PreviewRequest",
    "PreviewUI",
    "QuestionRequest",
    "QuestionUI",
    "PromptRunner",
    "RunHandle",
]
