"""
Human-in-the-loop collaborators used by PromptRunner.

The runner never renders anything itself. It hands a request to one of
these interfaces and waits for the answer:
- QuestionUI: the model asked a question mid-run
- PreviewUI: the user confirms the nodes an action is about to create
- PendingEdits: unsaved edits are flushed before a node runs
"""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from promptcascade.actions.validator import ActionItem


@dataclass
class QuestionRequest:
    """A question the model needs answered before it can continue."""

    node_id: str
    node_name: str
    question: str
    variable_name: str
    description: str | None = None
    attempt: int = 1
    max_attempts: int = 10

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_name": self.node_name,
            "question": self.question,
            "variable_name": self.variable_name,
            "description": self.description,
            "attempt": self.attempt,
            "max_attempts": self.max_attempts,
        }


@dataclass
class PreviewRequest:
    """What an action is about to create, shown for confirmation."""

    node_id: str
    node_name: str
    action: str | None
    items: list[ActionItem] = field(default_factory=list)
    target_parent_id: str | None = None
    response: Any = None

    @property
    def item_count(self) -> int:
        return len(self.items)


@runtime_checkable
class QuestionUI(Protocol):
    async def ask(self, request: QuestionRequest) -> str | None:
        """Return the answer, or None if the user dismissed the question."""
        ...


@runtime_checkable
class PreviewUI(Protocol):
    async def confirm(self, request: PreviewRequest) -> bool: ...


@runtime_checkable
class PendingEdits(Protocol):
    async def flush(self, node_id: str) -> None: ...
