"""Node and run data model."""

from promptcascade.schemas.node import (
    ActionStatus,
    ByArrayPath,
    ByCount,
    ByKeyPattern,
    ChildCreationConfig,
    ContentDestination,
    LastActionResult,
    ModelSettings,
    NameSource,
    NodeType,
    Placement,
    PostActionConfig,
    PromptNode,
    VariableAssignmentConfig,
)
from promptcascade.schemas.run import (
    CancelReason,
    CascadeResult,
    RunOutcome,
    RunState,
    SkippedNode,
)

__all__ = [
    "ActionStatus",
    "ByArrayPath",
    "ByCount",
    "ByKeyPattern",
    "ChildCreationConfig",
    "ContentDestination",
    "LastActionResult",
    "ModelSettings",
    "NameSource",
    "NodeType",
    "Placement",
    "PostActionConfig",
    "PromptNode",
    "VariableAssignmentConfig",
    "CancelReason",
    "CascadeResult",
    "RunOutcome",
    "RunState",
    "SkippedNode",
]
