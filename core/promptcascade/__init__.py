"""
promptcascade - run trees of prompts.

Runs a single prompt node, turns structured action responses into child
nodes, and cascades execution through a subtree in sibling order.
"""

from promptcascade.actions import ActionResponseValidator, ChildMaterializer
from promptcascade.config import CascadeConfig, LLMConfig
from promptcascade.llm import LiteLLMBackend, MockModelBackend, ModelBackend
from promptcascade.ordering import NamingResolver, key_after, key_between
from promptcascade.runner import CancellationToken, CascadeExecutor, CascadeOptions, PromptRunner
from promptcascade.runtime import EventBus, EventType
from promptcascade.schemas import CascadeResult, PromptNode, RunOutcome, RunState
from promptcascade.storage import InMemoryTreeStore, TreeStore

__version__ = "0.1.0"

__all__ = [
    "ActionResponseValidator",
    "ChildMaterializer",
    "CascadeConfig",
    "LLMConfig",
    "LiteLLMBackend",
    "MockModelBackend",
    "ModelBackend",
    "NamingResolver",
    "key_after",
    "key_between",
    "CancellationToken",
    "CascadeExecutor",
    "CascadeOptions",
    "PromptRunner",
    "EventBus",
    "EventType",
    "CascadeResult",
    "PromptNode",
    "RunOutcome",
    "RunState",
    "InMemoryTreeStore",
    "TreeStore",
]
