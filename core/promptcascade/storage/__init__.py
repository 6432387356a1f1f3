"""Tree persistence."""

from promptcascade.storage.memory_store import InMemoryTreeStore
from promptcascade.storage.tree_store import (
    TreeStore,
    last_child_key,
    node_depth,
    top_level_ancestor,
)

__all__ = [
    "InMemoryTreeStore",
    "TreeStore",
    "last_child_key",
    "node_depth",
    "top_level_ancestor",
]
