"""Tree store contract used by the materializer, runner and cascade executor."""

from typing import Any, Protocol, runtime_checkable

from promptcascade.schemas.node import PromptNode


@runtime_checkable
class TreeStore(Protocol):
    """
    Persistence for prompt nodes.

    Implementations must reject an insert whose position key is already held
    by a sibling (deleted or not) with StoreConflict, and must never
    physically remove nodes: ``soft_delete`` only flags them.
    """

    async def get_node(self, node_id: str) -> PromptNode | None: ...

    async def insert_nodes(self, nodes: list[PromptNode]) -> list[PromptNode]: ...

    async def update_node(self, node_id: str, fields: dict[str, Any]) -> PromptNode: ...

    async def list_children(
        self, parent_id: str | None, include_deleted: bool = False
    ) -> list[PromptNode]: ...

    async def soft_delete(self, node_id: str) -> None: ...

    async def restore(self, node_id: str) -> None: ...


async def last_child_key(store: TreeStore, parent_id: str | None) -> str | None:
    """Greatest position key under ``parent_id``, counting soft-deleted siblings."""
    children = await store.list_children(parent_id, include_deleted=True)
    keys = [child.position_key for child in children if child.position_key]
    return max(keys) if keys else None


async def node_depth(store: TreeStore, node_id: str | None) -> int:
    """Number of ancestors of ``node_id`` (top-level nodes are depth 0)."""
    depth = 0
    seen: set[str] = set()
    current = await store.get_node(node_id) if node_id else None
    while current is not None and current.parent_id and current.parent_id not in seen:
        seen.add(current.id)
        depth += 1
        current = await store.get_node(current.parent_id)
    return depth


async def top_level_ancestor(store: TreeStore, node_id: str | None) -> PromptNode | None:
    """The top-level node above ``node_id`` (or the node itself when it is top level)."""
    current = await store.get_node(node_id) if node_id else None
    seen: set[str] = set()
    while current is not None and current.parent_id and current.id not in seen:
        seen.add(current.id)
        parent = await store.get_node(current.parent_id)
        if parent is None:
            break
        current = parent
    return current
