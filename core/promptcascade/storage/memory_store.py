"""
In-memory tree store.

Holds nodes in a dict guarded by an asyncio.Lock. Enforces the sibling
position-key uniqueness that a database would enforce with a unique index,
so key-allocation races surface as StoreConflict exactly as they would in
production.
"""

import asyncio
import logging
from typing import Any

from promptcascade.errors import NodeNotFound, StoreConflict
from promptcascade.schemas.node import PromptNode

logger = logging.getLogger(__name__)


class InMemoryTreeStore:
    def __init__(self, nodes: list[PromptNode] | None = None):
        self._nodes: dict[str, PromptNode] = {}
        self._lock = asyncio.Lock()
        for node in nodes or []:
            self._check_key(node)
            self._nodes[node.id] = node.model_copy(deep=True)

    def _check_key(self, node: PromptNode) -> None:
        if node.position_key is None:
            return
        for other in self._nodes.values():
            if (
                other.id != node.id
                and other.parent_id == node.parent_id
                and other.position_key == node.position_key
            ):
                raise StoreConflict(node.parent_id, node.position_key)

    async def get_node(self, node_id: str) -> PromptNode | None:
        node = self._nodes.get(node_id)
        return node.model_copy(deep=True) if node else None

    async def insert_nodes(self, nodes: list[PromptNode]) -> list[PromptNode]:
        """Insert nodes in order. Stops at the first failure; earlier inserts stay."""
        inserted: list[PromptNode] = []
        async with self._lock:
            for node in nodes:
                if node.id in self._nodes:
                    raise StoreConflict(node.parent_id, node.position_key or "")
                self._check_key(node)
                self._nodes[node.id] = node.model_copy(deep=True)
                inserted.append(node.model_copy(deep=True))
        return inserted

    async def update_node(self, node_id: str, fields: dict[str, Any]) -> PromptNode:
        async with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NodeNotFound(node_id)
            updated = node.model_validate({**node.model_dump(), **fields})
            if "position_key" in fields or "parent_id" in fields:
                self._check_key(updated)
            self._nodes[node_id] = updated
            return updated.model_copy(deep=True)

    async def list_children(
        self, parent_id: str | None, include_deleted: bool = False
    ) -> list[PromptNode]:
        children = [
            node
            for node in self._nodes.values()
            if node.parent_id == parent_id and (include_deleted or not node.is_deleted)
        ]
        children.sort(key=lambda n: (n.position_key is not None, n.position_key or "", n.id))
        return [child.model_copy(deep=True) for child in children]

    async def soft_delete(self, node_id: str) -> None:
        await self.update_node(node_id, {"is_deleted": True})

    async def restore(self, node_id: str) -> None:
        await self.update_node(node_id, {"is_deleted": False})

    # Test/inspection helpers

    def all_nodes(self) -> list[PromptNode]:
        return [node.model_copy(deep=True) for node in self._nodes.values()]

    def __len__(self) -> int:
        return len(self._nodes)
