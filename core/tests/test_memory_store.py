"""Tests for the in-memory tree store and tree helpers."""

import pytest

from promptcascade.errors import NodeNotFound, StoreConflict
from promptcascade.schemas.node import PromptNode
from promptcascade.storage import (
    InMemoryTreeStore,
    TreeStore,
    last_child_key,
    node_depth,
    top_level_ancestor,
)


def build_tree() -> InMemoryTreeStore:
    return InMemoryTreeStore(
        [
            PromptNode(id="root", name="Report", position_key="a0"),
            PromptNode(id="c2", parent_id="root", name="Second", position_key="a1"),
            PromptNode(id="c1", parent_id="root", name="First", position_key="a0"),
            PromptNode(id="g1", parent_id="c1", name="Grandchild", position_key="a0"),
        ]
    )


def test_satisfies_protocol():
    assert isinstance(InMemoryTreeStore(), TreeStore)


@pytest.mark.asyncio
async def test_list_children_sorted_by_position_key():
    store = build_tree()
    children = await store.list_children("root")
    assert [c.id for c in children] == ["c1", "c2"]
    assert [c.id for c in await store.list_children(None)] == ["root"]


@pytest.mark.asyncio
async def test_duplicate_sibling_key_conflicts():
    store = build_tree()
    with pytest.raises(StoreConflict) as exc_info:
        await store.insert_nodes([PromptNode(parent_id="root", position_key="a1")])
    assert exc_info.value.position_key == "a1"
    assert len(store) == 4


@pytest.mark.asyncio
async def test_same_key_under_different_parents_is_fine():
    store = build_tree()
    inserted = await store.insert_nodes([PromptNode(parent_id="c2", position_key="a0")])
    assert inserted[0].parent_id == "c2"


@pytest.mark.asyncio
async def test_returned_nodes_are_copies():
    store = build_tree()
    node = await store.get_node("c1")
    node.name = "Changed locally"
    assert (await store.get_node("c1")).name == "First"


@pytest.mark.asyncio
async def test_update_node():
    store = build_tree()
    updated = await store.update_node("c1", {"output_response": "done"})
    assert updated.output_response == "done"
    with pytest.raises(NodeNotFound):
        await store.update_node("missing", {"name": "x"})


@pytest.mark.asyncio
async def test_soft_delete_hides_but_keeps_key():
    store = build_tree()
    await store.soft_delete("c2")
    assert [c.id for c in await store.list_children("root")] == ["c1"]
    assert len(await store.list_children("root", include_deleted=True)) == 2
    # The deleted sibling's key still counts when allocating new keys
    assert await last_child_key(store, "root") == "a1"

    await store.restore("c2")
    assert [c.id for c in await store.list_children("root")] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_last_child_key_empty():
    assert await last_child_key(build_tree(), "g1") is None


@pytest.mark.asyncio
async def test_depth_and_top_level_ancestor():
    store = build_tree()
    assert await node_depth(store, "root") == 0
    assert await node_depth(store, "g1") == 2
    assert (await top_level_ancestor(store, "g1")).id == "root"
    assert (await top_level_ancestor(store, "root")).id == "root"
    assert await top_level_ancestor(store, None) is None
