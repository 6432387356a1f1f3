"""Tests for ChildMaterializer: placement, naming, keys and partial failure."""

import pytest

from promptcascade.actions.materializer import ChildMaterializer
from promptcascade.config import CascadeConfig
from promptcascade.errors import (
    ActionValidationError,
    PartialMaterializationError,
    StoreConflict,
    StoreError,
    ValidationError,
)
from promptcascade.ordering.naming import LevelTemplate, NamingConfig
from promptcascade.runtime.event_bus import EventBus, EventType
from promptcascade.schemas.node import (
    ByArrayPath,
    ByCount,
    ByKeyPattern,
    ChildCreationConfig,
    ContentDestination,
    ModelSettings,
    NodeType,
    Placement,
    PromptNode,
)
from promptcascade.storage import InMemoryTreeStore

# === TEST STORES ===


class FailingStore(InMemoryTreeStore):
    """Fails the Nth insert call."""

    def __init__(self, nodes, fail_on_call: int):
        super().__init__(nodes)
        self.fail_on_call = fail_on_call
        self.insert_calls = 0

    async def insert_nodes(self, nodes):
        self.insert_calls += 1
        if self.insert_calls == self.fail_on_call:
            raise StoreError("disk full")
        return await super().insert_nodes(nodes)


class RacingStore(InMemoryTreeStore):
    """Another writer grabs the next key just before our first insert."""

    def __init__(self, nodes):
        super().__init__(nodes)
        self.raced = False

    async def insert_nodes(self, nodes):
        if not self.raced:
            self.raced = True
            competitor = PromptNode(
                parent_id=nodes[0].parent_id, name="Competitor", position_key=nodes[0].position_key
            )
            await super().insert_nodes([competitor])
        return await super().insert_nodes(nodes)


class AlwaysConflictStore(InMemoryTreeStore):
    async def insert_nodes(self, nodes):
        raise StoreConflict(nodes[0].parent_id, nodes[0].position_key)


# === HELPERS ===


def action_node(**kwargs) -> PromptNode:
    defaults = {
        "id": "action",
        "name": "Planner",
        "system_prompt": "You plan",
        "node_type": NodeType.ACTION,
        "post_action": "create_children_json",
        "position_key": "a0",
        "model_settings": ModelSettings(
            model="gpt-4o", temperature=0.2, response_format={"type": "json_object"}
        ),
    }
    defaults.update(kwargs)
    return PromptNode(**defaults)


def make_materializer(store, **config_kwargs) -> ChildMaterializer:
    return ChildMaterializer(store, config=CascadeConfig(**config_kwargs))


def five_items() -> dict:
    return {"items": [{"name": f"Item {i}", "content": f"Do {i}"} for i in range(1, 6)]}


# === ARRAY PATH ===


@pytest.mark.asyncio
async def test_creates_one_child_per_item_in_order():
    node = action_node()
    store = InMemoryTreeStore([node])
    config = ChildCreationConfig(strategy=ByArrayPath())

    result = await make_materializer(store).materialize(five_items(), node, config)

    assert result.success
    assert result.created_count == 5
    assert result.target_parent_id == "action"
    assert result.message == "Created 5 node(s) as children"

    children = await store.list_children("action")
    assert [c.name for c in children] == [f"Item {i}" for i in range(1, 6)]
    keys = [c.position_key for c in children]
    assert keys == sorted(keys)
    assert len(set(keys)) == 5
    assert children[0].system_prompt == "Do 1"
    assert children[0].user_prompt == ""
    assert children[0].extracted_variables == {"name": "Item 1", "content": "Do 1"}


@pytest.mark.asyncio
async def test_keys_follow_existing_and_deleted_siblings():
    node = action_node()
    existing = PromptNode(id="old", parent_id="action", position_key="a5", is_deleted=True)
    store = InMemoryTreeStore([node, existing])

    result = await make_materializer(store).materialize(
        {"items": ["x", "y"]}, node, ChildCreationConfig(strategy=ByArrayPath())
    )

    assert [n.position_key for n in result.created_nodes] == ["a6", "a7"]


@pytest.mark.asyncio
async def test_content_destination_user():
    node = action_node()
    store = InMemoryTreeStore([node])
    config = ChildCreationConfig(
        strategy=ByArrayPath(), content_destination=ContentDestination.USER
    )

    result = await make_materializer(store, default_system_prompt="Be brief").materialize(
        {"items": [{"name": "A", "content": "Write A"}]}, node, config
    )

    child = result.created_nodes[0]
    assert child.system_prompt == "Be brief"
    assert child.user_prompt == "Write A"


@pytest.mark.asyncio
async def test_unnamed_items_use_naming_templates():
    node = action_node()
    store = InMemoryTreeStore([node])
    naming = NamingConfig(
        levels=[LevelTemplate(name="Top {{n}}"), LevelTemplate(name="Step {{n}}")]
    )
    response = {"items": [{"weight": 1}, {"weight": 2}]}

    result = await make_materializer(store, naming=naming).materialize(
        response, node, ChildCreationConfig(strategy=ByArrayPath())
    )

    assert [n.name for n in result.created_nodes] == ["Step 1", "Step 2"]


@pytest.mark.asyncio
async def test_invalid_response_writes_nothing():
    node = action_node()
    store = InMemoryTreeStore([node])

    with pytest.raises(ActionValidationError) as exc_info:
        await make_materializer(store).materialize(
            {"a": [1], "b": {"c": 2}},
            node,
            ChildCreationConfig(strategy=ByArrayPath(json_path="goals")),
        )

    assert exc_info.value.available_arrays == ["a"]
    assert len(store) == 1


@pytest.mark.asyncio
async def test_empty_array_creates_nothing():
    node = action_node()
    store = InMemoryTreeStore([node])

    result = await make_materializer(store).materialize(
        {"items": []}, node, ChildCreationConfig(strategy=ByArrayPath())
    )

    assert result.success
    assert result.created_count == 0
    assert result.message == "No items found in response"


# === KEY PATTERN / COUNT ===


@pytest.mark.asyncio
async def test_sections_use_content_keys():
    node = action_node()
    store = InMemoryTreeStore([node])
    response = {
        "Section 1": "Introduction",
        "Section 1 system prompt": "Write the introduction",
        "Section 2": "Pricing",
    }

    result = await make_materializer(store).materialize(
        response, node, ChildCreationConfig(strategy=ByKeyPattern())
    )

    first, second = result.created_nodes
    assert first.name == "Introduction"
    assert first.system_prompt == "Write the introduction"
    assert first.user_prompt == ""
    assert second.name == "Pricing"
    assert second.system_prompt == "You plan"
    assert second.user_prompt == "Pricing"
    assert second.extracted_variables["has_content"] is False


@pytest.mark.asyncio
async def test_count_strategy_names():
    node = action_node()
    store = InMemoryTreeStore([node])

    result = await make_materializer(store).materialize(
        None, node, ChildCreationConfig(strategy=ByCount(count=3, name_prefix="Draft"))
    )

    assert [n.name for n in result.created_nodes] == ["Draft 1", "Draft 2", "Draft 3"]


@pytest.mark.asyncio
async def test_count_strategy_template_continues_sequence():
    node = action_node()
    sibling = PromptNode(id="s0", parent_id="action", name="Part A", position_key="a0")
    store = InMemoryTreeStore([node, sibling])

    result = await make_materializer(store).materialize(
        None, node, ChildCreationConfig(strategy=ByCount(count=2, name_prefix="Part {{A}}"))
    )

    assert [n.name for n in result.created_nodes] == ["Part B", "Part C"]


# === PLACEMENT ===


@pytest.mark.asyncio
async def test_sibling_and_top_level_placement():
    parent = PromptNode(id="parent", name="Parent", position_key="a0")
    node = action_node(parent_id="parent")
    store = InMemoryTreeStore([parent, node])
    materializer = make_materializer(store)

    siblings = await materializer.materialize(
        {"items": ["x"]}, node, ChildCreationConfig(placement=Placement.SIBLINGS)
    )
    top = await materializer.materialize(
        {"items": ["y"]}, node, ChildCreationConfig(placement=Placement.TOP_LEVEL)
    )

    assert siblings.target_parent_id == "parent"
    assert siblings.created_nodes[0].position_key > "a0"
    assert top.target_parent_id is None
    assert top.created_nodes[0].parent_id is None
    assert top.message == "Created 1 node(s) as top-level prompts"


@pytest.mark.asyncio
async def test_specific_prompt_placement():
    target = PromptNode(id="target", name="Target")
    node = action_node()
    store = InMemoryTreeStore([target, node])
    materializer = make_materializer(store)

    result = await materializer.materialize(
        {"items": ["x"]},
        node,
        ChildCreationConfig(placement=Placement.SPECIFIC_PROMPT, target_parent_id="target"),
    )
    assert result.created_nodes[0].parent_id == "target"

    with pytest.raises(ValidationError):
        await materializer.materialize(
            {"items": ["x"]}, node, ChildCreationConfig(placement=Placement.SPECIFIC_PROMPT)
        )
    with pytest.raises(ValidationError):
        await materializer.materialize(
            {"items": ["x"]},
            node,
            ChildCreationConfig(placement=Placement.SPECIFIC_PROMPT, target_parent_id="gone"),
        )


# === MODEL SETTINGS ===


@pytest.mark.asyncio
async def test_inherited_settings_drop_response_format_for_standard_children():
    node = action_node()
    store = InMemoryTreeStore([node])

    result = await make_materializer(store).materialize(
        {"items": ["x"]}, node, ChildCreationConfig()
    )

    settings = result.created_nodes[0].model_settings
    assert settings.model == "gpt-4o"
    assert settings.temperature == 0.2
    assert settings.response_format is None


@pytest.mark.asyncio
async def test_action_children_keep_response_format_and_config():
    node = action_node()
    store = InMemoryTreeStore([node])
    config = ChildCreationConfig(
        child_node_type=NodeType.ACTION, child_post_action="create_children_text"
    )

    result = await make_materializer(store).materialize({"items": ["x"]}, node, config)

    child = result.created_nodes[0]
    assert child.node_type == NodeType.ACTION
    assert child.post_action == "create_children_text"
    assert child.model_settings.response_format == {"type": "json_object"}
    assert result.message == "Created 1 action node(s) as children"


@pytest.mark.asyncio
async def test_not_inheriting_uses_default_model():
    node = action_node()
    store = InMemoryTreeStore([node])

    result = await make_materializer(store, default_model="openai/gpt-4.1").materialize(
        {"items": ["x"]}, node, ChildCreationConfig(inherit_model=False)
    )

    settings = result.created_nodes[0].model_settings
    assert settings.model == "openai/gpt-4.1"
    assert settings.temperature is None


# === FAILURES AND CONFLICTS ===


@pytest.mark.asyncio
async def test_failure_part_way_keeps_created_nodes():
    node = action_node()
    store = FailingStore([node], fail_on_call=3)

    result = await make_materializer(store).materialize(
        five_items(), node, ChildCreationConfig(strategy=ByArrayPath())
    )

    assert not result.success
    assert result.created_count == 2
    assert str(result.error) == "disk full"
    assert result.requested_count == 5
    assert len(await store.list_children("action")) == 2
    with pytest.raises(PartialMaterializationError) as exc_info:
        result.raise_for_error()
    assert exc_info.value.created_count == 2


@pytest.mark.asyncio
async def test_conflict_is_retried_with_fresh_key():
    node = action_node()
    store = RacingStore([node])

    result = await make_materializer(store).materialize(
        {"items": ["x", "y"]}, node, ChildCreationConfig()
    )

    assert result.success
    assert [n.position_key for n in result.created_nodes] == ["a1", "a2"]
    names = [c.name for c in await store.list_children("action")]
    assert names == ["Competitor", "x", "y"]


@pytest.mark.asyncio
async def test_conflict_retries_are_bounded():
    node = action_node()
    store = AlwaysConflictStore([node])

    result = await make_materializer(store, store_conflict_retries=2).materialize(
        {"items": ["x"]}, node, ChildCreationConfig()
    )

    assert result.created_count == 0
    assert isinstance(result.error, StoreConflict)


# === EVENTS ===


@pytest.mark.asyncio
async def test_emits_materialized_and_tree_changed():
    node = action_node()
    store = InMemoryTreeStore([node])
    bus = EventBus()
    materializer = ChildMaterializer(store, config=CascadeConfig(), event_bus=bus)

    result = await materializer.materialize({"items": ["x", "y"]}, node, ChildCreationConfig())

    materialized = bus.get_history(EventType.NODES_MATERIALIZED)
    assert len(materialized) == 1
    assert materialized[0].data["created_node_ids"] == result.created_node_ids
    assert bus.get_history(EventType.TREE_CHANGED)[0].data == {"parent_id": "action"}
