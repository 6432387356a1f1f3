"""
Child Materializer - turns a validated action response into new nodes.

Position keys are allocated by reading the last sibling key at the target
once and chaining ``key_after`` locally, so a batch of N items gets N
strictly increasing keys in item order. If the store reports a key
collision (another writer got there first) the key is recomputed from a
fresh read and the insert retried a bounded number of times.

A failure part way through keeps the nodes already inserted and reports
them: ``created_count`` plus the first error.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from promptcascade.actions.resolvers import (
    resolve_item_content,
    resolve_item_name,
    section_content,
    section_name,
    stringify,
    truncate_name,
)
from promptcascade.actions.validator import (
    ActionItem,
    ActionResponseValidator,
    ActionValidationResult,
)
from promptcascade.config import CascadeConfig
from promptcascade.errors import (
    ActionValidationError,
    PartialMaterializationError,
    StoreConflict,
    ValidationError,
)
from promptcascade.ordering.naming import LevelNamingConfig, NamingResolver
from promptcascade.ordering.position import key_after
from promptcascade.runtime.event_bus import EventBus
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
from promptcascade.storage.tree_store import (
    TreeStore,
    last_child_key,
    node_depth,
    top_level_ancestor,
)

logger = logging.getLogger(__name__)

_PLACEMENT_TEXT = {
    Placement.CHILDREN: "as children",
    Placement.SIBLINGS: "as siblings",
    Placement.TOP_LEVEL: "as top-level prompts",
    Placement.SPECIFIC_PROMPT: "under the selected prompt",
}


@dataclass
class MaterializationResult:
    """What a materialization created, and the first error if it stopped early."""

    target_parent_id: str | None
    created_nodes: list[PromptNode] = field(default_factory=list)
    requested_count: int = 0
    error: BaseException | None = None
    message: str = ""

    @property
    def created_count(self) -> int:
        return len(self.created_nodes)

    @property
    def created_node_ids(self) -> list[str]:
        return [node.id for node in self.created_nodes]

    @property
    def success(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise PartialMaterializationError(self.created_count, self.error)


@dataclass
class _TargetContext:
    """Lazily resolved tree context of the target parent, for naming fallback."""

    parent: PromptNode | None = None
    level: int = 0
    top_level_name: str | None = None
    sibling_count: int = 0


class ChildMaterializer:
    """
    Creates nodes from an action response.

    Example:
        materializer = ChildMaterializer(store)
        result = await materializer.materialize(response, node, node.post_action_config.children)
        result.raise_for_error()
    """

    def __init__(
        self,
        store: TreeStore,
        config: CascadeConfig | None = None,
        naming: NamingResolver | None = None,
        validator: ActionResponseValidator | None = None,
        event_bus: EventBus | None = None,
    ):
        self.store = store
        self.config = config or CascadeConfig()
        self.naming = naming or NamingResolver(self.config.naming)
        self.validator = validator or ActionResponseValidator()
        self.event_bus = event_bus

    async def materialize(
        self,
        response: Any,
        node: PromptNode,
        config: ChildCreationConfig,
        owner_id: str | None = None,
        validation: ActionValidationResult | None = None,
    ) -> MaterializationResult:
        """
        Validate ``response`` and create one node per actionable item.

        Raises:
            ActionValidationError: The response does not fit the strategy
            ValidationError: The placement is unusable (e.g. no target id)

        Both are raised before anything is written. Insert failures are not
        raised; they are reported on the returned result.
        """
        if validation is None:
            validation = self.validator.validate(response, config)
        if not validation.valid:
            raise ActionValidationError(validation)

        target_parent_id = await self._resolve_target(node, config)
        result = MaterializationResult(
            target_parent_id=target_parent_id,
            requested_count=validation.item_count,
        )
        if not validation.items:
            result.message = "No items found in response"
            return result

        context = await self._target_context(target_parent_id)
        last_key = await last_child_key(self.store, target_parent_id)

        for item in validation.items:
            sequence = context.sibling_count + len(result.created_nodes)
            child = self._build_child(
                item, response, node, config, target_parent_id, owner_id, context, sequence
            )
            try:
                inserted = await self._insert_with_retry(child, target_parent_id, last_key)
            except Exception as e:
                logger.error(
                    f"Creating node {len(result.created_nodes) + 1}/{validation.item_count} "
                    f"under {target_parent_id!r} failed: {e}"
                )
                result.error = e
                break
            last_key = inserted.position_key
            result.created_nodes.append(inserted)

        result.message = self._message(result, config)
        logger.info(
            result.message,
            extra={"event": "nodes_materialized", "created_count": result.created_count},
        )

        if result.created_nodes and self.event_bus is not None:
            await self.event_bus.emit_nodes_materialized(
                node.id, target_parent_id, result.created_node_ids, result.message
            )
            await self.event_bus.emit_tree_changed(target_parent_id)
        return result

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def _resolve_target(self, node: PromptNode, config: ChildCreationConfig) -> str | None:
        if config.placement == Placement.CHILDREN:
            return node.id
        if config.placement == Placement.SIBLINGS:
            return node.parent_id
        if config.placement == Placement.TOP_LEVEL:
            return None
        if not config.target_parent_id:
            raise ValidationError("Placement specific_prompt needs a target prompt id")
        if await self.store.get_node(config.target_parent_id) is None:
            raise ValidationError(f"Target prompt {config.target_parent_id} does not exist")
        return config.target_parent_id

    async def _target_context(self, target_parent_id: str | None) -> _TargetContext:
        siblings = await self.store.list_children(target_parent_id)
        if target_parent_id is None:
            return _TargetContext(sibling_count=len(siblings))
        parent = await self.store.get_node(target_parent_id)
        top = await top_level_ancestor(self.store, target_parent_id)
        return _TargetContext(
            parent=parent,
            level=await node_depth(self.store, target_parent_id) + 1,
            top_level_name=top.name if top else None,
            sibling_count=len(siblings),
        )

    # ------------------------------------------------------------------
    # Node construction
    # ------------------------------------------------------------------

    def _fallback_name(self, context: _TargetContext, sequence: int) -> str:
        level_config: LevelNamingConfig = self.naming.level_config(
            context.level,
            top_level_name=context.top_level_name,
            parent_name=context.parent.name if context.parent else None,
        )
        return self.naming.resolve(level_config, sequence)

    def _name_and_prompts(
        self,
        item: ActionItem,
        response: Any,
        node: PromptNode,
        config: ChildCreationConfig,
        context: _TargetContext,
        sequence: int,
    ) -> tuple[str | None, str, str, dict[str, Any] | None]:
        default_system = self.config.default_system_prompt
        strategy = config.strategy

        if isinstance(strategy, ByArrayPath):
            name = resolve_item_name(item.value, strategy.name_field)
            content = resolve_item_content(item.value, strategy.content_field)
            if content is None:
                content = stringify(item.value)
            if config.content_destination == ContentDestination.USER:
                system, user = default_system, content
            else:
                system, user = content or default_system, ""
            extracted = item.value if isinstance(item.value, dict) else {"value": item.value}
            return name, system, user, extracted

        if isinstance(strategy, ByKeyPattern):
            key = item.key or ""
            name = section_name(key, item.value, strategy.name_source)
            content = (
                section_content(response, key, strategy.content_key_suffix)
                if isinstance(response, dict)
                else None
            )
            system = content or node.system_prompt or default_system
            user = "" if content else (item.value if isinstance(item.value, str) else "")
            extracted = {
                "section_key": key,
                "section_value": item.value,
                "has_content": bool(content),
            }
            return name, system, user, extracted

        if isinstance(strategy, ByCount):
            if "{{" in strategy.name_prefix:
                name = self.naming.render(
                    strategy.name_prefix,
                    sequence,
                    parent_name=context.parent.name if context.parent else None,
                    top_level_name=context.top_level_name,
                )
            else:
                name = f"{strategy.name_prefix} {item.index + 1}"
            return name, default_system, self.config.default_user_prompt, None

        raise TypeError(f"Unknown child creation strategy: {type(strategy).__name__}")

    def _model_settings(self, node: PromptNode, config: ChildCreationConfig) -> ModelSettings:
        if not config.inherit_model:
            return ModelSettings(model=self.config.default_model)
        settings = node.model_settings.model_copy(deep=True)
        if config.child_node_type != NodeType.ACTION:
            # Structured output only matters to children that run actions themselves
            settings.response_format = None
        return settings

    def _build_child(
        self,
        item: ActionItem,
        response: Any,
        node: PromptNode,
        config: ChildCreationConfig,
        target_parent_id: str | None,
        owner_id: str | None,
        context: _TargetContext,
        sequence: int,
    ) -> PromptNode:
        name, system, user, extracted = self._name_and_prompts(
            item, response, node, config, context, sequence
        )
        if not name or not name.strip():
            name = self._fallback_name(context, sequence)

        return PromptNode(
            parent_id=target_parent_id,
            name=truncate_name(name),
            system_prompt=system,
            user_prompt=user,
            model_settings=self._model_settings(node, config),
            node_type=config.child_node_type,
            post_action=config.child_post_action,
            post_action_config=(
                config.child_post_action_config.model_copy(deep=True)
                if config.child_post_action_config
                else None
            ),
            owner_id=owner_id or node.owner_id,
            extracted_variables=extracted,
        )

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    async def _insert_with_retry(
        self, child: PromptNode, target_parent_id: str | None, last_key: str | None
    ) -> PromptNode:
        key = key_after(last_key)
        retries = self.config.store_conflict_retries
        for attempt in range(retries + 1):
            child.position_key = key
            try:
                inserted = await self.store.insert_nodes([child])
                return inserted[0]
            except StoreConflict:
                if attempt >= retries:
                    raise
                fresh = await last_child_key(self.store, target_parent_id)
                key = key_after(max(k for k in (key, fresh) if k))
                logger.warning(
                    f"Position key conflict under {target_parent_id!r}, retrying with {key!r} "
                    f"({attempt + 1}/{retries})"
                )
        raise StoreConflict(target_parent_id, key)

    @staticmethod
    def _message(result: MaterializationResult, config: ChildCreationConfig) -> str:
        kind = " action" if config.child_node_type == NodeType.ACTION else ""
        where = _PLACEMENT_TEXT.get(config.placement, "")
        if result.error is not None:
            return (
                f"Created {result.created_count} of {result.requested_count}{kind} node(s) "
                f"{where} before failing: {result.error}"
            )
        return f"Created {result.created_count}{kind} node(s) {where}"
