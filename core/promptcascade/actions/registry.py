"""
Registry of post-action types and conversion of stored action config.

Action nodes store their config as a flat dict keyed by field names such as
``json_path`` or ``children_count``. ``parse_post_action_config`` turns that
dict into a typed PostActionConfig exactly once, at the boundary; nothing
past this module reads the flat form.
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import pydantic

from promptcascade.errors import ValidationError
from promptcascade.schemas.node import (
    ByArrayPath,
    ByCount,
    ByKeyPattern,
    ChildCreationConfig,
    PostActionConfig,
    VariableAssignmentConfig,
)

logger = logging.getLogger(__name__)


class ConfigFieldType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    LIST = "list"
    SELECT = "select"


@dataclass
class ConfigField:
    key: str
    label: str
    type: ConfigFieldType = ConfigFieldType.TEXT
    default: Any = None
    required: bool = False
    min: int | None = None
    max: int | None = None
    options: list[str] = field(default_factory=list)


@dataclass
class ActionType:
    id: str
    name: str
    description: str
    strategy_kind: str
    config_fields: list[ConfigField] = field(default_factory=list)
    enabled: bool = True


# Fields shared by every child-creating action
_COMMON_FIELDS = [
    ConfigField(
        "placement",
        "Placement",
        ConfigFieldType.SELECT,
        default="children",
        options=["children", "siblings", "specific_prompt", "top_level"],
    ),
    ConfigField("target_prompt_id", "Target prompt"),
    ConfigField(
        "child_node_type",
        "Child node type",
        ConfigFieldType.SELECT,
        default="standard",
        options=["standard", "action"],
    ),
    ConfigField("inherit_settings", "Inherit model settings", ConfigFieldType.BOOLEAN, True),
    ConfigField("skip_preview", "Skip preview", ConfigFieldType.BOOLEAN, False),
    ConfigField("auto_run_children", "Run created prompts", ConfigFieldType.BOOLEAN, False),
]

ACTION_TYPES: dict[str, ActionType] = {
    "create_children_text": ActionType(
        id="create_children_text",
        name="Create Children (Count)",
        description="Create a fixed number of child prompts",
        strategy_kind="count",
        config_fields=[
            ConfigField(
                "children_count",
                "Number of children",
                ConfigFieldType.NUMBER,
                default=3,
                required=True,
                min=1,
                max=20,
            ),
            ConfigField("name_prefix", "Name prefix", default="Child"),
            *_COMMON_FIELDS,
        ],
    ),
    "create_children_json": ActionType(
        id="create_children_json",
        name="Create Children (JSON)",
        description="Create one child prompt per element of a JSON array",
        strategy_kind="array_path",
        config_fields=[
            ConfigField("json_path", "JSON path to array", default="items", required=True),
            ConfigField("name_field", "Name field", default=""),
            ConfigField("content_field", "Content field", default=""),
            ConfigField(
                "content_destination",
                "Content destination",
                ConfigFieldType.SELECT,
                default="system",
                options=["system", "user"],
            ),
            *_COMMON_FIELDS,
        ],
    ),
    "create_children_sections": ActionType(
        id="create_children_sections",
        name="Create Children (Sections)",
        description="Create one child prompt per matching top-level JSON key",
        strategy_kind="key_pattern",
        config_fields=[
            ConfigField("section_pattern", "Key pattern", default=r"^section\s*\d+"),
            ConfigField("target_keys", "Explicit keys", ConfigFieldType.LIST, default=[]),
            ConfigField(
                "name_source",
                "Name source",
                ConfigFieldType.SELECT,
                default="key_value",
                options=["key_value", "key_name", "both"],
            ),
            ConfigField("content_key_suffix", "Content key suffix", default="system prompt"),
            *_COMMON_FIELDS,
        ],
    ),
}


def get_action_type(action_id: str | None) -> ActionType | None:
    if not action_id:
        return None
    return ACTION_TYPES.get(action_id)


def enabled_action_types() -> list[ActionType]:
    return [action for action in ACTION_TYPES.values() if action.enabled]


def default_action_config(action_id: str) -> dict[str, Any]:
    """Flat default config for an action type ({} for unknown actions)."""
    action = get_action_type(action_id)
    if action is None:
        return {}
    return {f.key: f.default for f in action.config_fields if f.default is not None}


def validate_action_config(action_id: str, raw: dict[str, Any] | None) -> list[str]:
    """Return a list of problems with a stored config; empty means valid."""
    action = get_action_type(action_id)
    if action is None:
        return [f"Unknown action type: {action_id}"]

    raw = raw or {}
    errors: list[str] = []
    for config_field in action.config_fields:
        value = raw.get(config_field.key)
        if config_field.required and value in (None, "", []):
            # Defaults cover required fields that are simply absent
            if config_field.key in raw:
                errors.append(f"{config_field.label} is required")
            continue
        if config_field.type == ConfigFieldType.NUMBER and value is not None:
            try:
                number = float(value)
            except (TypeError, ValueError):
                errors.append(f"{config_field.label} must be a number")
                continue
            if config_field.min is not None and number < config_field.min:
                errors.append(f"{config_field.label} must be at least {config_field.min}")
            if config_field.max is not None and number > config_field.max:
                errors.append(f"{config_field.label} must be at most {config_field.max}")
        if config_field.options and value is not None and value not in config_field.options:
            errors.append(f"{config_field.label} must be one of {', '.join(config_field.options)}")

    if raw.get("placement") == "specific_prompt" and not raw.get("target_prompt_id"):
        errors.append("Target prompt is required when placement is specific_prompt")
    return errors


def _strategy_from_raw(kind: str, raw: dict[str, Any]) -> ByArrayPath | ByKeyPattern | ByCount:
    if kind == "array_path":
        json_path = raw.get("json_path")
        if isinstance(json_path, list):
            json_path = json_path[0] if json_path else None
        return ByArrayPath(
            json_path=json_path or "items",
            name_field=raw.get("name_field") or None,
            content_field=raw.get("content_field") or None,
        )
    if kind == "key_pattern":
        target_keys = raw.get("target_keys") or []
        if isinstance(target_keys, str):
            target_keys = [target_keys]
        return ByKeyPattern(
            pattern=raw.get("section_pattern") or r"^section\s*\d+",
            target_keys=target_keys,
            content_key_suffix=raw.get("content_key_suffix", "system prompt") or "",
            name_source=raw.get("name_source") or "key_value",
        )
    return ByCount(
        count=int(raw.get("children_count") or 3),
        name_prefix=raw.get("name_prefix") or "Child",
    )


def parse_post_action_config(action_id: str, raw: dict[str, Any] | None) -> PostActionConfig:
    """
    Convert a stored flat action config into a PostActionConfig.

    Raises:
        ValidationError: Unknown action type or values out of range
    """
    action = get_action_type(action_id)
    if action is None or not action.enabled:
        raise ValidationError(f"Unknown action type: {action_id}")

    raw = {**default_action_config(action_id), **(raw or {})}
    try:
        child_post_action = raw.get("child_post_action")
        children = ChildCreationConfig(
            strategy=_strategy_from_raw(action.strategy_kind, raw),
            placement=raw.get("placement") or "children",
            target_parent_id=raw.get("target_prompt_id") or None,
            inherit_model=raw.get("inherit_settings", True),
            child_node_type=raw.get("child_node_type") or "standard",
            content_destination=raw.get("content_destination") or "system",
            child_post_action=child_post_action,
            child_post_action_config=(
                parse_post_action_config(child_post_action, raw.get("child_post_action_config"))
                if child_post_action
                else None
            ),
            response_schema=raw.get("json_schema") or None,
        )
        assignments = raw.get("variable_assignments") or {}
        return PostActionConfig(
            children=children,
            skip_preview=bool(raw.get("skip_preview", False)),
            auto_run_children=bool(raw.get("auto_run_children", False)),
            variable_assignments=VariableAssignmentConfig.model_validate(assignments),
        )
    except (pydantic.ValidationError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid config for {action_id}: {e}") from e
