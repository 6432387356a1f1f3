"""
Prompt tree schemas.

A PromptNode is one prompt in the tree. Action nodes carry a typed
PostActionConfig describing how their JSON response becomes new nodes.
Legacy flat config dicts are converted once, at the boundary, by
``promptcascade.actions.registry.parse_post_action_config``.
"""

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class NodeType(StrEnum):
    STANDARD = "standard"
    ACTION = "action"


class Placement(StrEnum):
    """Where materialized nodes are attached."""

    CHILDREN = "children"
    SIBLINGS = "siblings"
    SPECIFIC_PROMPT = "specific_prompt"
    TOP_LEVEL = "top_level"


class ContentDestination(StrEnum):
    SYSTEM = "system"
    USER = "user"


class NameSource(StrEnum):
    """How a key-pattern match is turned into a node name."""

    KEY_VALUE = "key_value"
    KEY_NAME = "key_name"
    BOTH = "both"


class ActionStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ModelSettings(BaseModel):
    """Model invocation settings for a node. None means provider default."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    top_p: float | None = None
    reasoning_effort: str | None = None
    web_search: bool = False
    confluence_enabled: bool = False
    response_format: dict[str, Any] | None = None
    allow_questions: bool = False

    model_config = {"extra": "allow"}


# ---------------------------------------------------------------------------
# Child creation strategies
# ---------------------------------------------------------------------------


class ByArrayPath(BaseModel):
    """Create one node per element of the array found at ``json_path``."""

    kind: Literal["array_path"] = "array_path"
    json_path: str = "items"
    name_field: str | None = None
    content_field: str | None = None


class ByKeyPattern(BaseModel):
    """Create one node per top-level key matching ``pattern`` (or in ``target_keys``)."""

    kind: Literal["key_pattern"] = "key_pattern"
    pattern: str = r"^section\s*\d+"
    target_keys: list[str] = Field(default_factory=list)
    content_key_suffix: str = "system prompt"
    name_source: NameSource = NameSource.KEY_VALUE


class ByCount(BaseModel):
    """Create a fixed number of nodes named from ``name_prefix``."""

    kind: Literal["count"] = "count"
    count: int = Field(default=3, ge=1, le=20)
    name_prefix: str = "Child"


ChildCreationStrategy = Annotated[
    ByArrayPath | ByKeyPattern | ByCount,
    Field(discriminator="kind"),
]


class VariableAssignmentConfig(BaseModel):
    """Copy ``{name, value}`` pairs from the response into node variables."""

    enabled: bool = False
    json_path: str = "variable_assignments"
    auto_create_variables: bool = False


class ChildCreationConfig(BaseModel):
    strategy: ChildCreationStrategy = Field(default_factory=ByArrayPath)
    placement: Placement = Placement.CHILDREN
    target_parent_id: str | None = None
    inherit_model: bool = True
    child_node_type: NodeType = NodeType.STANDARD
    content_destination: ContentDestination = ContentDestination.SYSTEM
    child_post_action: str | None = None
    child_post_action_config: "PostActionConfig | None" = None
    response_schema: dict[str, Any] | None = None


class PostActionConfig(BaseModel):
    """Everything that happens after an action node's model call succeeds."""

    children: ChildCreationConfig = Field(default_factory=ChildCreationConfig)
    skip_preview: bool = False
    auto_run_children: bool = False
    variable_assignments: VariableAssignmentConfig = Field(
        default_factory=VariableAssignmentConfig
    )


ChildCreationConfig.model_rebuild()
PostActionConfig.model_rebuild()


class LastActionResult(BaseModel):
    """Outcome of the most recent post action, stored on the node."""

    status: ActionStatus
    action: str | None = None
    created_count: int = 0
    target_parent_id: str | None = None
    message: str | None = None
    error: str | None = None
    available_arrays: list[str] = Field(default_factory=list)
    executed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Node
# ---------------------------------------------------------------------------


class PromptNode(BaseModel):
    """One prompt in the tree."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    parent_id: str | None = None
    name: str = "Prompt"
    system_prompt: str = ""
    user_prompt: str = ""
    model_settings: ModelSettings = Field(default_factory=ModelSettings)
    node_type: NodeType = NodeType.STANDARD
    post_action: str | None = None
    post_action_config: PostActionConfig | None = None
    position_key: str | None = None
    is_deleted: bool = False
    exclude_from_cascade: bool = False
    owner_id: str | None = None

    output_response: str | None = None
    last_action_result: LastActionResult | None = None
    extracted_variables: dict[str, Any] | None = None
    variables: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = {"extra": "allow"}

    @property
    def is_action_node(self) -> bool:
        return self.node_type == NodeType.ACTION and bool(self.post_action)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PromptNode":
        """
        Build a node from a hosted-database row.

        Rows use the column names of the prompt table (``row_id``,
        ``parent_row_id``, ``prompt_name``, ``input_admin_prompt``, ...). Model
        settings only count when their ``*_on`` toggle is set.
        """
        from promptcascade.actions.registry import parse_post_action_config

        def _toggled(name: str) -> Any:
            return row.get(name) if row.get(f"{name}_on") else None

        settings = ModelSettings(
            model=row.get("model") if row.get("model_on", True) else None,
            temperature=_toggled("temperature"),
            max_tokens=_toggled("max_tokens"),
            max_completion_tokens=_toggled("max_completion_tokens"),
            top_p=_toggled("top_p"),
            reasoning_effort=_toggled("reasoning_effort"),
            web_search=bool(row.get("web_search_on")),
            confluence_enabled=bool(row.get("confluence_enabled")),
            response_format=_toggled("response_format"),
            allow_questions=bool(row.get("question_mode_on")),
        )

        post_action = row.get("post_action")
        raw_config = row.get("post_action_config")
        post_action_config = (
            parse_post_action_config(post_action, raw_config or {}) if post_action else None
        )

        fields: dict[str, Any] = {
            "parent_id": row.get("parent_row_id"),
            "name": row.get("prompt_name") or "Prompt",
            "system_prompt": row.get("input_admin_prompt") or "",
            "user_prompt": row.get("input_user_prompt") or "",
            "model_settings": settings,
            "node_type": row.get("node_type") or NodeType.STANDARD,
            "post_action": post_action,
            "post_action_config": post_action_config,
            "position_key": row.get("position_lex"),
            "is_deleted": bool(row.get("is_deleted")),
            "exclude_from_cascade": bool(row.get("exclude_from_cascade")),
            "owner_id": row.get("owner_id"),
            "output_response": row.get("output_response"),
            "extracted_variables": row.get("extracted_variables"),
        }
        if row.get("row_id"):
            fields["id"] = row["row_id"]
        if row.get("last_action_result"):
            fields["last_action_result"] = LastActionResult.model_validate(
                row["last_action_result"]
            )
        if row.get("created_at"):
            fields["created_at"] = row["created_at"]
        return cls(**fields)
