"""Post actions: response validation, child materialization and variable assignment."""

from promptcascade.actions.materializer import ChildMaterializer, MaterializationResult
from promptcascade.actions.registry import (
    ACTION_TYPES,
    ActionType,
    default_action_config,
    enabled_action_types,
    get_action_type,
    parse_post_action_config,
    validate_action_config,
)
from promptcascade.actions.validator import (
    ActionItem,
    ActionResponseValidator,
    ActionValidationResult,
    available_arrays,
    extract_json_from_response,
    validate_action_response,
)
from promptcascade.actions.variables import (
    VariableAssignmentResult,
    process_variable_assignments,
    validate_variable_name,
)

__all__ = [
    "ChildMaterializer",
    "MaterializationResult",
    "ACTION_TYPES",
    "ActionType",
    "default_action_config",
    "enabled_action_types",
    "get_action_type",
    "parse_post_action_config",
    "validate_action_config",
    "ActionItem",
    "ActionResponseValidator",
    "ActionValidationResult",
    "available_arrays",
    "extract_json_from_response",
    "validate_action_response",
    "VariableAssignmentResult",
    "process_variable_assignments",
    "validate_variable_name",
]
