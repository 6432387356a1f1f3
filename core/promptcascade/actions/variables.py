"""Copy variable assignments from an action response into node variables."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from promptcascade.actions.resolvers import resolve_path, stringify
from promptcascade.runtime.event_bus import EventBus
from promptcascade.schemas.node import PromptNode, VariableAssignmentConfig
from promptcascade.storage.tree_store import TreeStore

logger = logging.getLogger(__name__)

SYSTEM_VARIABLE_PREFIX = "q."
MAX_VARIABLE_NAME_LENGTH = 50
_VARIABLE_NAME = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")


@dataclass
class AssignmentError:
    error: str
    name: str | None = None


@dataclass
class VariableAssignmentResult:
    processed: int = 0
    errors: list[AssignmentError] = field(default_factory=list)


def validate_variable_name(name: Any) -> str | None:
    """Return an error message, or None when the name is usable."""
    if not name or not isinstance(name, str):
        return "Variable name is required"
    if name.startswith(SYSTEM_VARIABLE_PREFIX):
        return f'Cannot use reserved prefix "{SYSTEM_VARIABLE_PREFIX}"'
    if not _VARIABLE_NAME.match(name):
        return (
            "Variable name must start with a letter and contain only letters, "
            "numbers, underscores and hyphens"
        )
    if len(name) > MAX_VARIABLE_NAME_LENGTH:
        return f"Variable name must be {MAX_VARIABLE_NAME_LENGTH} characters or less"
    return None


async def process_variable_assignments(
    store: TreeStore,
    node: PromptNode,
    response: Any,
    config: VariableAssignmentConfig,
    event_bus: EventBus | None = None,
) -> VariableAssignmentResult:
    """
    Apply ``[{"name": ..., "value": ...}]`` found at ``config.json_path``.

    Existing variables are overwritten; unknown ones are created only when
    ``auto_create_variables`` is set. Bad entries are reported in ``errors``
    and never stop the others.
    """
    result = VariableAssignmentResult()
    if not config.enabled or response is None:
        return result

    assignments = resolve_path(response, config.json_path)
    if not isinstance(assignments, list) or not assignments:
        logger.debug(f"No variable assignments at {config.json_path!r}")
        return result

    variables = dict(node.variables)
    for assignment in assignments:
        name = assignment.get("name") if isinstance(assignment, dict) else None
        if not isinstance(name, str) or not name:
            result.errors.append(AssignmentError(error="Missing or invalid name field"))
            continue
        problem = validate_variable_name(name)
        if problem:
            result.errors.append(AssignmentError(error=problem, name=name))
            continue
        if name not in variables and not config.auto_create_variables:
            result.errors.append(
                AssignmentError(
                    error="Variable does not exist and auto-create is disabled", name=name
                )
            )
            continue

        value = assignment.get("value")
        variables[name] = "" if value is None else stringify(value)
        result.processed += 1

    if result.processed:
        await store.update_node(node.id, {"variables": variables})
        logger.info(f"Applied {result.processed} variable assignment(s) to node {node.id}")
        if event_bus is not None:
            await event_bus.emit_variables_updated(node.id, result.processed)
    return result
