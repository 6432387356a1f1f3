"""
Action response validation.

Checks a parsed model response against a child creation strategy before
anything is written, and reports enough diagnostics (available arrays,
response keys, a suggestion) for the user to fix a wrong path.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import jsonschema

from promptcascade.actions.resolvers import (
    first_number,
    path_exists,
    resolve_path,
)
from promptcascade.errors import ResponseParseError
from promptcascade.schemas.node import (
    ByArrayPath,
    ByCount,
    ByKeyPattern,
    ChildCreationConfig,
)

logger = logging.getLogger(__name__)

_CODE_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass
class ActionItem:
    """One unit of work for the materializer."""

    value: Any
    index: int
    key: str | None = None


@dataclass
class ActionValidationResult:
    valid: bool
    error: str | None = None
    available_arrays: list[str] = field(default_factory=list)
    response_keys: list[str] = field(default_factory=list)
    suggestion: str | None = None
    json_path: str | None = None
    items: list[ActionItem] = field(default_factory=list)
    dropped_count: int = 0

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return self.valid and not self.items

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "error": self.error,
            "available_arrays": self.available_arrays,
            "response_keys": self.response_keys,
            "suggestion": self.suggestion,
            "json_path": self.json_path,
            "item_count": self.item_count,
            "dropped_count": self.dropped_count,
        }


def extract_json_from_response(text: str) -> Any:
    """
    Parse model output as JSON, unwrapping a fenced markdown code block.

    Raises:
        ResponseParseError: If no valid JSON can be parsed
    """
    if text is None:
        raise ResponseParseError("Empty response", raw_response="")
    candidate = text.strip()
    match = _CODE_BLOCK.search(candidate)
    if match:
        candidate = match.group(1).strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Response is not valid JSON: {e}", raw_response=text) from e


def available_arrays(response: Any) -> list[str]:
    """Top-level keys whose values are arrays."""
    if not isinstance(response, dict):
        return []
    return [key for key, value in response.items() if isinstance(value, list)]


def _response_keys(response: Any) -> list[str]:
    return list(response.keys()) if isinstance(response, dict) else []


class ActionResponseValidator:
    """
    Stateless validator for parsed action responses.

    ``validate`` never mutates the response. The returned items are what the
    materializer turns into nodes.
    """

    def validate(self, response: Any, config: ChildCreationConfig) -> ActionValidationResult:
        if config.response_schema:
            schema_result = self._validate_schema(response, config.response_schema)
            if schema_result is not None:
                return schema_result

        strategy = config.strategy
        if isinstance(strategy, ByArrayPath):
            return self._validate_array_path(response, strategy)
        if isinstance(strategy, ByKeyPattern):
            return self._validate_key_pattern(response, strategy)
        if isinstance(strategy, ByCount):
            return ActionValidationResult(
                valid=True,
                items=[ActionItem(value=None, index=i) for i in range(strategy.count)],
            )
        raise TypeError(f"Unknown child creation strategy: {type(strategy).__name__}")

    # ------------------------------------------------------------------

    def _validate_schema(
        self, response: Any, schema: dict[str, Any]
    ) -> ActionValidationResult | None:
        try:
            validator_cls = jsonschema.validators.validator_for(schema)
            validator_cls.check_schema(schema)
        except jsonschema.exceptions.SchemaError as e:
            return ActionValidationResult(
                valid=False,
                error=f"Invalid response schema: {e.message}",
                available_arrays=available_arrays(response),
                response_keys=_response_keys(response),
            )

        errors = sorted(
            validator_cls(schema).iter_errors(response), key=lambda e: list(e.absolute_path)
        )
        if not errors:
            return None

        first = errors[0]
        location = "/".join(str(p) for p in first.absolute_path) or "root"
        return ActionValidationResult(
            valid=False,
            error=f"Response does not match schema at {location}: {first.message}",
            available_arrays=available_arrays(response),
            response_keys=_response_keys(response),
            suggestion=f"{len(errors)} schema violation(s) found",
        )

    def _validate_array_path(
        self, response: Any, strategy: ByArrayPath
    ) -> ActionValidationResult:
        path = strategy.json_path
        arrays = available_arrays(response)
        keys = _response_keys(response)
        value = resolve_path(response, path)

        if not isinstance(value, list):
            found = "nothing" if not path_exists(response, path) else type(value).__name__
            return ActionValidationResult(
                valid=False,
                error=f'Path "{path}" is not an array (found {found})',
                available_arrays=arrays,
                response_keys=keys,
                suggestion=self._array_suggestion(response, value, arrays),
                json_path=path,
            )

        kept: list[ActionItem] = []
        dropped = 0
        for index, item in enumerate(value):
            if (
                strategy.name_field
                and isinstance(item, dict)
                and resolve_path(item, strategy.name_field) in (None, "")
            ):
                dropped += 1
                continue
            kept.append(ActionItem(value=item, index=index))

        if value and not kept:
            return ActionValidationResult(
                valid=False,
                error=f'No items at "{path}" have the field "{strategy.name_field}"',
                available_arrays=arrays,
                response_keys=keys,
                suggestion=f"Check name_field; {dropped} item(s) were missing it",
                json_path=path,
                dropped_count=dropped,
            )

        if dropped:
            logger.warning(
                f'Dropped {dropped} item(s) at "{path}" missing "{strategy.name_field}"'
            )

        return ActionValidationResult(
            valid=True,
            available_arrays=arrays,
            response_keys=keys,
            json_path=path,
            items=kept,
            dropped_count=dropped,
        )

    @staticmethod
    def _array_suggestion(response: Any, value: Any, arrays: list[str]) -> str:
        if isinstance(value, str):
            return (
                "The value at this path is a string. The model may have returned "
                "stringified JSON instead of an object."
            )
        if arrays:
            return f'Try setting json_path to "{arrays[0]}"'
        if isinstance(response, list):
            return 'The response itself is an array. Try setting json_path to "root".'
        return "Ensure the response contains an array field for child items."

    def _validate_key_pattern(
        self, response: Any, strategy: ByKeyPattern
    ) -> ActionValidationResult:
        if not isinstance(response, dict):
            return ActionValidationResult(
                valid=False,
                error="JSON response must be an object",
                suggestion="Key pattern matching needs a JSON object at the top level",
            )

        keys = list(response.keys())
        arrays = available_arrays(response)

        if strategy.target_keys:
            matched = [key for key in strategy.target_keys if key in response]
            criteria = f"target keys {strategy.target_keys}"
        else:
            try:
                regex = re.compile(strategy.pattern, re.IGNORECASE)
            except re.error as e:
                return ActionValidationResult(
                    valid=False,
                    error=f"Invalid regex pattern: {strategy.pattern} ({e})",
                    available_arrays=arrays,
                    response_keys=keys,
                )
            suffix = strategy.content_key_suffix.lower().strip()
            matched = [
                key
                for key in keys
                if not (suffix and key.lower().endswith(suffix)) and regex.search(key)
            ]
            criteria = f'pattern "{strategy.pattern}"'

        if not matched:
            return ActionValidationResult(
                valid=False,
                error=f"No keys in the response match {criteria}",
                available_arrays=arrays,
                response_keys=keys,
                suggestion=f"Response keys are: {', '.join(keys) or 'none'}",
            )

        matched.sort(key=first_number)
        return ActionValidationResult(
            valid=True,
            available_arrays=arrays,
            response_keys=keys,
            items=[
                ActionItem(value=response[key], index=i, key=key) for i, key in enumerate(matched)
            ],
        )


_default_validator = ActionResponseValidator()


def validate_action_response(response: Any, config: ChildCreationConfig) -> ActionValidationResult:
    """Module-level shortcut for ActionResponseValidator().validate."""
    return _default_validator.validate(response, config)


__all__ = [
    "ActionItem",
    "ActionResponseValidator",
    "ActionValidationResult",
    "available_arrays",
    "extract_json_from_response",
    "validate_action_response",
]
