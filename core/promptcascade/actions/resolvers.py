"""
Small, independent resolvers that turn one response item into a node name or
node content. Each returns None when it has nothing to offer so callers can
chain them.
"""

import json
import re
from typing import Any

MAX_NAME_LENGTH = 100
MAX_AUTO_NAME_LENGTH = 150

COMMON_NAME_FIELDS = (
    "prompt_name",
    "name",
    "title",
    "heading",
    "label",
    "section_name",
    "section_title",
    "topic",
    "subject",
    "key",
    "id",
)

COMMON_CONTENT_FIELDS = (
    "input_admin_prompt",
    "system_prompt",
    "content",
    "text",
    "body",
    "description",
)

_MISSING = object()
_FIRST_NUMBER = re.compile(r"\d+")


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


def split_path(path: str) -> list[str]:
    """Split ``a.b.0`` or ``/a/b/0`` into segments. Empty or "root" is no segments."""
    path = (path or "").strip()
    if path in ("", "root", "/"):
        return []
    if path.startswith("/"):
        return [p.replace("~1", "/").replace("~0", "~") for p in path[1:].split("/")]
    return path.split(".")


def resolve_path(data: Any, path: str, default: Any = None) -> Any:
    """
    Follow a path into nested dicts and lists.

    Numeric segments index into lists. Returns ``default`` when any segment is
    missing.
    """
    current = data
    for segment in split_path(path):
        if isinstance(current, dict):
            if segment not in current:
                return default
            current = current[segment]
        elif isinstance(current, list):
            try:
                index = int(segment)
            except ValueError:
                return default
            if not -len(current) <= index < len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def path_exists(data: Any, path: str) -> bool:
    return resolve_path(data, path, _MISSING) is not _MISSING


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def stringify(value: Any) -> str:
    """Strings as-is, everything else as indented JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def _as_text(value: Any) -> str | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, int | float):
        return str(value)
    return None


def truncate_name(name: str) -> str:
    return name[:MAX_NAME_LENGTH]


def first_number(key: str) -> int:
    match = _FIRST_NUMBER.search(key)
    return int(match.group(0)) if match else 0


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------


def name_from_string_item(item: Any) -> str | None:
    if isinstance(item, str) and item.strip():
        return item
    return None


def name_from_field(item: Any, name_field: str | None) -> str | None:
    if not name_field or not isinstance(item, dict):
        return None
    return _as_text(resolve_path(item, name_field))


def name_from_common_fields(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    for field_name in COMMON_NAME_FIELDS:
        text = _as_text(item.get(field_name))
        if text:
            return text
    return None


def name_from_first_string(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    for value in item.values():
        if isinstance(value, str) and 0 < len(value) < MAX_AUTO_NAME_LENGTH:
            return value
    return None


def resolve_item_name(item: Any, name_field: str | None = None) -> str | None:
    """Explicit field, then well-known name fields, then the first short string."""
    for resolver in (
        name_from_string_item,
        lambda i: name_from_field(i, name_field),
        name_from_common_fields,
        name_from_first_string,
    ):
        name = resolver(item)
        if name:
            return name
    return None


def section_name(key: str, value: Any, name_source: str) -> str:
    """Name for a key-pattern match: the value, the key, or "key: value"."""
    if name_source == "key_name":
        return key
    rendered = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
    if name_source == "both":
        return f"{key}: {rendered}"
    return rendered


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


def resolve_item_content(item: Any, content_field: str | None = None) -> str | None:
    """Explicit field, then well-known content fields. Non-strings become JSON."""
    if isinstance(item, str):
        return item
    if not isinstance(item, dict):
        return None
    if content_field:
        value = resolve_path(item, content_field)
        if value not in (None, ""):
            return stringify(value)
    for field_name in COMMON_CONTENT_FIELDS:
        value = item.get(field_name)
        if value not in (None, ""):
            return stringify(value)
    return None


def section_content(response: dict[str, Any], key: str, suffix: str) -> str | None:
    """
    Find the companion content key of a section key.

    Tries ``"<key> <suffix>"`` then ``"<key>_<suffix_with_underscores>"``,
    both case-insensitively.
    """
    suffix = (suffix or "").strip()
    if not suffix:
        return None
    lookup = {k.lower(): k for k in response}
    underscored = re.sub(r"\s+", "_", suffix)
    candidates = (
        f"{key} {suffix}".lower(),
        f"{key}_{underscored}".lower(),
    )
    for candidate in candidates:
        actual = lookup.get(candidate)
        if actual is not None and response[actual] not in (None, ""):
            return stringify(response[actual])
    return None
