"""Sibling ordering keys and templated node names."""

from promptcascade.ordering.naming import (
    LevelNamingConfig,
    LevelTemplate,
    NamingConfig,
    NamingResolver,
    TopLevelSet,
    render_template,
    resolve_name,
)
from promptcascade.ordering.position import (
    compare_keys,
    is_valid_key,
    key_after,
    key_before,
    key_between,
    keys_after,
)

__all__ = [
    "LevelNamingConfig",
    "LevelTemplate",
    "NamingConfig",
    "NamingResolver",
    "TopLevelSet",
    "render_template",
    "resolve_name",
    "compare_keys",
    "is_valid_key",
    "key_after",
    "key_before",
    "key_between",
    "keys_after",
]
