"""
Templated names for new nodes.

A naming template is plain text with placeholders:

    {{n}} {{nn}} {{nnn}}   1-based sequence number, zero padded to the
                           number of n's
    {{A}} {{a}}            spreadsheet style letters (A..Z, AA, AB, ...)
    {{date:FORMAT}}        current date, date-fns style tokens
                           (yyyy-MM-dd, MMM d, HH:mm, 'literal' ...)
    {{parent}} {{top}}     name of the parent / top-level ancestor

Unknown placeholders, and date placeholders with an invalid format, are left
in the output untouched. Resolution is a pure function of the level config,
the sequence number and the supplied date.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_NAME = "Prompt"

_SEQUENCE_PATTERN = re.compile(r"\{\{(n+)\}\}")
_DATE_PATTERN = re.compile(r"\{\{date:([^}]+)\}\}")
_DATE_TOKEN_PATTERN = re.compile(
    r"'[^']*'|yyyy|yy|y|MMMM|MMM|MM|M|dd|d|EEEE|EEE|HH|H|hh|h|mm|m|ss|s|a|[A-Za-z]"
)

_MONTHS = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]
_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class LevelTemplate(BaseModel):
    """Name template for one hierarchy level."""

    name: str = DEFAULT_NAME
    prefix: str = ""
    suffix: str = ""

    model_config = {"extra": "allow"}


class TopLevelSet(BaseModel):
    """Per-level templates used under a specific top-level node."""

    levels: list[LevelTemplate] = Field(default_factory=list)


class NamingConfig(BaseModel):
    """
    Naming settings for a whole tree.

    ``top_level_sets`` is keyed by the name of a top-level node; trees under
    that node use the set's levels instead of the default ``levels``.
    """

    levels: list[LevelTemplate] = Field(default_factory=list)
    top_level_sets: dict[str, TopLevelSet] = Field(default_factory=dict, alias="topLevelSets")
    default_template: LevelTemplate = Field(default_factory=LevelTemplate)

    model_config = {"extra": "allow", "populate_by_name": True}

    def template_for_level(self, level: int, top_level_name: str | None = None) -> LevelTemplate:
        """Pick the template for a level, clamping to the last configured one."""
        if top_level_name and top_level_name in self.top_level_sets:
            set_levels = self.top_level_sets[top_level_name].levels
            if 0 <= level < len(set_levels):
                return set_levels[level]
            if set_levels:
                return set_levels[-1]

        if 0 <= level < len(self.levels):
            return self.levels[level]
        if self.levels:
            return self.levels[-1]
        return self.default_template

    def for_level(
        self,
        level: int,
        top_level_name: str | None = None,
        parent_name: str | None = None,
    ) -> "LevelNamingConfig":
        return LevelNamingConfig(
            template=self.template_for_level(level, top_level_name),
            level=level,
            top_level_name=top_level_name,
            parent_name=parent_name,
        )


@dataclass
class LevelNamingConfig:
    """Template plus the tree context needed to render it."""

    template: LevelTemplate
    level: int = 0
    top_level_name: str | None = None
    parent_name: str | None = None


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def number_to_alpha(number: int, uppercase: bool = True) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 27 -> AB."""
    base = ord("A") if uppercase else ord("a")
    result = ""
    n = number
    while True:
        result = chr(base + n % 26) + result
        n = n // 26 - 1
        if n < 0:
            return result


def format_date(when: datetime, pattern: str) -> str:
    """
    Format a date with date-fns style tokens.

    Raises ValueError for unescaped letters that are not supported tokens.
    """
    out: list[str] = []
    pos = 0
    for match in _DATE_TOKEN_PATTERN.finditer(pattern):
        out.append(pattern[pos : match.start()])
        pos = match.end()
        token = match.group(0)
        if token.startswith("'"):
            out.append(token[1:-1] if len(token) > 2 else "'")
        elif token in ("yyyy", "y"):
            out.append(f"{when.year:04d}" if token == "yyyy" else str(when.year))
        elif token == "yy":
            out.append(f"{when.year % 100:02d}")
        elif token == "MMMM":
            out.append(_MONTHS[when.month - 1])
        elif token == "MMM":
            out.append(_MONTHS[when.month - 1][:3])
        elif token == "MM":
            out.append(f"{when.month:02d}")
        elif token == "M":
            out.append(str(when.month))
        elif token == "dd":
            out.append(f"{when.day:02d}")
        elif token == "d":
            out.append(str(when.day))
        elif token == "EEEE":
            out.append(_WEEKDAYS[when.weekday()])
        elif token == "EEE":
            out.append(_WEEKDAYS[when.weekday()][:3])
        elif token == "HH":
            out.append(f"{when.hour:02d}")
        elif token == "H":
            out.append(str(when.hour))
        elif token in ("hh", "h"):
            hour = when.hour % 12 or 12
            out.append(f"{hour:02d}" if token == "hh" else str(hour))
        elif token == "mm":
            out.append(f"{when.minute:02d}")
        elif token == "m":
            out.append(str(when.minute))
        elif token == "ss":
            out.append(f"{when.second:02d}")
        elif token == "s":
            out.append(str(when.second))
        elif token == "a":
            out.append("AM" if when.hour < 12 else "PM")
        else:
            raise ValueError(f"Unsupported date token {token!r} in {pattern!r}")
    out.append(pattern[pos:])
    return "".join(out)


def render_template(
    template: str,
    sequence_number: int,
    now: datetime,
    parent_name: str | None = None,
    top_level_name: str | None = None,
) -> str:
    """Substitute every known placeholder in ``template``."""
    if not template:
        return ""

    display_number = sequence_number + 1
    result = _SEQUENCE_PATTERN.sub(
        lambda m: str(display_number).zfill(len(m.group(1))), template
    )
    result = result.replace("{{A}}", number_to_alpha(sequence_number, True))
    result = result.replace("{{a}}", number_to_alpha(sequence_number, False))

    def _date(match: re.Match) -> str:
        try:
            return format_date(now, match.group(1))
        except ValueError as e:
            logger.debug(f"Leaving date placeholder as-is: {e}")
            return match.group(0)

    result = _DATE_PATTERN.sub(_date, result)

    if parent_name is not None:
        result = result.replace("{{parent}}", parent_name)
    if top_level_name is not None:
        result = result.replace("{{top}}", top_level_name)
    return result


def resolve_name(config: LevelNamingConfig, sequence_number: int, now: datetime) -> str:
    """Render prefix + name + suffix for the given 0-based sequence number."""
    template = config.template
    parts = [
        render_template(
            text,
            sequence_number,
            now,
            parent_name=config.parent_name,
            top_level_name=config.top_level_name,
        )
        for text in (template.prefix, template.name, template.suffix)
    ]
    return "".join(parts).strip()


class NamingResolver:
    """
    Names new nodes from a tree's NamingConfig.

    The clock is injectable so callers (and tests) control the date used by
    ``{{date:...}}`` placeholders.
    """

    def __init__(
        self,
        config: NamingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or NamingConfig()
        self._clock = clock or (lambda: datetime.now(UTC))

    def level_config(
        self,
        level: int,
        top_level_name: str | None = None,
        parent_name: str | None = None,
    ) -> LevelNamingConfig:
        return self.config.for_level(level, top_level_name, parent_name)

    def resolve(
        self,
        config: LevelNamingConfig,
        sequence_number: int,
        now: datetime | None = None,
    ) -> str:
        name = resolve_name(config, sequence_number, now or self._clock())
        return name or DEFAULT_NAME

    def render(
        self,
        template: str,
        sequence_number: int,
        now: datetime | None = None,
        parent_name: str | None = None,
        top_level_name: str | None = None,
    ) -> str:
        return render_template(
            template,
            sequence_number,
            now or self._clock(),
            parent_name=parent_name,
            top_level_name=top_level_name,
        ).strip()
