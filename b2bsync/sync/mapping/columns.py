"""Static collection of the source columns a field map references."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from .treatments import (
    Column,
    Concatenate,
    DateDiff,
    Fallback,
    Formula,
    JsonLookup,
    MappingParseError,
    RegexCleanup,
    ValueTable,
    is_column_like,
    parse_field_map,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")


def template_fields(template: str) -> list[str]:
    """Return the ``{field}`` placeholder names of a template, in order."""

    return [name.strip() for name in _PLACEHOLDER_RE.findall(template or "") if name.strip()]


def _columns_for(mapping: Any) -> Iterable[str]:
    if isinstance(mapping, (Column, ValueTable)):
        name = mapping.name if isinstance(mapping, Column) else mapping.source
        return [name] if is_column_like(name) else []
    if isinstance(mapping, RegexCleanup):
        return [name for name in (mapping.source, mapping.fallback_source) if is_column_like(name)]
    if isinstance(mapping, JsonLookup):
        return list(mapping.key_map.values())
    if isinstance(mapping, (Concatenate, Formula)):
        return template_fields(mapping.template)
    if isinstance(mapping, Fallback):
        return [name for name in (mapping.primary, mapping.secondary) if is_column_like(name)]
    if isinstance(mapping, DateDiff):
        return [name for name in (mapping.start, mapping.end) if is_column_like(name)]
    return []


def collect_columns(*field_maps: Any, extra: Iterable[str | None] = ()) -> list[str]:
    """Collect every source column referenced by one or more wire-format field maps.

    Returns a sorted list. An empty list means the configuration could not be
    read and the caller should fall back to ``SELECT *``.
    """

    columns: set[str] = set()
    try:
        for fields in field_maps:
            for mapping in parse_field_map(fields).values():
                columns.update(_columns_for(mapping))
    except MappingParseError:
        logger.warning("Unreadable field map; falling back to SELECT *", exc_info=True)
        return []
    if not columns:
        return []
    columns.update(name for name in extra if name)
    return sorted(columns)
