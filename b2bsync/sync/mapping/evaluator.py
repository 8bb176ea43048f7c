"""
Evaluate parsed field mappings against a source row.

``evaluate`` is total: every variant returns a scalar (or a dict for
``JsonLookup``) or ``None``; nothing here raises for bad row data.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable, Mapping

from .coercion import js_string, parse_timestamp, parse_ymd
from .formula import evaluate_formula
from .treatments import (
    Column,
    Concatenate,
    DateDiff,
    Fallback,
    FieldMapping,
    Formula,
    JsonLookup,
    MappingParseError,
    RegexCleanup,
    ValueTable,
    parse_field_mapping,
)

Row = Mapping[str, Any]

_PLACEHOLDER_RE = re.compile(r"\{([^}]+)\}")
_WHITESPACE_RE = re.compile(r"\s+")
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_SECONDS_PER_DAY = 86_400


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _column(mapping: Column, row: Row) -> Any:
    value = row.get(mapping.name)
    return None if _blank(value) else value


def _value_table(mapping: ValueTable, row: Row) -> Any:
    raw = row.get(mapping.source) if mapping.source else None
    key = js_string(raw)
    if key in mapping.values:
        return mapping.values[key]
    if mapping.has_default:
        return mapping.default
    return raw


def _regex_cleanup(mapping: RegexCleanup, row: Row) -> Any:
    column = mapping.source if mapping.source and mapping.source in row else mapping.fallback_source
    raw = row.get(column) if column else None
    if raw is None:
        return None
    text = js_string(raw)
    if not mapping.pattern:
        return text

    flags = 0
    for letter in mapping.flags:
        flags |= _REGEX_FLAGS.get(letter, 0)
    try:
        compiled = re.compile(mapping.pattern, flags)
    except re.error:
        return text
    count = 0 if "g" in mapping.flags else 1

    def _replace(match: re.Match) -> str:
        found = match.group(0)
        if found in mapping.replacements:
            return js_string(mapping.replacements[found])
        if mapping.replacement is not None and not mapping.replacements:
            return mapping.replacement
        return found

    return compiled.sub(_replace, text, count=count)


def _json_lookup(mapping: JsonLookup, row: Row) -> dict[str, Any]:
    return {key: row.get(column) for key, column in mapping.key_map.items()}


def render_template(template: str, row: Row) -> str:
    """Substitute ``{field}`` placeholders; missing or null values render empty."""

    return _PLACEHOLDER_RE.sub(lambda match: js_string(row.get(match.group(1).strip())), template)


def _concatenate(mapping: Concatenate, row: Row) -> str | None:
    if not mapping.template:
        return None
    rendered = _WHITESPACE_RE.sub(" ", render_template(mapping.template, row)).strip()
    return rendered or None


def _fallback(mapping: Fallback, row: Row) -> Any:
    primary = row.get(mapping.primary) if mapping.primary else None
    if not _blank(primary):
        return primary
    return row.get(mapping.secondary) if mapping.secondary else None


def _as_utc_instant(value: Any):
    stamp = parse_timestamp(value)
    if stamp is not None:
        return stamp
    ymd = parse_ymd(value)
    if ymd is None:
        return None
    return parse_timestamp(ymd.isoformat())


def date_diff_days(start: Any, end: Any) -> int | None:
    """Whole days from ``start`` to ``end``, rounded half up; ``None`` if either fails to parse."""

    first = _as_utc_instant(start)
    last = _as_utc_instant(end)
    if first is None or last is None:
        return None
    return math.floor((last - first).total_seconds() / _SECONDS_PER_DAY + 0.5)


def _date_diff(mapping: DateDiff, row: Row) -> int | None:
    start = row.get(mapping.start) if mapping.start else None
    end = row.get(mapping.end) if mapping.end else None
    return date_diff_days(start, end)


def _formula(mapping: Formula, row: Row) -> float | None:
    return evaluate_formula(mapping.template, row)


_EVALUATORS: dict[type, Callable[[Any, Row], Any]] = {
    Column: _column,
    ValueTable: _value_table,
    RegexCleanup: _regex_cleanup,
    JsonLookup: _json_lookup,
    Concatenate: _concatenate,
    Fallback: _fallback,
    DateDiff: _date_diff,
    Formula: _formula,
}


def evaluate(mapping: FieldMapping | None, row: Row) -> Any:
    """Evaluate a parsed mapping against ``row``."""

    if mapping is None:
        return None
    return _EVALUATORS[type(mapping)](mapping, row)


def apply_field_mapping(raw_mapping: Any, row: Row) -> Any:
    """Parse and evaluate a wire-format mapping; unusable mappings yield ``None``."""

    try:
        mapping = parse_field_mapping(raw_mapping)
    except MappingParseError:
        return None
    return evaluate(mapping, row)
