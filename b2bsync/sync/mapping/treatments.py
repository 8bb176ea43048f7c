"""
Field mapping variants and their wire-format parser.

A tenant maps each canonical field either to a plain column name or to an
object ``{"field": ..., "tratamento": ..., "options": {...}}``. Parsing turns
that into one of a closed set of frozen dataclasses; the evaluator dispatches
on the concrete type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union

MAP_VALUES = "mapear_valores"
REGEX_CLEANUP = "limpeza_regex"
JSON_LOOKUP = "mapear_json"
CONCATENATE = "concatenar_campos"
FALLBACK = "usar_um_ou_outro"
DATE_DIFF = "diferenca_entre_datas"
FORMULA = "formula_matematica"

TREATMENTS = (MAP_VALUES, REGEX_CLEANUP, JSON_LOOKUP, CONCATENATE, FALLBACK, DATE_DIFF, FORMULA)

_NO_DEFAULT = object()


class MappingParseError(ValueError):
    """Raised when a field mapping entry has an unusable wire shape."""


@dataclass(frozen=True)
class Column:
    name: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ValueTable:
    source: str
    values: Mapping[str, Any]
    default: Any = _NO_DEFAULT
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_default(self) -> bool:
        return self.default is not _NO_DEFAULT


@dataclass(frozen=True)
class RegexCleanup:
    source: str
    pattern: str
    flags: str = "g"
    replacements: Mapping[str, Any] = field(default_factory=dict)
    replacement: str | None = None
    fallback_source: str = ""
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class JsonLookup:
    key_map: Mapping[str, str]
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Concatenate:
    template: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Fallback:
    primary: str
    secondary: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class DateDiff:
    start: str
    end: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Formula:
    template: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)


FieldMapping = Union[Column, ValueTable, RegexCleanup, JsonLookup, Concatenate, Fallback, DateDiff, Formula]


def _opt_str(options: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = options.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def is_column_like(name: str) -> bool:
    """True when ``name`` reads as a source column rather than a regex or template."""

    return bool(name) and not name.startswith("/") and "{" not in name and "," not in name and "??" not in name


def parse_field_mapping(value: Any) -> FieldMapping | None:
    """Parse one wire-format mapping entry.

    ``None`` and blank strings mean "not mapped". Unknown treatments read as a
    plain column of ``field``.
    """

    if value is None:
        return None
    if isinstance(value, str):
        name = value.strip()
        return Column(name) if name else None
    if not isinstance(value, Mapping):
        raise MappingParseError(f"Field mapping must be a string or an object, got {type(value).__name__}")

    source = str(value.get("field") or "").strip()
    treatment = str(value.get("tratamento") or "").strip()
    raw_options = value.get("options")
    options: Mapping[str, Any] = dict(raw_options) if isinstance(raw_options, Mapping) else {}

    if treatment == MAP_VALUES:
        values = {str(key): mapped for key, mapped in options.items() if key != "else"}
        return ValueTable(source, values, options.get("else", _NO_DEFAULT), options=options)

    if treatment == REGEX_CLEANUP:
        raw_map = options.get("map")
        replacement = options.get("replacement")
        return RegexCleanup(
            source=source if source and not source.startswith(("/", "{")) else "",
            pattern=str(options.get("regex") or ""),
            flags=str(options.get("flags") or "g"),
            replacements=dict(raw_map) if isinstance(raw_map, Mapping) else {},
            replacement=str(replacement) if replacement is not None else None,
            fallback_source=_opt_str(options, "sourceField", "source_field", "source"),
            options=options,
        )

    if treatment == JSON_LOOKUP:
        raw_map = options.get("map")
        key_map = {}
        if isinstance(raw_map, Mapping):
            key_map = {str(key): str(column).strip() for key, column in raw_map.items() if str(column or "").strip()}
        return JsonLookup(key_map, options=options)

    if treatment == CONCATENATE:
        template = options.get("concatenate")
        return Concatenate(str(template) if template is not None else source, options=options)

    if treatment == FALLBACK:
        return Fallback(_opt_str(options, "main"), _opt_str(options, "fallback"), options=options)

    if treatment == DATE_DIFF:
        return DateDiff(_opt_str(options, "start"), _opt_str(options, "end"), options=options)

    if treatment == FORMULA:
        template = options.get("formula")
        return Formula(str(template) if template is not None else source, options=options)

    return Column(source, options=options) if source else None


def parse_field_map(fields: Any) -> dict[str, FieldMapping]:
    """Parse a ``{canonical_field: wire_mapping}`` object, dropping unmapped entries."""

    if fields is None:
        return {}
    if not isinstance(fields, Mapping):
        raise MappingParseError(f"Field map must be an object, got {type(fields).__name__}")
    parsed: dict[str, FieldMapping] = {}
    for target, raw in fields.items():
        mapping = parse_field_mapping(raw)
        if mapping is not None:
            parsed[str(target)] = mapping
    return parsed


def primary_column(mapping: FieldMapping | None) -> str | None:
    """Return the single source column a mapping reads, when it has one."""

    if isinstance(mapping, Column):
        return mapping.name or None
    if isinstance(mapping, ValueTable):
        return mapping.source or None
    if isinstance(mapping, RegexCleanup):
        return mapping.source or mapping.fallback_source or None
    if isinstance(mapping, Fallback):
        return mapping.primary or None
    return None


def lookup_field_option(mapping: FieldMapping | None, default: str = "external_id") -> str:
    """Read the relation lookup field configured on a mapping's options."""

    if mapping is None:
        return default
    value = mapping.options.get("lookupField") or mapping.options.get("lookup_field")
    text = str(value).strip() if value is not None else ""
    return text or default
