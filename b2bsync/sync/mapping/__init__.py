"""Field mapping DSL: parsing, evaluation and column collection."""

from __future__ import annotations

from .coercion import (
    build_phones_from_csv,
    clean_str,
    format_watermark,
    normalize_phone_br,
    parse_csv_columns,
    parse_date_loose,
    parse_timestamp,
    parse_ymd,
    to_bool_loose,
    to_decimal_loose,
    to_int_loose,
    to_number_loose,
)
from .columns import collect_columns, template_fields
from .evaluator import apply_field_mapping, date_diff_days, evaluate, render_template
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
    lookup_field_option,
    parse_field_map,
    parse_field_mapping,
    primary_column,
)

__all__ = [
    "Column",
    "Concatenate",
    "DateDiff",
    "Fallback",
    "FieldMapping",
    "Formula",
    "JsonLookup",
    "MappingParseError",
    "RegexCleanup",
    "ValueTable",
    "apply_field_mapping",
    "build_phones_from_csv",
    "clean_str",
    "collect_columns",
    "date_diff_days",
    "evaluate",
    "evaluate_formula",
    "format_watermark",
    "lookup_field_option",
    "normalize_phone_br",
    "parse_csv_columns",
    "parse_date_loose",
    "parse_field_map",
    "parse_field_mapping",
    "parse_timestamp",
    "parse_ymd",
    "primary_column",
    "render_template",
    "template_fields",
    "to_bool_loose",
    "to_decimal_loose",
    "to_int_loose",
    "to_number_loose",
]
