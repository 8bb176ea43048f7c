"""
Typed access to a tenant's sync configuration blob.

The blob lives on :attr:`b2bsync.models.Tenant.sync_config` and holds the
source connection settings plus one schema entry per entity kind. The entry
is loaded once at run start; only ``last_processed_at`` is ever written back.
"""

from __future__ import annotations

import json
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

import yaml
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from .errors import ConfigurationError
from .mapping import parse_timestamp

SCHEMA_KEYS: dict[str, str] = {
    "customer_groups": "customers_group_schema",
    "representatives": "representative_schema",
    "customers": "customers_schema",
    "products": "products_schema",
    "orders": "orders_schema",
}
ENTITY_ORDER: tuple[str, ...] = tuple(SCHEMA_KEYS)
WATERMARK_KEY = "last_processed_at"


@dataclass(frozen=True)
class EntitySchema:
    """One entity's mapping schema as read at run start."""

    key: str
    table: str
    fields: Mapping[str, Any]
    last_processed_at: str | None = None
    item_fields: Mapping[str, Any] = field(default_factory=dict)
    single_table: bool = True
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def watermark(self) -> datetime | None:
        return parse_timestamp(self.last_processed_at)

    def option(self, name: str, default: Any = None) -> Any:
        return self.raw.get(name, default)


def _as_mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


class TenantSyncConfig:
    """Read-only view over a tenant's ``sync_config`` blob."""

    def __init__(self, blob: Mapping[str, Any] | None):
        self.blob: dict[str, Any] = deepcopy(dict(blob or {}))

    @property
    def source(self) -> dict[str, Any]:
        return _as_mapping(self.blob.get("source"))

    def has_schema(self, schema_key: str) -> bool:
        return isinstance(self.blob.get(schema_key), Mapping)

    def schema(self, schema_key: str) -> EntitySchema | None:
        entry = self.blob.get(schema_key)
        if not isinstance(entry, Mapping):
            return None
        if schema_key == SCHEMA_KEYS["orders"]:
            table = str(entry.get("table") or entry.get("orderTable") or "").strip()
            return EntitySchema(
                key=schema_key,
                table=table,
                fields=_as_mapping(entry.get("orderFields")),
                last_processed_at=entry.get(WATERMARK_KEY),
                item_fields=_as_mapping(entry.get("orderItemFields")),
                single_table=bool(entry.get("singleTable", True)),
                raw=dict(entry),
            )
        return EntitySchema(
            key=schema_key,
            table=str(entry.get("table") or "").strip(),
            fields=_as_mapping(entry.get("fields")),
            last_processed_at=entry.get(WATERMARK_KEY),
            raw=dict(entry),
        )

    def require_schema(self, schema_key: str) -> EntitySchema:
        schema = self.schema(schema_key)
        if schema is None:
            raise ConfigurationError(
                f"Tenant sync configuration has no '{schema_key}' entry.",
                config_key=schema_key,
            )
        if not schema.table:
            raise ConfigurationError(
                f"'{schema_key}.table' is not configured.",
                config_key=f"{schema_key}.table",
            )
        return schema


def _describe_source(source: Mapping[str, Any]) -> dict[str, Any]:
    if not source:
        return {"exists": False}
    url = source.get("url")
    if url:
        try:
            rendered = make_url(str(url)).render_as_string(hide_password=True)
        except ArgumentError:
            rendered = "<unparseable url>"
        return {"exists": True, "url": rendered}
    return {
        "exists": True,
        "host": source.get("host"),
        "port": source.get("port"),
        "database": source.get("database"),
        "user": source.get("user"),
        "ssl": source.get("ssl"),
        "has_password": bool(source.get("password")),
    }


def describe_sync_config(blob: Mapping[str, Any] | None) -> dict[str, Any]:
    """Summarize a sync configuration for diagnostics; never includes secrets."""

    config = TenantSyncConfig(blob)
    summary: dict[str, Any] = {
        "top_keys": sorted(config.blob),
        "source": _describe_source(config.source),
    }
    for schema_key in SCHEMA_KEYS.values():
        schema = config.schema(schema_key)
        if schema is None:
            summary[schema_key] = {"exists": False}
            continue
        info: dict[str, Any] = {
            "exists": True,
            "table": schema.table or None,
            WATERMARK_KEY: schema.last_processed_at,
        }
        if schema_key == SCHEMA_KEYS["orders"]:
            info["orderFields"] = len(schema.fields)
            info["orderItemFields"] = len(schema.item_fields)
            info["singleTable"] = schema.single_table
        else:
            info["fields"] = len(schema.fields)
        summary[schema_key] = info
    return summary


def load_sync_config_file(path: str | Path) -> dict[str, Any]:
    """Load a sync configuration blob from a YAML or JSON file."""

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Sync configuration file not found at {path}", config_key=str(path))
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            raw = yaml.safe_load(text) or {}
        else:
            raw = json.loads(text or "{}")
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Failed to parse sync configuration at {path}: {exc}", config_key=str(path)) from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError(
            f"Sync configuration at {path} must be an object, got {type(raw).__name__}",
            config_key=str(path),
        )
    return dict(raw)
