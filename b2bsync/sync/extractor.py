"""
Incremental extractor for tenant relational sources.

Builds ``SELECT <columns> FROM <table> [WHERE <watermark> > :last_processed_at]``
queries with quoted identifiers and bound parameters, then pages through the
result with LIMIT/OFFSET over a deterministic ordering. A page shorter than
the page size ends the extraction.

Order-like sources carry one row per line item, so an incremental run first
selects the distinct parent keys that changed and then re-reads every row of
those parents; replacing an order's items never drops untouched siblings.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Iterable, Iterator, List, Mapping, Sequence

from .mapping import clean_str, format_watermark
from .source import SourceConnection

DEFAULT_PAGE_SIZE = 1000
PARENT_KEY_CHUNK_SIZE = 500
_PROGRESS_LOG_INTERVAL_SECONDS = 1.5


def quote_ident(name: str) -> str:
    """Quote an identifier, keeping ``schema.table`` qualification."""

    parts = [part for part in str(name).strip().split(".") if part]
    if not parts:
        raise ValueError("Identifier cannot be empty.")
    return ".".join('"' + part.replace('"', '""') + '"' for part in parts)


def build_where_clause(
    *,
    watermark_column: str | None = None,
    since: datetime | None = None,
    extra_where: Sequence[str] = (),
) -> tuple[str, dict[str, Any]]:
    """Return the WHERE SQL (with leading space) and its bound parameters."""

    clauses: List[str] = list(extra_where)
    params: dict[str, Any] = {}
    if watermark_column and since is not None:
        clauses.append(f"{quote_ident(watermark_column)} > :last_processed_at")
        params["last_processed_at"] = format_watermark(since)
    where_sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where_sql, params


def build_select_sql(
    table: str,
    columns: Sequence[str] | None,
    *,
    where_sql: str = "",
    order_by: Sequence[str] = (),
    limit: int | None = None,
    offset: int | None = None,
    distinct: bool = False,
) -> str:
    """Construct the paged SELECT used against a tenant source."""

    column_list = tuple(dict.fromkeys(columns or ()))
    select_clause = ", ".join(quote_ident(column) for column in column_list) if column_list else "*"
    distinct_sql = "DISTINCT " if distinct else ""
    ordering = tuple(dict.fromkeys(column for column in order_by if column))
    order_sql = f" ORDER BY {', '.join(quote_ident(column) for column in ordering)}" if ordering else ""
    limit_sql = f" LIMIT {int(limit)}" if limit is not None else ""
    offset_sql = f" OFFSET {int(offset)}" if offset else ""
    return f"SELECT {distinct_sql}{select_clause} FROM {quote_ident(table)}{where_sql}{order_sql}{limit_sql}{offset_sql}"


def build_count_sql(table: str, where_sql: str = "") -> str:
    return f"SELECT COUNT(*) AS total FROM {quote_ident(table)}{where_sql}"


def chunk_records(records: Iterable[Any], chunk_size: int) -> Iterator[List[Any]]:
    """Group an iterable into lists of ``chunk_size``."""

    chunk: List[Any] = []
    for record in records:
        chunk.append(record)
        if len(chunk) == chunk_size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class IncrementalExtractor:
    """Page through one source table, optionally filtered by a watermark."""

    def __init__(
        self,
        source: SourceConnection,
        *,
        entity: str,
        table: str,
        columns: Sequence[str] | None,
        external_id_column: str | None = None,
        watermark_column: str | None = None,
        since: datetime | None = None,
        extra_where: Sequence[str] = (),
        extra_params: Mapping[str, Any] | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        logger: logging.Logger | None = None,
        log_extra: Mapping[str, Any] | None = None,
    ) -> None:
        self.source = source
        self.entity = entity
        self.table = table
        self.columns = list(columns or ())
        self.external_id_column = external_id_column
        self.watermark_column = watermark_column
        self.since = since if watermark_column else None
        self.extra_where = tuple(extra_where)
        self.extra_params = dict(extra_params or {})
        self.page_size = max(1, int(page_size))
        self.logger = logger or logging.getLogger(__name__)
        self.log_extra = dict(log_extra or {})
        self.fetched = 0
        self.total: int | None = None
        self._last_progress_log = 0.0

    @property
    def incremental(self) -> bool:
        return self.since is not None

    def _where(self, *, incremental: bool = True, extra: Sequence[str] = ()) -> tuple[str, dict[str, Any]]:
        where_sql, params = build_where_clause(
            watermark_column=self.watermark_column if incremental else None,
            since=self.since if incremental else None,
            extra_where=self.extra_where + tuple(extra),
        )
        params.update(self.extra_params)
        return where_sql, params

    def estimate_count(self) -> int | None:
        """Best-effort row count for progress reporting."""

        where_sql, params = self._where()
        try:
            value = self.source.fetch_scalar(build_count_sql(self.table, where_sql), params)
            total = int(value)
        except Exception:
            self.logger.debug("Source row count unavailable for %s", self.table, exc_info=True)
            return None
        self.total = total if total >= 0 else None
        return self.total

    def _log_progress(self, *, force: bool = False) -> None:
        now = time.monotonic()
        if not force and now - self._last_progress_log < _PROGRESS_LOG_INTERVAL_SECONDS:
            return
        self._last_progress_log = now
        self.logger.info(
            "Fetched %s%s rows from %s",
            self.fetched,
            f"/{self.total}" if self.total is not None else "",
            self.table,
            extra={
                **self.log_extra,
                "sync_entity": self.entity,
                "sync_fetched": self.fetched,
                "sync_estimated_total": self.total,
            },
        )

    def _page(self, sql_for_offset, params: Mapping[str, Any]) -> Iterator[List[dict]]:
        offset = 0
        while True:
            batch = self.source.fetch_all(sql_for_offset(offset), params)
            self.fetched += len(batch)
            self._log_progress()
            if batch:
                yield batch
            if len(batch) < self.page_size:
                break
            offset += self.page_size
        self._log_progress(force=True)

    def iter_batches(self) -> Iterator[List[dict]]:
        """Yield pages of source rows until the source is exhausted."""

        where_sql, params = self._where()
        order_by = [self.watermark_column, self.external_id_column]

        def _sql(offset: int) -> str:
            return build_select_sql(
                self.table,
                self.columns,
                where_sql=where_sql,
                order_by=order_by,
                limit=self.page_size,
                offset=offset,
            )

        yield from self._page(_sql, params)

    # Parent/child extraction --------------------------------------------------

    def changed_parent_keys(self, parent_column: str) -> list[Any]:
        """Distinct parent keys having at least one row past the watermark."""

        where_sql, params = self._where()
        keys: list[Any] = []
        seen: set[str] = set()

        def _sql(offset: int) -> str:
            return build_select_sql(
                self.table,
                [parent_column],
                where_sql=where_sql,
                order_by=[parent_column],
                limit=self.page_size,
                offset=offset,
                distinct=True,
            )

        offset = 0
        while True:
            rows = self.source.fetch_all(_sql(offset), params)
            for row in rows:
                raw = next(iter(row.values()), None)
                normalized = clean_str(raw)
                if normalized is None or normalized in seen:
                    continue
                seen.add(normalized)
                keys.append(raw)
            if len(rows) < self.page_size:
                break
            offset += self.page_size
        return keys

    def iter_rows_for_parents(self, parent_column: str, keys: Sequence[Any], order_by: Sequence[str] = ()) -> Iterator[List[dict]]:
        """Yield every row (changed or not) for the given parent keys, chunked by key."""

        in_clause = f"{quote_ident(parent_column)} IN :parent_keys"
        where_sql, params = self._where(incremental=False, extra=(in_clause,))
        for key_chunk in chunk_records(keys, PARENT_KEY_CHUNK_SIZE):
            sql = build_select_sql(
                self.table,
                self.columns,
                where_sql=where_sql,
                order_by=[parent_column, *order_by],
            )
            rows = self.source.fetch_all(sql, {**params, "parent_keys": list(key_chunk)}, expanding=("parent_keys",))
            self.fetched += len(rows)
            self._log_progress()
            if rows:
                yield rows
        self._log_progress(force=True)

    def iter_all_rows_by_parent(self, parent_column: str, order_by: Sequence[str] = ()) -> Iterator[List[dict]]:
        """Full extraction ordered by parent key, paged."""

        where_sql, params = self._where(incremental=False)
        ordering = [parent_column, *order_by]

        def _sql(offset: int) -> str:
            return build_select_sql(
                self.table,
                self.columns,
                where_sql=where_sql,
                order_by=ordering,
                limit=self.page_size,
                offset=offset,
            )

        yield from self._page(_sql, params)
