from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple

from warehouse_export.config.settings import Settings
from warehouse_export.db.duckdb_source import DuckDBSource
from warehouse_export.db.postgres import PostgresSource
from warehouse_export.db.utils import (
    BAD_WORDS,
    apply_table_prefix,
    coerce_params,
    contains_bad_word,
    get_query_placeholders,
)
from warehouse_export.exceptions.errors import QueryExecutionError
from warehouse_export.logging.logger import get_logger

log = get_logger("db.executor")

Row = Dict[str, Any]


class DataSource(Protocol):
    driver_errors: Tuple[type, ...]

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...


class RowCursor:
    """Forward-only, single-pass iterator over result rows.

    Rows are ordered dicts of column name -> value, fetched from the driver in
    batches and yielded one at a time; at most ``limit`` rows are produced.
    """

    def __init__(self, cursor: Any, driver_errors: Tuple[type, ...], limit: int = 0, batch_size: int = 500):
        self._cursor = cursor
        self._errors = driver_errors
        self._limit = int(limit or 0)
        self._batch_size = max(1, int(batch_size))
        self._consumed = False
        self._closed = False
        # Server-side cursors only know their description after the first fetch.
        self._pending = self._fetch()
        self.columns: List[str] = [d[0] for d in (cursor.description or [])]
        # Rows are keyed by column name.
        duplicates = sorted({c for c in self.columns if self.columns.count(c) > 1})
        if duplicates:
            self.close()
            raise QueryExecutionError(
                f"Duplicate column name(s) in query result: {', '.join(duplicates)}; give each column an alias"
            )

    def _fetch(self) -> List[tuple]:
        try:
            return list(self._cursor.fetchmany(self._batch_size) or [])
        except self._errors as e:
            self.close()
            raise QueryExecutionError(f"Error while reading query results: {e}") from e

    def __iter__(self) -> Iterator[Row]:
        if self._consumed:
            raise QueryExecutionError("Result cursor already consumed; run the query again")
        self._consumed = True
        produced = 0
        batch = self._pending
        self._pending = []
        try:
            while batch:
                for values in batch:
                    if self._limit and produced >= self._limit:
                        return
                    produced += 1
                    yield dict(zip(self.columns, values))
                if self._limit and produced >= self._limit:
                    return
                batch = self._fetch()
        finally:
            self.close()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._cursor.close()

    def __enter__(self) -> "RowCursor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class QueryExecutor:
    def __init__(
        self,
        source: DataSource,
        table_prefix: str = "",
        default_limit: int = 5000,
        batch_size: int = 500,
    ):
        self.source = source
        self.table_prefix = table_prefix
        self.default_limit = default_limit
        self.batch_size = batch_size

    def execute(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> RowCursor:
        """Run ``sql`` read-only and return a streaming cursor.

        ``limit`` caps the number of rows the cursor yields (default: the
        configured maximum; 0 means no cap).
        """
        if contains_bad_word(sql):
            raise QueryExecutionError(
                "The query contains a blocked keyword (" + ", ".join(BAD_WORDS) + ")"
            )

        sql = apply_table_prefix(sql, self.table_prefix)

        supplied = coerce_params(params)
        placeholders = get_query_placeholders(sql)
        missing = [p for p in placeholders if p not in supplied]
        if missing:
            raise QueryExecutionError(f"Missing value for query parameter(s): {', '.join(missing)}")
        bound = {p: supplied[p] for p in placeholders}

        if limit is None:
            limit = self.default_limit

        log.info("Executing query", extra={"sql_head": sql[:300], "params": sorted(bound), "limit": limit})
        try:
            cursor = self.source.execute(sql, bound or None)
        except self.source.driver_errors as e:
            raise QueryExecutionError(str(e).strip()) from e
        return RowCursor(cursor, self.source.driver_errors, limit=limit, batch_size=self.batch_size)


def source_for(settings: Settings) -> DataSource:
    db_type = (settings.db_type or "duckdb").strip().lower()
    if db_type == "duckdb":
        return DuckDBSource(path=settings.duckdb_path, timeout_seconds=settings.query_timeout_seconds)
    if db_type in {"postgres", "postgresql", "pg"}:
        return PostgresSource(
            host=settings.pg_host,
            port=settings.pg_port,
            dbname=settings.pg_database,
            user=settings.pg_user,
            password=settings.pg_password,
            timeout_seconds=settings.query_timeout_seconds,
        )
    raise QueryExecutionError(f"Unknown DB_TYPE: {db_type}")


def executor_for(settings: Settings) -> QueryExecutor:
    return QueryExecutor(
        source_for(settings),
        table_prefix=settings.table_prefix,
        default_limit=settings.query_limit,
        batch_size=settings.fetch_batch_size,
    )
