from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import threading

import duckdb

from warehouse_export.db.utils import DOLLAR
from warehouse_export.logging.logger import get_logger


log = get_logger("db.duckdb")


class _DuckDBCursor:
    """DB-API style cursor that owns its connection and the timeout timer."""

    def __init__(self, con: duckdb.DuckDBPyConnection, timer: Optional[threading.Timer]):
        self._con = con
        self._timer = timer

    @property
    def description(self):
        return self._con.description

    def fetchmany(self, size: int):
        return self._con.fetchmany(size)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._con.close()


@dataclass
class DuckDBSource:
    """Read-only DuckDB database file.

    DuckDB has no statement timeout, so a timer interrupts the connection when
    ``timeout_seconds`` elapses; the interrupted fetch raises ``duckdb.Error``.
    """

    path: str
    timeout_seconds: int = 60

    driver_errors = (duckdb.Error,)
    paramstyle = DOLLAR

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> _DuckDBCursor:
        con = duckdb.connect(database=self.path, read_only=True)
        timer: Optional[threading.Timer] = None
        if self.timeout_seconds and self.timeout_seconds > 0:
            timer = threading.Timer(self.timeout_seconds, con.interrupt)
            timer.daemon = True
            timer.start()
        log.info("DuckDB execute", extra={"path": self.path, "sql_head": sql[:300]})
        try:
            if params:
                con.execute(self.paramstyle.render(sql), params)
            else:
                con.execute(sql)
        except BaseException:
            if timer is not None:
                timer.cancel()
            con.close()
            raise
        return _DuckDBCursor(con, timer)
