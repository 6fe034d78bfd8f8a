from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import uuid

import psycopg2

from warehouse_export.db.utils import PYFORMAT
from warehouse_export.logging.logger import get_logger


log = get_logger("db.postgres")


class _PgCursor:
    def __init__(self, conn, cur):
        self._conn = conn
        self._cur = cur

    @property
    def description(self):
        return self._cur.description

    def fetchmany(self, size: int):
        return self._cur.fetchmany(size)

    def close(self) -> None:
        try:
            self._cur.close()
        finally:
            self._conn.close()


@dataclass
class PostgresSource:
    """Postgres (the Moodle database) through psycopg2.

    Rows are streamed with a server-side (named) cursor inside a read-only
    transaction; ``statement_timeout`` bounds each statement.
    """

    host: str
    port: int
    dbname: str
    user: str
    password: str = ""
    timeout_seconds: int = 60

    driver_errors = (psycopg2.Error,)
    paramstyle = PYFORMAT

    def _connect(self):
        options = f"-c statement_timeout={int(self.timeout_seconds) * 1000}" if self.timeout_seconds else None
        return psycopg2.connect(
            host=self.host,
            port=int(self.port),
            dbname=self.dbname,
            user=self.user,
            password=self.password,
            options=options,
        )

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> _PgCursor:
        conn = self._connect()
        try:
            conn.set_session(readonly=True)
            # Named cursor => server-side, rows arrive in fetchmany() batches.
            cur = conn.cursor(name=f"warehouse_export_{uuid.uuid4().hex[:12]}")
            log.info("Postgres execute", extra={"host": self.host, "database": self.dbname, "sql_head": sql[:300]})
            if params:
                cur.execute(self.paramstyle.render(sql), params)
            else:
                cur.execute(sql)
        except BaseException:
            conn.close()
            raise
        return _PgCursor(conn, cur)
