"""Streaming CSV serialization of query results.

Output format: every cell double-quoted (internal quotes doubled), comma
separated, CRLF line endings, header row first. A trailing single-cell row
holding ``LIMIT_EXCEEDED_MARKER`` tells consumers the result was truncated.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Any, Dict, Iterable, List, Mapping, Optional, TextIO, Tuple
from urllib.parse import urlsplit
from zoneinfo import ZoneInfo
import csv
import ipaddress
import re

from warehouse_export.db.utils import is_integer
from warehouse_export.exceptions.errors import SerializationError
from warehouse_export.export.tokens import substitute_output_tokens
from warehouse_export.logging.logger import get_logger

log = get_logger("export.csv_writer")

LIMIT_EXCEEDED_MARKER = "-- ROW LIMIT EXCEEDED --"
LINK_SUFFIX = " link url"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Marks a "<X> link url" column that is folded into column X.
SUPPRESSED = -1

_DATE_COLUMN_RE = re.compile(r"^date|date$", re.IGNORECASE)
_URL_CHARS_RE = re.compile(r"^[A-Za-z0-9\-._~:/?#\[\]@!$&'()*+,;=%]+$")
_HOST_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$", re.IGNORECASE)
_URL_SCHEMES = {"http", "https", "ftp"}


def is_date_column(name: str) -> bool:
    return _DATE_COLUMN_RE.search(name or "") is not None


def prettify_column_names(columns: Iterable[str], querysql: str) -> List[str]:
    """Recover the author's spelling of each column from the SQL, then turn _ into spaces.

    Databases tend to return column names lower-cased.
    """
    out: List[str] = []
    for colname in columns:
        m = re.search(r"SELECT.*?\s(" + re.escape(colname) + r")\b", querysql or "", re.IGNORECASE | re.DOTALL)
        if m:
            colname = m.group(1)
        out.append(colname.replace("_", " "))
    return out


def get_table_headers(headers: List[str]) -> Tuple[List[str], Dict[int, int]]:
    """Match up "<X>" and "<X> link url" columns.

    Returns the headers to display and a map of column index -> index of its
    link column, or ``SUPPRESSED`` for link columns that must not be rendered.
    """
    names = set(headers)
    link_columns: Dict[int, int] = {}
    display: List[str] = []
    for idx, colname in enumerate(headers):
        if colname.endswith(LINK_SUFFIX) and colname[: -len(LINK_SUFFIX)] in names:
            link_columns[idx] = SUPPRESSED
        elif colname + LINK_SUFFIX in names:
            display.append(colname)
            link_columns[idx] = headers.index(colname + LINK_SUFFIX)
        else:
            display.append(colname)
    return display, link_columns


def _valid_host(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        pass
    if len(host) > 253:
        return False
    return all(_HOST_LABEL_RE.match(label) for label in host.split("."))


def is_valid_url(value: Any) -> bool:
    """Strict absolute URL check: http/https/ftp, a real host, no credentials, no spaces."""
    if not isinstance(value, str) or not value or not _URL_CHARS_RE.match(value):
        return False
    try:
        parts = urlsplit(value)
        port = parts.port  # raises ValueError on a bad port
    except ValueError:
        return False
    if parts.scheme.lower() not in _URL_SCHEMES or not parts.netloc:
        return False
    if parts.username is not None or parts.password is not None:
        return False
    if port is not None and not (0 < port < 65536):
        return False
    return bool(parts.hostname) and _valid_host(parts.hostname)


@dataclass(frozen=True)
class SerializeResult:
    row_count: int
    exceeded: bool
    headers: List[str]


class CsvSerializer:
    def __init__(self, wwwroot: str = "", timezone: str = "UTC"):
        self.wwwroot = wwwroot
        self.tz = ZoneInfo(timezone or "UTC")

    def format_value(self, name: str, value: Any) -> str:
        if value is None:
            return ""
        if is_date_column(name) and is_integer(value) and int(value) > 0:
            try:
                return datetime.fromtimestamp(int(value), tz=self.tz).strftime(DATE_FORMAT)
            except (OverflowError, OSError, ValueError):
                log.warning("Timestamp out of range; kept raw", extra={"column": name, "value": value})
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return str(value)

    def render_row(self, row: Mapping[str, Any], link_columns: Dict[int, int]) -> List[str]:
        values = [
            substitute_output_tokens(self.format_value(name, value), self.wwwroot)
            for name, value in row.items()
        ]
        cells: List[str] = []
        for idx, value in enumerate(values):
            target = link_columns.get(idx)
            if target == SUPPRESSED:
                continue
            if target is not None and is_valid_url(values[target]):
                cells.append(f'<a href="{escape(values[target])}">{escape(value)}</a>')
            else:
                cells.append(value)
        return cells

    def write(
        self,
        rows: Iterable[Mapping[str, Any]],
        sink: TextIO,
        querysql: str,
        limit: int = 0,
        columns: Optional[List[str]] = None,
    ) -> SerializeResult:
        """Stream ``rows`` into ``sink`` as CSV.

        Headers come from ``columns`` (the cursor description) when given,
        otherwise from the first row. At most ``limit`` data rows are written
        (0 = no limit); one more row available means the limit was exceeded.
        """
        writer = csv.writer(sink, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
        headers: Optional[List[str]] = None
        link_columns: Dict[int, int] = {}
        count = 0
        exceeded = False

        def start(raw_columns: List[str]) -> List[str]:
            nonlocal link_columns
            pretty = prettify_column_names(raw_columns, querysql)
            display, link_columns = get_table_headers(pretty)
            self._writerow(writer, [substitute_output_tokens(h, self.wwwroot) for h in display])
            return display

        if columns:
            headers = start(list(columns))

        for row in rows:
            if headers is None:
                headers = start(list(row.keys()))
            if limit and count >= limit:
                exceeded = True
                break
            self._writerow(writer, self.render_row(row, link_columns))
            count += 1

        if exceeded:
            self._writerow(writer, [LIMIT_EXCEEDED_MARKER])

        try:
            sink.flush()
        except (OSError, ValueError) as e:
            raise SerializationError(f"Could not flush CSV output: {e}") from e

        log.info("CSV written", extra={"rows": count, "exceeded": exceeded})
        return SerializeResult(row_count=count, exceeded=exceeded, headers=headers or [])

    @staticmethod
    def _writerow(writer, cells: List[str]) -> None:
        try:
            writer.writerow(cells)
        except (OSError, ValueError, csv.Error) as e:
            raise SerializationError(f"Could not write CSV row: {e}") from e
