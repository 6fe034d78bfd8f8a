import duckdb
import pytest

from warehouse_export.db.utils import (
    PYFORMAT,
    apply_table_prefix,
    coerce_params,
    contains_bad_word,
    get_query_placeholders,
    is_integer,
)
from warehouse_export.db.executor import QueryExecutor
from warehouse_export.exceptions.errors import QueryExecutionError


def test_contains_bad_word_is_whole_word_and_case_insensitive():
    assert contains_bad_word("drop table x")
    assert contains_bad_word("SELECT 1 INTO foo")
    assert not contains_bad_word("SELECT updated_at, created FROM t")
    assert not contains_bad_word("SELECT dropout FROM t")


def test_apply_table_prefix():
    sql = "SELECT * FROM prefix_user u JOIN prefix_quiz q ON q.id = u.id WHERE note = 'myprefix_x'"
    assert apply_table_prefix(sql, "mdl_") == (
        "SELECT * FROM mdl_user u JOIN mdl_quiz q ON q.id = u.id WHERE note = 'myprefix_x'"
    )


def test_is_integer():
    assert is_integer(5)
    assert is_integer("42")
    assert is_integer("-3")
    assert not is_integer("042")
    assert not is_integer("4.2")
    assert not is_integer(True)
    assert not is_integer(None)


def test_coerce_params():
    assert coerce_params({"a": "7", "b": "x7", "c": 3}) == {"a": 7, "b": "x7", "c": 3}
    assert coerce_params(None) == {}


def test_placeholders_skip_casts_and_keep_order():
    sql = "SELECT :b, x::text, :a FROM t WHERE y = :b"
    assert get_query_placeholders(sql) == ["b", "a"]


def test_pyformat_escapes_percent():
    rendered = PYFORMAT.render("SELECT name FROM t WHERE name LIKE 'a%' AND id = :id AND x::int > 0")
    assert rendered == "SELECT name FROM t WHERE name LIKE 'a%%' AND id = %(id)s AND x::int > 0"


def test_execute_applies_prefix_and_streams_rows(executor):
    cursor = executor.execute("SELECT id, username FROM prefix_user ORDER BY id")
    assert cursor.columns == ["id", "username"]
    rows = list(cursor)
    assert rows == [
        {"id": 2, "username": "alice"},
        {"id": 3, "username": "bob"},
        {"id": 4, "username": "carol"},
    ]


def test_execute_limit_caps_rows(executor):
    rows = list(executor.execute("SELECT id FROM prefix_user ORDER BY id", limit=2))
    assert [r["id"] for r in rows] == [2, 3]


def test_execute_binds_named_params(executor):
    rows = list(executor.execute("SELECT username FROM prefix_user WHERE id = :uid", {"uid": "3", "unused": 1}))
    assert rows == [{"username": "bob"}]


def test_execute_missing_param(executor):
    with pytest.raises(QueryExecutionError, match="uid"):
        executor.execute("SELECT username FROM prefix_user WHERE id = :uid")


def test_execute_refuses_blocked_keywords(executor, warehouse_db):
    with pytest.raises(QueryExecutionError, match="blocked keyword"):
        executor.execute("DROP TABLE prefix_user")

    con = duckdb.connect(warehouse_db, read_only=True)
    try:
        assert con.execute("SELECT count(*) FROM mdl_user").fetchone()[0] == 3
    finally:
        con.close()


def test_execute_malformed_sql(executor):
    with pytest.raises(QueryExecutionError):
        executor.execute("SELEC id FROM prefix_user")


def test_execute_unknown_table(executor):
    with pytest.raises(QueryExecutionError):
        executor.execute("SELECT * FROM prefix_nothing_here")


def test_empty_result_keeps_columns(executor):
    cursor = executor.execute("SELECT id, username FROM prefix_user WHERE id < 0")
    assert cursor.columns == ["id", "username"]
    assert list(cursor) == []


def test_cursor_is_single_pass(executor):
    cursor = executor.execute("SELECT id FROM prefix_user")
    list(cursor)
    with pytest.raises(QueryExecutionError, match="already consumed"):
        list(cursor)


class _TwoIdCursor:
    description = [("id",), ("id",)]

    def __init__(self):
        self.closed = False

    def fetchmany(self, size):
        return [(1, 2)]

    def close(self):
        self.closed = True


class _TwoIdSource:
    driver_errors = (RuntimeError,)

    def __init__(self):
        self.cursor = _TwoIdCursor()

    def execute(self, sql, params=None):
        return self.cursor


def test_duplicate_column_names_are_refused():
    source = _TwoIdSource()

    with pytest.raises(QueryExecutionError, match="Duplicate column name"):
        QueryExecutor(source).execute("SELECT a.id, b.id FROM prefix_a a JOIN prefix_b b ON a.x = b.x")

    assert source.cursor.closed


def test_aliased_columns_are_accepted(executor):
    cursor = executor.execute(
        "SELECT u.id AS user_id, g.id AS grade_id FROM prefix_user u "
        "JOIN prefix_quiz_grades g ON g.userid = u.id WHERE u.id = 3"
    )
    assert cursor.columns == ["user_id", "grade_id"]
