from __future__ import annotations

import duckdb
import pytest

from warehouse_export.catalog.store import CatalogStore
from warehouse_export.config.settings import Settings
from warehouse_export.db.duckdb_source import DuckDBSource
from warehouse_export.db.executor import QueryExecutor
from warehouse_export.delivery.http_backend import BackendDelivery
from warehouse_export.export.csv_writer import CsvSerializer
from warehouse_export.export.orchestrator import ExportOrchestrator
from warehouse_export.export.tokens import RunContext
from warehouse_export.storage.blob_store import LocalBlobStore

BACKEND_URL = "https://warehouse.example.org/upload/"

GRADES_SQL = (
    "SELECT u.username AS Student, g.grade AS Grade, g.timemodified AS enddate "
    "FROM prefix_quiz_grades g JOIN prefix_user u ON u.id = g.userid "
    "WHERE g.quiz = %%CMID%% ORDER BY u.id"
)


@pytest.fixture
def warehouse_db(tmp_path):
    """A small site database in a DuckDB file, tables carrying the mdl_ prefix."""
    path = str(tmp_path / "warehouse.duckdb")
    con = duckdb.connect(path)
    con.execute("CREATE TABLE mdl_user (id INTEGER, username VARCHAR, firstname VARCHAR)")
    con.execute(
        "INSERT INTO mdl_user VALUES (2, 'alice', 'Alice'), (3, 'bob', 'Bob'), (4, 'carol', 'Smith, \"CJ\"')"
    )
    con.execute(
        "CREATE TABLE mdl_quiz_grades (id INTEGER, quiz INTEGER, userid INTEGER, grade DOUBLE, timemodified BIGINT)"
    )
    con.execute(
        "INSERT INTO mdl_quiz_grades VALUES "
        "(1, 7, 2, 7.5, 1700000000), (2, 7, 3, 9.25, 0), (3, 7, 4, 6.0, 1700003600), (4, 8, 2, 1.0, 0)"
    )
    con.close()
    return path


@pytest.fixture
def executor(warehouse_db):
    return QueryExecutor(DuckDBSource(warehouse_db), table_prefix="mdl_", default_limit=5000, batch_size=2)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "files"))


@pytest.fixture
def catalog(tmp_path):
    return CatalogStore(str(tmp_path / "catalog"))


@pytest.fixture
def context():
    return RunContext(user_id=2, course_id=5, course_module_id=7, quiz_id=3)


@pytest.fixture
def make_orchestrator(executor, blob_store):
    def build(limit=5000, **kwargs):
        return ExportOrchestrator(
            executor=kwargs.pop("executor", executor),
            serializer=CsvSerializer(wwwroot="https://lms.example.org", timezone="UTC"),
            blob_store=kwargs.pop("blob_store", blob_store),
            delivery=BackendDelivery(timeout_seconds=5),
            component="quiz_datawarehouse",
            context_id=1,
            limit=limit,
            timezone="UTC",
        )

    return build


@pytest.fixture
def settings(tmp_path, warehouse_db):
    return Settings(
        env="test",
        log_file=str(tmp_path / "logs" / "app.log"),
        wwwroot="https://lms.example.org",
        timezone="UTC",
        catalog_dir=str(tmp_path / "catalog"),
        query_limit=5000,
        table_prefix="mdl_",
        db_type="duckdb",
        duckdb_path=warehouse_db,
        storage_backend="local",
        storage_dir=str(tmp_path / "files"),
        delivery_timeout_seconds=5,
    )


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
