import pytest

from warehouse_export.config.settings import load_settings


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    (tmp_path / "staging.yaml").write_text(
        """
app:
  wwwroot: https://lms.example.org/
  timezone: Europe/Zurich
query:
  limit: 250
  table_prefix: m_
database:
  db_type: postgres
  postgres:
    host: db.internal
    port: 6432
    database: moodle
    user: reader
storage:
  backend: s3
  s3:
    bucket: exports
""",
        encoding="utf-8",
    )
    monkeypatch.setenv("APP_ENV", "staging")
    for var in ("QUERY_LIMIT", "DB_TYPE", "PGHOST", "PGPORT", "PGPASSWORD", "WWWROOT", "TABLE_PREFIX",
                "STORAGE_BACKEND", "S3_BUCKET", "TIMEZONE"):
        monkeypatch.delenv(var, raising=False)
    return str(tmp_path)


def test_yaml_values(config_dir):
    s = load_settings(config_dir)
    assert s.env == "staging"
    assert s.wwwroot == "https://lms.example.org"
    assert s.timezone == "Europe/Zurich"
    assert s.query_limit == 250
    assert s.table_prefix == "m_"
    assert (s.db_type, s.pg_host, s.pg_port, s.pg_user) == ("postgres", "db.internal", 6432, "reader")
    assert s.pg_password == ""
    assert (s.storage_backend, s.s3_bucket) == ("s3", "exports")
    # Not in the file: defaults.
    assert s.query_timeout_seconds == 60
    assert s.storage_component == "quiz_datawarehouse"


def test_env_overrides(config_dir, monkeypatch):
    monkeypatch.setenv("QUERY_LIMIT", "10")
    monkeypatch.setenv("DB_TYPE", " DuckDB ")
    monkeypatch.setenv("PGPASSWORD", "from-env")
    s = load_settings(config_dir)
    assert s.query_limit == 10
    assert s.db_type == "duckdb"
    assert s.pg_password == "from-env"


def test_missing_config(tmp_path, monkeypatch):
    monkeypatch.setenv("APP_ENV", "nope")
    with pytest.raises(FileNotFoundError, match="nope.yaml"):
        load_settings(str(tmp_path))
