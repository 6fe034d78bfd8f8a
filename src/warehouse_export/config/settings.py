from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import yaml
from dotenv import load_dotenv

load_dotenv()

def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)

def _env_int(key: str, default: int) -> int:
    val = os.environ.get(key)
    if val is None or not val.strip():
        return int(default)
    return int(val)

@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    log_level: str = "INFO"
    log_file: str = "logs/app.log"

    # Site
    wwwroot: str = "http://localhost"
    timezone: str = "UTC"

    catalog_dir: str = "data/catalog"

    # Query execution
    query_limit: int = 5000
    query_timeout_seconds: int = 60
    table_prefix: str = "mdl_"
    fetch_batch_size: int = 500

    # ------------------------------------------------------------------
    # Data source (duckdb / postgres)
    # ------------------------------------------------------------------
    db_type: str = "duckdb"
    duckdb_path: str = "data/warehouse.duckdb"
    pg_host: str = "localhost"
    pg_port: int = 5432
    pg_database: str = "moodle"
    pg_user: str = ""
    pg_password: str = ""

    # ------------------------------------------------------------------
    # Export file storage (local / s3)
    # ------------------------------------------------------------------
    storage_backend: str = "local"
    storage_component: str = "quiz_datawarehouse"
    storage_context_id: int = 1
    storage_dir: str = "data/files"
    s3_bucket: str = ""
    s3_prefix: str = "warehouse-export"
    aws_region: str = ""

    delivery_timeout_seconds: int = 30

def load_settings(config_dir: str = "config") -> Settings:
    app_env = _env("APP_ENV", "dev")
    cfg_path = Path(config_dir) / f"{app_env}.yaml"
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config not found: {cfg_path}")

    cfg = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}

    app_cfg = cfg.get("app") or {}
    query_cfg = cfg.get("query") or {}
    db_cfg = cfg.get("database") or {}
    pg_cfg = db_cfg.get("postgres") or {}
    st_cfg = cfg.get("storage") or {}
    s3_cfg = st_cfg.get("s3") or {}
    dl_cfg = cfg.get("delivery") or {}
    d = Settings()

    # ------------------------------ Database ------------------------------
    # Everything is optional and defaults to a local duckdb file.
    db_type = (_env("DB_TYPE", str(db_cfg.get("db_type", d.db_type))) or d.db_type).strip().lower()

    return Settings(
        env=app_env,
        log_level=_env("LOG_LEVEL", str(app_cfg.get("log_level", d.log_level))),
        log_file=_env("LOG_FILE", str(app_cfg.get("log_file", d.log_file))),
        wwwroot=(_env("WWWROOT", str(app_cfg.get("wwwroot", d.wwwroot))) or "").rstrip("/"),
        timezone=_env("TIMEZONE", str(app_cfg.get("timezone", d.timezone))),
        catalog_dir=_env("CATALOG_DIR", str((cfg.get("catalog") or {}).get("dir", d.catalog_dir))),

        query_limit=_env_int("QUERY_LIMIT", query_cfg.get("limit", d.query_limit)),
        query_timeout_seconds=_env_int("QUERY_TIMEOUT_SECONDS", query_cfg.get("timeout_seconds", d.query_timeout_seconds)),
        table_prefix=_env("TABLE_PREFIX", str(query_cfg.get("table_prefix", d.table_prefix))),
        fetch_batch_size=_env_int("FETCH_BATCH_SIZE", query_cfg.get("fetch_batch_size", d.fetch_batch_size)),

        db_type=db_type,
        duckdb_path=_env("DUCKDB_PATH", str((db_cfg.get("duckdb") or {}).get("path", d.duckdb_path))),
        pg_host=_env("PGHOST", str(pg_cfg.get("host", d.pg_host))),
        pg_port=_env_int("PGPORT", pg_cfg.get("port", d.pg_port)),
        pg_database=_env("PGDATABASE", str(pg_cfg.get("database", d.pg_database))),
        pg_user=_env("PGUSER", str(pg_cfg.get("user", d.pg_user))),
        # Passwords come from the environment only.
        pg_password=_env("PGPASSWORD", "") or "",

        storage_backend=(_env("STORAGE_BACKEND", str(st_cfg.get("backend", d.storage_backend))) or "local").strip().lower(),
        storage_component=str(st_cfg.get("component", d.storage_component)),
        storage_context_id=int(st_cfg.get("context_id", d.storage_context_id)),
        storage_dir=_env("STORAGE_DIR", str((st_cfg.get("local") or {}).get("dir", d.storage_dir))),
        s3_bucket=_env("S3_BUCKET", str(s3_cfg.get("bucket", d.s3_bucket))) or "",
        s3_prefix=_env("S3_PREFIX", str(s3_cfg.get("prefix", d.s3_prefix))) or "",
        aws_region=_env("AWS_REGION", str(s3_cfg.get("region", d.aws_region))) or "",

        delivery_timeout_seconds=_env_int("DELIVERY_TIMEOUT_SECONDS", dl_cfg.get("timeout_seconds", d.delivery_timeout_seconds)),
    )
