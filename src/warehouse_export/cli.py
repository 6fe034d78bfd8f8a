from __future__ import annotations
import argparse
from typing import Dict, List, Optional

from warehouse_export.catalog.store import CatalogStore
from warehouse_export.config.settings import Settings, load_settings
from warehouse_export.exceptions.errors import WarehouseExportError
from warehouse_export.export.orchestrator import ExportOutcome, ExportStatus
from warehouse_export.export.service import redeliver_export, run_export
from warehouse_export.export.tokens import RunContext
from warehouse_export.logging.logger import get_logger, init_logging
from warehouse_export.storage.blob_store import DATA_AREA, blob_store_for

log = get_logger("cli")

EXIT_OK = 0
EXIT_FAILED = 2
EXIT_NOT_DELIVERED = 3


def _parse_params(pairs: Optional[List[str]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise argparse.ArgumentTypeError(f"Expected name=value, got {pair!r}")
        out[name.strip()] = value
    return out


def _print_outcome(res: ExportOutcome) -> int:
    if res.status == ExportStatus.DELIVERED:
        print("✅ Export DELIVERED")
        print(f"   file: {res.filename}")
        print(f"   item_id: {res.item_id}")
        print(f"   rows: {res.row_count}{'  (row limit exceeded)' if res.exceeded else ''}")
        return EXIT_OK

    print("⚠️ Export GENERATED but NOT DELIVERED")
    print(f"   file: {res.filename}")
    print(f"   item_id: {res.item_id}")
    print(f"   error: {res.error}")
    return EXIT_NOT_DELIVERED


def _cmd_queries(settings: Settings, catalog: CatalogStore, args: argparse.Namespace) -> int:
    for q in catalog.list_queries(enabled_only=True):
        print(f"{q.id}\t{q.name}\t{q.description}")
    return EXIT_OK


def _cmd_backends(settings: Settings, catalog: CatalogStore, args: argparse.Namespace) -> int:
    for b in catalog.available_backends(args.user_id):
        print(f"{b.id}\t{b.name}\t{b.url}")
    return EXIT_OK


def _cmd_files(settings: Settings, catalog: CatalogStore, args: argparse.Namespace) -> int:
    store = blob_store_for(settings)
    for rec in store.list_files(settings.storage_component, DATA_AREA):
        print(f"{rec.item_id}\t{rec.filename}\t{rec.size}")
    return EXIT_OK


def _cmd_run(settings: Settings, catalog: CatalogStore, args: argparse.Namespace) -> int:
    context = RunContext(
        user_id=args.user_id,
        course_id=args.course_id,
        course_module_id=args.cmid,
        quiz_id=args.quiz_id,
    )
    res = run_export(settings, catalog, args.query_id, args.backend_id, context, params=_parse_params(args.param))
    return _print_outcome(res)


def _cmd_redeliver(settings: Settings, catalog: CatalogStore, args: argparse.Namespace) -> int:
    res = redeliver_export(settings, catalog, args.item_id, args.backend_id)
    return _print_outcome(res)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="warehouse-export",
        description="Run saved quiz queries, store the CSV and push it to a data warehouse backend.",
    )
    parser.add_argument("--config-dir", default="config", help="Directory holding <APP_ENV>.yaml (default: config).")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("queries", help="List enabled queries.").set_defaults(func=_cmd_queries)

    p = sub.add_parser("backends", help="List backends a user may deliver to.")
    p.add_argument("--user-id", type=int, required=True)
    p.set_defaults(func=_cmd_backends)

    sub.add_parser("files", help="List generated export files, newest first.").set_defaults(func=_cmd_files)

    p = sub.add_parser("run", help="Run a query and deliver the CSV.")
    p.add_argument("--query-id", type=int, required=True)
    p.add_argument("--backend-id", type=int, required=True)
    p.add_argument("--user-id", type=int, required=True)
    p.add_argument("--course-id", type=int, required=True)
    p.add_argument("--cmid", type=int, required=True, help="Course module id of the quiz.")
    p.add_argument("--quiz-id", type=int, default=0)
    p.add_argument("--param", action="append", metavar="NAME=VALUE", help="Value for a :name placeholder (repeatable).")
    p.set_defaults(func=_cmd_run)

    p = sub.add_parser("redeliver", help="Push an already generated file again.")
    p.add_argument("--item-id", type=int, required=True)
    p.add_argument("--backend-id", type=int, required=True)
    p.set_defaults(func=_cmd_redeliver)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_settings(args.config_dir)
    init_logging(settings.log_level, settings.log_file)
    catalog = CatalogStore(settings.catalog_dir)

    try:
        return args.func(settings, catalog, args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except WarehouseExportError as e:
        log.error("Command failed: %s", e)
        print("❌ Export FAILED")
        print(f"   error: {e}")
        return EXIT_FAILED
    return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
