from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from tempfile import SpooledTemporaryFile
from typing import Any, Dict, Mapping, Optional, Tuple
import io
import time

from warehouse_export.catalog.records import Backend, Query
from warehouse_export.db.executor import QueryExecutor, RowCursor
from warehouse_export.delivery.http_backend import BackendDelivery
from warehouse_export.exceptions.errors import (
    DeliveryError,
    PersistenceError,
    SerializationError,
    WarehouseExportError,
)
from warehouse_export.export.csv_writer import CsvSerializer, SerializeResult
from warehouse_export.export.filenames import RunClock, export_filename
from warehouse_export.export.tokens import RunContext, prepare_sql
from warehouse_export.logging.logger import get_logger
from warehouse_export.storage.blob_store import DATA_AREA, BlobStore

log = get_logger("export.orchestrator")

# Results up to this size stay in memory while they are serialized.
SPOOL_MAX_BYTES = 8 * 1024 * 1024


class ExportStage(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    EXECUTING = "executing"
    SERIALIZING = "serializing"
    PERSISTING = "persisting"
    DELIVERING = "delivering"
    DONE = "done"
    FAILED = "failed"


class ExportStatus(str, Enum):
    DELIVERED = "delivered"
    GENERATED_NOT_DELIVERED = "generated_not_delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class ExportOutcome:
    status: ExportStatus
    stage: ExportStage
    item_id: Optional[int] = None
    filename: Optional[str] = None
    row_count: int = 0
    exceeded: bool = False
    elapsed_seconds: float = 0.0
    query_name: Optional[str] = None
    user_id: Optional[int] = None
    timestamp: Optional[int] = None
    error: Optional[WarehouseExportError] = None

    @property
    def ok(self) -> bool:
        return self.status == ExportStatus.DELIVERED

    @property
    def generated(self) -> bool:
        return self.status in (ExportStatus.DELIVERED, ExportStatus.GENERATED_NOT_DELIVERED)

    def describe(self) -> str:
        if self.status == ExportStatus.DELIVERED:
            return f"File {self.filename} generated ({self.row_count} rows) and delivered."
        if self.status == ExportStatus.GENERATED_NOT_DELIVERED:
            return f"File {self.filename} generated ({self.row_count} rows) but NOT delivered: {self.error}"
        return f"Nothing was generated: {self.error}"


class ExportOrchestrator:
    """Runs one export end to end: prepare -> execute -> serialize -> persist -> deliver.

    Failures before the file is stored raise the typed error (with run context
    attached) and leave nothing behind. A delivery failure does not raise: the
    stored file stays and the outcome says "generated, not delivered".
    """

    def __init__(
        self,
        executor: QueryExecutor,
        serializer: CsvSerializer,
        blob_store: BlobStore,
        delivery: BackendDelivery,
        component: str = "quiz_datawarehouse",
        context_id: int = 1,
        limit: int = 5000,
        timezone: str = "UTC",
    ):
        self.executor = executor
        self.serializer = serializer
        self.blob_store = blob_store
        self.delivery = delivery
        self.component = component
        self.context_id = context_id
        self.limit = limit
        self.timezone = timezone

    def _serialize(self, query: Query, cursor: RowCursor) -> Tuple[bytes, SerializeResult]:
        with cursor, SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES, mode="w+b") as spool:
            text = io.TextIOWrapper(spool, encoding="utf-8", newline="")
            result = self.serializer.write(cursor, text, query.querysql, limit=self.limit, columns=cursor.columns)
            try:
                text.flush()
                text.detach()
                spool.seek(0)
                data = spool.read()
            except (OSError, ValueError) as e:
                raise SerializationError(f"Could not read back the CSV output: {e}") from e
        return data, result

    def run(
        self,
        query: Query,
        backend: Backend,
        context: RunContext,
        params: Optional[Mapping[str, Any]] = None,
        timenow: Optional[float] = None,
    ) -> ExportOutcome:
        clock = RunClock.now(self.timezone, timenow)
        started = time.monotonic()
        run_ctx: Dict[str, Any] = {"query": query.name, "user_id": context.user_id, "timestamp": clock.unix}
        stage = ExportStage.IDLE

        try:
            stage = ExportStage.PREPARING
            log.info("Export preparing", extra=run_ctx)
            sql = prepare_sql(query.querysql, context)

            stage = ExportStage.EXECUTING
            log.info("Export executing", extra=run_ctx)
            # One extra row tells the serializer the limit was exceeded.
            cursor = self.executor.execute(sql, params, limit=self.limit + 1 if self.limit else 0)

            stage = ExportStage.SERIALIZING
            data, result = self._serialize(query, cursor)

            stage = ExportStage.PERSISTING
            item_id = self.blob_store.allocate_item_id(self.component, DATA_AREA)
            filename = export_filename(context.user_id, item_id, context.quiz_id, query.name, clock)
            run_ctx["item_id"] = item_id
            log.info("Export persisting", extra={**run_ctx, "file_name": filename, "rows": result.row_count})
            self.blob_store.put(self.component, self.context_id, DATA_AREA, item_id, "/", filename, data)
        except WarehouseExportError as e:
            e.add_context(**run_ctx, stage=stage.value)
            log.exception("Export failed", extra={**run_ctx, "stage": stage.value})
            raise

        stage = ExportStage.DELIVERING
        status = ExportStatus.DELIVERED
        error: Optional[WarehouseExportError] = None
        try:
            self.delivery.deliver(backend, filename, data)
            stage = ExportStage.DONE
        except DeliveryError as e:
            e.add_context(**run_ctx, stage=stage.value, file_name=filename)
            log.error("Export generated but not delivered: %s", e, extra=run_ctx)
            status = ExportStatus.GENERATED_NOT_DELIVERED
            stage = ExportStage.FAILED
            error = e

        elapsed = time.monotonic() - started
        log.info("Export finished", extra={**run_ctx, "status": status.value, "elapsed": round(elapsed, 3)})
        return ExportOutcome(
            status=status,
            stage=stage,
            item_id=item_id,
            filename=filename,
            row_count=result.row_count,
            exceeded=result.exceeded,
            elapsed_seconds=elapsed,
            query_name=query.name,
            user_id=context.user_id,
            timestamp=clock.unix,
            error=error,
        )

    def redeliver(self, item_id: int, backend: Backend) -> ExportOutcome:
        """Push an already generated file again, without re-running its query."""
        started = time.monotonic()
        record = self.blob_store.find(self.component, DATA_AREA, item_id)
        if record is None:
            raise PersistenceError(f"No export file with item id {item_id}", item_id=item_id)
        data = self.blob_store.get(self.component, record.context_id, DATA_AREA, record.item_id,
                                   record.path, record.filename)
        if data is None:
            raise PersistenceError(f"Export file {record.filename} disappeared", item_id=item_id)

        status, stage, error = ExportStatus.DELIVERED, ExportStage.DONE, None
        try:
            self.delivery.deliver(backend, record.filename, data)
        except DeliveryError as e:
            e.add_context(item_id=item_id, file_name=record.filename)
            log.error("Re-delivery failed: %s", e)
            status, stage, error = ExportStatus.GENERATED_NOT_DELIVERED, ExportStage.FAILED, e

        return ExportOutcome(
            status=status,
            stage=stage,
            item_id=record.item_id,
            filename=record.filename,
            elapsed_seconds=time.monotonic() - started,
            error=error,
        )
