from __future__ import annotations
from typing import Any, Mapping, Optional

from warehouse_export.catalog.store import CatalogStore
from warehouse_export.config.settings import Settings
from warehouse_export.db.executor import executor_for
from warehouse_export.delivery.http_backend import BackendDelivery
from warehouse_export.exceptions.errors import ValidationError
from warehouse_export.export.csv_writer import CsvSerializer
from warehouse_export.export.orchestrator import ExportOrchestrator, ExportOutcome
from warehouse_export.export.tokens import RunContext
from warehouse_export.logging.logger import get_logger
from warehouse_export.storage.blob_store import blob_store_for

log = get_logger("export.service")


def build_orchestrator(settings: Settings) -> ExportOrchestrator:
    return ExportOrchestrator(
        executor=executor_for(settings),
        serializer=CsvSerializer(wwwroot=settings.wwwroot, timezone=settings.timezone),
        blob_store=blob_store_for(settings),
        delivery=BackendDelivery(timeout_seconds=settings.delivery_timeout_seconds),
        component=settings.storage_component,
        context_id=settings.storage_context_id,
        limit=settings.query_limit,
        timezone=settings.timezone,
    )


def run_export(
    settings: Settings,
    catalog: CatalogStore,
    query_id: int,
    backend_id: int,
    context: RunContext,
    params: Optional[Mapping[str, Any]] = None,
    orchestrator: Optional[ExportOrchestrator] = None,
) -> ExportOutcome:
    """Run a saved query for ``context`` and push the file to a saved backend.

    Only enabled queries and backends the user is allowed to use can be run.
    Once a file exists both records are flagged in use, which blocks their
    deletion.
    """
    query = catalog.get_query(query_id)
    if not query.enabled:
        raise ValidationError(f"Query '{query.name}' is disabled", query_id=query_id)
    backend = catalog.get_backend(backend_id)
    if not backend.enabled:
        raise ValidationError(f"Backend '{backend.name}' is disabled", backend_id=backend_id)
    if not backend.allows(context.user_id):
        raise ValidationError(
            f"User {context.user_id} may not deliver to backend '{backend.name}'",
            backend_id=backend_id,
            user_id=context.user_id,
        )

    orchestrator = orchestrator or build_orchestrator(settings)
    outcome = orchestrator.run(query, backend, context, params=params)
    if outcome.generated:
        catalog.mark_in_use(query.id, backend.id)
    log.info("Export run complete", extra={"query": query.name, "status": outcome.status.value})
    return outcome


def redeliver_export(
    settings: Settings,
    catalog: CatalogStore,
    item_id: int,
    backend_id: int,
    orchestrator: Optional[ExportOrchestrator] = None,
) -> ExportOutcome:
    backend = catalog.get_backend(backend_id)
    if not backend.enabled:
        raise ValidationError(f"Backend '{backend.name}' is disabled", backend_id=backend_id)
    orchestrator = orchestrator or build_orchestrator(settings)
    return orchestrator.redeliver(item_id, backend)
