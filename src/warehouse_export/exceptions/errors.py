from __future__ import annotations
from typing import Any, Dict


class WarehouseExportError(Exception):
    """Base exception for warehouse_export.

    Carries a ``context`` dict (query name, user id, timestamp, stage...) that is
    attached on the way up and rendered by ``str()``.
    """

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context)

    def add_context(self, **context: Any) -> "WarehouseExportError":
        for k, v in context.items():
            self.context.setdefault(k, v)
        return self

    def __str__(self) -> str:
        if not self.context:
            return self.message
        ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} [{ctx}]"


class ValidationError(WarehouseExportError):
    pass


class RecordNotFoundError(WarehouseExportError):
    pass


class QueryExecutionError(WarehouseExportError):
    pass


class SerializationError(WarehouseExportError):
    pass


class PersistenceError(WarehouseExportError):
    pass


class DeliveryError(WarehouseExportError):
    pass
