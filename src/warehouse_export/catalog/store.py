from __future__ import annotations
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar
import json
import os

from warehouse_export.catalog.records import (
    Backend,
    Query,
    backend_from_dict,
    query_from_dict,
    validate_backend,
    validate_query,
)
from warehouse_export.exceptions.errors import RecordNotFoundError, ValidationError
from warehouse_export.logging.logger import get_logger, register_secret

log = get_logger("catalog.store")

T = TypeVar("T")

_MAX_ID_ATTEMPTS = 100


class CatalogStore:
    """Query and backend records, one JSON file per record.

    Layout::

        <directory>/queries/<id>.json
        <directory>/backends/<id>.json

    New ids are claimed with exclusive file creation, so two writers never end
    up with the same id.
    """

    def __init__(self, directory: str):
        self.root = Path(directory)
        self.query_dir = self.root / "queries"
        self.backend_dir = self.root / "backends"
        self.query_dir.mkdir(parents=True, exist_ok=True)
        self.backend_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _ids(folder: Path) -> List[int]:
        return sorted(int(f.stem) for f in folder.glob("*.json") if f.stem.isdigit())

    def _claim_id(self, folder: Path) -> int:
        for _ in range(_MAX_ID_ATTEMPTS):
            candidate = (max(self._ids(folder), default=0)) + 1
            try:
                fd = os.open(folder / f"{candidate}.json", os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                continue
            os.close(fd)
            return candidate
        raise ValidationError(f"Could not allocate a record id in {folder}")

    @staticmethod
    def _write(folder: Path, record_id: int, payload: Dict[str, Any]) -> None:
        path = folder / f"{record_id}.json"
        tmp = folder / f".{record_id}.json.tmp"
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, path)

    @staticmethod
    def _read(folder: Path, record_id: int, kind: str, factory: Callable[[Dict[str, Any]], T]) -> T:
        path = folder / f"{int(record_id)}.json"
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise RecordNotFoundError(f"Invalid {kind} id {record_id}", **{f"{kind}_id": record_id}) from e
        return factory(payload)

    def _read_all(self, folder: Path, kind: str, factory: Callable[[Dict[str, Any]], T]) -> List[T]:
        out: List[T] = []
        for rid in self._ids(folder):
            try:
                out.append(self._read(folder, rid, kind, factory))
            except json.JSONDecodeError:
                # A claimed id whose record is still being written.
                log.warning("Skipping unreadable record", extra={"kind": kind, "id": rid})
        return out

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_queries(self, enabled_only: bool = False) -> List[Query]:
        queries = self._read_all(self.query_dir, "query", query_from_dict)
        if enabled_only:
            queries = [q for q in queries if q.enabled]
        return sorted(queries, key=lambda q: (q.sortorder, q.id))

    def get_query(self, query_id: int) -> Query:
        return self._read(self.query_dir, query_id, "query", query_from_dict)

    def create_query(
        self,
        name: str,
        querysql: str,
        description: str = "",
        enabled: bool = True,
        sortorder: Optional[int] = None,
    ) -> Query:
        existing = self.list_queries()
        if sortorder is None:
            sortorder = max((q.sortorder for q in existing), default=0) + 1
        draft = Query(id=0, name=name, querysql=querysql, description=description,
                      enabled=enabled, sortorder=sortorder)
        validate_query(draft, existing)
        qid = self._claim_id(self.query_dir)
        query = replace(draft, id=qid)
        self._write(self.query_dir, qid, query.to_dict())
        log.info("Created query", extra={"id": qid, "query_name": name})
        return query

    def update_query(self, query: Query) -> Query:
        current = self.get_query(query.id)
        validate_query(query, self.list_queries())
        # in_use is owned by the export service, not by editors.
        query = replace(query, in_use=current.in_use or query.in_use)
        self._write(self.query_dir, query.id, query.to_dict())
        log.info("Updated query", extra={"id": query.id, "query_name": query.name})
        return query

    def set_query_enabled(self, query_id: int, enabled: bool) -> Query:
        query = replace(self.get_query(query_id), enabled=bool(enabled))
        self._write(self.query_dir, query.id, query.to_dict())
        log.info("Query %s", "enabled" if enabled else "disabled", extra={"id": query.id})
        return query

    def delete_query(self, query_id: int) -> None:
        query = self.get_query(query_id)
        if query.in_use:
            raise ValidationError("The query can't be deleted.", query_id=query_id)
        (self.query_dir / f"{query.id}.json").unlink()
        log.info("Deleted query", extra={"id": query.id})

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------
    def list_backends(self, enabled_only: bool = False) -> List[Backend]:
        backends = self._read_all(self.backend_dir, "backend", backend_from_dict)
        for b in backends:
            register_secret(b.password)
        if enabled_only:
            backends = [b for b in backends if b.enabled]
        return backends

    def available_backends(self, user_id: int) -> List[Backend]:
        return [b for b in self.list_backends(enabled_only=True) if b.allows(user_id)]

    def get_backend(self, backend_id: int) -> Backend:
        backend = self._read(self.backend_dir, backend_id, "backend", backend_from_dict)
        register_secret(backend.password)
        return backend

    def create_backend(
        self,
        name: str,
        url: str,
        description: str = "",
        username: str = "",
        password: str = "",
        enabled: bool = True,
        alloweduser: str = "",
    ) -> Backend:
        draft = Backend(id=0, name=name, url=url, description=description, username=username,
                        password=password, enabled=enabled, alloweduser=alloweduser)
        validate_backend(draft)
        register_secret(password)
        bid = self._claim_id(self.backend_dir)
        backend = replace(draft, id=bid)
        self._write(self.backend_dir, bid, backend.to_dict())
        log.info("Created backend", extra={"id": bid, "backend_name": name})
        return backend

    def update_backend(self, backend: Backend) -> Backend:
        current = self.get_backend(backend.id)
        validate_backend(backend)
        register_secret(backend.password)
        backend = replace(backend, in_use=current.in_use or backend.in_use)
        self._write(self.backend_dir, backend.id, backend.to_dict())
        log.info("Updated backend", extra={"id": backend.id, "backend_name": backend.name})
        return backend

    def set_backend_enabled(self, backend_id: int, enabled: bool) -> Backend:
        backend = replace(self.get_backend(backend_id), enabled=bool(enabled))
        self._write(self.backend_dir, backend.id, backend.to_dict())
        return backend

    def delete_backend(self, backend_id: int) -> None:
        backend = self.get_backend(backend_id)
        if backend.in_use:
            raise ValidationError("The backend can't be deleted.", backend_id=backend_id)
        (self.backend_dir / f"{backend.id}.json").unlink()
        log.info("Deleted backend", extra={"id": backend.id})

    # ------------------------------------------------------------------
    def mark_in_use(self, query_id: int, backend_id: int) -> None:
        query = self.get_query(query_id)
        if not query.in_use:
            self._write(self.query_dir, query.id, replace(query, in_use=True).to_dict())
        backend = self.get_backend(backend_id)
        if not backend.in_use:
            self._write(self.backend_dir, backend.id, replace(backend, in_use=True).to_dict())
