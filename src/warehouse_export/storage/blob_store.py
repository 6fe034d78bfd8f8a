"""Write-once storage for generated export files.

Files are addressed like the site's file API: component, context id, file
area, item id, path and filename. Item ids grow monotonically per
(component, area); ``allocate_item_id`` reserves the next one atomically so
concurrent exports never share an id.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
import os
import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from warehouse_export.config.settings import Settings
from warehouse_export.exceptions.errors import PersistenceError
from warehouse_export.logging.logger import get_logger

log = get_logger("storage.blob_store")

DATA_AREA = "data"
_MAX_ALLOCATION_ATTEMPTS = 50


@dataclass(frozen=True)
class BlobRef:
    component: str
    context_id: int
    area: str
    item_id: int
    path: str
    filename: str


@dataclass(frozen=True)
class FileRecord:
    item_id: int
    context_id: int
    path: str
    filename: str
    size: int


def _check_name(path: str, filename: str) -> None:
    if not path.startswith("/") or not path.endswith("/") or ".." in path.split("/"):
        raise PersistenceError(f"Invalid file path: {path!r}")
    if not filename or "/" in filename or "\\" in filename or filename in {".", ".."}:
        raise PersistenceError(f"Invalid file name: {filename!r}")


class BlobStore:
    def put(self, component: str, context_id: int, area: str, item_id: int, path: str, filename: str, data: bytes) -> BlobRef:
        raise NotImplementedError

    def get(self, component: str, context_id: int, area: str, item_id: int, path: str, filename: str) -> Optional[bytes]:
        raise NotImplementedError

    def max_item_id(self, component: str, area: str) -> int:
        raise NotImplementedError

    def allocate_item_id(self, component: str, area: str) -> int:
        raise NotImplementedError

    def list_files(self, component: str, area: str) -> List[FileRecord]:
        raise NotImplementedError

    def find(self, component: str, area: str, item_id: int) -> Optional[FileRecord]:
        for rec in self.list_files(component, area):
            if rec.item_id == int(item_id):
                return rec
        return None


class LocalBlobStore(BlobStore):
    """Filesystem layout: ``<root>/<component>/<area>/<item_id>/<context_id><path><filename>``.

    An item id is reserved by creating its directory; ``mkdir`` either creates
    it or fails with FileExistsError, which makes the reservation atomic.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _area_dir(self, component: str, area: str) -> Path:
        return self.root / component / area

    def _item_ids(self, component: str, area: str) -> List[int]:
        area_dir = self._area_dir(component, area)
        if not area_dir.exists():
            return []
        return [int(p.name) for p in area_dir.iterdir() if p.is_dir() and p.name.isdigit()]

    def max_item_id(self, component: str, area: str) -> int:
        return max(self._item_ids(component, area), default=0)

    def allocate_item_id(self, component: str, area: str) -> int:
        area_dir = self._area_dir(component, area)
        try:
            area_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create file area {area_dir}: {e}") from e
        for _ in range(_MAX_ALLOCATION_ATTEMPTS):
            candidate = self.max_item_id(component, area) + 1
            try:
                (area_dir / str(candidate)).mkdir()
            except FileExistsError:
                continue
            except OSError as e:
                raise PersistenceError(f"Cannot reserve item id {candidate}: {e}") from e
            log.info("Allocated item id", extra={"component": component, "area": area, "item_id": candidate})
            return candidate
        raise PersistenceError(f"Could not allocate an item id after {_MAX_ALLOCATION_ATTEMPTS} attempts")

    def _file_path(self, component: str, context_id: int, area: str, item_id: int, path: str, filename: str) -> Path:
        _check_name(path, filename)
        return self._area_dir(component, area) / str(int(item_id)) / str(int(context_id)) / path.strip("/") / filename

    def put(self, component, context_id, area, item_id, path, filename, data: bytes) -> BlobRef:
        target = self._file_path(component, context_id, area, item_id, path, filename)
        tmp = target.parent / f".{filename}.{uuid.uuid4().hex}.tmp"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            # link() refuses to replace an existing file: blobs are written once.
            os.link(tmp, target)
        except FileExistsError as e:
            raise PersistenceError(f"File already exists: {target}") from e
        except OSError as e:
            raise PersistenceError(f"Could not write {target}: {e}") from e
        finally:
            tmp.unlink(missing_ok=True)
        log.info("Stored file", extra={"item_id": item_id, "file_name": filename, "bytes": len(data)})
        return BlobRef(component, int(context_id), area, int(item_id), path, filename)

    def get(self, component, context_id, area, item_id, path, filename) -> Optional[bytes]:
        target = self._file_path(component, context_id, area, item_id, path, filename)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {target}: {e}") from e

    def list_files(self, component: str, area: str) -> List[FileRecord]:
        out: List[FileRecord] = []
        area_dir = self._area_dir(component, area)
        for item_id in sorted(self._item_ids(component, area), reverse=True):
            item_dir = area_dir / str(item_id)
            for f in sorted(item_dir.rglob("*")):
                if not f.is_file() or f.name.startswith("."):
                    continue
                rel = f.relative_to(item_dir)
                if len(rel.parts) < 2:
                    continue
                context_id, *dirs = rel.parts[:-1]
                path = "/" + "".join(f"{d}/" for d in dirs)
                out.append(FileRecord(item_id, int(context_id), path, f.name, f.stat().st_size))
        return out


class S3BlobStore(BlobStore):
    """S3 layout: ``<prefix>/<component>/<area>/<item_id:010d>/<context_id><path><filename>``.

    Item ids are reserved with a conditional put (``IfNoneMatch='*'``) of a
    marker object; a 412 means another export won the race and we retry.
    Zero-padded ids keep listings in numeric order.
    """

    RESERVATION = ".reserved"

    def __init__(self, bucket: str, prefix: str = "", region_name: Optional[str] = None, client=None):
        if not bucket:
            raise PersistenceError("S3_BUCKET is required when STORAGE_BACKEND=s3")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.s3 = client or boto3.client("s3", region_name=region_name or None)

    def _area_key(self, component: str, area: str) -> str:
        parts = [p for p in (self.prefix, component, area) if p]
        return "/".join(parts) + "/"

    def _item_key(self, component: str, area: str, item_id: int) -> str:
        return f"{self._area_key(component, area)}{int(item_id):010d}/"

    def _key(self, component, context_id, area, item_id, path, filename) -> str:
        _check_name(path, filename)
        return f"{self._item_key(component, area, item_id)}{int(context_id)}{path}{filename}"

    def _item_ids(self, component: str, area: str) -> List[int]:
        ids: List[int] = []
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self._area_key(component, area), Delimiter="/"):
                for cp in page.get("CommonPrefixes", []):
                    name = cp["Prefix"].rstrip("/").rsplit("/", 1)[-1]
                    if name.isdigit():
                        ids.append(int(name))
        except (BotoCoreError, ClientError) as e:
            raise PersistenceError(f"Could not list s3://{self.bucket}/{self._area_key(component, area)}: {e}") from e
        return ids

    def max_item_id(self, component: str, area: str) -> int:
        return max(self._item_ids(component, area), default=0)

    def _put_once(self, key: str, body: bytes, content_type: str) -> bool:
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type, IfNoneMatch="*")
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in {"PreconditionFailed", "412", "ConditionalRequestConflict"}:
                return False
            raise PersistenceError(f"Could not write s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise PersistenceError(f"Could not write s3://{self.bucket}/{key}: {e}") from e
        return True

    def allocate_item_id(self, component: str, area: str) -> int:
        for _ in range(_MAX_ALLOCATION_ATTEMPTS):
            candidate = self.max_item_id(component, area) + 1
            marker = self._item_key(component, area, candidate) + self.RESERVATION
            if self._put_once(marker, b"", "application/octet-stream"):
                log.info("Allocated item id", extra={"bucket": self.bucket, "item_id": candidate})
                return candidate
        raise PersistenceError(f"Could not allocate an item id after {_MAX_ALLOCATION_ATTEMPTS} attempts")

    def put(self, component, context_id, area, item_id, path, filename, data: bytes) -> BlobRef:
        key = self._key(component, context_id, area, item_id, path, filename)
        if not self._put_once(key, data, "text/csv"):
            raise PersistenceError(f"File already exists: s3://{self.bucket}/{key}")
        log.info("Stored file", extra={"bucket": self.bucket, "key": key, "bytes": len(data)})
        return BlobRef(component, int(context_id), area, int(item_id), path, filename)

    def get(self, component, context_id, area, item_id, path, filename) -> Optional[bytes]:
        key = self._key(component, context_id, area, item_id, path, filename)
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return None
            raise PersistenceError(f"Could not read s3://{self.bucket}/{key}: {e}") from e
        return obj["Body"].read()

    def list_files(self, component: str, area: str) -> List[FileRecord]:
        area_key = self._area_key(component, area)
        out: List[FileRecord] = []
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=area_key):
                for obj in page.get("Contents", []):
                    rest = obj["Key"][len(area_key):]
                    item, _, remainder = rest.partition("/")
                    context_id, _, file_part = remainder.partition("/")
                    if not item.isdigit() or not context_id.isdigit() or not file_part:
                        continue
                    dirs, _, filename = ("/" + file_part).rpartition("/")
                    out.append(FileRecord(int(item), int(context_id), dirs + "/", filename, int(obj.get("Size", 0))))
        except (BotoCoreError, ClientError) as e:
            raise PersistenceError(f"Could not list s3://{self.bucket}/{area_key}: {e}") from e
        return sorted(out, key=lambda r: (-r.item_id, r.path, r.filename))


def blob_store_for(settings: Settings) -> BlobStore:
    backend = (settings.storage_backend or "local").strip().lower()
    if backend == "local":
        return LocalBlobStore(settings.storage_dir)
    if backend == "s3":
        return S3BlobStore(settings.s3_bucket, settings.s3_prefix, region_name=settings.aws_region)
    raise PersistenceError(f"STORAGE_BACKEND not supported: {backend}")
