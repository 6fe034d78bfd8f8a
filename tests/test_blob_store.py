from concurrent.futures import ThreadPoolExecutor

import boto3
import pytest
from moto import mock_aws

from warehouse_export.config.settings import Settings
from warehouse_export.exceptions.errors import PersistenceError
from warehouse_export.storage.blob_store import (
    DATA_AREA,
    FileRecord,
    LocalBlobStore,
    S3BlobStore,
    blob_store_for,
)

COMPONENT = "quiz_datawarehouse"


def test_local_allocate_is_monotonic(blob_store):
    assert blob_store.max_item_id(COMPONENT, DATA_AREA) == 0
    assert blob_store.allocate_item_id(COMPONENT, DATA_AREA) == 1
    assert blob_store.allocate_item_id(COMPONENT, DATA_AREA) == 2
    assert blob_store.max_item_id(COMPONENT, DATA_AREA) == 2


def test_local_concurrent_allocation_gives_unique_ids(blob_store):
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _: blob_store.allocate_item_id(COMPONENT, DATA_AREA), range(40)))
    assert sorted(ids) == list(range(1, 41))


def test_local_put_get_roundtrip(blob_store):
    item_id = blob_store.allocate_item_id(COMPONENT, DATA_AREA)
    blob_store.put(COMPONENT, 1, DATA_AREA, item_id, "/", "a.csv", b'"x"\r\n')
    assert blob_store.get(COMPONENT, 1, DATA_AREA, item_id, "/", "a.csv") == b'"x"\r\n'
    assert blob_store.get(COMPONENT, 1, DATA_AREA, item_id, "/", "missing.csv") is None


def test_local_put_is_write_once(blob_store):
    item_id = blob_store.allocate_item_id(COMPONENT, DATA_AREA)
    blob_store.put(COMPONENT, 1, DATA_AREA, item_id, "/", "a.csv", b"first")
    with pytest.raises(PersistenceError, match="already exists"):
        blob_store.put(COMPONENT, 1, DATA_AREA, item_id, "/", "a.csv", b"second")
    assert blob_store.get(COMPONENT, 1, DATA_AREA, item_id, "/", "a.csv") == b"first"


@pytest.mark.parametrize("path,filename", [("relative/", "a.csv"), ("/../", "a.csv"), ("/", "../a.csv"), ("/", "")])
def test_local_rejects_bad_names(blob_store, path, filename):
    with pytest.raises(PersistenceError):
        blob_store.put(COMPONENT, 1, DATA_AREA, 1, path, filename, b"x")


def test_local_list_files_newest_first(blob_store):
    for name in ("one.csv", "two.csv"):
        item_id = blob_store.allocate_item_id(COMPONENT, DATA_AREA)
        blob_store.put(COMPONENT, 1, DATA_AREA, item_id, "/", name, b"abc")
    # A reserved id without a file yet is not listed.
    blob_store.allocate_item_id(COMPONENT, DATA_AREA)

    assert blob_store.list_files(COMPONENT, DATA_AREA) == [
        FileRecord(item_id=2, context_id=1, path="/", filename="two.csv", size=3),
        FileRecord(item_id=1, context_id=1, path="/", filename="one.csv", size=3),
    ]
    assert blob_store.find(COMPONENT, DATA_AREA, 1).filename == "one.csv"
    assert blob_store.find(COMPONENT, DATA_AREA, 3) is None


def test_blob_store_for_settings(tmp_path):
    store = blob_store_for(Settings(storage_backend="local", storage_dir=str(tmp_path)))
    assert isinstance(store, LocalBlobStore)
    with pytest.raises(PersistenceError):
        blob_store_for(Settings(storage_backend="ftp"))


@pytest.fixture
def s3_store(aws_credentials):
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="exports")
        yield S3BlobStore("exports", prefix="warehouse", client=client)


def test_s3_allocate_put_get(s3_store):
    assert s3_store.allocate_item_id(COMPONENT, DATA_AREA) == 1
    assert s3_store.allocate_item_id(COMPONENT, DATA_AREA) == 2

    s3_store.put(COMPONENT, 1, DATA_AREA, 1, "/", "first.csv", b"one")
    s3_store.put(COMPONENT, 1, DATA_AREA, 2, "/", "second.csv", b"second")

    assert s3_store.get(COMPONENT, 1, DATA_AREA, 1, "/", "first.csv") == b"one"
    assert s3_store.get(COMPONENT, 1, DATA_AREA, 1, "/", "nope.csv") is None

    keys = [o["Key"] for o in s3_store.s3.list_objects_v2(Bucket="exports")["Contents"]]
    assert "warehouse/quiz_datawarehouse/data/0000000001/1/first.csv" in keys


def test_s3_list_files_skips_reservations(s3_store):
    for name in ("a.csv", "b.csv"):
        item_id = s3_store.allocate_item_id(COMPONENT, DATA_AREA)
        s3_store.put(COMPONENT, 1, DATA_AREA, item_id, "/", name, b"xyz")
    s3_store.allocate_item_id(COMPONENT, DATA_AREA)

    assert s3_store.list_files(COMPONENT, DATA_AREA) == [
        FileRecord(item_id=2, context_id=1, path="/", filename="b.csv", size=3),
        FileRecord(item_id=1, context_id=1, path="/", filename="a.csv", size=3),
    ]
    assert s3_store.max_item_id(COMPONENT, DATA_AREA) == 3
    assert s3_store.find(COMPONENT, DATA_AREA, 2).filename == "b.csv"


def test_s3_requires_bucket():
    with pytest.raises(PersistenceError):
        S3BlobStore("", client=object())
