import fnmatch
from io import BytesIO

import pytest
from botocore.exceptions import ClientError

from sealdesk.core.redis import InMemoryTTLStore, RedisTTLStore
from sealdesk.utils.storage import DocumentStorageError, LocalDocumentStorage, S3DocumentStorage


class FakeS3Client:
    def __init__(self):
        self.objects = {}

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        self.objects[(bucket, key)] = (fileobj.read(), ExtraArgs)

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": BytesIO(self.objects[(Bucket, Key)][0])}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


class FakeRedis:
    """Just enough of redis.Redis for the TTL store"""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def set(self, key, value, ex=None):
        self.values[key] = value
        self.ttls[key] = ex

    def get(self, key):
        return self.values.get(key)

    def delete(self, key):
        self.values.pop(key, None)

    def scan_iter(self, match):
        return [k for k in self.values if fnmatch.fnmatch(k, match)]


# === Document storage ===

def test_local_storage_round_trip(storage):
    key = storage.put(b"%PDF-1.4 test", {"envelope_id": "env-1", "filename": "nda.pdf"})

    assert key.startswith("envelopes/env-1/")
    assert key.endswith("_nda.pdf")
    assert storage.get(key) == b"%PDF-1.4 test"

    storage.delete(key)
    with pytest.raises(DocumentStorageError):
        storage.get(key)


def test_local_storage_keys_cannot_escape_root(tmp_path):
    storage = LocalDocumentStorage(str(tmp_path / "docs"))
    with pytest.raises(DocumentStorageError):
        storage.get("../../etc/passwd")


def test_s3_storage_uses_bucket():
    client = FakeS3Client()
    storage = S3DocumentStorage(bucket_name="sealdesk-docs", client=client)

    key = storage.put(b"data", {"envelope_id": "env-2", "content_type": "application/pdf"})

    assert client.objects[("sealdesk-docs", key)][1] == {"ContentType": "application/pdf"}
    assert storage.get(key) == b"data"
    storage.delete(key)
    with pytest.raises(DocumentStorageError):
        storage.get(key)


# === TTL stores ===

def test_in_memory_ttl_store_expires_entries():
    now = [100.0]
    store = InMemoryTTLStore(clock=lambda: now[0])
    store.set("otp:email:s1", "123456", 60)
    store.set("otp:sms:s1", "654321", 600)

    assert store.get("otp:email:s1") == "123456"
    assert sorted(store.keys("otp:")) == ["otp:email:s1", "otp:sms:s1"]

    now[0] += 61
    assert store.get("otp:email:s1") is None
    assert store.keys("otp:") == ["otp:sms:s1"]

    now[0] += 600
    assert store.purge_expired() == 1
    assert store.keys("otp:") == []


def test_redis_ttl_store_namespaces_keys():
    client = FakeRedis()
    store = RedisTTLStore(client=client, namespace="test")

    store.set("qes:abc", "{}", 0)
    assert client.ttls["test:qes:abc"] == 1
    assert store.get("qes:abc") == "{}"
    assert store.keys("qes:") == ["qes:abc"]

    store.delete("qes:abc")
    assert store.get("qes:abc") is None
