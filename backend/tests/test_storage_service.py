import pytest

from tally.core.errors import StorageError
from tally.services.storage_service import ObjectStorage, mime_type_for


@pytest.fixture
def storage(tmp_path):
    (tmp_path / "uploads").mkdir()
    (tmp_path / "uploads" / "r1.png").write_bytes(b"\x89PNG-bytes")
    return ObjectStorage(backend="filesystem", base_dir=str(tmp_path))


def test_filesystem_fetch(storage):
    assert storage.fetch("uploads/r1.png") == b"\x89PNG-bytes"


def test_missing_file_raises_storage_error(storage):
    with pytest.raises(StorageError, match="File not found: uploads/nope.png"):
        storage.fetch("uploads/nope.png")


def test_refuses_paths_outside_base_dir(storage):
    with pytest.raises(StorageError, match="outside the storage directory"):
        storage.fetch("../etc/passwd")


def test_unknown_backend():
    with pytest.raises(ValueError):
        ObjectStorage(backend="ftp")


class _Response:
    def __init__(self, data):
        self.data = data
        self.closed = False

    def read(self):
        return self.data

    def close(self):
        self.closed = True

    def release_conn(self):
        pass


class _FakeMinio:
    def __init__(self, objects):
        self.objects = objects
        self.responses = []

    def get_object(self, bucket, key):
        if key not in self.objects:
            raise ConnectionError("connection refused")
        resp = _Response(self.objects[key])
        self.responses.append(resp)
        return resp


def test_minio_fetch_closes_response():
    client = _FakeMinio({"uploads/r1.jpg": b"jpeg"})
    storage = ObjectStorage(backend="minio", client=client)
    assert storage.fetch("uploads/r1.jpg") == b"jpeg"
    assert client.responses[0].closed


def test_minio_failure_is_storage_error():
    storage = ObjectStorage(backend="minio", client=_FakeMinio({}))
    with pytest.raises(StorageError, match="MinIO download failed"):
        storage.fetch("uploads/gone.jpg")


@pytest.mark.parametrize(
    "ref,expected",
    [
        ("a/receipt.JPG", "image/jpeg"),
        ("a/receipt.jpeg", "image/jpeg"),
        ("a/receipt.png", "image/png"),
        ("a/receipt", "application/octet-stream"),
    ],
)
def test_mime_type_for(ref, expected):
    assert mime_type_for(ref) == expected
