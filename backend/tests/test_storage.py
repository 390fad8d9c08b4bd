import io

import pytest

from contractsign.core.config import Settings
from contractsign.services.storage import LocalStorage, S3Storage, get_storage


class FakeS3Client:
    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.requests: list[dict] = []

    def put_object(self, *, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = Body

    def get_object(self, **kwargs):
        self.requests.append(kwargs)
        data = self.objects.get((kwargs["Bucket"], kwargs["Key"]))
        return {"Body": io.BytesIO(data)} if data is not None else {}


def test_local_storage_returns_relative_paths(tmp_path) -> None:
    storage = LocalStorage(base_dir=tmp_path)

    path = storage.save_bytes(root="documents/abc", name="szerzodes.pdf", data=b"%PDF-1.7")

    assert path == "documents/abc/szerzodes.pdf"
    assert storage.load_bytes(path) == b"%PDF-1.7"
    with pytest.raises(FileNotFoundError):
        storage.load_bytes("documents/abc/missing.pdf")


def test_s3_storage_round_trip_requests_pdf() -> None:
    client = FakeS3Client()
    storage = S3Storage(bucket="contracts", client=client)

    path = storage.save_bytes(root="/documents/abc/", name="szerzodes.pdf", data=b"%PDF-1.7")

    assert path == "s3://contracts/documents/abc/szerzodes.pdf"
    assert storage.load_bytes(path) == b"%PDF-1.7"
    assert client.requests[-1]["ResponseContentType"] == "application/pdf"


@pytest.mark.parametrize("path", ["documents/abc.pdf", "s3://contracts", "s3:///documents/abc.pdf"])
def test_s3_storage_rejects_malformed_paths(path: str) -> None:
    with pytest.raises(ValueError):
        S3Storage(bucket="contracts", client=FakeS3Client()).load_bytes(path)


def test_s3_storage_missing_body() -> None:
    with pytest.raises(FileNotFoundError):
        S3Storage(bucket="contracts", client=FakeS3Client()).load_bytes("s3://contracts/documents/none.pdf")


def test_storage_env_wins_over_s3_settings(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("CONTRACTSIGN_STORAGE", str(tmp_path))

    storage = get_storage(
        Settings(s3_endpoint_url="http://minio:9000", s3_access_key="key", s3_secret_key="secret", s3_bucket_documents="contracts")
    )

    assert isinstance(storage, LocalStorage)
    assert storage.base_dir == tmp_path.resolve()
