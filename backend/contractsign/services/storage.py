from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import Config as BotoConfig

from contractsign.core.config import Settings, get_settings

STORAGE_ENV = "CONTRACTSIGN_STORAGE"


def resolve_storage_root(settings: Settings | None = None) -> Path:
    """Directory holding local artifacts; the environment overrides the settings."""
    settings = settings or get_settings()
    raw = os.getenv(STORAGE_ENV) or settings.contractsign_storage or "_storage"
    return Path(raw).expanduser().resolve()


class StorageBackend(Protocol):
    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:  # returns storage path/URL
        ...

    def load_bytes(self, path: str) -> bytes:
        ...


@dataclass
class LocalStorage:
    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        target_dir = self.base_dir / root
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / name
        file_path.write_bytes(data)
        return str(file_path.relative_to(self.base_dir))

    def load_bytes(self, path: str) -> bytes:
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.base_dir / file_path
        if not file_path.exists():
            raise FileNotFoundError(f"File {path!r} was not found in the configured storage.")
        return file_path.read_bytes()


@dataclass
class S3Storage:
    bucket: str
    client: Any

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        key = f"{root.strip('/')}/{name}"
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType="application/pdf")
        return f"s3://{self.bucket}/{key}"

    def load_bytes(self, path: str) -> bytes:
        bucket, _, key = path.removeprefix("s3://").partition("/")
        if not path.startswith("s3://") or not bucket or not key:
            raise ValueError(f"Storage path {path!r} is not an s3://<bucket>/<key> location.")
        response = self.client.get_object(Bucket=bucket, Key=key, ResponseContentType="application/pdf")
        body = response.get("Body")
        if body is None:
            raise FileNotFoundError(f"File {path!r} was not found in the configured storage.")
        return body.read()


def get_storage(settings: Settings | None = None) -> StorageBackend:
    settings = settings or get_settings()

    # An explicit local path wins over S3 configuration
    if os.getenv(STORAGE_ENV):
        return LocalStorage(base_dir=resolve_storage_root(settings))

    if settings.s3_endpoint_url and settings.s3_access_key and settings.s3_secret_key and settings.s3_bucket_documents:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=os.getenv("AWS_REGION", "us-east-1"),
        )
        return S3Storage(bucket=settings.s3_bucket_documents, client=client)

    return LocalStorage(base_dir=resolve_storage_root(settings))
