"""
Storage abstraction for Cloudflare R2 (S3-compatible) and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from blog_backend.assets import asset_path
from blog_backend.errors import UpstreamError


@dataclass
class StoredObject:
    key: str
    body: bytes
    content_type: Optional[str] = None


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def get_object(self, key: str) -> StoredObject:
        ...

    def put_object(self, key: str, body: bytes, content_type: str) -> str:
        ...

    def delete_object(self, key: str) -> None:
        ...

    def list_objects(self, prefix: Optional[str] = None) -> list[dict]:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict[str, StoredObject] = field(default_factory=dict)

    def get_object(self, key: str) -> StoredObject:
        stored = self.stored_objects.get(key)
        if stored is None:
            raise FileNotFoundError(key)
        return stored

    def put_object(self, key: str, body: bytes, content_type: str) -> str:
        self.stored_objects[key] = StoredObject(key=key, body=body, content_type=content_type)
        return asset_path(key)

    def delete_object(self, key: str) -> None:
        self.stored_objects.pop(key, None)

    def list_objects(self, prefix: Optional[str] = None) -> list[dict]:
        return [
            {"Key": key, "Size": len(obj.body)}
            for key, obj in sorted(self.stored_objects.items())
            if not prefix or key.startswith(prefix)
        ]


def _is_missing(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return error.get("Code") in ("NoSuchKey", "404", "NotFound") or status == 404


@dataclass
class R2StorageClient:
    """
    S3-compatible storage client for Cloudflare R2.
    """

    bucket: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(signature_version="s3v4")
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name="auto",
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def get_object(self, key: str) -> StoredObject:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_missing(exc):
                raise FileNotFoundError(key) from exc
            raise UpstreamError(f"R2 get_object failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise UpstreamError(f"R2 get_object failed for {key}: {exc}") from exc
        return StoredObject(
            key=key,
            body=response["Body"].read(),
            content_type=response.get("ContentType"),
        )

    def put_object(self, key: str, body: bytes, content_type: str) -> str:
        try:
            self._client.put_object(
                Bucket=self.bucket, Key=key, Body=body, ContentType=content_type
            )
        except (ClientError, BotoCoreError) as exc:
            raise UpstreamError(f"R2 put_object failed for {key}: {exc}") from exc
        return asset_path(key)

    def delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise UpstreamError(f"R2 delete_object failed for {key}: {exc}") from exc

    def list_objects(self, prefix: Optional[str] = None) -> list[dict]:
        params = {"Bucket": self.bucket}
        if prefix:
            params["Prefix"] = prefix
        try:
            response = self._client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as exc:
            raise UpstreamError(f"R2 list_objects failed: {exc}") from exc
        return response.get("Contents", [])
