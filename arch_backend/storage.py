"""
Storage abstraction for S3-compatible media buckets and in-memory testing.
"""

from __future__ import annotations

import posixpath
import re
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...

    def presign_put(
        self, path: str, expires_in: int = 3600, content_type: Optional[str] = None
    ) -> str:
        ...


def arch_media_prefix(arch_id: str) -> str:
    return f"arches/{arch_id}/media/"


def media_path(arch_id: str, filename: str) -> str:
    """Unique object key for an upload into an arch's media folder."""
    base = _UNSAFE_FILENAME.sub("_", posixpath.basename(filename or "")).strip("._")
    return f"{arch_media_prefix(arch_id)}{uuid.uuid4().hex}_{base or 'upload'}"


def arch_id_from_path(path: str) -> Optional[str]:
    """Return the arch id of a media key, or None for keys outside any arch."""
    normalized = posixpath.normpath(path or "")
    if normalized != path:
        return None
    parts = normalized.split("/")
    if len(parts) < 4 or parts[0] != "arches" or parts[2] != "media":
        return None
    return parts[1]


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def presign_put(
        self, path: str, expires_in: int = 3600, content_type: Optional[str] = None
    ) -> str:
        return f"{self.base_url}/{path}?op=put&expires={expires_in}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client for the media bucket.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )

    def presign_put(
        self, path: str, expires_in: int = 3600, content_type: Optional[str] = None
    ) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="put_object",
            Params={
                "Bucket": self.bucket,
                "Key": path,
                "ContentType": content_type or "application/octet-stream",
            },
            ExpiresIn=expires_in,
        )
