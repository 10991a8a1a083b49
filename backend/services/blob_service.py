"""
Blob Service

File storage for knowledge files, document templates and generated documents.
Each container is a directory (local backend) or a key prefix (S3 backend).
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, List, Optional
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError

from config.settings import settings
from exceptions import StorageError

logger = logging.getLogger(__name__)

KNOWLEDGE_CONTAINER = "knowledge"
TEMPLATES_CONTAINER = "templates"
GENERATED_DOCS_CONTAINER = "generateddocs"

CONTAINERS = (KNOWLEDGE_CONTAINER, TEMPLATES_CONTAINER, GENERATED_DOCS_CONTAINER)


def _check_name(name: str) -> str:
    """Reject names that would escape their container."""
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise StorageError(f"Invalid blob name: {name!r}", status_code=400)
    return name


def _check_container(container: str) -> str:
    if container not in CONTAINERS:
        raise StorageError(f"Unknown container: {container}", status_code=404)
    return container


class BlobService(ABC):
    """Storage backend interface."""

    @abstractmethod
    async def upload(self, data: bytes, name: str, container: str) -> str:
        """Store `data` and return its path (`container/name`)."""

    @abstractmethod
    async def download(self, name: str, container: str) -> Optional[bytes]:
        """Return the blob contents, or None when it does not exist."""

    @abstractmethod
    async def list(self, container: str) -> List[str]:
        """Names of all blobs in a container."""

    @abstractmethod
    async def delete(self, name: str, container: str) -> bool:
        """Delete a blob; False when it did not exist."""

    @abstractmethod
    def url_for(self, name: str, container: str) -> str:
        """URL a client can download the blob from."""


class LocalBlobService(BlobService):
    """Filesystem backend, served by the /api/files route."""

    def __init__(self, root: str, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, name: str, container: str) -> Path:
        return self.root / _check_container(container) / _check_name(name)

    async def upload(self, data: bytes, name: str, container: str) -> str:
        path = self._path(name, container)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, data)
        except OSError as e:
            logger.error(f"Local upload failed for {container}/{name}: {e}")
            raise StorageError(f"Failed to store {name}") from e
        logger.info(f"Stored blob {container}/{name} ({len(data)} bytes)")
        return f"{container}/{name}"

    async def download(self, name: str, container: str) -> Optional[bytes]:
        path = self._path(name, container)
        if not path.is_file():
            return None
        return await asyncio.to_thread(path.read_bytes)

    async def list(self, container: str) -> List[str]:
        directory = self.root / _check_container(container)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    async def delete(self, name: str, container: str) -> bool:
        path = self._path(name, container)
        if not path.is_file():
            return False
        os.remove(path)
        return True

    def url_for(self, name: str, container: str) -> str:
        return f"{self.public_base_url}/{container}/{quote(name)}"


class S3BlobService(BlobService):
    """S3 backend. boto3 is blocking, so every call runs in a worker thread."""

    def __init__(self, bucket: str, region: str, endpoint_url: Optional[str] = None, url_expires: int = 3600):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.url_expires = url_expires
        self._client: Any = None

    def _get_client(self) -> Any:
        """Lazy-initialize boto3 client."""
        if self._client is None:
            import boto3

            client_kwargs = {"region_name": self.region}
            if self.endpoint_url:
                client_kwargs["endpoint_url"] = self.endpoint_url
            self._client = boto3.client("s3", **client_kwargs)
        return self._client

    @staticmethod
    def _key(name: str, container: str) -> str:
        return f"{_check_container(container)}/{_check_name(name)}"

    async def upload(self, data: bytes, name: str, container: str) -> str:
        key = self._key(name, container)
        try:
            await asyncio.to_thread(
                self._get_client().put_object, Bucket=self.bucket, Key=key, Body=data
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageError(f"Failed to store {name}") from e
        logger.info(f"Stored blob s3://{self.bucket}/{key} ({len(data)} bytes)")
        return key

    async def download(self, name: str, container: str) -> Optional[bytes]:
        key = self._key(name, container)

        def _get() -> Optional[bytes]:
            try:
                response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                    return None
                raise
            return response["Body"].read()

        try:
            return await asyncio.to_thread(_get)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 download failed for {key}: {e}")
            raise StorageError(f"Failed to read {name}") from e

    async def list(self, container: str) -> List[str]:
        prefix = f"{_check_container(container)}/"

        def _list() -> List[str]:
            paginator = self._get_client().get_paginator("list_objects_v2")
            names = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    names.append(obj["Key"][len(prefix):])
            return sorted(n for n in names if n)

        try:
            return await asyncio.to_thread(_list)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 list failed for {prefix}: {e}")
            raise StorageError(f"Failed to list {container}") from e

    async def delete(self, name: str, container: str) -> bool:
        key = self._key(name, container)
        try:
            await asyncio.to_thread(self._get_client().delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 delete failed for {key}: {e}")
            raise StorageError(f"Failed to delete {name}") from e
        return True

    def url_for(self, name: str, container: str) -> str:
        return self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": self._key(name, container)},
            ExpiresIn=self.url_expires,
        )


_blob_service: Optional[BlobService] = None


def get_blob_service() -> BlobService:
    """Process-wide blob backend chosen by BLOB_BACKEND."""
    global _blob_service
    if _blob_service is None:
        if settings.BLOB_BACKEND == "s3":
            _blob_service = S3BlobService(
                bucket=settings.S3_BUCKET,
                region=settings.S3_REGION,
                endpoint_url=settings.S3_ENDPOINT_URL,
                url_expires=settings.S3_URL_EXPIRES_SECONDS,
            )
        else:
            _blob_service = LocalBlobService(settings.BLOB_LOCAL_ROOT, settings.BLOB_PUBLIC_BASE_URL)
        logger.info(f"Blob backend: {settings.BLOB_BACKEND}")
    return _blob_service
