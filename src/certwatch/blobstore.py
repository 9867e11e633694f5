"""Key/value blob storage backing the config object, watermark file and artifacts."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class BlobNotFoundError(KeyError):
    """The requested key does not exist in the store."""


class BlobStore(Protocol):
    """Operations certwatch needs from a blob store."""

    async def get(self, key: str) -> bytes:
        ...

    async def put(self, key: str, data: bytes) -> None:
        ...


class LocalBlobStore:
    """
    Blob store backed by a directory ("bucket") on the local filesystem.

    Keys map to relative paths; "/" in a key creates subdirectories. Writes go
    to a temporary file in the target directory and are renamed into place,
    so readers never see a half-written object.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        root = self.root.resolve()
        if root not in path.parents:
            raise ValueError(f"Key escapes bucket root: {key!r}")
        return path

    def _read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(key) from e

    def _write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    async def get(self, key: str) -> bytes:
        """
        Read an object.

        Raises:
            BlobNotFoundError: if the key does not exist
            OSError: on any other filesystem failure
        """
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, data: bytes) -> None:
        """Atomically create or replace an object."""
        await asyncio.to_thread(self._write, key, data)
        logger.debug(f"Wrote {len(data)} bytes to {self.root}/{key}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(root='{self.root}')"


class BlobStoreError(OSError):
    """A remote store rejected or failed a request."""


class S3BlobStore:
    """
    Blob store backed by an S3 bucket.

    Keys are used verbatim as object keys. Credentials and region come from
    the usual boto3 chain (environment, shared config, instance role).
    `endpoint_url` points the client at an S3-compatible service.
    """

    NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

    def __init__(self, bucket: str, endpoint_url: Optional[str] = None, client=None):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self._client = client

    @property
    def client(self):
        """boto3 S3 client (lazy initialization)."""
        if self._client is None:
            kwargs = {}
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def _read(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if error.get("Code") in self.NOT_FOUND_CODES or status == 404:
                raise BlobNotFoundError(key) from e
            raise BlobStoreError(f"get s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"get s3://{self.bucket}/{key}: {e}") from e

    def _write(self, key: str, data: bytes) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"put s3://{self.bucket}/{key}: {e}") from e

    async def get(self, key: str) -> bytes:
        """
        Read an object.

        Raises:
            BlobNotFoundError: if the key does not exist
            BlobStoreError: on any other S3 failure
        """
        return await asyncio.to_thread(self._read, key)

    async def put(self, key: str, data: bytes) -> None:
        """
        Create or replace an object. S3 puts are atomic per object.

        Raises:
            BlobStoreError: if S3 rejects the write
        """
        await asyncio.to_thread(self._write, key, data)
        logger.debug(f"Wrote {len(data)} bytes to s3://{self.bucket}/{key}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(bucket='{self.bucket}')"


def open_blob_store(bucket: str, endpoint_url: Optional[str] = None) -> BlobStore:
    """
    Open the store named by CERT_MONITOR_BUCKET.

    A plain bucket name selects S3. A value starting with "file://" or
    containing a path separator selects a local directory; S3 bucket names
    never contain "/".
    """
    if bucket.startswith("file://"):
        return LocalBlobStore(bucket[len("file://"):])
    if "/" in bucket or os.sep in bucket:
        return LocalBlobStore(bucket)
    return S3BlobStore(bucket, endpoint_url=endpoint_url)
