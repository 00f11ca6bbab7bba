"""S3-compatible storage service implementation.

Uses ``boto3`` to talk to any S3-compatible object store: AWS S3,
**MinIO**, or LocalStack.  Buckets map one-to-one onto S3 buckets
(``book-covers``, ``book-pdfs``).
"""

import hashlib
import logging
from pathlib import PurePosixPath
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from libris.domain.repositories import IStorageService

logger = logging.getLogger(__name__)


class S3StorageService(IStorageService):
    """S3-compatible object-store implementation of :class:`IStorageService`.

    Parameters
    ----------
    region : str
        AWS region (default ``us-east-1``).
    endpoint_url : str | None
        Custom S3 endpoint for MinIO / LocalStack.  ``None`` = real AWS.
    aws_access_key_id / aws_secret_access_key : str | None
        Explicit credentials.  If *None* the default credential chain is used.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
    ):
        self.region = region
        self.endpoint_url = endpoint_url
        self._client = self._build_client(aws_access_key_id, aws_secret_access_key)
        self._known_buckets: set[str] = set()

    # ------------------------------------------------------------------
    # Client initialisation
    # ------------------------------------------------------------------
    def _build_client(self, access_key: Optional[str], secret_key: Optional[str]) -> Any:
        kwargs: dict[str, Any] = {"region_name": self.region}
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url
        if access_key and secret_key:
            kwargs["aws_access_key_id"] = access_key
            kwargs["aws_secret_access_key"] = secret_key
        client = boto3.client("s3", **kwargs)
        logger.info("S3 client initialised (endpoint=%s)", self.endpoint_url or "AWS")
        return client

    def _ensure_bucket(self, bucket: str) -> None:
        """Create *bucket* on first use; MinIO and LocalStack need it explicitly."""
        if bucket in self._known_buckets:
            return
        try:
            self._client.head_bucket(Bucket=bucket)
            logger.debug("Bucket '%s' already exists", bucket)
        except ClientError:
            self._client.create_bucket(Bucket=bucket)
            logger.info("Created bucket '%s'", bucket)
        self._known_buckets.add(bucket)

    # ------------------------------------------------------------------
    # Interface implementation
    # ------------------------------------------------------------------
    async def save_file(self, file_content: bytes, filename: str, bucket: str) -> str:
        """Upload *file_content* and return the object key."""
        self._ensure_bucket(bucket)
        content_hash = hashlib.sha256(file_content).hexdigest()
        key = f"{content_hash[:2]}/{content_hash}_{PurePosixPath(filename).name}"
        self._client.put_object(Bucket=bucket, Key=key, Body=file_content)
        logger.info("S3: uploaded %s/%s (%d bytes)", bucket, key, len(file_content))
        return key

    async def get_file(self, file_path: str, bucket: str) -> bytes:
        response = self._client.get_object(Bucket=bucket, Key=file_path)
        body: bytes = response["Body"].read()
        logger.debug("S3: retrieved %s/%s (%d bytes)", bucket, file_path, len(body))
        return body

    async def delete_file(self, file_path: str, bucket: str) -> bool:
        self._client.delete_object(Bucket=bucket, Key=file_path)
        logger.info("S3: deleted %s/%s", bucket, file_path)
        return True

    def public_url(self, file_path: str, bucket: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{bucket}/{file_path}"
        return f"https://{bucket}.s3.{self.region}.amazonaws.com/{file_path}"
