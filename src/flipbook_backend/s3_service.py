"""
S3 object store used for publication PDFs and page images.

This module provides functionality for:
- Uploading binary objects to a named bucket under a given key
- Reading objects back
- Resolving the public URL of a stored object (static base URL or presigned)

Unlike a best-effort artifact upload, every failure here is raised as
RemoteServiceError: a publish run must stop at the first storage failure.
The endpoint URL makes any S3-compatible service usable (MinIO, R2, ...).
"""

from __future__ import annotations

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import RemoteServiceError

logger = logging.getLogger(__name__)


class S3ObjectStore:
    """
    Thin wrapper around a boto3 S3 client.

    The client is created lazily so importing the application never needs
    credentials; they are only looked up on the first storage call.
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        public_base_url: Optional[str] = None,
        presign_expiration: int = 3600,
        client=None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self.region = region
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.presign_expiration = presign_expiration
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "S3ObjectStore":
        storage = settings.storage
        return cls(
            endpoint_url=storage.endpoint_url,
            region=storage.region,
            public_base_url=storage.public_base_url,
            presign_expiration=storage.presign_expiration,
        )

    def _get_client(self):
        if self._client is None:
            try:
                self._client = boto3.client(
                    "s3",
                    endpoint_url=self.endpoint_url,
                    region_name=self.region,
                )
            except BotoCoreError as e:
                raise RemoteServiceError(f"Failed to create S3 client: {e}") from e
        return self._client

    def upload_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> None:
        """
        Upload bytes to ``s3://bucket/key``.

        Raises:
            RemoteServiceError: If the upload is rejected or the service is unreachable
        """
        client = self._get_client()
        params = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type

        try:
            logger.info(f"Uploading {len(data)} bytes to s3://{bucket}/{key}")
            client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for s3://{bucket}/{key}: {e}")
            raise RemoteServiceError(f"Storage upload failed for {key}: {e}") from e

    def get_object(self, bucket: str, key: str) -> bytes:
        client = self._get_client()
        try:
            response = client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 download failed for s3://{bucket}/{key}: {e}")
            raise RemoteServiceError(f"Storage download failed for {key}: {e}") from e

    def get_public_url(self, bucket: str, key: str) -> str:
        """
        Resolve the URL a browser can load an object from.

        With a configured public base URL (public bucket, CDN) the URL is
        computed without any network call. Otherwise a presigned URL valid
        for ``presign_expiration`` seconds is generated.
        """
        if self.public_base_url:
            return f"{self.public_base_url}/{bucket}/{key}"

        client = self._get_client()
        try:
            return client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=self.presign_expiration,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to generate presigned URL for {key}: {e}")
            raise RemoteServiceError(f"Could not resolve URL for {key}: {e}") from e
