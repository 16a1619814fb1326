"""S3-compatible object store backed by boto3.

boto3 is synchronous, so every call runs in a worker thread.
"""

import asyncio
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from ..errors import StorageMutationError
from ..utils.logging import get_logger
from .base import ObjectStore, StoredObject

logger = get_logger("storage.s3")

_MISSING = {"404", "NoSuchKey", "NotFound"}


class S3ObjectStore(ObjectStore):
    name = "s3"

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
    ) -> None:
        self._bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
        )

    @staticmethod
    def _is_missing(exc: ClientError) -> bool:
        return exc.response.get("Error", {}).get("Code") in _MISSING

    async def put(self, key, content, metadata, content_type=None) -> StoredObject:
        kwargs = {"Bucket": self._bucket, "Key": key, "Body": content, "Metadata": metadata}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            await asyncio.to_thread(self._client.put_object, **kwargs)
        except ClientError as exc:
            logger.error("s3_put_failed", key=key, error=str(exc))
            raise StorageMutationError(f"Failed to store {key}: {exc}")
        return StoredObject(key=key, size=len(content), metadata=metadata, content_type=content_type)

    async def get(self, key: str) -> Optional[StoredObject]:
        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self._bucket, Key=key
            )
        except ClientError as exc:
            if self._is_missing(exc):
                return None
            raise
        body = await asyncio.to_thread(response["Body"].read)
        return StoredObject(
            key=key,
            size=response.get("ContentLength", len(body)),
            uploaded=response.get("LastModified"),
            metadata=response.get("Metadata", {}),
            content_type=response.get("ContentType"),
            body=body,
        )

    async def head(self, key: str) -> Optional[StoredObject]:
        try:
            response = await asyncio.to_thread(
                self._client.head_object, Bucket=self._bucket, Key=key
            )
        except ClientError as exc:
            if self._is_missing(exc):
                return None
            raise
        return StoredObject(
            key=key,
            size=response.get("ContentLength", 0),
            uploaded=response.get("LastModified"),
            metadata=response.get("Metadata", {}),
            content_type=response.get("ContentType"),
        )

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except ClientError as exc:
            logger.error("s3_delete_failed", key=key, error=str(exc))
            raise StorageMutationError(f"Failed to delete {key}: {exc}")

    def _list_sync(self, prefix: str) -> list[StoredObject]:
        paginator = self._client.get_paginator("list_objects_v2")
        objects = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for entry in page.get("Contents", []):
                # Custom metadata is only returned by HEAD
                head = self._client.head_object(Bucket=self._bucket, Key=entry["Key"])
                objects.append(
                    StoredObject(
                        key=entry["Key"],
                        size=entry.get("Size", 0),
                        uploaded=entry.get("LastModified"),
                        metadata=head.get("Metadata", {}),
                        content_type=head.get("ContentType"),
                    )
                )
        return objects

    async def list(self, prefix: str) -> list[StoredObject]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def available(self) -> bool:
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=self._bucket)
        except ClientError as exc:
            logger.warning("s3_bucket_unavailable", bucket=self._bucket, error=str(exc))
            return False
        return True
