"""Tests for S3ObjectStore against a mocked boto3 client."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from dbvault.errors import StorageMutationError
from dbvault.storage.s3 import S3ObjectStore


def _client_error(code, operation="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def store(s3_client):
    return S3ObjectStore("backups-bucket", client=s3_client)


class TestS3ObjectStore:
    @pytest.mark.asyncio
    async def test_put_passes_metadata_and_content_type(self, store, s3_client):
        obj = await store.put("backups/db-1/1.sql", b"sql", {"database_id": "db-1"}, "application/sql")

        s3_client.put_object.assert_called_once_with(
            Bucket="backups-bucket",
            Key="backups/db-1/1.sql",
            Body=b"sql",
            Metadata={"database_id": "db-1"},
            ContentType="application/sql",
        )
        assert obj.size == 3

    @pytest.mark.asyncio
    async def test_get_reads_body(self, store, s3_client):
        body = MagicMock()
        body.read.return_value = b"CREATE TABLE t;"
        s3_client.get_object.return_value = {
            "Body": body,
            "ContentLength": 15,
            "Metadata": {"database_name": "main"},
            "ContentType": "application/sql",
        }

        obj = await store.get("backups/db-1/1.sql")

        assert obj.body == b"CREATE TABLE t;"
        assert obj.metadata == {"database_name": "main"}

    @pytest.mark.asyncio
    async def test_missing_key_returns_none(self, store, s3_client):
        s3_client.get_object.side_effect = _client_error("NoSuchKey")
        s3_client.head_object.side_effect = _client_error("404", "HeadObject")

        assert await store.get("backups/db-1/404.sql") is None
        assert await store.head("backups/db-1/404.sql") is None

    @pytest.mark.asyncio
    async def test_other_client_errors_propagate(self, store, s3_client):
        s3_client.get_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(ClientError):
            await store.get("backups/db-1/1.sql")

    @pytest.mark.asyncio
    async def test_delete_failure_is_storage_error(self, store, s3_client):
        s3_client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")
        with pytest.raises(StorageMutationError):
            await store.delete("backups/db-1/1.sql")

    @pytest.mark.asyncio
    async def test_list_collects_metadata_from_head(self, store, s3_client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "backups/db-1/1.sql", "Size": 3}]},
            {"Contents": [{"Key": "backups/db-1/2.sql", "Size": 4}]},
        ]
        s3_client.get_paginator.return_value = paginator
        s3_client.head_object.return_value = {"Metadata": {"source": "manual"}}

        objects = await store.list("backups/db-1/")

        assert [o.key for o in objects] == ["backups/db-1/1.sql", "backups/db-1/2.sql"]
        assert objects[0].metadata == {"source": "manual"}
        paginator.paginate.assert_called_once_with(Bucket="backups-bucket", Prefix="backups/db-1/")

    @pytest.mark.asyncio
    async def test_available(self, store, s3_client):
        assert await store.available() is True
        s3_client.head_bucket.side_effect = _client_error("403", "HeadBucket")
        assert await store.available() is False
