"""Tests for promptcanvas.core.object_store: the S3 adapter.

Tests cover:
- put/get/delete/exists against the in-memory S3 client.
- The StoreResult distinction between missing objects and backend errors.
- Soft failure: backend exceptions never escape the adapter.
- Client construction from configuration.
"""

from __future__ import annotations

import asyncio
import io
from unittest import mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from promptcanvas.core.config import PromptCanvasConfig
from promptcanvas.core.object_store import (
    StorageNotConfiguredError,
    StoreStatus,
    create_s3_client,
)


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


class TestPutAndGet:
    """Writes and reads."""

    def test_put_then_get(self, object_store, s3_client):
        """Stored bytes come back unchanged with the given content type."""
        assert asyncio.run(object_store.put("a/b.jpg", b"bytes", "image/jpeg")) is True
        assert asyncio.run(object_store.get("a/b.jpg")) == b"bytes"
        assert s3_client.content_type("a/b.jpg") == "image/jpeg"

    def test_put_overwrites(self, object_store):
        """A second put to the same key replaces the contents."""
        asyncio.run(object_store.put("k", b"one", "text/plain"))
        asyncio.run(object_store.put("k", b"two", "text/plain"))
        assert asyncio.run(object_store.get("k")) == b"two"

    def test_get_missing_returns_none(self, object_store):
        """Reading an absent key is not an error."""
        assert asyncio.run(object_store.get("missing")) is None

    def test_put_failure_returns_false(self, object_store, s3_client):
        """A backend failure on put is reported, not raised."""
        s3_client.failures["put_object"] = _client_error("AccessDenied")
        assert asyncio.run(object_store.put("k", b"x", "text/plain")) is False

    def test_put_connection_failure_returns_false(self, object_store, s3_client):
        s3_client.failures["put_object"] = EndpointConnectionError(endpoint_url="https://r2")
        assert asyncio.run(object_store.put("k", b"x", "text/plain")) is False

    def test_uses_configured_bucket(self, object_store, s3_client):
        asyncio.run(object_store.put("k", b"x", "text/plain"))
        assert ("test-bucket", "k") in s3_client.objects


class TestFetch:
    """StoreResult outcomes."""

    def test_fetch_ok(self, object_store):
        asyncio.run(object_store.put("k", b"x", "text/plain"))
        result = asyncio.run(object_store.fetch("k"))
        assert result.status is StoreStatus.OK
        assert result.ok
        assert result.data == b"x"

    def test_fetch_missing(self, object_store):
        """A NoSuchKey error is a soft miss."""
        result = asyncio.run(object_store.fetch("missing"))
        assert result.status is StoreStatus.MISSING
        assert result.data is None

    def test_fetch_backend_error(self, object_store, s3_client):
        """Other client errors are reported as ERROR with a message."""
        s3_client.failures["get_object"] = _client_error("InternalError")
        result = asyncio.run(object_store.fetch("k"))
        assert result.status is StoreStatus.ERROR
        assert result.error

    def test_fetch_unexpected_exception(self, object_store, s3_client):
        s3_client.failures["get_object"] = RuntimeError("socket closed")
        result = asyncio.run(object_store.fetch("k"))
        assert result.status is StoreStatus.ERROR
        assert "socket closed" in result.error

    def test_body_closed_after_read(self, object_store, s3_client):
        """The streaming body is released once its bytes are read."""
        body = io.BytesIO(b"x")
        s3_client.get_object = lambda Bucket, Key: {"Body": body}

        assert asyncio.run(object_store.fetch("k")).data == b"x"
        assert body.closed

    def test_body_closed_when_read_fails(self, object_store, s3_client):
        body = mock.Mock()
        body.read.side_effect = RuntimeError("connection reset")
        s3_client.get_object = lambda Bucket, Key: {"Body": body}

        result = asyncio.run(object_store.fetch("k"))

        assert result.status is StoreStatus.ERROR
        body.close.assert_called_once_with()

    def test_get_collapses_error_to_none(self, object_store, s3_client):
        s3_client.failures["get_object"] = _client_error("InternalError")
        assert asyncio.run(object_store.get("k")) is None


class TestDelete:
    """Best-effort deletion."""

    def test_delete_existing(self, object_store, s3_client):
        asyncio.run(object_store.put("k", b"x", "text/plain"))
        assert asyncio.run(object_store.delete("k")) is True
        assert "k" not in s3_client.keys()

    def test_delete_missing_is_success(self, object_store):
        """Deleting a key that does not exist does not fail."""
        assert asyncio.run(object_store.delete("never-written")) is True

    def test_delete_missing_error_code_is_success(self, object_store, s3_client):
        s3_client.failures["delete_object"] = _client_error("NoSuchKey")
        assert asyncio.run(object_store.delete("k")) is True

    def test_delete_failure_returns_false(self, object_store, s3_client):
        s3_client.failures["delete_object"] = _client_error("AccessDenied")
        assert asyncio.run(object_store.delete("k")) is False


class TestExists:
    """Existence probe used for deduplication."""

    def test_exists_true(self, object_store):
        asyncio.run(object_store.put("k", b"x", "text/plain"))
        assert asyncio.run(object_store.exists("k")) is True

    def test_exists_false_when_missing(self, object_store):
        assert asyncio.run(object_store.exists("k")) is False

    @pytest.mark.parametrize(
        "failure",
        [_client_error("AccessDenied"), _client_error("500"), RuntimeError("boom")],
    )
    def test_ambiguous_failure_counts_as_absent(self, object_store, s3_client, failure):
        """Any failure other than not-found is treated as does-not-exist."""
        asyncio.run(object_store.put("k", b"x", "text/plain"))
        s3_client.failures["head_object"] = failure
        assert asyncio.run(object_store.exists("k")) is False


class TestCreateS3Client:
    """boto3 client construction."""

    def test_unconfigured_raises(self):
        cfg = PromptCanvasConfig(_env_file=None, r2_bucket_name="")
        with pytest.raises(StorageNotConfiguredError):
            create_s3_client(cfg)

    def test_builds_r2_client(self, storage_config):
        """The client points at the account R2 endpoint with the configured keys."""
        with mock.patch("boto3.client") as client_factory:
            create_s3_client(storage_config)

        client_factory.assert_called_once_with(
            "s3",
            region_name="auto",
            endpoint_url="https://test-account.r2.cloudflarestorage.com",
            aws_access_key_id="test-access-key",
            aws_secret_access_key="test-secret",
        )

    def test_explicit_endpoint_wins(self, storage_config):
        cfg = storage_config.model_copy(update={"r2_endpoint_url": "http://localhost:9000"})
        with mock.patch("boto3.client") as client_factory:
            create_s3_client(cfg)
        assert client_factory.call_args.kwargs["endpoint_url"] == "http://localhost:9000"
