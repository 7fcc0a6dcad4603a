"""Shared pytest fixtures for PromptCanvas tests."""

import base64
import io
from typing import Callable

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from PIL import Image

from promptcanvas.api.main import create_app
from promptcanvas.core.config import PromptCanvasConfig
from promptcanvas.core.history import HistoryItem, HistoryLedger
from promptcanvas.core.input_store import InputImageStore
from promptcanvas.core.object_store import ObjectStore

TEST_BUCKET = "test-bucket"


def client_error(code: str, operation: str) -> ClientError:
    """Build a botocore ClientError the way the S3 client raises it."""
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client.

    Objects are kept per bucket/key.  Any method can be made to fail by
    putting an exception into ``failures`` under the method name.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str], tuple[bytes, str | None]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def _record(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        if method in self.failures:
            raise self.failures[method]

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self._record("put_object", Key)
        data = Body.encode("utf-8") if isinstance(Body, str) else bytes(Body)
        self.objects[(Bucket, Key)] = (data, ContentType)
        return {"ETag": '"fake"'}

    def get_object(self, Bucket, Key):
        self._record("get_object", Key)
        if (Bucket, Key) not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        data, content_type = self.objects[(Bucket, Key)]
        return {"Body": io.BytesIO(data), "ContentType": content_type}

    def head_object(self, Bucket, Key):
        self._record("head_object", Key)
        if (Bucket, Key) not in self.objects:
            raise client_error("404", "HeadObject")
        data, content_type = self.objects[(Bucket, Key)]
        return {"ContentLength": len(data), "ContentType": content_type}

    def delete_object(self, Bucket, Key):
        self._record("delete_object", Key)
        self.objects.pop((Bucket, Key), None)
        return {}

    # Test helpers -------------------------------------------------------

    def keys(self) -> set[str]:
        return {key for _, key in self.objects}

    def data(self, key: str) -> bytes:
        return self.objects[(TEST_BUCKET, key)][0]

    def content_type(self, key: str) -> str | None:
        return self.objects[(TEST_BUCKET, key)][1]

    def calls_for(self, method: str) -> list[str]:
        return [key for name, key in self.calls if name == method]


@pytest.fixture
def s3_client() -> FakeS3Client:
    """Empty in-memory S3 client."""
    return FakeS3Client()


@pytest.fixture
def object_store(s3_client: FakeS3Client) -> ObjectStore:
    return ObjectStore(s3_client, TEST_BUCKET)


@pytest.fixture
def ledger(object_store: ObjectStore) -> HistoryLedger:
    return HistoryLedger(object_store, limit=100)


@pytest.fixture
def input_store(object_store: ObjectStore) -> InputImageStore:
    return InputImageStore(object_store)


@pytest.fixture
def storage_config() -> PromptCanvasConfig:
    """Configuration with every storage setting present and no public URL.

    Returns:
        PromptCanvasConfig that does not read .env
    """
    return PromptCanvasConfig(
        _env_file=None,
        r2_account_id="test-account",
        r2_access_key_id="test-access-key",
        r2_secret_access_key="test-secret",
        r2_bucket_name=TEST_BUCKET,
        r2_public_url="",
        default_api_key="",
    )


@pytest.fixture
def test_client(storage_config: PromptCanvasConfig, s3_client: FakeS3Client) -> TestClient:
    """TestClient for an app wired to the in-memory S3 client."""
    return TestClient(create_app(storage_config, s3_client=s3_client))


@pytest.fixture
def unconfigured_client() -> TestClient:
    """TestClient for an app with no storage settings."""
    cfg = PromptCanvasConfig(
        _env_file=None,
        r2_account_id="",
        r2_access_key_id="",
        r2_secret_access_key="",
        r2_bucket_name="",
    )
    return TestClient(create_app(cfg))


@pytest.fixture
def png_bytes() -> bytes:
    """A small real PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (64, 32), color=(200, 40, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_uri(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


@pytest.fixture
def make_item() -> Callable[..., HistoryItem]:
    """Factory for history items with predictable ids and keys."""

    def _make(item_id: str, user_id: str = "u1", **overrides) -> HistoryItem:
        fields = {
            "id": item_id,
            "timestamp": 1_700_000_000_000,
            "prompt": f"prompt {item_id}",
            "mode": "text2img",
            "model": "test-model",
            "image_key": f"images/{user_id}/{item_id}.jpg",
        }
        fields.update(overrides)
        return HistoryItem(**fields)

    return _make


@pytest.fixture
def data_uri() -> Callable[..., str]:
    """Encode bytes as a base64 data URI."""
    return to_data_uri
