from unittest.mock import MagicMock

import boto3
import pytest
from botocore.stub import Stubber

from runtime.errors import SinkUnavailable
from runtime.persistence.blob_store import BlobStore


@pytest.fixture
def s3():
    client = boto3.client(
        "s3",
        endpoint_url="https://account.r2.cloudflarestorage.com",
        aws_access_key_id="test",
        aws_secret_access_key="test",
        region_name="auto",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def test_put_object_sets_content_type_and_cache_control():
    client = MagicMock()
    store = BlobStore(client, "nfts", cache_control="public, max-age=31536000, immutable")

    result = store.put_object("thumb/1.webp", b"RIFF", "image/webp")

    assert result.ok
    assert result.content_length == 4
    client.put_object.assert_called_once_with(
        Bucket="nfts",
        Key="thumb/1.webp",
        Body=b"RIFF",
        ContentType="image/webp",
        CacheControl="public, max-age=31536000, immutable",
    )


def test_put_object_failure_is_a_result(s3):
    client, stubber = s3
    stubber.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)

    result = BlobStore(client, "nfts").put_object("1.svg", b"<svg/>", "image/svg+xml")

    assert not result.ok
    assert "InternalError" in result.error


def test_head_object_present(s3):
    client, stubber = s3
    stubber.add_response("head_object", {"ContentLength": 1234}, {"Bucket": "nfts", "Key": "og/1.png"})

    result = BlobStore(client, "nfts").head_object("og/1.png")

    assert result.ok
    assert result.content_length == 1234


def test_head_object_missing(s3):
    client, stubber = s3
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)

    result = BlobStore(client, "nfts").head_object("og/404.png")

    assert not result.ok
    assert result.missing


def test_check_unreachable_bucket(s3):
    client, stubber = s3
    stubber.add_client_error("head_bucket", service_error_code="NoSuchBucket", http_status_code=404)

    with pytest.raises(SinkUnavailable):
        BlobStore(client, "nfts").check()


def test_from_env_requires_configuration(monkeypatch):
    import config

    monkeypatch.setattr(config, "S3_ENDPOINT", None)
    with pytest.raises(SinkUnavailable):
        BlobStore.from_env()
