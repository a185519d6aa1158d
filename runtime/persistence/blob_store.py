import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
)

import config
from runtime.errors import SinkUnavailable
from runtime.persistence.sink_result import SinkResult

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class BlobStore:
    """
    S3-compatible object store (Cloudflare R2 in production).

    put_object / head_object return SinkResult instead of raising for
    per-object failures, so the retry wrapper treats every transport alike.
    check() raises SinkUnavailable when the bucket cannot be reached at all.
    """

    def __init__(self, client, bucket: str, cache_control: Optional[str] = None):
        self.client = client
        self.bucket = bucket
        self.cache_control = cache_control

    @classmethod
    def from_env(cls) -> "BlobStore":
        if not all([config.S3_ENDPOINT, config.S3_BUCKET, config.S3_ACCESS_KEY, config.S3_SECRET_KEY]):
            raise SinkUnavailable("blob store", "S3 configuration incomplete")

        client = boto3.client(
            "s3",
            endpoint_url=config.S3_ENDPOINT,
            aws_access_key_id=config.S3_ACCESS_KEY,
            aws_secret_access_key=config.S3_SECRET_KEY,
            region_name=config.S3_REGION,
            config=Config(signature_version="s3v4", retries={"max_attempts": 1}),
        )
        return cls(client, config.S3_BUCKET, cache_control=config.BLOB_CACHE_CONTROL)

    # -------------------------------------------------

    def check(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (EndpointConnectionError, NoCredentialsError) as e:
            raise SinkUnavailable("blob store", e) from e
        except ClientError as e:
            raise SinkUnavailable("blob store", f"bucket {self.bucket}: {e}") from e
        logger.info("[blob] bucket %s reachable", self.bucket)

    def put_object(self, key: str, body: bytes, content_type: str) -> SinkResult:
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if self.cache_control:
            params["CacheControl"] = self.cache_control
        try:
            self.client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            return SinkResult.failure(e)
        return SinkResult.success(content_length=len(body))

    def head_object(self, key: str) -> SinkResult:
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                return SinkResult(ok=False, missing=True)
            return SinkResult.failure(e)
        except BotoCoreError as e:
            return SinkResult.failure(e)
        return SinkResult.success(content_length=resp.get("ContentLength"))
