from __future__ import annotations

import logging
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from print_assets.config import Settings
from print_assets.errors import SourceFetchError, UploadError

logger = logging.getLogger(__name__)


def s3_client(settings: Settings):
    session = boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY_ID,
        aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
        region_name=settings.S3_REGION or None,
    )

    # For S3-compatible endpoints, boto3 expects endpoint_url.
    endpoint_url = settings.S3_ENDPOINT or None
    return session.client("s3", endpoint_url=endpoint_url)


class ObjectStorage:
    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = s3_client(self.settings)
        return self._client

    def public_url(self, path: str) -> str:
        key = str(path).lstrip("/")
        if self.settings.PUBLIC_BASE_URL:
            return f"{self.settings.PUBLIC_BASE_URL}/{key}"
        if self.settings.S3_ENDPOINT:
            return f"{self.settings.S3_ENDPOINT.rstrip('/')}/{self.settings.S3_BUCKET}/{key}"
        return f"https://{self.settings.S3_BUCKET}.s3.{self.settings.S3_REGION}.amazonaws.com/{key}"

    def read_bytes(self, ref: str) -> bytes:
        ref = str(ref or "").strip()
        if not ref:
            raise SourceFetchError("missing_original_ref")

        p = Path(ref)
        try:
            if p.exists() and p.is_file():
                data = p.read_bytes()
            else:
                obj = self.client.get_object(Bucket=self.settings.S3_BUCKET, Key=ref.lstrip("/"))
                data = obj["Body"].read()
        except (ClientError, BotoCoreError, OSError) as e:
            raise SourceFetchError("download_failed", details={"ref": ref, "error": str(e)}) from e

        if not data:
            raise SourceFetchError("empty_source", details={"ref": ref})
        return data

    def upsert_write(self, path: str, data: bytes, content_type: str) -> str:
        key = str(path).lstrip("/")
        try:
            # put_object replaces any existing object at the key.
            self.client.put_object(
                Bucket=self.settings.S3_BUCKET,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise UploadError("upload_failed", details={"path": key, "error": str(e)}) from e
        logger.info("UPLOADED", extra={"path": key, "bytes": len(data), "content_type": content_type})
        return self.public_url(key)
