"""
Shared fixtures for print_assets tests.

The app module reads its settings at import time, so the environment is
populated here before anything imports print_assets.main.
"""

import hashlib
import io
import os

import pytest
from botocore.exceptions import ClientError
from PIL import Image

os.environ.setdefault("INTERNAL_API_KEY", "test-key")
os.environ.setdefault("S3_BUCKET", "test-bucket")
os.environ.setdefault("S3_REGION", "us-east-1")
os.environ.setdefault("S3_ACCESS_KEY_ID", "test")
os.environ.setdefault("S3_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("JOB_STORE", "memory")

from print_assets.config import Settings  # noqa: E402
from print_assets.models import PrintJob  # noqa: E402
from print_assets.services.job_store import InMemoryJobStore  # noqa: E402
from print_assets.services.storage import ObjectStorage  # noqa: E402

SOURCE_KEY = "original/2025/01/my-cat-3x2-classic-deadbeef.png"


def client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeS3Client:
    """Dict-backed stand-in for the handful of S3 calls the service makes."""

    def __init__(self):
        self.objects = {}
        self.put_calls = []
        self.fail_put_on = None

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise client_error("NoSuchKey")
        body, _content_type = self.objects[Key]
        return {"Body": io.BytesIO(body), "ETag": self._etag(body)}

    def put_object(self, Bucket, Key, Body, ContentType, IfMatch=None):
        self.put_calls.append({"Key": Key, "ContentType": ContentType, "IfMatch": IfMatch})
        if self.fail_put_on is not None and self.fail_put_on(Key):
            raise client_error("InternalError", "PutObject")
        if IfMatch is not None:
            current = self.objects.get(Key)
            if current is None or self._etag(current[0]) != IfMatch:
                raise client_error("PreconditionFailed", "PutObject")
        self.objects[Key] = (bytes(Body), ContentType)
        return {"ETag": self._etag(bytes(Body))}

    @staticmethod
    def _etag(body: bytes) -> str:
        return '"' + hashlib.md5(body).hexdigest() + '"'


def make_image_bytes(size=(60, 40), color=(255, 0, 0), fmt="PNG", mode="RGB") -> bytes:
    img = Image.new(mode, size, color)
    out = io.BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


def make_split_image_bytes(size=(80, 40), left=(255, 0, 0), right=(0, 0, 255)) -> bytes:
    w, h = size
    img = Image.new("RGB", size, right)
    img.paste(Image.new("RGB", (w // 2, h), left), (0, 0))
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def make_descriptor(**overrides) -> dict:
    desc = {
        "canvas_px": {"w": 100, "h": 100},
        "place_px": {"x": 0, "y": 0, "w": 100, "h": 100},
        "pad_px": {"x": 0, "y": 0, "w": 100, "h": 100, "radius_px": 8},
        "rotate_deg": 0,
        "bleed_mm": 2.54,
        "w_cm": 2.54,
        "h_cm": 2.54,
        "fit_mode": "cover",
        "bg_hex": None,
    }
    desc.update(overrides)
    return desc


@pytest.fixture
def settings():
    return Settings(
        APP_ENV="test",
        SERVICE_PORT=9000,
        INTERNAL_API_KEY="test-key",
        S3_BUCKET="test-bucket",
        S3_REGION="us-east-1",
        S3_ENDPOINT="",
        S3_ACCESS_KEY_ID="test",
        S3_SECRET_ACCESS_KEY="test",
        PUBLIC_BASE_URL="https://cdn.example.com",
        OUTPUT_PREFIX="outputs",
        JOBS_PREFIX="jobs",
        JOB_STORE="memory",
        PAGE_MARGIN_CM=1.0,
        FINALIZE_TIMEOUT_S=30.0,
    )


@pytest.fixture
def s3():
    client = FakeS3Client()
    client.objects[SOURCE_KEY] = (make_image_bytes((60, 40), (200, 30, 30)), "image/png")
    return client


@pytest.fixture
def storage(settings, s3):
    return ObjectStorage(settings, client=s3)


@pytest.fixture
def submitted_job():
    return PrintJob(
        job_id="job-0001",
        w_cm=2.54,
        h_cm=2.54,
        bleed_mm=2.54,
        material="Classic",
        design_name="My Cat",
        original_asset_ref=SOURCE_KEY,
    )


@pytest.fixture
def job_store(submitted_job):
    store = InMemoryJobStore()
    store.put(submitted_job)
    return store
