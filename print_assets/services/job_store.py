from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from print_assets.config import Settings
from print_assets.errors import ConcurrentUpdateError
from print_assets.models import PrintJob
from print_assets.services.storage import s3_client

logger = logging.getLogger(__name__)

_CAS_CONFLICT_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412", "409"}


class JobStore(ABC):
    """Read-by-id and optimistic conditional update of print jobs."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[PrintJob]:
        """Return the job, or None when it does not exist."""

    @abstractmethod
    def put(self, job: PrintJob) -> PrintJob:
        """Store the job unconditionally."""

    @abstractmethod
    def compare_and_swap(self, job_id: str, expected_version: int, **changes: Any) -> PrintJob:
        """Apply ``changes`` only if the stored job is still at ``expected_version``.

        The stored version is bumped by one. Raises ConcurrentUpdateError when
        another writer got there first (or the job vanished).
        """


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._jobs: Dict[str, PrintJob] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[PrintJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def put(self, job: PrintJob) -> PrintJob:
        with self._lock:
            self._jobs[job.job_id] = job
        return job

    def compare_and_swap(self, job_id: str, expected_version: int, **changes: Any) -> PrintJob:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None or current.version != expected_version:
                raise ConcurrentUpdateError(job_id, expected_version, current.version if current else None)
            updated = current.with_changes(version=current.version + 1, **changes)
            self._jobs[job_id] = updated
            return updated


class S3JobStore(JobStore):
    """One canonical JSON document per job; writes are guarded by ETag (If-Match)."""

    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = s3_client(self.settings)
        return self._client

    def _key(self, job_id: str) -> str:
        prefix = self.settings.JOBS_PREFIX.strip("/")
        return f"{prefix}/{job_id}.json" if prefix else f"{job_id}.json"

    @staticmethod
    def _encode(job: PrintJob) -> bytes:
        return json.dumps(job.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    def _read(self, job_id: str) -> Tuple[Optional[PrintJob], Optional[str]]:
        try:
            obj = self.client.get_object(Bucket=self.settings.S3_BUCKET, Key=self._key(job_id))
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in {"NoSuchKey", "404", "NotFound"}:
                return None, None
            raise
        meta = json.loads(obj["Body"].read().decode("utf-8"))
        return PrintJob.from_dict(meta), obj.get("ETag")

    def get(self, job_id: str) -> Optional[PrintJob]:
        job, _etag = self._read(job_id)
        return job

    def put(self, job: PrintJob) -> PrintJob:
        self.client.put_object(
            Bucket=self.settings.S3_BUCKET,
            Key=self._key(job.job_id),
            Body=self._encode(job),
            ContentType="application/json",
        )
        return job

    def compare_and_swap(self, job_id: str, expected_version: int, **changes: Any) -> PrintJob:
        current, etag = self._read(job_id)
        if current is None or current.version != expected_version:
            raise ConcurrentUpdateError(job_id, expected_version, current.version if current else None)

        updated = current.with_changes(version=current.version + 1, **changes)
        try:
            self.client.put_object(
                Bucket=self.settings.S3_BUCKET,
                Key=self._key(job_id),
                Body=self._encode(updated),
                ContentType="application/json",
                IfMatch=etag,
            )
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _CAS_CONFLICT_CODES:
                logger.warning("JOB_CAS_CONFLICT", extra={"job_id": job_id, "expected_version": expected_version})
                raise ConcurrentUpdateError(job_id, expected_version, None) from e
            raise
        return updated


def build_job_store(settings: Settings) -> JobStore:
    if settings.JOB_STORE == "memory":
        return InMemoryJobStore()
    return S3JobStore(settings)
