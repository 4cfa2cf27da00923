"""
Stage-tagged errors raised by the finalization pipeline.

    FinalizeError (base)
    ├── ValidationError        - bad descriptor or job fields (client)
    │   └── JobNotFoundError   - unknown job id
    ├── SourceFetchError       - original asset unreadable (upstream, retryable)
    ├── InvalidPlacementError  - artwork does not intersect the canvas (permanent)
    ├── EncodingError          - raster decode/encode failure
    ├── ExportError            - PDF or mockup rendering failure
    ├── UploadError            - object storage write failure
    ├── PersistError           - job record update failed after uploads
    └── FinalizeCancelledError - caller deadline passed

ConcurrentUpdateError is raised by job stores when a compare-and-swap loses;
the state machine turns it into either a replay or a PersistError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from print_assets.models import PlacementGeometry


class FinalizeError(Exception):
    stage = "internal"
    http_status = 500

    def __init__(
        self,
        message: str,
        *,
        stage: Optional[str] = None,
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage
        self.correlation_id = correlation_id
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.stage}: {self.message} | Details: {self.details}"
        return f"{self.stage}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "diag_id": self.correlation_id,
            "stage": self.stage,
            "message": self.message,
            "debug": self.details,
        }


class ValidationError(FinalizeError):
    stage = "validating"
    http_status = 400


class JobNotFoundError(ValidationError):
    http_status = 404

    def __init__(self, job_id: str, **kwargs: Any):
        super().__init__("job_not_found", details={"job_id": job_id}, **kwargs)
        self.job_id = job_id


class SourceFetchError(FinalizeError):
    stage = "fetching_source"
    http_status = 502


class InvalidPlacementError(FinalizeError):
    """The placed artwork has no visible area on the output canvas.

    Retrying with the same descriptor always fails the same way.
    """

    stage = "composing"
    http_status = 400

    def __init__(self, geometry: "PlacementGeometry", **kwargs: Any):
        super().__init__("invalid_bbox", details=geometry.to_dict(), **kwargs)
        self.geometry = geometry


class EncodingError(FinalizeError):
    stage = "composing"


class ExportError(FinalizeError):
    stage = "exporting"


class UploadError(FinalizeError):
    stage = "uploading"


class PersistError(FinalizeError):
    stage = "persisting"


class FinalizeCancelledError(FinalizeError):
    http_status = 504

    def __init__(self, stage: str, **kwargs: Any):
        super().__init__("deadline_exceeded", stage=stage, **kwargs)


class ConcurrentUpdateError(Exception):
    def __init__(self, job_id: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"job {job_id} version mismatch: expected {expected_version}, found {actual_version}"
        )
        self.job_id = job_id
        self.expected_version = expected_version
        self.actual_version = actual_version
