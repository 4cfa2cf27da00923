from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Optional


class JobStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    ASSETS_READY = "ASSETS_READY"
    READY_FOR_PRINT = "READY_FOR_PRINT"


URL_FIELDS = ("print_raster_url", "pdf_url", "preview_url")


@dataclass(frozen=True)
class PrintJob:
    job_id: str
    status: JobStatus = JobStatus.SUBMITTED
    w_cm: Optional[float] = None
    h_cm: Optional[float] = None
    bleed_mm: Optional[float] = None
    material: Optional[str] = None
    design_name: Optional[str] = None
    original_asset_ref: Optional[str] = None
    print_raster_url: Optional[str] = None
    pdf_url: Optional[str] = None
    preview_url: Optional[str] = None
    version: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.status, JobStatus):
            object.__setattr__(self, "status", JobStatus(str(self.status)))
        urls = [getattr(self, name) for name in URL_FIELDS]
        if any(urls) and not all(urls):
            raise ValueError(f"job {self.job_id}: artifact URLs must be all set or all empty")

    @property
    def is_finalized(self) -> bool:
        return self.status is JobStatus.READY_FOR_PRINT and all(getattr(self, n) for n in URL_FIELDS)

    def with_changes(self, **changes: Any) -> "PrintJob":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrintJob":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class PlacementGeometry:
    canvas_px: Dict[str, float]
    place_px: Dict[str, float]
    inner_w_px: int
    inner_h_px: int
    bleed_px: int
    out_w_px: int
    out_h_px: int
    scale_x: float
    scale_y: float
    scale: float
    target_w: int
    target_h: int
    dest_x: int
    dest_y: int
    clip_x: int
    clip_y: int
    clip_w: int
    clip_h: int

    @property
    def is_visible(self) -> bool:
        return self.clip_w > 0 and self.clip_h > 0

    @property
    def paste_x(self) -> int:
        return max(0, self.dest_x)

    @property
    def paste_y(self) -> int:
        return max(0, self.dest_y)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CompositionResult:
    inner_buf: bytes
    print_buf: bytes
    geometry: PlacementGeometry


@dataclass(frozen=True)
class PrintArtifactSet:
    job_id: str
    print_raster_url: str
    pdf_url: str
    preview_url: str
    paths: Dict[str, str] = field(default_factory=dict)
    print_raster_sha256: Optional[str] = None
    already_finalized: bool = False

    @classmethod
    def from_job(cls, job: PrintJob) -> "PrintArtifactSet":
        return cls(
            job_id=job.job_id,
            print_raster_url=str(job.print_raster_url),
            pdf_url=str(job.pdf_url),
            preview_url=str(job.preview_url),
            already_finalized=True,
        )

    def urls(self) -> Dict[str, str]:
        return {
            "print_raster_url": self.print_raster_url,
            "pdf_url": self.pdf_url,
            "preview_url": self.preview_url,
        }
