import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")

PositiveFinite = Annotated[float, Field(gt=0, allow_inf_nan=False)]
Finite = Annotated[float, Field(allow_inf_nan=False)]


class CanvasPx(BaseModel):
    w: PositiveFinite
    h: PositiveFinite


class PlacePx(BaseModel):
    x: Finite
    y: Finite
    w: PositiveFinite
    h: PositiveFinite


class PadPx(BaseModel):
    x: Finite
    y: Finite
    w: PositiveFinite
    h: PositiveFinite
    radius_px: float = Field(default=0.0, ge=0, allow_inf_nan=False)


class RenderDescriptor(BaseModel):
    # The editor may add fields; only the geometry below is authoritative.
    model_config = ConfigDict(extra="ignore")

    canvas_px: CanvasPx
    place_px: PlacePx
    pad_px: PadPx
    rotate_deg: float = Field(default=0.0, allow_inf_nan=False)
    bleed_mm: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    w_cm: PositiveFinite
    h_cm: PositiveFinite
    fit_mode: Literal["cover", "contain", "stretch"] = "cover"
    bg_hex: str | None = None
    design_name: str | None = None
    material: str | None = None

    @field_validator("rotate_deg", "bleed_mm", mode="before")
    @classmethod
    def _null_is_zero(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("bg_hex")
    @classmethod
    def _normalize_hex(cls, v: str | None) -> str | None:
        if v is None or not str(v).strip():
            return None
        match = _HEX_RE.match(str(v).strip())
        if not match:
            raise ValueError("bg_hex must be #rgb or #rrggbb")
        value = match.group(1).lower()
        if len(value) == 3:
            value = "".join(ch * 2 for ch in value)
        return f"#{value}"

    def background_hex(self) -> str:
        if self.fit_mode == "contain" and self.bg_hex:
            return self.bg_hex
        return "#000000"


class FinalizeRequest(BaseModel):
    job_id: str
    render_v2: dict[str, Any] | str | None = None


class FinalizeResponse(BaseModel):
    ok: bool = True
    job_id: str
    already: bool
    print_raster_url: str
    pdf_url: str
    preview_url: str
    diag_id: str
    paths: dict[str, str] | None = None


class DryRunRequest(BaseModel):
    render_v2: dict[str, Any] | str


class DryRunResponse(BaseModel):
    ok: bool = True
    diag_id: str
    geometry: dict[str, Any]


class JobResponse(BaseModel):
    ok: bool = True
    job: dict[str, Any]
