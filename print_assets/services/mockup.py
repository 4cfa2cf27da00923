from __future__ import annotations

import io
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple

import cairosvg
from PIL import Image, ImageChops

from print_assets.errors import EncodingError, ExportError, ValidationError
from print_assets.utils.raster import encode_png, open_image
from print_assets.utils.units import is_finite_number, round_half_away

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrokeSpec:
    inset: float
    width: float
    color: str
    dash: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class MockupConfig:
    canvas_size: int = 1080
    min_margin_px: int = 100
    max_margin_px: int = 220
    gamma: float = 0.6
    radius_ratio: float = 0.02
    min_radius_px: float = 12.0
    max_radius_px: float = 20.0
    # Largest sellable size per material, in cm. Unknown materials scale against themselves.
    reference_cm: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: {
            "classic": (140.0, 100.0),
            "pro": (140.0, 100.0),
            "glasspad": (50.0, 40.0),
        }
    )
    # Outer edge, stitched seam, inner edge.
    strokes: Tuple[StrokeSpec, ...] = (
        StrokeSpec(inset=0, width=2, color="rgba(0,0,0,0.22)"),
        StrokeSpec(inset=4, width=1.5, color="rgba(255,255,255,0.22)", dash=(3, 3)),
        StrokeSpec(inset=2, width=1, color="rgba(0,0,0,0.18)"),
    )


DEFAULT_MOCKUP_CONFIG = MockupConfig()


@dataclass(frozen=True)
class MockupLayout:
    material: str
    reference_cm: Tuple[float, float]
    area_ratio: float
    rel: float
    margin_px: int
    avail_px: int
    k: float
    target_w: int
    target_h: int
    draw_x: int
    draw_y: int
    radius_px: float

    def to_dict(self) -> dict:
        return asdict(self)


def _reference_for(material: Optional[str], w_cm: float, h_cm: float, config: MockupConfig) -> Tuple[float, float]:
    key = str(material or "").strip().lower()
    return config.reference_cm.get(key, (float(w_cm), float(h_cm)))


def mockup_margin_px(
    w_cm: float,
    h_cm: float,
    material: Optional[str],
    config: MockupConfig = DEFAULT_MOCKUP_CONFIG,
) -> int:
    return mockup_layout(w_cm, h_cm, material, config=config).margin_px


def mockup_layout(
    w_cm: float,
    h_cm: float,
    material: Optional[str],
    config: MockupConfig = DEFAULT_MOCKUP_CONFIG,
) -> MockupLayout:
    for name, value in (("w_cm", w_cm), ("h_cm", h_cm)):
        if not is_finite_number(value) or float(value) <= 0:
            raise ValidationError("invalid_number", stage="exporting", details={"field": name, "value": value})

    w_cm = float(w_cm)
    h_cm = float(h_cm)
    ref_w, ref_h = _reference_for(material, w_cm, h_cm, config)
    area_ratio = min(max((w_cm * h_cm) / (ref_w * ref_h), 0.0), 1.0)
    rel = area_ratio ** config.gamma
    # Bigger items get a thinner frame.
    margin = round_half_away(config.max_margin_px - (config.max_margin_px - config.min_margin_px) * rel)

    size = config.canvas_size
    avail = size - 2 * margin
    k = min(avail / w_cm, avail / h_cm)
    target_w = max(1, round_half_away(w_cm * k))
    target_h = max(1, round_half_away(h_cm * k))
    radius = max(config.min_radius_px, min(min(target_w, target_h) * config.radius_ratio, config.max_radius_px))

    return MockupLayout(
        material=str(material or ""),
        reference_cm=(ref_w, ref_h),
        area_ratio=area_ratio,
        rel=rel,
        margin_px=margin,
        avail_px=avail,
        k=k,
        target_w=target_w,
        target_h=target_h,
        draw_x=round_half_away((size - target_w) / 2),
        draw_y=round_half_away((size - target_h) / 2),
        radius_px=radius,
    )


def _svg_to_image(svg: str, size: Tuple[int, int]) -> Image.Image:
    png = cairosvg.svg2png(bytestring=svg.encode("utf-8"), output_width=size[0], output_height=size[1])
    img = Image.open(io.BytesIO(png)).convert("RGBA")
    if img.size != size:
        img = img.resize(size, resample=Image.Resampling.LANCZOS)
    return img


def _rounded_mask_svg(w: int, h: int, r: float) -> str:
    return (
        f'<svg width="{w}" height="{h}" viewBox="0 0 {w} {h}" xmlns="http://www.w3.org/2000/svg">'
        f'<rect x="0" y="0" width="{w}" height="{h}" rx="{r}" ry="{r}" fill="#fff"/></svg>'
    )


def _border_svg(w: int, h: int, r: float, strokes: Tuple[StrokeSpec, ...]) -> str:
    rects = []
    for s in strokes:
        rr = max(0.0, r - s.inset)
        dash = f' stroke-dasharray="{s.dash[0]} {s.dash[1]}"' if s.dash else ""
        rects.append(
            f'<rect x="{s.inset}" y="{s.inset}" width="{w - 2 * s.inset}" height="{h - 2 * s.inset}" '
            f'rx="{rr}" ry="{rr}" fill="none" stroke="{s.color}" stroke-width="{s.width}"{dash}/>'
        )
    return (
        f'<svg width="{w}" height="{h}" viewBox="0 0 {w} {h}" xmlns="http://www.w3.org/2000/svg">'
        + "".join(rects)
        + "</svg>"
    )


def render_mockup(
    print_raster: bytes,
    w_cm: float,
    h_cm: float,
    material: Optional[str],
    config: MockupConfig = DEFAULT_MOCKUP_CONFIG,
) -> bytes:
    layout = mockup_layout(w_cm, h_cm, material, config=config)
    size = (layout.target_w, layout.target_h)

    try:
        art = open_image(print_raster, stage="exporting").convert("RGBA")
    except EncodingError as e:
        raise ExportError(e.message, details=e.details) from e

    try:
        resized = art.resize(size, resample=Image.Resampling.LANCZOS)

        mask = _svg_to_image(_rounded_mask_svg(*size, layout.radius_px), size).getchannel("A")
        resized.putalpha(ImageChops.multiply(resized.getchannel("A"), mask))

        border = _svg_to_image(_border_svg(*size, layout.radius_px, config.strokes), size)
        framed = Image.alpha_composite(resized, border)

        canvas = Image.new("RGBA", (config.canvas_size, config.canvas_size), (0, 0, 0, 0))
        canvas.alpha_composite(framed, dest=(layout.draw_x, layout.draw_y))
    except (OSError, ValueError) as e:
        raise ExportError("mockup_render_failed", details={"error": str(e)}) from e

    logger.info("MOCKUP_1080", extra={"mockup": layout.to_dict()})
    return encode_png(canvas, stage="exporting")
