from __future__ import annotations

import logging
import os

from PIL import Image, ImageColor

from print_assets.errors import InvalidPlacementError
from print_assets.models import CompositionResult, PlacementGeometry
from print_assets.schemas import RenderDescriptor
from print_assets.utils.raster import SOURCE_MAX_PIXELS, encode_jpeg, open_image
from print_assets.utils.units import DPI, cm_to_px, mm_to_px, round_half_away

logger = logging.getLogger(__name__)


def plan_placement(descriptor: RenderDescriptor) -> PlacementGeometry:
    # Editor pixels -> print pixels. Only the geometry, no image work.
    c = descriptor.canvas_px
    p = descriptor.place_px

    inner_w_px = cm_to_px(descriptor.w_cm, dpi=DPI)
    inner_h_px = cm_to_px(descriptor.h_cm, dpi=DPI)
    bleed_px = mm_to_px(descriptor.bleed_mm or 0.0, dpi=DPI)
    out_w_px = inner_w_px + 2 * bleed_px
    out_h_px = inner_h_px + 2 * bleed_px

    # Tighter axis governs so the editor layout is never distorted.
    scale_x = inner_w_px / float(c.w)
    scale_y = inner_h_px / float(c.h)
    scale = min(scale_x, scale_y)

    target_w = round_half_away(p.w * scale)
    target_h = round_half_away(p.h * scale)
    dest_x = bleed_px + round_half_away(p.x * scale)
    dest_y = bleed_px + round_half_away(p.y * scale)

    # Offset and size round independently, so a placement flush with the far
    # canvas edge can overshoot by 1px when both land on .5. With bleed > 0 the
    # overshoot falls in the bleed; with no bleed that pixel is clipped.
    cut_left = max(0, -dest_x)
    cut_top = max(0, -dest_y)
    cut_right = max(0, dest_x + target_w - out_w_px)
    cut_bottom = max(0, dest_y + target_h - out_h_px)

    return PlacementGeometry(
        canvas_px=c.model_dump(),
        place_px=p.model_dump(),
        inner_w_px=inner_w_px,
        inner_h_px=inner_h_px,
        bleed_px=bleed_px,
        out_w_px=out_w_px,
        out_h_px=out_h_px,
        scale_x=scale_x,
        scale_y=scale_y,
        scale=scale,
        target_w=target_w,
        target_h=target_h,
        dest_x=dest_x,
        dest_y=dest_y,
        clip_x=cut_left,
        clip_y=cut_top,
        clip_w=target_w - cut_left - cut_right,
        clip_h=target_h - cut_top - cut_bottom,
    )


def _rotate(img: Image.Image, rotate_deg: float) -> Image.Image:
    angle = float(rotate_deg or 0.0) % 360.0
    if angle == 0.0:
        return img
    # Positive angles turn clockwise like the editor; PIL turns counter-clockwise.
    if angle in (90.0, 180.0, 270.0):
        transpose = {
            90.0: Image.Transpose.ROTATE_270,
            180.0: Image.Transpose.ROTATE_180,
            270.0: Image.Transpose.ROTATE_90,
        }[angle]
        return img.transpose(transpose)
    return img.rotate(-angle, resample=Image.Resampling.BICUBIC, expand=True, fillcolor=(0, 0, 0, 0))


def compose(source_bytes: bytes, descriptor: RenderDescriptor) -> CompositionResult:
    geometry = plan_placement(descriptor)
    if os.getenv("PRINT_ASSETS_DEBUG") == "1":
        logger.info("COMPOSE_GEOMETRY", extra={"geometry": geometry.to_dict()})

    if not geometry.is_visible:
        raise InvalidPlacementError(geometry)

    src = open_image(source_bytes, stage="composing", max_pixels=SOURCE_MAX_PIXELS).convert("RGBA")
    rotated = _rotate(src, descriptor.rotate_deg)

    # Stretch-to-fill: place_px dictates the final aspect, not the source.
    resized = rotated.resize((geometry.target_w, geometry.target_h), resample=Image.Resampling.LANCZOS)
    layer = resized.crop(
        (
            geometry.clip_x,
            geometry.clip_y,
            geometry.clip_x + geometry.clip_w,
            geometry.clip_y + geometry.clip_h,
        )
    )

    # The bleed margin is always inked, even where the artwork does not reach.
    background = ImageColor.getrgb(descriptor.background_hex())
    canvas = Image.new("RGB", (geometry.out_w_px, geometry.out_h_px), background)
    canvas.paste(layer, (geometry.paste_x, geometry.paste_y), layer)

    print_buf = encode_jpeg(canvas)

    b = geometry.bleed_px
    if b == 0:
        inner_buf = print_buf
    else:
        inner = canvas.crop((b, b, b + geometry.inner_w_px, b + geometry.inner_h_px))
        inner_buf = encode_jpeg(inner)

    return CompositionResult(inner_buf=inner_buf, print_buf=print_buf, geometry=geometry)
