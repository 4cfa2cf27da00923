import io
from typing import Optional

from PIL import Image, UnidentifiedImageError

from print_assets.errors import EncodingError, ValidationError

# Uploaded artwork keeps Pillow's stock bomb limit (it raises above twice MAX_IMAGE_PIXELS).
SOURCE_MAX_PIXELS = 2 * Image.MAX_IMAGE_PIXELS

# Our own print rasters (140x100cm at 300dpi) are larger than that and get re-opened
# for the PDF and the mockup, so the global guard is lifted to cover them.
MAX_RASTER_PIXELS = 400_000_000
Image.MAX_IMAGE_PIXELS = MAX_RASTER_PIXELS

PRINT_JPEG_QUALITY = 92


def _to_8bit(img: Image.Image) -> Image.Image:
    # 16/32-bit integer grayscale would clip to white on convert(); scale 0..65535 down to 0..255.
    if img.mode in ("I", "I;16", "I;16B", "I;16L", "I;16N"):
        return img.convert("I").point(lambda v: v * (1 / 256)).convert("L")
    return img


def open_image(data: bytes, *, stage: str = "composing", max_pixels: Optional[int] = None) -> Image.Image:
    if not data:
        raise EncodingError("empty_image", stage=stage)
    try:
        img = Image.open(io.BytesIO(data))
        if max_pixels is not None and img.width * img.height > max_pixels:
            raise ValidationError(
                "image_too_large",
                stage=stage,
                details={"width": img.width, "height": img.height, "max_pixels": max_pixels},
            )
        img.load()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
        raise EncodingError("image_decode_failed", stage=stage, details={"error": str(e)}) from e
    return _to_8bit(img)


def encode_jpeg(img: Image.Image, *, quality: int = PRINT_JPEG_QUALITY, subsampling: str | None = None, stage: str = "composing") -> bytes:
    if img.mode != "RGB":
        img = img.convert("RGB")
    params = {"quality": int(quality), "dpi": (300, 300)}
    if subsampling is not None:
        params["subsampling"] = subsampling
    out = io.BytesIO()
    try:
        img.save(out, format="JPEG", **params)
    except (OSError, ValueError) as e:
        raise EncodingError("jpeg_encode_failed", stage=stage, details={"error": str(e)}) from e
    return out.getvalue()


def encode_png(img: Image.Image, *, stage: str = "exporting") -> bytes:
    out = io.BytesIO()
    try:
        img.save(out, format="PNG")
    except (OSError, ValueError) as e:
        raise EncodingError("png_encode_failed", stage=stage, details={"error": str(e)}) from e
    return out.getvalue()
