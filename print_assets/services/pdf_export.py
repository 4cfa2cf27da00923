from __future__ import annotations

import io
import logging

from pdfrw import PdfReader
from PIL import Image
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen.canvas import Canvas

from print_assets.errors import EncodingError, ExportError, ValidationError
from print_assets.utils.raster import encode_jpeg, open_image
from print_assets.utils.units import cm_to_pt, cm_to_px, is_finite_number

DEFAULT_PAGE_MARGIN_CM = 1.0
PDF_JPEG_QUALITY = 88
PAGE_SIZE_TOLERANCE_PT = 0.01

logger = logging.getLogger(__name__)


def page_size_cm(w_cm: float, h_cm: float, page_margin_cm: float = DEFAULT_PAGE_MARGIN_CM) -> tuple[float, float]:
    # The margin is paper, added outside whatever bleed the raster already has.
    return float(w_cm) + 2 * float(page_margin_cm), float(h_cm) + 2 * float(page_margin_cm)


def pdf_page_size_pt(pdf_bytes: bytes) -> tuple[float, float]:
    if not pdf_bytes or pdf_bytes[:5] != b"%PDF-":
        raise ExportError("invalid_pdf_output", details={"reason": "expected %PDF- header"})
    pdf = PdfReader(fdata=pdf_bytes)
    if not pdf.pages:
        raise ExportError("invalid_pdf_output", details={"reason": "no pages"})
    mb = pdf.pages[0].MediaBox
    if not mb or len(mb) != 4:
        raise ExportError("invalid_pdf_output", details={"reason": "MediaBox missing"})
    w = float(mb[2]) - float(mb[0])
    h = float(mb[3]) - float(mb[1])
    return w, h


def _check_inputs(w_cm: float, h_cm: float, page_margin_cm: float) -> None:
    for name, value in (("w_cm", w_cm), ("h_cm", h_cm)):
        if not is_finite_number(value) or float(value) <= 0:
            raise ValidationError("invalid_number", stage="exporting", details={"field": name, "value": value})
    if not is_finite_number(page_margin_cm) or float(page_margin_cm) < 0:
        raise ValidationError(
            "invalid_number", stage="exporting", details={"field": "page_margin_cm", "value": page_margin_cm}
        )


def export_pdf(
    print_raster: bytes,
    w_cm: float,
    h_cm: float,
    page_margin_cm: float = DEFAULT_PAGE_MARGIN_CM,
) -> bytes:
    _check_inputs(w_cm, h_cm, page_margin_cm)

    page_w_cm, page_h_cm = page_size_cm(w_cm, h_cm, page_margin_cm)
    page_w_pt = cm_to_pt(page_w_cm)
    page_h_pt = cm_to_pt(page_h_cm)
    out_w_px = cm_to_px(page_w_cm)
    out_h_px = cm_to_px(page_h_cm)

    try:
        img = open_image(print_raster, stage="exporting").convert("RGB")
        stretched = img.resize((out_w_px, out_h_px), resample=Image.Resampling.LANCZOS)
        page_jpg = encode_jpeg(stretched, quality=PDF_JPEG_QUALITY, subsampling="4:4:4", stage="exporting")
    except EncodingError as e:
        raise ExportError(e.message, details=e.details) from e

    logger.info(
        "PDF_EXPORT",
        extra={
            "w_cm": float(w_cm),
            "h_cm": float(h_cm),
            "page_margin_cm": float(page_margin_cm),
            "page_w_pt": page_w_pt,
            "page_h_pt": page_h_pt,
            "out_w_px": out_w_px,
            "out_h_px": out_h_px,
        },
    )

    out = io.BytesIO()
    try:
        # invariant=1 drops timestamps and random ids so equal inputs give equal bytes.
        canvas = Canvas(out, pagesize=(page_w_pt, page_h_pt), invariant=1)
        canvas.drawImage(ImageReader(io.BytesIO(page_jpg)), 0.0, 0.0, width=page_w_pt, height=page_h_pt)
        canvas.showPage()
        canvas.save()
    except Exception as e:
        raise ExportError("pdf_render_failed", details={"error": str(e)}) from e

    pdf_bytes = out.getvalue()
    got_w_pt, got_h_pt = pdf_page_size_pt(pdf_bytes)
    if abs(got_w_pt - page_w_pt) > PAGE_SIZE_TOLERANCE_PT or abs(got_h_pt - page_h_pt) > PAGE_SIZE_TOLERANCE_PT:
        raise ExportError(
            "pdf_page_size_mismatch",
            details={"expected_pt": [page_w_pt, page_h_pt], "got_pt": [got_w_pt, got_h_pt]},
        )
    return pdf_bytes
