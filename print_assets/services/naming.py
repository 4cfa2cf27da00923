from __future__ import annotations

import re
import unicodedata
from typing import Dict, Optional

from print_assets.utils.units import round_half_away

DEFAULT_SLUG = "design"
DEFAULT_MATERIAL = "material"
MAX_SLUG_LENGTH = 80

# original/<yyyy>/<mm>/<slug>-<W>x<H>-<material>-<hash8>.<ext>
_UPLOAD_NAME_RE = re.compile(r"^(.*?)-\d+x\d+-[^-]+-[a-f0-9]{8}\.\w+$", re.IGNORECASE)


def slugify_name(value: Optional[str]) -> str:
    s = unicodedata.normalize("NFD", str(value or "")).lower()
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = re.sub(r"[^a-z0-9]+", "-", s).strip("-")
    return s[:MAX_SLUG_LENGTH].strip("-")


def size_label(w: float, h: float) -> str:
    return f"{round_half_away(float(w))}x{round_half_away(float(h))}"


def extract_slug(asset_ref: Optional[str]) -> str:
    base = str(asset_ref or "").split("?")[0].rstrip("/").split("/")[-1]
    match = _UPLOAD_NAME_RE.match(base)
    if not match:
        return DEFAULT_SLUG
    return slugify_name(match.group(1)) or DEFAULT_SLUG


def resolve_slug(*, design_name: Optional[str], descriptor_name: Optional[str], asset_ref: Optional[str]) -> str:
    for candidate in (design_name, descriptor_name):
        slug = slugify_name(candidate)
        if slug:
            return slug
    return extract_slug(asset_ref)


def build_output_paths(
    *,
    job_id: str,
    slug: str,
    w_cm: float,
    h_cm: float,
    material: Optional[str],
    prefix: str = "outputs",
) -> Dict[str, str]:
    # Same inputs, same keys: re-finalizing overwrites instead of duplicating.
    size = size_label(w_cm, h_cm)
    mat = slugify_name(material) or DEFAULT_MATERIAL
    job_segment = re.sub(r"[^A-Za-z0-9_-]+", "-", str(job_id)).strip("-") or "job"
    slug = slugify_name(slug) or DEFAULT_SLUG
    root = f"{prefix.strip('/')}/" if prefix and prefix.strip("/") else ""
    return {
        "print_raster": f"{root}print/{job_segment}/{slug}-{size}-{mat}.jpg",
        "pdf": f"{root}print/{job_segment}/{slug}-{size}-{mat}.pdf",
        "mockup": f"{root}mock/{job_segment}/{slug}-1080.png",
    }
