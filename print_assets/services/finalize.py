from __future__ import annotations

import json
import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from print_assets.config import Settings
from print_assets.errors import (
    ConcurrentUpdateError,
    EncodingError,
    ExportError,
    FinalizeCancelledError,
    FinalizeError,
    JobNotFoundError,
    PersistError,
    SourceFetchError,
    UploadError,
    ValidationError,
)
from print_assets.models import JobStatus, PrintArtifactSet, PrintJob
from print_assets.schemas import RenderDescriptor
from print_assets.services.compose import compose
from print_assets.services.job_store import JobStore
from print_assets.services.mockup import DEFAULT_MOCKUP_CONFIG, MockupConfig, render_mockup
from print_assets.services.naming import build_output_paths, resolve_slug
from print_assets.services.pdf_export import DEFAULT_PAGE_MARGIN_CM, export_pdf, page_size_cm
from print_assets.services.storage import ObjectStorage
from print_assets.utils.hash import payload_fingerprint, sha256_hex
from print_assets.utils.units import is_finite_number

logger = logging.getLogger(__name__)

STAGES = ("validating", "fetching_source", "composing", "exporting", "uploading", "persisting")

# Unexpected exceptions inside a stage surface as that stage's error.
_STAGE_ERRORS = {
    "validating": FinalizeError,
    "fetching_source": SourceFetchError,
    "composing": EncodingError,
    "exporting": ExportError,
    "uploading": UploadError,
    "persisting": PersistError,
}

DescriptorInput = Union[RenderDescriptor, Dict[str, Any], str, None]


def parse_descriptor(raw: DescriptorInput) -> RenderDescriptor:
    if isinstance(raw, RenderDescriptor):
        return raw
    if raw is None or raw == "" or raw == {}:
        raise ValidationError("missing_fields", details={"field": "render_v2"})
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ValidationError("bad_json", details={"field": "render_v2"}) from e
    if not isinstance(raw, dict):
        raise ValidationError("missing_fields", details={"field": "render_v2"})
    try:
        return RenderDescriptor.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError("invalid_descriptor", details={"errors": json.loads(e.json(include_url=False))}) from e


def _check_job_fields(job: PrintJob) -> None:
    for name in ("w_cm", "h_cm"):
        value = getattr(job, name)
        if value is not None and (not is_finite_number(value) or float(value) <= 0):
            raise ValidationError("invalid_number", details={"field": name, "value": value})
    if job.bleed_mm is not None and (not is_finite_number(job.bleed_mm) or float(job.bleed_mm) < 0):
        raise ValidationError("invalid_number", details={"field": "bleed_mm", "value": job.bleed_mm})
    if not str(job.original_asset_ref or "").strip():
        raise ValidationError("missing_original_url", details={"job_id": job.job_id})


class Finalizer:
    """Turns a submitted job into uploaded print assets, at most once per job.

    A job that is already READY_FOR_PRINT is answered from its record without
    touching storage. Nothing is written to the job record until all three
    artifacts are uploaded, and then everything is written in one
    compare-and-swap.
    """

    def __init__(
        self,
        job_store: JobStore,
        storage: ObjectStorage,
        settings: Optional[Settings] = None,
        *,
        page_margin_cm: Optional[float] = None,
        mockup_config: MockupConfig = DEFAULT_MOCKUP_CONFIG,
    ):
        self.job_store = job_store
        self.storage = storage
        self.settings = settings
        if page_margin_cm is None:
            page_margin_cm = settings.PAGE_MARGIN_CM if settings is not None else DEFAULT_PAGE_MARGIN_CM
        self.page_margin_cm = float(page_margin_cm)
        self.output_prefix = settings.OUTPUT_PREFIX if settings is not None else "outputs"
        self.mockup_config = mockup_config

    @contextmanager
    def _stage(self, name: str, ctx: Dict[str, Any], deadline: Optional[float]) -> Iterator[None]:
        if deadline is not None and time.monotonic() >= deadline:
            raise FinalizeCancelledError(name, correlation_id=ctx["diag_id"], details={"job_id": ctx["job_id"]})
        ctx["stage"] = name
        logger.info("FINALIZE_STAGE", extra=dict(ctx))
        try:
            yield
        except FinalizeError as e:
            if e.correlation_id is None:
                e.correlation_id = ctx["diag_id"]
            logger.warning(
                "FINALIZE_FAILED",
                extra={**ctx, "error_stage": e.stage, "error": e.message, "details": e.details},
            )
            raise
        except Exception as e:
            err_cls = _STAGE_ERRORS[name]
            logger.exception("FINALIZE_FAILED", extra={**ctx, "error": str(e)})
            raise err_cls(
                f"{name}_failed", stage=name, correlation_id=ctx["diag_id"], details={"error": str(e)}
            ) from e

    def finalize(
        self,
        job_id: str,
        descriptor: DescriptorInput,
        *,
        deadline: Optional[float] = None,
        correlation_id: Optional[str] = None,
    ) -> PrintArtifactSet:
        diag_id = correlation_id or str(uuid.uuid4())
        job_id = str(job_id or "").strip()
        ctx: Dict[str, Any] = {"diag_id": diag_id, "job_id": job_id, "stage": None}

        with self._stage("validating", ctx, deadline):
            if not job_id:
                raise ValidationError("missing_job_id")
            job = self.job_store.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)

            # Replay: polling clients and retries get the stored URLs.
            if job.is_finalized:
                logger.info("FINALIZE_ALREADY", extra=dict(ctx))
                return PrintArtifactSet.from_job(job)

            render = parse_descriptor(descriptor)
            _check_job_fields(job)
            material = job.material or render.material or ""
            slug = resolve_slug(
                design_name=job.design_name,
                descriptor_name=render.design_name,
                asset_ref=job.original_asset_ref,
            )
            if job.w_cm is not None and job.h_cm is not None:
                if abs(float(job.w_cm) - render.w_cm) > 1e-6 or abs(float(job.h_cm) - render.h_cm) > 1e-6:
                    logger.warning(
                        "DESCRIPTOR_SIZE_MISMATCH",
                        extra={**ctx, "job_cm": [job.w_cm, job.h_cm], "render_cm": [render.w_cm, render.h_cm]},
                    )
            ctx["descriptor_sha256"] = payload_fingerprint(render.model_dump())

        with self._stage("fetching_source", ctx, deadline):
            source = self.storage.read_bytes(str(job.original_asset_ref))

        with self._stage("composing", ctx, deadline):
            composed = compose(source, render)

        with self._stage("exporting", ctx, deadline):
            pdf_bytes, mockup_png = self._export(composed.print_buf, render, material, deadline, ctx)

        page_w_cm, page_h_cm = page_size_cm(render.w_cm, render.h_cm, self.page_margin_cm)
        paths = build_output_paths(
            job_id=job_id,
            slug=slug,
            w_cm=page_w_cm,
            h_cm=page_h_cm,
            material=material,
            prefix=self.output_prefix,
        )

        with self._stage("uploading", ctx, deadline):
            print_raster_url = self.storage.upsert_write(paths["print_raster"], composed.print_buf, "image/jpeg")
            pdf_url = self.storage.upsert_write(paths["pdf"], pdf_bytes, "application/pdf")
            preview_url = self.storage.upsert_write(paths["mockup"], mockup_png, "image/png")

        with self._stage("persisting", ctx, deadline):
            try:
                self.job_store.compare_and_swap(
                    job_id,
                    job.version,
                    status=JobStatus.READY_FOR_PRINT,
                    print_raster_url=print_raster_url,
                    pdf_url=pdf_url,
                    preview_url=preview_url,
                )
            except ConcurrentUpdateError as e:
                winner = self.job_store.get(job_id)
                if winner is not None and winner.is_finalized:
                    # A concurrent call finished first; its record wins.
                    logger.info("FINALIZE_LOST_RACE", extra=dict(ctx))
                    return PrintArtifactSet.from_job(winner)
                raise PersistError("db_update_conflict", details={"job_id": job_id}) from e

        logger.info("FINALIZE_DONE", extra={**ctx, "paths": paths})
        return PrintArtifactSet(
            job_id=job_id,
            print_raster_url=print_raster_url,
            pdf_url=pdf_url,
            preview_url=preview_url,
            paths=paths,
            print_raster_sha256=sha256_hex(composed.print_buf),
        )

    def _export(
        self,
        print_buf: bytes,
        render: RenderDescriptor,
        material: str,
        deadline: Optional[float],
        ctx: Dict[str, Any],
    ) -> tuple[bytes, bytes]:
        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"export-{ctx['job_id'][:8]}")
        try:
            pdf_future = pool.submit(export_pdf, print_buf, render.w_cm, render.h_cm, self.page_margin_cm)
            mockup_future = pool.submit(
                render_mockup, print_buf, render.w_cm, render.h_cm, material, self.mockup_config
            )
            try:
                pdf_bytes = pdf_future.result(timeout=timeout)
                if deadline is not None:
                    timeout = max(0.0, deadline - time.monotonic())
                mockup_png = mockup_future.result(timeout=timeout)
            except FutureTimeoutError as e:
                raise FinalizeCancelledError("exporting", correlation_id=ctx["diag_id"]) from e
        finally:
            # Do not block a cancelled call on a render that is still running.
            pool.shutdown(wait=False, cancel_futures=True)
        return pdf_bytes, mockup_png

