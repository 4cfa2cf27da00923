import logging
import os
import time
import uuid
from functools import lru_cache

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from print_assets.config import Settings, load_settings
from print_assets.errors import FinalizeError, InvalidPlacementError, ValidationError
from print_assets.schemas import DryRunRequest, DryRunResponse, FinalizeRequest, FinalizeResponse, JobResponse
from print_assets.services.compose import plan_placement
from print_assets.services.finalize import Finalizer, parse_descriptor
from print_assets.services.job_store import JobStore, build_job_store
from print_assets.services.storage import ObjectStorage

load_dotenv()

settings = load_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="print-assets")


@app.middleware("http")
async def diag_id_header(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Diag-Id", str(uuid.uuid4()))
    return response


def get_settings() -> Settings:
    return settings


@lru_cache(maxsize=1)
def get_job_store() -> JobStore:
    return build_job_store(settings)


@lru_cache(maxsize=1)
def get_storage() -> ObjectStorage:
    return ObjectStorage(settings)


def get_finalizer(
    job_store: JobStore = Depends(get_job_store),
    storage: ObjectStorage = Depends(get_storage),
    cfg: Settings = Depends(get_settings),
) -> Finalizer:
    return Finalizer(job_store, storage, cfg)


def require_internal_key(
    x_internal_key: str = Header(default="", alias="x-internal-key"),
    cfg: Settings = Depends(get_settings),
) -> None:
    if x_internal_key != cfg.INTERNAL_API_KEY:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _error_response(err: FinalizeError, diag_id: str) -> JSONResponse:
    if err.correlation_id is None:
        err.correlation_id = diag_id
    return JSONResponse(status_code=err.http_status, content=err.to_dict(), headers={"X-Diag-Id": diag_id})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder([{"type": e["type"], "loc": e["loc"], "msg": e["msg"]} for e in exc.errors()])
    missing = any(e.get("type") == "missing" for e in errors)
    err = ValidationError("missing_fields" if missing else "invalid_body", details={"errors": errors})
    logger.info("REQUEST_INVALID", extra={"path": request.url.path, "error": err.message})
    return _error_response(err, str(uuid.uuid4()))


@app.get("/health")
def health() -> dict:
    return {
        "ok": True,
        "version": os.getenv("RAILWAY_GIT_COMMIT_SHA")
        or os.getenv("GIT_COMMIT_SHA")
        or os.getenv("RENDER_GIT_COMMIT")
        or "unknown",
    }


@app.post("/finalize", response_model=FinalizeResponse, dependencies=[Depends(require_internal_key)])
def finalize_endpoint(
    payload: FinalizeRequest,
    response: Response,
    finalizer: Finalizer = Depends(get_finalizer),
    cfg: Settings = Depends(get_settings),
):
    diag_id = str(uuid.uuid4())
    response.headers["X-Diag-Id"] = diag_id
    deadline = time.monotonic() + cfg.FINALIZE_TIMEOUT_S

    try:
        artifacts = finalizer.finalize(payload.job_id, payload.render_v2, deadline=deadline, correlation_id=diag_id)
    except FinalizeError as e:
        return _error_response(e, diag_id)

    logger.info("/finalize", extra={"job_id": artifacts.job_id, "diag_id": diag_id, "already": artifacts.already_finalized})
    return FinalizeResponse(
        job_id=artifacts.job_id,
        already=artifacts.already_finalized,
        diag_id=diag_id,
        paths=artifacts.paths or None,
        **artifacts.urls(),
    )


@app.get("/jobs/{job_id}", response_model=JobResponse, dependencies=[Depends(require_internal_key)])
def job_endpoint(job_id: str, job_store: JobStore = Depends(get_job_store)) -> JobResponse:
    job = job_store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="job_not_found")
    return JobResponse(job=job.to_dict())


@app.post("/render/dryrun", response_model=DryRunResponse, dependencies=[Depends(require_internal_key)])
def dryrun_endpoint(payload: DryRunRequest, response: Response):
    diag_id = str(uuid.uuid4())
    response.headers["X-Diag-Id"] = diag_id
    try:
        render = parse_descriptor(payload.render_v2)
    except FinalizeError as e:
        return _error_response(e, diag_id)

    geometry = plan_placement(render)
    if not geometry.is_visible:
        return _error_response(InvalidPlacementError(geometry), diag_id)
    return DryRunResponse(diag_id=diag_id, geometry=geometry.to_dict())
