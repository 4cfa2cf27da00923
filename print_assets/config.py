import os
from dataclasses import dataclass
from typing import Optional


def env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    value = os.getenv(key)
    if value is None or value == "":
        if required:
            raise RuntimeError(f"Missing required env var: {key}")
        return "" if default is None else str(default)
    return value


def _env_float(key: str, default: str) -> float:
    raw = env(key, default=default, required=False)
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{key} must be a number") from e


@dataclass(frozen=True)
class Settings:
    APP_ENV: str
    SERVICE_PORT: int
    INTERNAL_API_KEY: str
    S3_BUCKET: str
    S3_REGION: str
    S3_ENDPOINT: str
    S3_ACCESS_KEY_ID: str
    S3_SECRET_ACCESS_KEY: str
    PUBLIC_BASE_URL: str = ""
    OUTPUT_PREFIX: str = "outputs"
    JOBS_PREFIX: str = "jobs"
    JOB_STORE: str = "s3"
    PAGE_MARGIN_CM: float = 1.0
    FINALIZE_TIMEOUT_S: float = 120.0
    LOG_LEVEL: str = "INFO"


def load_settings() -> Settings:
    app_env = env("APP_ENV", default="development", required=False)
    service_port_raw = env("PORT", default=None, required=False) or env("SERVICE_PORT", default="9000", required=False)
    try:
        service_port = int(service_port_raw)
    except ValueError as e:
        raise RuntimeError("SERVICE_PORT must be an integer") from e

    page_margin_cm = _env_float("PAGE_MARGIN_CM", "1.0")
    if page_margin_cm < 0:
        raise RuntimeError("PAGE_MARGIN_CM must be >= 0")

    finalize_timeout_s = _env_float("FINALIZE_TIMEOUT_S", "120")
    if finalize_timeout_s <= 0:
        raise RuntimeError("FINALIZE_TIMEOUT_S must be > 0")

    job_store = env("JOB_STORE", default="s3", required=False).strip().lower()
    if job_store not in {"s3", "memory"}:
        raise RuntimeError("JOB_STORE must be 's3' or 'memory'")

    return Settings(
        APP_ENV=app_env,
        SERVICE_PORT=service_port,
        INTERNAL_API_KEY=env("INTERNAL_API_KEY", required=True),
        S3_BUCKET=env("S3_BUCKET", required=True),
        S3_REGION=env("S3_REGION", required=True),
        S3_ENDPOINT=env("S3_ENDPOINT", default="", required=False),
        S3_ACCESS_KEY_ID=env("S3_ACCESS_KEY_ID", required=True),
        S3_SECRET_ACCESS_KEY=env("S3_SECRET_ACCESS_KEY", required=True),
        PUBLIC_BASE_URL=env("PUBLIC_BASE_URL", default="", required=False).rstrip("/"),
        OUTPUT_PREFIX=env("OUTPUT_PREFIX", default="outputs", required=False).strip("/"),
        JOBS_PREFIX=env("JOBS_PREFIX", default="jobs", required=False).strip("/"),
        JOB_STORE=job_store,
        PAGE_MARGIN_CM=page_margin_cm,
        FINALIZE_TIMEOUT_S=finalize_timeout_s,
        LOG_LEVEL=env("LOG_LEVEL", default="INFO", required=False).upper(),
    )
