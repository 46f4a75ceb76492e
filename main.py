## ─────────────────────────────────────────────────────────────────────────────
## main.py  —  FastAPI application
## ─────────────────────────────────────────────────────────────────────────────
import asyncio
import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import FastAPI, File, UploadFile, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool
from sqlalchemy import text
from sqlalchemy.orm import Session

from db.database import create_tables, engine, get_db
from db.crud import (
    count_analyses, count_reports, create_report,
    get_all_reports, get_latest_report, get_report,
)
from schemas import (
    DashboardResponse, HealthResponse, ReadinessResponse,
    ReportResponse, UploadResponse,
)
from uploads import MAX_UPLOAD_BYTES, UploadRejected, remove_upload, save_upload, validate_upload
from worker.celery_app import run_analysis

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")


# ── Startup / shutdown ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables on startup, retrying while the database comes up.

    The database container may not accept connections the instant the API
    starts, so table creation is retried with a non-blocking sleep. If every
    attempt fails the app still starts; the liveness check keeps answering and
    every DB-backed endpoint returns 500 with the cause logged.
    """
    logger.info("Lifespan: waiting for database to be ready...")
    last_error = None

    for attempt in range(1, 11):
        try:
            await run_in_threadpool(create_tables)    # idempotent
            logger.info(f"Tables created/verified successfully (attempt {attempt})")
            last_error = None
            break
        except Exception as e:
            last_error = e
            logger.warning(
                f"DB not ready yet (attempt {attempt}/10): {e}; retrying in 3s..."
            )
            await asyncio.sleep(3)

    if last_error:
        logger.error(
            "Could not create tables after 10 attempts. "
            "Verify the database is reachable and credentials are correct. "
            f"Last error: {last_error}"
        )

    yield
    logger.info("Lifespan ended")


# ── App factory ───────────────────────────────────────────────────────────────
app = FastAPI(
    title="Health Report Analyzer",
    description=(
        "Upload a lab report or health document (PDF, JPEG, PNG) and get an AI-extracted "
        "set of biomarkers, a 0-100 Life Score, insights and lifestyle recommendations.\n\n"
        "**Queue model:** uploads return immediately (HTTP 201) and are analysed by a "
        "Celery worker. Poll `/api/reports/{id}` until `analysis` is no longer null."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def dispatch_analysis(report_id: str, file_path: str, mime_type: str) -> None:
    """Hand a report to the Celery worker without waiting for the result."""
    run_analysis.apply_async(
        kwargs={"report_id": report_id, "file_path": file_path, "mime_type": mime_type},
        queue="analysis",
    )


# ── Health checks ─────────────────────────────────────────────────────────────
@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health():
    """Liveness check."""
    return HealthResponse(status="ok")


@app.get("/api/health/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness():
    """Readiness check: verifies database and Redis connectivity."""
    db_status = "ok"
    redis_status = "ok"

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"error: {e}"

    try:
        r = redis.Redis.from_url(REDIS_URL, socket_connect_timeout=2)
        r.ping()
    except Exception as e:
        redis_status = f"error: {e}"

    return ReadinessResponse(
        status="ok" if db_status == "ok" and redis_status == "ok" else "degraded",
        database=db_status,
        redis=redis_status,
    )


# ── Upload ────────────────────────────────────────────────────────────────────
@app.post("/api/reports/upload", response_model=UploadResponse, tags=["Reports"], status_code=201)
async def upload_report(
    file: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
):
    """
    **Upload a health document for analysis.**

    - **file**: PDF, JPEG or PNG, at most 10 MB

    The report is stored and the response returned right away; the analysis
    runs in the background. Returns the new `reportId`.
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")

    # One byte past the limit is enough to know the file is too large
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    try:
        validate_upload(content, file.content_type)
    except UploadRejected as e:
        raise HTTPException(status_code=400, detail=str(e))

    # Disk, database and broker calls are blocking; keep them off the event loop
    file_path: str | None = None
    try:
        file_path = await run_in_threadpool(save_upload, content, file.filename)
        report = await run_in_threadpool(
            create_report,
            db,
            file_name=file.filename,
            file_type=file.content_type,
            file_path=file_path,
        )
    except Exception:
        logger.exception("Error uploading report")
        await run_in_threadpool(remove_upload, file_path)
        raise HTTPException(status_code=500, detail="Failed to upload report")

    try:
        await run_in_threadpool(dispatch_analysis, report.id, file_path, file.content_type)
    except Exception:
        # The report row and file are kept; the worker's startup recovery re-enqueues it.
        logger.exception(f"[Report {report.id}] Could not enqueue analysis")

    logger.info(f"[Report {report.id}] Uploaded {file.filename} ({len(content)} bytes)")
    return UploadResponse(report_id=report.id, message="Report uploaded successfully")


# ── Queries ───────────────────────────────────────────────────────────────────
@app.get("/api/reports", response_model=list[ReportResponse], tags=["Reports"])
def list_reports(db: Session = Depends(get_db)):
    """**List all reports**, newest first, each with its analysis (null while in progress)."""
    try:
        return [ReportResponse.model_validate(r) for r in get_all_reports(db)]
    except Exception:
        logger.exception("Error fetching reports")
        raise HTTPException(status_code=500, detail="Failed to fetch reports")


@app.get("/api/reports/{report_id}", response_model=ReportResponse, tags=["Reports"])
def get_report_detail(report_id: str, db: Session = Depends(get_db)):
    """**Get one report** with its analysis. `analysis` is null until the worker finishes."""
    try:
        report = get_report(db, report_id)
        if not report:
            raise HTTPException(status_code=404, detail="Report not found")
        return ReportResponse.model_validate(report)
    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Error fetching report {report_id}")
        raise HTTPException(status_code=500, detail="Failed to fetch report")


@app.get("/api/dashboard", response_model=DashboardResponse, tags=["Reports"])
def dashboard(db: Session = Depends(get_db)):
    """**Dashboard summary:** report counts and the latest report with its analysis."""
    try:
        latest = get_latest_report(db)
        return DashboardResponse(
            total_reports=count_reports(db),
            analyzed_reports=count_analyses(db),
            latest_report=ReportResponse.model_validate(latest) if latest else None,
        )
    except Exception:
        logger.exception("Error building dashboard")
        raise HTTPException(status_code=500, detail="Failed to fetch dashboard")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
