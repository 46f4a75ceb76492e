## ─────────────────────────────────────────────────────────────────────────────
## worker/celery_app.py  —  Celery application + background analysis tasks
## ─────────────────────────────────────────────────────────────────────────────
import os
from datetime import datetime, timedelta, timezone

from celery import Celery
from celery.signals import worker_ready
from celery.utils.log import get_task_logger
from dotenv import load_dotenv
from sqlalchemy.exc import IntegrityError

load_dotenv()

logger = get_task_logger(__name__)

REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Reports younger than this may still have their first task queued or running;
# the recovery sweep leaves them alone.
RECOVERY_GRACE_SECONDS: int = int(os.getenv("RECOVERY_GRACE_SECONDS", "900"))

app = Celery(
    "health_report_analyzer",
    broker=REDIS_URL,
    backend=REDIS_URL,
)

app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,
    task_default_queue="analysis",
)


# ── Celery tasks ──────────────────────────────────────────────────────────────

@app.task(
    bind=True,
    name="worker.celery_app.run_analysis",
    max_retries=0,
)
def run_analysis(self, report_id: str, file_path: str, mime_type: str) -> dict:
    """
    Analyse one uploaded report and store exactly one analysis for it.

    The model result is stored when the analysis succeeded; otherwise, or when
    that write fails, the fixed fallback analysis is stored. A failed fallback
    write is logged and the report is left without an analysis. A write that
    loses to another run of the same report returns `skipped`. The upload
    file is removed in every case.
    """
    from analyzer import analyze_file
    from db.database import get_db_context
    from db.crud import get_analysis_for_report, get_report

    try:
        with get_db_context() as db:
            if get_report(db, report_id) is None:
                logger.warning(f"[Report {report_id}] Report no longer exists, skipping analysis")
                return {"report_id": report_id, "status": "skipped"}
            if get_analysis_for_report(db, report_id) is not None:
                logger.info(f"[Report {report_id}] Already analysed, skipping")
                return {"report_id": report_id, "status": "skipped"}

        logger.info(f"[Report {report_id}] Starting analysis ({mime_type})")
        try:
            outcome = analyze_file(file_path, mime_type)
        except Exception as exc:
            logger.error(f"[Report {report_id}] Analyzer raised unexpectedly: {exc}", exc_info=True)
            return _store_fallback(report_id, reason=str(exc))

        if not outcome.succeeded:
            logger.warning(f"[Report {report_id}] Analysis failed: {outcome.error}")
            return _store_fallback(report_id, reason=outcome.error)

        try:
            _store(report_id, outcome.result)
        except IntegrityError as exc:
            if _analysed_elsewhere(report_id):
                return _skipped_duplicate(report_id)
            logger.error(f"[Report {report_id}] Could not store analysis: {exc}", exc_info=True)
            return _store_fallback(report_id, reason=str(exc))
        except Exception as exc:
            logger.error(f"[Report {report_id}] Could not store analysis: {exc}", exc_info=True)
            return _store_fallback(report_id, reason=str(exc))

        logger.info(
            f"[Report {report_id}] Analysis completed with life score {outcome.result.life_score}"
        )
        return {"report_id": report_id, "status": "completed", "life_score": outcome.result.life_score}

    finally:
        _cleanup_file(report_id, file_path)


@app.task(name="worker.celery_app.resume_pending_analyses")
def resume_pending_analyses() -> dict:
    """
    Re-enqueue analysis for reports that never got one (e.g. the process died
    mid-task). Reports whose upload file is gone can no longer be analysed and
    get the fallback analysis instead. Reports uploaded within the last
    RECOVERY_GRACE_SECONDS are skipped: their original task may still be
    queued, unacked or running on another worker.
    """
    from db.database import get_db_context
    from db.crud import get_reports_without_analysis

    cutoff = datetime.now(timezone.utc) - timedelta(seconds=RECOVERY_GRACE_SECONDS)
    with get_db_context() as db:
        pending = [
            (r.id, r.file_path, r.file_type)
            for r in get_reports_without_analysis(db, uploaded_before=cutoff)
        ]

    requeued = 0
    fallbacks = 0
    for report_id, file_path, mime_type in pending:
        if os.path.exists(file_path):
            run_analysis.apply_async(
                kwargs={"report_id": report_id, "file_path": file_path, "mime_type": mime_type},
                queue="analysis",
            )
            requeued += 1
        else:
            _store_fallback(report_id, reason="upload file missing after restart")
            fallbacks += 1

    if pending:
        logger.info(f"Recovery: {requeued} report(s) re-enqueued, {fallbacks} given fallback analysis")
    return {"requeued": requeued, "fallbacks": fallbacks}


@worker_ready.connect
def _resume_on_startup(sender=None, **kwargs) -> None:
    resume_pending_analyses.apply_async(queue="analysis")


# ── Helpers ───────────────────────────────────────────────────────────────────

def _store(report_id: str, payload) -> None:
    from db.database import get_db_context
    from db.crud import create_analysis

    with get_db_context() as db:
        create_analysis(db, report_id=report_id, **payload.to_columns())


def _analysed_elsewhere(report_id: str) -> bool:
    """True when another task already stored this report's analysis."""
    from db.database import get_db_context
    from db.crud import get_analysis_for_report

    try:
        with get_db_context() as db:
            return get_analysis_for_report(db, report_id) is not None
    except Exception as exc:
        logger.warning(f"[Report {report_id}] Could not check for an existing analysis: {exc}")
        return False


def _skipped_duplicate(report_id: str) -> dict:
    logger.info(f"[Report {report_id}] Analysis was stored by another task, keeping it")
    return {"report_id": report_id, "status": "skipped"}


def _store_fallback(report_id: str, reason: str | None = None) -> dict:
    """Write the fallback analysis. A failure here is terminal and only logged."""
    from analyzer import fallback_analysis

    payload = fallback_analysis()
    try:
        _store(report_id, payload)
    except IntegrityError as exc:
        if _analysed_elsewhere(report_id):
            return _skipped_duplicate(report_id)
        logger.error(
            f"[Report {report_id}] Failed to store fallback analysis, report stays unanalysed: {exc}",
            exc_info=True,
        )
        return {"report_id": report_id, "status": "failed", "error": reason}
    except Exception as exc:
        logger.error(
            f"[Report {report_id}] Failed to store fallback analysis, report stays unanalysed: {exc}",
            exc_info=True,
        )
        return {"report_id": report_id, "status": "failed", "error": reason}

    logger.info(f"[Report {report_id}] Stored fallback analysis")
    return {"report_id": report_id, "status": "fallback", "error": reason, "life_score": payload.life_score}


def _cleanup_file(report_id: str, file_path: str) -> None:
    """Remove the uploaded document, logging any errors."""
    from uploads import remove_upload

    if remove_upload(file_path):
        logger.debug(f"[Report {report_id}] Cleaned up upload file: {file_path}")
