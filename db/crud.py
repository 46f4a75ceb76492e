## ─────────────────────────────────────────────────────────────────────────────
## db/crud.py  —  Database CRUD operations (no business logic here)
## ─────────────────────────────────────────────────────────────────────────────
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from db.models import HealthAnalysis, HealthReport


# ── Report operations ─────────────────────────────────────────────────────────

def create_report(
    db: Session,
    file_name: str,
    file_type: str,
    file_path: str,
    uploaded_at: Optional[datetime] = None,
) -> HealthReport:
    """Create a report row for a file that has already been written to disk."""
    report = HealthReport(
        id=str(uuid.uuid4()),
        file_name=file_name,
        file_type=file_type,
        file_path=file_path,
        uploaded_at=uploaded_at or datetime.now(timezone.utc),
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    return report


def get_report(db: Session, report_id: str) -> Optional[HealthReport]:
    return (
        db.query(HealthReport)
        .options(joinedload(HealthReport.analysis))
        .filter(HealthReport.id == report_id)
        .first()
    )


def get_all_reports(db: Session) -> list[HealthReport]:
    """Every report, newest upload first, with its analysis (if any) loaded."""
    return (
        db.query(HealthReport)
        .options(joinedload(HealthReport.analysis))
        .order_by(HealthReport.uploaded_at.desc())
        .all()
    )


def get_latest_report(db: Session) -> Optional[HealthReport]:
    return (
        db.query(HealthReport)
        .options(joinedload(HealthReport.analysis))
        .order_by(HealthReport.uploaded_at.desc())
        .first()
    )


def get_reports_without_analysis(
    db: Session,
    uploaded_before: Optional[datetime] = None,
) -> list[HealthReport]:
    query = (
        db.query(HealthReport)
        .outerjoin(HealthAnalysis, HealthAnalysis.report_id == HealthReport.id)
        .filter(HealthAnalysis.id.is_(None))
    )
    if uploaded_before is not None:
        query = query.filter(HealthReport.uploaded_at < uploaded_before)
    return query.order_by(HealthReport.uploaded_at.asc()).all()


def count_reports(db: Session) -> int:
    return db.query(HealthReport).count()


# ── Analysis operations ───────────────────────────────────────────────────────

def create_analysis(
    db: Session,
    report_id: str,
    life_score: int,
    metrics: list,
    insights: list,
    recommendations: list,
    summary: str,
) -> HealthAnalysis:
    """Persist the one analysis of a report. Raises IntegrityError if it already has one."""
    analysis = HealthAnalysis(
        id=str(uuid.uuid4()),
        report_id=report_id,
        life_score=life_score,
        metrics=metrics,
        insights=insights,
        recommendations=recommendations,
        summary=summary,
    )
    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    return analysis


def get_analysis_for_report(db: Session, report_id: str) -> Optional[HealthAnalysis]:
    return db.query(HealthAnalysis).filter(HealthAnalysis.report_id == report_id).first()


def count_analyses(db: Session) -> int:
    return db.query(HealthAnalysis).count()
