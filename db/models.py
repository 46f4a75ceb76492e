## ─────────────────────────────────────────────────────────────────────────────
## db/models.py  —  SQLAlchemy ORM models
## ─────────────────────────────────────────────────────────────────────────────
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Integer, JSON
from sqlalchemy.orm import relationship

# All models register on the single shared Base so create_tables() sees them.
from db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthReport(Base):
    """One uploaded health document. Immutable once created."""
    __tablename__ = "health_reports"

    id          = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    file_name   = Column(Text, nullable=False)
    file_type   = Column(String(100), nullable=False)
    file_path   = Column(Text, nullable=False)
    uploaded_at = Column(DateTime, nullable=False, default=_utcnow, index=True)

    analysis = relationship(
        "HealthAnalysis", back_populates="report",
        uselist=False, cascade="all, delete-orphan", passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<HealthReport id={self.id} file_name={self.file_name}>"


class HealthAnalysis(Base):
    """The AI analysis of a report. At most one row per report, never updated."""
    __tablename__ = "health_analyses"

    id        = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    report_id = Column(
        String(36),
        ForeignKey("health_reports.id", ondelete="CASCADE"),
        nullable=False, unique=True, index=True,
    )

    life_score      = Column(Integer, nullable=False)
    metrics         = Column(JSON, nullable=False, default=list)
    insights        = Column(JSON, nullable=False, default=list)
    recommendations = Column(JSON, nullable=False, default=list)
    summary         = Column(Text, nullable=False)

    analysis_date = Column(DateTime, nullable=False, default=_utcnow)

    report = relationship("HealthReport", back_populates="analysis")

    def __repr__(self) -> str:
        return f"<HealthAnalysis id={self.id} report_id={self.report_id} life_score={self.life_score}>"
