"""Job ledger models: bulk job records and their append-only audit trail."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BulkJob(Base):
    __tablename__ = "bulk_jobs"
    __table_args__ = (
        Index("idx_bulk_jobs_database", "database_id"),
        Index("idx_bulk_jobs_status", "status"),
        Index("idx_bulk_jobs_started", "started_at"),
    )

    job_id: Mapped[str] = mapped_column(String(80), primary_key=True)
    database_id: Mapped[str] = mapped_column(String(100), nullable=False)
    operation_type: Mapped[str] = mapped_column(
        String(40), nullable=False
    )  # database_backup, table_backup, database_restore, backup_delete
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued"
    )  # queued, running, completed, failed, cancelled
    total_items: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    started_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column("metadata", Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class JobAuditEvent(Base):
    __tablename__ = "job_audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(80), ForeignKey("bulk_jobs.job_id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(
        String(30), nullable=False
    )  # started, progress, completed, failed, cancelled
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
