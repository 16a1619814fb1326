"""Backup schedule model: at most one recurring backup plan per database."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BackupSchedule(Base):
    __tablename__ = "scheduled_backups"
    __table_args__ = (Index("idx_scheduled_backups_next_run", "enabled", "next_run_at"),)

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    database_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    database_name: Mapped[str] = mapped_column(String(255), nullable=False)
    schedule: Mapped[str] = mapped_column(String(10), nullable=False)  # daily, weekly, monthly
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0 = Sunday
    day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 1-28
    hour: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # UTC
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_job_id: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    last_status: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # success, failed
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
