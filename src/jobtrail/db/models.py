from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobtrail.db.base import Base, TimestampMixin


class JobRecordRow(TimestampMixin, Base):
    __tablename__ = "job_records"

    uuid: Mapped[str] = mapped_column(String(36), primary_key=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    role: Mapped[str | None] = mapped_column(String(255), nullable=True)
    jd_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    source_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    applied_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    application_status: Mapped[str] = mapped_column(String(40), default="saved", nullable=False)

    active_resume_version_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    resume_filename: Mapped[str | None] = mapped_column(String(500), nullable=True)
    resume_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    resume_text_extracted: Mapped[str | None] = mapped_column(Text, nullable=True)
    resume_text_source: Mapped[str | None] = mapped_column(String(40), nullable=True)
    extraction_status: Mapped[str | None] = mapped_column(String(40), nullable=True)

    merged_from_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    merge_history_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    imported_from: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    imported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
