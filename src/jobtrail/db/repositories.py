from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from jobtrail.db.models import JobRecordRow
from jobtrail.errors import ConflictError, NotFoundError, ValidationError
from jobtrail.types import JobRecord

logger = logging.getLogger(__name__)

# JobRecord field -> column name, where they differ
_COLUMN_NAMES = {"merged_from": "merged_from_json", "merge_history": "merge_history_json"}
_PATCHABLE = set(JobRecord.model_fields) - {"uuid"}


def row_to_record(row: JobRecordRow) -> JobRecord:
    values = {name: getattr(row, _COLUMN_NAMES.get(name, name)) for name in JobRecord.model_fields}
    return JobRecord.model_validate(values)


def _apply(row: JobRecordRow, record: JobRecord, names: set[str]) -> None:
    for name in names:
        setattr(row, _COLUMN_NAMES.get(name, name), getattr(record, name))


def _validated(values: dict[str, Any]) -> JobRecord:
    try:
        return JobRecord.model_validate(values)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid job record: {exc}") from exc


class SqlJobRecordStore:
    """JobRecordStore backed by the ``job_records`` table. One session per call."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def list(self) -> list[JobRecord]:
        with self.session_factory() as session:
            rows = session.scalars(select(JobRecordRow).order_by(JobRecordRow.created_at, JobRecordRow.uuid)).all()
            return [row_to_record(row) for row in rows]

    def get(self, uuid: str) -> JobRecord | None:
        with self.session_factory() as session:
            row = session.get(JobRecordRow, uuid)
            return row_to_record(row) if row is not None else None

    def create(self, fields: dict[str, Any]) -> JobRecord:
        record = _validated(fields)
        with self.session_factory() as session:
            if session.get(JobRecordRow, record.uuid) is not None:
                raise ConflictError(f"Job {record.uuid} already exists", details={"uuid": record.uuid})
            row = JobRecordRow(uuid=record.uuid)
            _apply(row, record, _PATCHABLE)
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.debug("Created job record %s", record.uuid)
            return row_to_record(row)

    def patch(self, uuid: str, fields: dict[str, Any]) -> JobRecord:
        unknown = set(fields) - _PATCHABLE
        if unknown:
            raise ValidationError(f"Unknown job fields: {sorted(unknown)}")
        with self.session_factory() as session:
            row = session.get(JobRecordRow, uuid)
            if row is None:
                raise NotFoundError(f"Job {uuid} not found")
            current = row_to_record(row)
            updated = _validated({**current.model_dump(), **fields})
            _apply(row, updated, set(fields))
            session.commit()
            session.refresh(row)
            return row_to_record(row)

    def delete(self, uuid: str) -> bool:
        with self.session_factory() as session:
            row = session.get(JobRecordRow, uuid)
            if row is None:
                return False
            session.delete(row)
            session.commit()
        logger.debug("Deleted job record %s", uuid)
        return True
