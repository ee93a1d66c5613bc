from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from jobtrail.config import Settings
from jobtrail.core.runtime import TrailServices, build_services
from jobtrail.errors import ConflictError, NotFoundError
from jobtrail.types import JobRecord


def pdf_bytes(marker: str, size: int = 256) -> bytes:
    body = f"%PDF-1.4\n% {marker}\n".encode("utf-8")
    return body + b"0" * max(0, size - len(body))


class StaticExtractor:
    def __init__(self, text: str = "extracted resume text"):
        self.text = text
        self.calls: list[Path] = []

    def extract(self, path: Path) -> str:
        self.calls.append(path)
        return self.text


class MemoryJobStore:
    def __init__(self) -> None:
        self.records: dict[str, JobRecord] = {}
        self._guard = threading.Lock()

    def list(self) -> list[JobRecord]:
        with self._guard:
            return list(self.records.values())

    def get(self, uuid: str) -> JobRecord | None:
        with self._guard:
            return self.records.get(uuid)

    def patch(self, uuid: str, fields: dict[str, Any]) -> JobRecord:
        with self._guard:
            current = self.records.get(uuid)
            if current is None:
                raise NotFoundError(f"Job {uuid} not found")
            updated = JobRecord.model_validate({**current.model_dump(), **fields})
            self.records[uuid] = updated
            return updated

    def create(self, fields: dict[str, Any]) -> JobRecord:
        record = JobRecord.model_validate(fields)
        with self._guard:
            if record.uuid in self.records:
                raise ConflictError(f"Job {record.uuid} already exists")
            self.records[record.uuid] = record
        return record

    def delete(self, uuid: str) -> bool:
        with self._guard:
            return self.records.pop(uuid, None) is not None


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        app_env="test",
        data_dir=tmp_path / "data",
        database_url=f"sqlite:///{tmp_path / 'jobtrail.db'}",
        job_root_directory=tmp_path / "job-applications",
        migration_log_path=tmp_path / "migration-logs",
        extraction_url="",
        extraction_workers=1,
        generate_snapshots=False,
    )


@pytest.fixture
def extractor() -> StaticExtractor:
    return StaticExtractor()


@pytest.fixture
def job_store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture
def services(settings: Settings, job_store: MemoryJobStore, extractor: StaticExtractor) -> Iterator[TrailServices]:
    built = build_services(settings, job_store=job_store, extractor=extractor)
    yield built
    built.close()


@pytest.fixture
def sql_services(settings: Settings, extractor: StaticExtractor) -> Iterator[TrailServices]:
    built = build_services(settings, extractor=extractor)
    yield built
    built.close()


@pytest.fixture
def make_job(services: TrailServices):
    def _make(company: str = "Acme", role: str = "Backend Engineer", **fields: Any) -> JobRecord:
        return services.job_store.create({"company": company, "role": role, **fields})

    return _make


@pytest.fixture
def make_pdf():
    return pdf_bytes
