from __future__ import annotations

import logging
from dataclasses import dataclass

from jobtrail.config import Settings, get_settings
from jobtrail.core.bulk_import import BulkImportPipeline
from jobtrail.core.dedup import DeduplicationEngine
from jobtrail.core.extraction import ExtractionQueue, TextExtractor, build_text_extractor
from jobtrail.core.job_storage import JobFileStorage, SnapshotCapture
from jobtrail.core.operations import OperationsLog
from jobtrail.core.records import JobRecordStore
from jobtrail.core.staging import StagingArea
from jobtrail.core.undo import UndoService
from jobtrail.core.versioning import VersionEngine
from jobtrail.db.init import init_database
from jobtrail.db.repositories import SqlJobRecordStore
from jobtrail.db.session import create_session_factory
from jobtrail.storage.content_store import ContentStore
from jobtrail.storage.documents import JsonDocumentStore
from jobtrail.types import (
    BulkImportDocument,
    FilePolicyDocument,
    OperationsLogDocument,
    ResumeManifestDocument,
    StagingDocument,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TrailServices:
    settings: Settings
    job_store: JobRecordStore
    operations: OperationsLog
    staging: StagingArea
    versions: VersionEngine
    bulk_import: BulkImportPipeline
    dedup: DeduplicationEngine
    job_storage: JobFileStorage
    undo: UndoService
    extraction_queue: ExtractionQueue

    def close(self) -> None:
        self.extraction_queue.shutdown()


def build_services(
    settings: Settings,
    job_store: JobRecordStore | None = None,
    extractor: TextExtractor | None = None,
    snapshot: SnapshotCapture | None = None,
) -> TrailServices:
    if job_store is None:
        init_database(settings)
        job_store = SqlJobRecordStore(create_session_factory(settings.database_url))

    staging_store = JsonDocumentStore(settings.staging_manifest_path, StagingDocument)
    resume_store = JsonDocumentStore(settings.resume_manifest_path, ResumeManifestDocument)
    bulk_store = JsonDocumentStore(settings.bulk_import_path, BulkImportDocument)
    operations_store = JsonDocumentStore(settings.operations_log_path, OperationsLogDocument)
    policy_store = JsonDocumentStore(settings.file_policy_path, FilePolicyDocument)

    content = ContentStore()
    operations = OperationsLog(
        operations_store,
        max_entries=settings.operations_log_max_entries,
        undoable_window=settings.undoable_window,
    )
    queue = ExtractionQueue(extractor or build_text_extractor(settings), max_workers=settings.extraction_workers)

    staging = StagingArea(settings, staging_store, resume_store, content, operations, extraction_queue=queue)
    versions = VersionEngine(settings, resume_store, staging_store, content, operations, job_store=job_store)
    staging.extraction_fallback = versions.record_staging_extraction
    operations.on_discard = versions.purge_trash
    bulk = BulkImportPipeline(settings, bulk_store, resume_store, versions, job_store, operations)
    dedup = DeduplicationEngine(job_store, operations, threshold=settings.dedup_similarity_threshold)
    job_storage = JobFileStorage(settings, policy_store, operations, snapshot=snapshot)
    undo = UndoService(operations, staging, versions, dedup, job_storage)

    logger.debug("Services ready under %s", settings.data_dir)
    return TrailServices(
        settings=settings,
        job_store=job_store,
        operations=operations,
        staging=staging,
        versions=versions,
        bulk_import=bulk,
        dedup=dedup,
        job_storage=job_storage,
        undo=undo,
        extraction_queue=queue,
    )


_SERVICES: TrailServices | None = None


def get_services() -> TrailServices:
    global _SERVICES
    if _SERVICES is None:
        _SERVICES = build_services(get_settings())
    return _SERVICES
