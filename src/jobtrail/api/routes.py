from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, File, UploadFile

from jobtrail.api.deps import get_services
from jobtrail.api.schemas import (
    AttachRequest,
    BulkExecuteRequest,
    BulkItemUpdateRequest,
    BulkScanRequest,
    ExtractionUpdateRequest,
    JobCreateRequest,
    MergeRequest,
    MigrationExecuteRequest,
    MigrationPrepareRequest,
    PolicyUpdateRequest,
    RollbackRequest,
    SaveToDiskRequest,
    UndoResponse,
)
from jobtrail.core.runtime import TrailServices
from jobtrail.errors import NotFoundError
from jobtrail.types import (
    AttachmentFile,
    BulkImportOperation,
    BulkImportPreviewItem,
    BulkImportSummary,
    DeduplicationResult,
    DuplicateResult,
    FileManagementPolicy,
    JobFolderPreview,
    JobRecord,
    JobStorageResult,
    MigrationResult,
    MigrationSummary,
    OperationLogEntry,
    ResumeManifestEntry,
    ResumeVersionEntry,
    UnassignedResumeEntry,
)

router = APIRouter(prefix="/api", tags=["api"])


# unassigned resumes


@router.get("/unassigned", response_model=list[UnassignedResumeEntry])
def list_unassigned(services: TrailServices = Depends(get_services)) -> list[UnassignedResumeEntry]:
    return services.staging.list()


@router.post("/unassigned", response_model=UnassignedResumeEntry | DuplicateResult)
def upload_unassigned(
    file: UploadFile = File(...),
    services: TrailServices = Depends(get_services),
) -> UnassignedResumeEntry | DuplicateResult:
    data = file.file.read()
    return services.staging.upload(data, file.filename or "upload")


@router.post("/unassigned/bulk")
def bulk_upload_unassigned(
    files: list[UploadFile] = File(...),
    services: TrailServices = Depends(get_services),
) -> dict[str, Any]:
    summary = services.staging.bulk_upload([(item.filename or "upload", item.file.read()) for item in files])
    return {**summary.model_dump(mode="json"), "summary": summary.summary}


@router.get("/unassigned/{resume_id}", response_model=UnassignedResumeEntry)
def get_unassigned(resume_id: str, services: TrailServices = Depends(get_services)) -> UnassignedResumeEntry:
    return services.staging.get(resume_id)


@router.delete("/unassigned/{resume_id}", response_model=UnassignedResumeEntry)
def delete_unassigned(resume_id: str, services: TrailServices = Depends(get_services)) -> UnassignedResumeEntry:
    return services.staging.delete(resume_id)


# resume lineages


@router.post("/resumes/attach", response_model=ResumeManifestEntry)
def attach_resume(payload: AttachRequest, services: TrailServices = Depends(get_services)) -> ResumeManifestEntry:
    return services.versions.attach(
        payload.resume_id,
        payload.job_uuid,
        replace_active=payload.replace_active,
        set_as_active=payload.set_as_active,
    )


@router.get("/resumes", response_model=list[ResumeManifestEntry])
def list_resumes(services: TrailServices = Depends(get_services)) -> list[ResumeManifestEntry]:
    return services.versions.list_entries()


@router.get("/resumes/{resume_id}", response_model=ResumeManifestEntry)
def get_resume(resume_id: str, services: TrailServices = Depends(get_services)) -> ResumeManifestEntry:
    return services.versions.get_entry(resume_id)


@router.get("/resumes/{resume_id}/versions", response_model=list[ResumeVersionEntry])
def list_versions(resume_id: str, services: TrailServices = Depends(get_services)) -> list[ResumeVersionEntry]:
    return services.versions.version_history(resume_id)


@router.post("/resumes/{resume_id}/rollback", response_model=ResumeVersionEntry)
def rollback_resume(
    resume_id: str,
    payload: RollbackRequest,
    services: TrailServices = Depends(get_services),
) -> ResumeVersionEntry:
    return services.versions.rollback(resume_id, payload.target_version_id)


@router.post("/resumes/{resume_id}/versions/{version_id}/extraction", response_model=ResumeVersionEntry)
def update_extraction(
    resume_id: str,
    version_id: str,
    payload: ExtractionUpdateRequest,
    services: TrailServices = Depends(get_services),
) -> ResumeVersionEntry:
    return services.versions.record_extraction(resume_id, version_id, payload.text, payload.error)


@router.delete("/resumes/{resume_id}", response_model=ResumeManifestEntry)
def delete_resume(resume_id: str, services: TrailServices = Depends(get_services)) -> ResumeManifestEntry:
    return services.versions.delete_resume(resume_id)


# bulk import


@router.post("/bulk-import/scan", response_model=BulkImportOperation)
def scan_bulk_import(payload: BulkScanRequest, services: TrailServices = Depends(get_services)) -> BulkImportOperation:
    return services.bulk_import.scan(payload.folder, recursive=payload.recursive)


@router.get("/bulk-import/current", response_model=BulkImportOperation | None)
def current_bulk_import(services: TrailServices = Depends(get_services)) -> BulkImportOperation | None:
    return services.bulk_import.current()


@router.patch("/bulk-import/items/{item_id}", response_model=BulkImportPreviewItem)
def update_bulk_item(
    item_id: str,
    payload: BulkItemUpdateRequest,
    services: TrailServices = Depends(get_services),
) -> BulkImportPreviewItem:
    return services.bulk_import.update_preview_item(item_id, payload.user_override)


@router.post("/bulk-import/execute", response_model=BulkImportSummary)
def execute_bulk_import(
    payload: BulkExecuteRequest,
    services: TrailServices = Depends(get_services),
) -> BulkImportSummary:
    return services.bulk_import.execute(overwrite_existing=payload.overwrite_existing)


@router.post("/bulk-import/cancel", response_model=BulkImportOperation)
def cancel_bulk_import(services: TrailServices = Depends(get_services)) -> BulkImportOperation:
    return services.bulk_import.cancel()


# record dedup


@router.get("/dedup/duplicates", response_model=DeduplicationResult)
def find_duplicates(
    target_uuid: str | None = None,
    services: TrailServices = Depends(get_services),
) -> DeduplicationResult:
    return services.dedup.find_duplicates(target_uuid)


@router.post("/dedup/merge", response_model=JobRecord)
def merge_duplicates(payload: MergeRequest, services: TrailServices = Depends(get_services)) -> JobRecord:
    return services.dedup.merge(payload.primary_id, payload.duplicate_ids, payload.note)


# operations


@router.get("/operations/recent", response_model=list[OperationLogEntry])
def recent_operations(limit: int = 10, services: TrailServices = Depends(get_services)) -> list[OperationLogEntry]:
    return services.operations.get_recent_operations(limit)


@router.get("/operations/undoable", response_model=list[OperationLogEntry])
def undoable_operations(services: TrailServices = Depends(get_services)) -> list[OperationLogEntry]:
    return services.operations.get_undoable_operations()


@router.post("/operations/{operation_id}/undo", response_model=UndoResponse)
def undo_operation(operation_id: str, services: TrailServices = Depends(get_services)) -> UndoResponse:
    entry = services.undo.undo(operation_id)
    return UndoResponse(operation_id=entry.id, user_action=entry.user_action, undone=entry.undone_at is not None)


# jobs and files on disk


@router.post("/jobs", response_model=JobRecord)
def create_job(payload: JobCreateRequest, services: TrailServices = Depends(get_services)) -> JobRecord:
    return services.job_store.create(payload.model_dump())


@router.get("/jobs", response_model=list[JobRecord])
def list_jobs(services: TrailServices = Depends(get_services)) -> list[JobRecord]:
    return services.job_store.list()


def _require_job(services: TrailServices, job_uuid: str) -> JobRecord:
    job = services.job_store.get(job_uuid)
    if job is None:
        raise NotFoundError(f"Job {job_uuid} not found")
    return job


@router.get("/jobs/{job_uuid}", response_model=JobRecord)
def get_job(job_uuid: str, services: TrailServices = Depends(get_services)) -> JobRecord:
    return _require_job(services, job_uuid)


@router.delete("/jobs/{job_uuid}", response_model=JobRecord)
def delete_job(job_uuid: str, note: str | None = None, services: TrailServices = Depends(get_services)) -> JobRecord:
    return services.dedup.delete(job_uuid, note)


@router.get("/jobs/{job_uuid}/resume", response_model=ResumeManifestEntry | None)
def job_resume(job_uuid: str, services: TrailServices = Depends(get_services)) -> ResumeManifestEntry | None:
    return services.versions.get_entry_for_job(job_uuid)


@router.get("/jobs/{job_uuid}/folder-preview", response_model=JobFolderPreview)
def job_folder_preview(job_uuid: str, services: TrailServices = Depends(get_services)) -> JobFolderPreview:
    return services.job_storage.preview_job_folder(_require_job(services, job_uuid))


@router.post("/jobs/{job_uuid}/save-to-disk", response_model=JobStorageResult)
def save_job_to_disk(
    job_uuid: str,
    payload: SaveToDiskRequest,
    services: TrailServices = Depends(get_services),
) -> JobStorageResult:
    job = _require_job(services, job_uuid)
    attachments = [AttachmentFile(**item.model_dump()) for item in payload.attachments]
    return services.job_storage.save_job(job, attachments, generate_snapshot=payload.generate_snapshot)


@router.get("/files/policy", response_model=FileManagementPolicy)
def get_policy(services: TrailServices = Depends(get_services)) -> FileManagementPolicy:
    return services.job_storage.policy()


@router.patch("/files/policy", response_model=FileManagementPolicy)
def update_policy(payload: PolicyUpdateRequest, services: TrailServices = Depends(get_services)) -> FileManagementPolicy:
    return services.job_storage.update_policy(**payload.model_dump(exclude_none=True))


@router.post("/files/migration/prepare", response_model=MigrationSummary)
def prepare_migration(
    payload: MigrationPrepareRequest,
    services: TrailServices = Depends(get_services),
) -> MigrationSummary:
    return services.job_storage.prepare_migration(payload.new_root)


@router.post("/files/migration/execute", response_model=MigrationResult)
def execute_migration(
    payload: MigrationExecuteRequest,
    services: TrailServices = Depends(get_services),
) -> MigrationResult:
    return services.job_storage.execute_migration(
        payload.new_root,
        copy_files=payload.copy_files,
        create_backup=payload.create_backup,
        overwrite_existing=payload.overwrite_existing,
    )
