from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

ExtractionStatus = Literal["pending", "success", "failed"]
AttachmentMode = Literal["copy", "reference"]
OperationType = Literal["create", "update", "delete", "bulk"]
BulkImportStatus = Literal["pending", "running", "completed", "failed", "cancelled"]
ItemResultStatus = Literal["imported", "duplicate", "error", "skipped"]
AttachmentType = Literal["resume", "job_description", "screenshot", "other"]

OVERRIDE_SKIP = "skip"
OVERRIDE_CREATE_NEW = "createNew"


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return str(uuid4())


class TrailModel(BaseModel):
    # Documents on disk evolve; unknown keys are dropped and missing keys default.
    model_config = ConfigDict(extra="ignore")


class UnassignedResumeEntry(TrailModel):
    id: str = Field(default_factory=new_id)
    filename: str
    stored_path: str
    original_path: str = ""
    size_bytes: int = 0
    extension: str = ""
    content_digest: str
    uploaded_at: datetime = Field(default_factory=utc_now)
    extraction_status: ExtractionStatus = "pending"
    extracted_text: str | None = None
    extraction_error: str | None = None
    preview_available: bool = False


class StagingDocument(TrailModel):
    resumes: list[UnassignedResumeEntry] = Field(default_factory=list)

    def find(self, resume_id: str) -> UnassignedResumeEntry | None:
        return next((item for item in self.resumes if item.id == resume_id), None)

    def find_by_digest(self, digest: str) -> UnassignedResumeEntry | None:
        return next((item for item in self.resumes if item.content_digest == digest), None)


class ResumeVersionEntry(TrailModel):
    version_id: str = Field(default_factory=new_id)
    version_suffix: str = ""
    stored_path: str
    original_path: str = ""
    original_filename: str = ""
    content_digest: str
    uploaded_at: datetime = Field(default_factory=utc_now)
    is_active: bool = False
    extracted_text: str | None = None
    extraction_status: ExtractionStatus | None = None
    extraction_error: str | None = None
    source_staging_id: str | None = None
    rolled_back_from: str | None = None


class FilenameComponents(TrailModel):
    company: str = ""
    role: str = ""
    date: str = ""


class ResumeManifestEntry(TrailModel):
    id: str = Field(default_factory=new_id)
    job_uuid: str
    base_filename: str
    filename_components: FilenameComponents = Field(default_factory=FilenameComponents)
    file_extension: str = ""
    keep_original: bool = False
    versions: list[ResumeVersionEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)
    latest_extracted_text: str | None = None
    latest_extraction_status: ExtractionStatus | None = None

    def active_version(self) -> ResumeVersionEntry | None:
        return next((version for version in self.versions if version.is_active), None)

    def find_version(self, version_id: str) -> ResumeVersionEntry | None:
        return next((version for version in self.versions if version.version_id == version_id), None)

    def find_by_digest(self, digest: str) -> ResumeVersionEntry | None:
        return next((version for version in self.versions if version.content_digest == digest), None)


class ResumeManifestDocument(TrailModel):
    resumes: list[ResumeManifestEntry] = Field(default_factory=list)

    def find(self, resume_id: str) -> ResumeManifestEntry | None:
        return next((entry for entry in self.resumes if entry.id == resume_id), None)

    def find_for_job(self, job_uuid: str) -> ResumeManifestEntry | None:
        return next((entry for entry in self.resumes if entry.job_uuid == job_uuid), None)


class DuplicateResult(TrailModel):
    duplicate: Literal[True] = True
    existing: UnassignedResumeEntry
    message: str = "Already in library - ready to attach to jobs"


class UploadDetail(TrailModel):
    filename: str
    status: Literal["imported", "duplicate", "error"]
    message: str = ""
    resume: UnassignedResumeEntry | None = None


class BulkUploadSummary(TrailModel):
    imported: int = 0
    duplicates: int = 0
    errors: int = 0
    details: list[UploadDetail] = Field(default_factory=list)

    @property
    def summary(self) -> str:
        parts: list[str] = []
        if self.imported:
            parts.append(f"{self.imported} new files added")
        if self.duplicates:
            parts.append(f"{self.duplicates} files already in library - ready to attach")
        if self.errors:
            parts.append(f"{self.errors} errors")
        return ", ".join(parts)


class JobMatch(TrailModel):
    job_uuid: str
    confidence: float = 0.0
    company: str = ""
    role: str = ""

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("confidence must be between 0 and 1")
        return value


class ImportConflict(TrailModel):
    existing_version_id: str


class BulkImportPreviewItem(TrailModel):
    item_id: str = Field(default_factory=new_id)
    source_file_path: str
    filename: str = ""
    detected_job_match: JobMatch | None = None
    user_override: str | None = None
    conflict: ImportConflict | None = None
    result_status: ItemResultStatus | None = None
    result_message: str | None = None
    resume_id: str | None = None
    version_id: str | None = None

    @property
    def target_job_uuid(self) -> str | None:
        if self.user_override and self.user_override not in {OVERRIDE_SKIP, OVERRIDE_CREATE_NEW}:
            return self.user_override
        if self.detected_job_match:
            return self.detected_job_match.job_uuid
        return None


class BulkImportSummary(TrailModel):
    imported: int = 0
    duplicates: int = 0
    errors: int = 0
    skipped: int = 0
    status: BulkImportStatus = "completed"


class BulkImportOperation(TrailModel):
    id: str = Field(default_factory=new_id)
    source_folder: str
    status: BulkImportStatus = "pending"
    items: list[BulkImportPreviewItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    overwrite_existing: bool = False
    error: str | None = None

    def find_item(self, item_id: str) -> BulkImportPreviewItem | None:
        return next((item for item in self.items if item.item_id == item_id), None)

    def summarize(self) -> BulkImportSummary:
        summary = BulkImportSummary(status=self.status)
        for item in self.items:
            if item.result_status == "imported":
                summary.imported += 1
            elif item.result_status == "duplicate":
                summary.duplicates += 1
            elif item.result_status == "error":
                summary.errors += 1
            elif item.result_status == "skipped":
                summary.skipped += 1
        return summary


class BulkImportDocument(TrailModel):
    current: BulkImportOperation | None = None


class InverseAction(TrailModel):
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)


class OperationLogEntry(TrailModel):
    id: str = Field(default_factory=new_id)
    type: OperationType
    timestamp: datetime = Field(default_factory=utc_now)
    affected_files: list[str] = Field(default_factory=list)
    manifest_entries: list[str] = Field(default_factory=list)
    user_action: str = ""
    can_undo: bool = False
    inverse_action: InverseAction | None = None
    session_id: str = ""
    undone_at: datetime | None = None

    @field_validator("affected_files", "manifest_entries")
    @classmethod
    def dedupe(cls, values: list[str]) -> list[str]:
        return list(dict.fromkeys(values))


class OperationsLogDocument(TrailModel):
    entries: list[OperationLogEntry] = Field(default_factory=list)

    def find(self, operation_id: str) -> OperationLogEntry | None:
        return next((entry for entry in self.entries if entry.id == operation_id), None)


class FileManagementPolicy(TrailModel):
    root_directory: Path
    attachment_mode: AttachmentMode = "copy"
    generate_snapshots: bool = True
    migration_log_path: Path
    create_backups: bool = True


class FilePolicyDocument(TrailModel):
    policy: FileManagementPolicy | None = None


class JobRecord(TrailModel):
    uuid: str = Field(default_factory=new_id)
    company: str | None = None
    role: str | None = None
    jd_text: str = ""
    source_url: str | None = None
    applied_date: str | None = None
    fetched_at: datetime | None = None
    application_status: str = "saved"
    active_resume_version_id: str | None = None
    resume_filename: str | None = None
    resume_path: str | None = None
    resume_text_extracted: str | None = None
    resume_text_source: str | None = None
    extraction_status: str | None = None
    merged_from: list[str] = Field(default_factory=list)
    merge_history: list[dict[str, Any]] = Field(default_factory=list)
    is_archived: bool = False
    archived_at: datetime | None = None
    imported_from: str | None = None
    imported_at: datetime | None = None


class DuplicateMatch(TrailModel):
    uuid: str
    similarity_score: float
    job: JobRecord


class DuplicateGroup(TrailModel):
    id: str = Field(default_factory=new_id)
    primary_job: JobRecord
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    max_similarity: float = 0.0
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def record_ids(self) -> list[str]:
        return [self.primary_job.uuid, *[match.uuid for match in self.duplicates]]


class DeduplicationResult(TrailModel):
    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
    total_duplicates_found: int = 0
    threshold_used: float = 0.0
    processed_at: datetime = Field(default_factory=utc_now)


class AttachmentFile(TrailModel):
    type: AttachmentType = "other"
    original_path: str
    filename: str | None = None
    content: bytes | None = None


class JobStorageResult(TrailModel):
    folder_path: str
    job_json_path: str
    job_txt_path: str
    attachment_paths: dict[str, str] = Field(default_factory=dict)
    snapshot_paths: list[str] = Field(default_factory=list)
    attachment_errors: list[str] = Field(default_factory=list)
    snapshot_errors: list[str] = Field(default_factory=list)


class JobFolderPreview(TrailModel):
    computed_path: str
    company: str
    role: str
    date: str
    attachment_mode: AttachmentMode
    expected_files: list[str] = Field(default_factory=list)


class ImportableJob(TrailModel):
    id: str = Field(default_factory=new_id)
    original_path: str
    file_name: str
    detected_job: dict[str, Any] = Field(default_factory=dict)
    proposed_folder: str = ""
    status: Literal["detected", "ready", "conflict", "imported", "failed", "skipped"] = "detected"
    conflicts: list[str] = Field(default_factory=list)
    error_message: str | None = None


class MigrationLogEntry(TrailModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    action: Literal["import", "skip", "error"]
    source_path: str
    target_path: str | None = None
    job_id: str | None = None
    error: str | None = None


class MigrationSummary(TrailModel):
    old_root: str
    new_root: str
    has_existing_jobs: bool = False
    migration_required: bool = False
    jobs_found: int = 0
    estimated_time: str = "< 1 minute"


class MigrationResult(TrailModel):
    operation_id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    total_files: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    log: list[MigrationLogEntry] = Field(default_factory=list)
    backup_folder: str | None = None
    config_updated: bool = False
