from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from jobtrail.types import AttachmentMode, AttachmentType


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class AttachRequest(BaseModel):
    resume_id: str
    job_uuid: str
    replace_active: bool = False
    set_as_active: bool = True


class RollbackRequest(BaseModel):
    target_version_id: str


class BulkScanRequest(BaseModel):
    folder: str
    recursive: bool | None = None


class BulkItemUpdateRequest(BaseModel):
    user_override: str | None = None


class BulkExecuteRequest(BaseModel):
    overwrite_existing: bool = False


class MergeRequest(BaseModel):
    primary_id: str
    duplicate_ids: list[str] = Field(min_length=1)
    note: str | None = None


class JobCreateRequest(BaseModel):
    company: str | None = None
    role: str | None = None
    jd_text: str = ""
    source_url: str | None = None
    applied_date: str | None = None
    application_status: str = "saved"


class AttachmentRequest(BaseModel):
    type: AttachmentType
    original_path: str
    filename: str | None = None


class SaveToDiskRequest(BaseModel):
    attachments: list[AttachmentRequest] = Field(default_factory=list)
    generate_snapshot: bool = False


class PolicyUpdateRequest(BaseModel):
    root_directory: str | None = None
    attachment_mode: AttachmentMode | None = None
    generate_snapshots: bool | None = None
    migration_log_path: str | None = None
    create_backups: bool | None = None


class MigrationPrepareRequest(BaseModel):
    new_root: str


class MigrationExecuteRequest(BaseModel):
    new_root: str
    copy_files: bool = True
    create_backup: bool = True
    overwrite_existing: bool = False


class UndoResponse(BaseModel):
    operation_id: str
    user_action: str
    undone: bool


class ExtractionUpdateRequest(BaseModel):
    text: str | None = None
    error: str | None = None
