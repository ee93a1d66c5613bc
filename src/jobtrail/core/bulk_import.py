from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from jobtrail.config import Settings
from jobtrail.core.naming import parse_job_filename
from jobtrail.core.operations import OperationsLog
from jobtrail.core.records import JobRecordStore
from jobtrail.core.validation import file_extension, validate_upload
from jobtrail.core.versioning import VersionChange, VersionEngine
from jobtrail.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    StorageError,
    TrailError,
    ValidationError,
)
from jobtrail.storage.content_store import digest_of
from jobtrail.storage.documents import JsonDocumentStore
from jobtrail.types import (
    OVERRIDE_CREATE_NEW,
    OVERRIDE_SKIP,
    BulkImportDocument,
    BulkImportOperation,
    BulkImportPreviewItem,
    BulkImportSummary,
    ImportConflict,
    JobMatch,
    JobRecord,
    ResumeManifestDocument,
    utc_now,
)

logger = logging.getLogger(__name__)

MIN_MATCH_SCORE = 3


def suggest_job_match(filename: str, jobs: list[JobRecord]) -> JobMatch | None:
    """Pick the job whose company/role words best appear in the file name.

    Each matching word scores its length; ties keep the earlier job.
    """
    basename = Path(filename).stem.lower()
    if not basename:
        return None

    best: JobRecord | None = None
    best_score = 0
    for job in jobs:
        score = 0
        for value in (job.company, job.role):
            for word in (value or "").lower().split():
                if word in basename:
                    score += len(word)
        if score > best_score:
            best, best_score = job, score

    if best is None or best_score < MIN_MATCH_SCORE:
        return None
    return JobMatch(
        job_uuid=best.uuid,
        confidence=min(1.0, best_score / len(basename)),
        company=best.company or "",
        role=best.role or "",
    )


class BulkImportPipeline:
    """Scan a folder into a reviewable preview, then import it as one batch.

    Exactly one operation is current at a time. The resume manifest lock is
    held for the whole item loop; cancellation is checked between items.
    """

    def __init__(
        self,
        settings: Settings,
        store: JsonDocumentStore[BulkImportDocument],
        resume_store: JsonDocumentStore[ResumeManifestDocument],
        versions: VersionEngine,
        job_store: JobRecordStore,
        operations: OperationsLog,
    ):
        self.settings = settings
        self.store = store
        self.resume_store = resume_store
        self.versions = versions
        self.job_store = job_store
        self.operations = operations
        self._cancel = threading.Event()

    def current(self) -> BulkImportOperation | None:
        return self.store.load().current

    def _candidate_files(self, folder: Path, recursive: bool) -> list[Path]:
        supported = self.settings.supported_extension_set
        paths = folder.rglob("*") if recursive else folder.iterdir()
        return sorted(
            path
            for path in paths
            if path.is_file() and not path.name.startswith(".") and path.suffix.lower() in supported
        )

    def scan(self, folder: Path | str, recursive: bool | None = None) -> BulkImportOperation:
        folder = Path(folder).expanduser()
        if not folder.is_dir():
            raise NotFoundError("Folder does not exist or is not accessible", details={"folder": str(folder)})
        if recursive is None:
            recursive = self.settings.bulk_import_recursive

        jobs = [job for job in self.job_store.list() if not job.is_archived]
        resumes = self.resume_store.load()
        items: list[BulkImportPreviewItem] = []
        for path in self._candidate_files(folder, recursive):
            match = suggest_job_match(path.name, jobs)
            item = BulkImportPreviewItem(source_file_path=str(path), filename=path.name, detected_job_match=match)
            item.conflict = self._conflict_for(resumes, item.target_job_uuid)
            items.append(item)

        operation = BulkImportOperation(source_folder=str(folder), items=items)
        with self.store.transaction() as doc:
            if doc.current is not None and doc.current.status == "running":
                raise ConflictError(
                    "A bulk import is already running", details={"operation_id": doc.current.id}
                )
            doc.current = operation
        logger.info(
            "Scanned %s: %s files, %s matched",
            folder,
            len(items),
            sum(1 for item in items if item.detected_job_match),
        )
        return operation

    @staticmethod
    def _conflict_for(resumes: ResumeManifestDocument, job_uuid: str | None) -> ImportConflict | None:
        if not job_uuid:
            return None
        entry = resumes.find_for_job(job_uuid)
        active = entry.active_version() if entry else None
        return ImportConflict(existing_version_id=active.version_id) if active else None

    def update_preview_item(self, item_id: str, user_override: str | None) -> BulkImportPreviewItem:
        if user_override not in (None, OVERRIDE_SKIP, OVERRIDE_CREATE_NEW) and self.job_store.get(user_override) is None:
            raise InvalidArgumentError(f"Job {user_override} not found", details={"item_id": item_id})

        resumes = self.resume_store.load()
        with self.store.transaction() as doc:
            operation = doc.current
            if operation is None:
                raise NotFoundError("No active bulk import operation")
            if operation.status != "pending":
                raise ConflictError(f"Bulk import is {operation.status}; preview can no longer change")
            item = operation.find_item(item_id)
            if item is None:
                raise NotFoundError(f"Preview item {item_id} not found")
            item.user_override = user_override
            item.conflict = self._conflict_for(resumes, item.target_job_uuid)
        return item

    def cancel(self) -> BulkImportOperation:
        with self.store.transaction() as doc:
            operation = doc.current
            if operation is None:
                raise NotFoundError("No active bulk import operation")
            if operation.status not in ("pending", "running"):
                raise ConflictError(f"Bulk import is already {operation.status}")
            operation.status = "cancelled"
            operation.finished_at = utc_now()
        self._cancel.set()
        logger.info("Cancelled bulk import %s", operation.id)
        return operation

    def execute(self, overwrite_existing: bool = False) -> BulkImportSummary:
        with self.resume_store.lock.hold():
            with self.store.transaction() as doc:
                operation = doc.current
                if operation is None:
                    raise NotFoundError("No active bulk import operation")
                if operation.status == "completed":
                    logger.info("Bulk import %s already completed", operation.id)
                    return operation.summarize()
                if operation.status != "pending":
                    raise ConflictError(f"Bulk import is {operation.status}", details={"operation_id": operation.id})
                operation.status = "running"
                operation.started_at = utc_now()
                operation.overwrite_existing = overwrite_existing
            self._cancel.clear()

            changes: list[VersionChange] = []
            try:
                self._run_items(operation, overwrite_existing, changes)
            except Exception as exc:
                logger.exception("Bulk import %s failed", operation.id)
                self._log_changes(operation, changes, failed=True)
                self._finish(operation, "failed", error=str(exc))
                raise

        final = self._finish(operation, "completed")
        self._log_changes(operation, changes)
        summary = final.summarize()
        logger.info(
            "Bulk import %s %s: %s imported, %s duplicates, %s errors, %s skipped",
            final.id,
            final.status,
            summary.imported,
            summary.duplicates,
            summary.errors,
            summary.skipped,
        )
        return summary

    def _log_changes(self, operation: BulkImportOperation, changes: list[VersionChange], failed: bool = False) -> None:
        if not changes:
            return
        action = f"Bulk import from {operation.source_folder}"
        self.operations.log_operation(
            "bulk",
            user_action=f"{action} (failed after {len(changes)} imports)" if failed else action,
            affected_files=[change.version.stored_path for change in changes],
            manifest_entries=[change.entry.id for change in changes],
            inverse_action="revert_versions",
            inverse_payload={"versions": [change.undo_record() for change in changes]},
            can_undo=True,
        )

    def _run_items(
        self, operation: BulkImportOperation, overwrite_existing: bool, changes: list[VersionChange]
    ) -> None:
        """Import pending items, appending each saved version to ``changes`` as it lands."""
        resumes = self.resume_store.load()
        for item in operation.items:
            if self._cancel.is_set() or self._persisted_status(operation.id) == "cancelled":
                logger.info("Bulk import %s cancelled before %s", operation.id, item.filename)
                break
            if item.result_status is not None:
                continue

            change = self._import_item(resumes, item, overwrite_existing)
            if change is not None:
                changes.append(change)
                self.versions.sync_job_record(change.entry)
            self._record_progress(operation.id, item)

    def _import_item(
        self, resumes: ResumeManifestDocument, item: BulkImportPreviewItem, overwrite_existing: bool
    ) -> VersionChange | None:
        if item.user_override == OVERRIDE_SKIP:
            self._mark(item, "skipped", "Skipped by user")
            return None

        path = Path(item.source_file_path)
        try:
            data = path.read_bytes()
            extension = validate_upload(data, path.name, self.settings)
        except OSError as exc:
            self._mark(item, "error", f"Could not read file: {exc}")
            return None
        except ValidationError as exc:
            self._mark(item, "error", exc.message)
            return None

        if item.user_override == OVERRIDE_CREATE_NEW:
            try:
                job_uuid = self._create_job_for(item).uuid
            except TrailError as exc:
                self._mark(item, "error", exc.message)
                return None
        else:
            job_uuid = item.target_job_uuid
        if not job_uuid:
            self._mark(item, "skipped", "No job match")
            return None

        digest = digest_of(data)
        entry = resumes.find_for_job(job_uuid)
        if entry is not None:
            existing = entry.find_by_digest(digest)
            if existing is not None:
                item.resume_id, item.version_id = entry.id, existing.version_id
                self._mark(item, "duplicate", "File already attached to this job")
                return None
            active = entry.active_version()
            if active is not None:
                item.conflict = ImportConflict(existing_version_id=active.version_id)
                if not overwrite_existing:
                    self._mark(item, "skipped", "Job already has an active resume")
                    return None

        written: list[Path] = []
        try:
            change = self.versions.add_version_locked(
                resumes,
                job_uuid,
                data=data,
                original_filename=path.name,
                original_path=str(path),
                digest=digest,
                extension=extension or file_extension(path.name),
                replace_active=overwrite_existing,
                written=written,
            )
            self.resume_store.save(resumes)
        except StorageError as exc:
            self.versions.discard_files(written)
            resumes.resumes = self.resume_store.load().resumes
            self._mark(item, "error", exc.message)
            return None

        item.resume_id, item.version_id = change.entry.id, change.version.version_id
        self._mark(item, "imported", "Imported")
        return change

    def _create_job_for(self, item: BulkImportPreviewItem) -> JobRecord:
        parsed = parse_job_filename(item.filename)
        if parsed is None:
            raise InvalidArgumentError(f"Cannot derive company and role from {item.filename}")
        company, role, applied = parsed
        fields: dict[str, Any] = {
            "company": company,
            "role": role,
            "imported_from": item.source_file_path,
            "imported_at": utc_now(),
        }
        if applied is not None:
            fields["applied_date"] = applied.isoformat()
        job = self.job_store.create(fields)
        logger.info("Created job %s for %s", job.uuid, item.filename)
        return job

    @staticmethod
    def _mark(item: BulkImportPreviewItem, status: str, message: str) -> None:
        item.result_status = status
        item.result_message = message

    def _persisted_status(self, operation_id: str) -> str | None:
        current = self.store.load().current
        if current is None or current.id != operation_id:
            return "cancelled"
        return current.status

    def _record_progress(self, operation_id: str, item: BulkImportPreviewItem) -> None:
        with self.store.transaction() as doc:
            current = doc.current
            if current is None or current.id != operation_id:
                return
            current.items = [item if existing.item_id == item.item_id else existing for existing in current.items]

    def _finish(self, operation: BulkImportOperation, status: str, error: str | None = None) -> BulkImportOperation:
        with self.store.transaction() as doc:
            current = doc.current
            if current is None or current.id != operation.id:
                return operation
            current.items = operation.items
            if current.status != "cancelled":
                current.status = status
            current.finished_at = utc_now()
            current.error = error
        return current
