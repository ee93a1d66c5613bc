from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from jobtrail.config import Settings
from jobtrail.core.extraction import ExtractionQueue
from jobtrail.core.operations import OperationsLog
from jobtrail.core.validation import preview_available, validate_upload
from jobtrail.errors import NotFoundError, StorageError, ValidationError
from jobtrail.storage.content_store import ContentStore, digest_of, safe_filename
from jobtrail.storage.documents import JsonDocumentStore
from jobtrail.types import (
    BulkUploadSummary,
    DuplicateResult,
    ResumeManifestDocument,
    StagingDocument,
    UnassignedResumeEntry,
    UploadDetail,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

ExtractionFallback = Callable[[str, str | None, str | None], None]


class StagingArea:
    """The unassigned pool: uploaded resumes not yet bound to a job."""

    def __init__(
        self,
        settings: Settings,
        store: JsonDocumentStore[StagingDocument],
        resume_store: JsonDocumentStore[ResumeManifestDocument],
        content: ContentStore,
        operations: OperationsLog,
        extraction_queue: ExtractionQueue | None = None,
    ):
        self.settings = settings
        self.store = store
        self.resume_store = resume_store
        self.content = content
        self.operations = operations
        self.extraction_queue = extraction_queue
        # Called when extraction finishes after the entry has already left staging.
        self.extraction_fallback: ExtractionFallback | None = None

    def upload(self, data: bytes, filename: str, original_path: str = "") -> UnassignedResumeEntry | DuplicateResult:
        extension = validate_upload(data, filename, self.settings)
        written: list[Path] = []
        try:
            with self.store.transaction() as doc:
                result = self._ingest(doc, data, filename, extension, original_path, written)
        except StorageError:
            self.discard_files(written)
            raise

        if isinstance(result, DuplicateResult):
            logger.info("Upload of %s matched staged resume %s", filename, result.existing.id)
            return result

        self.operations.log_operation(
            "create",
            user_action=f"Uploaded {filename} to unassigned resumes",
            affected_files=[result.stored_path],
            manifest_entries=[result.id],
            inverse_action="delete_staging_entries",
            inverse_payload={"resume_ids": [result.id]},
            can_undo=True,
        )
        self._schedule_extraction(result)
        return result

    def bulk_upload(self, files: list[tuple[str, bytes]]) -> BulkUploadSummary:
        summary = BulkUploadSummary()
        created: list[UnassignedResumeEntry] = []
        written: list[Path] = []
        try:
            with self.store.transaction() as doc:
                for filename, data in files:
                    try:
                        extension = validate_upload(data, filename, self.settings)
                        result = self._ingest(doc, data, filename, extension, "", written)
                    except (ValidationError, StorageError) as exc:
                        summary.errors += 1
                        summary.details.append(UploadDetail(filename=filename, status="error", message=exc.message))
                        continue

                    if isinstance(result, DuplicateResult):
                        summary.duplicates += 1
                        summary.details.append(
                            UploadDetail(filename=filename, status="duplicate", message=result.message, resume=result.existing)
                        )
                    else:
                        summary.imported += 1
                        created.append(result)
                        summary.details.append(
                            UploadDetail(filename=filename, status="imported", message="Uploaded", resume=result)
                        )
        except StorageError:
            self.discard_files(written)
            raise

        if created:
            self.operations.log_operation(
                "create",
                user_action=f"Bulk uploaded {len(created)} resumes to unassigned resumes",
                affected_files=[entry.stored_path for entry in created],
                manifest_entries=[entry.id for entry in created],
                inverse_action="delete_staging_entries",
                inverse_payload={"resume_ids": [entry.id for entry in created]},
                can_undo=True,
            )
        for entry in created:
            self._schedule_extraction(entry)
        logger.info("Bulk upload finished: %s", summary.summary or "nothing to do")
        return summary

    def _ingest(
        self,
        doc: StagingDocument,
        data: bytes,
        filename: str,
        extension: str,
        original_path: str,
        written: list[Path],
    ) -> UnassignedResumeEntry | DuplicateResult:
        digest = digest_of(data)
        existing = doc.find_by_digest(digest)
        if existing is not None:
            return DuplicateResult(existing=existing)

        resume_id = new_id()
        stamp = utc_now().isoformat().replace(":", "-").replace(".", "-")
        stored_name = f"{stamp}_{resume_id[:8]}_{safe_filename(filename)}"
        _, stored_path = self.content.store(data, self.settings.unassigned_dir, stored_name)
        written.append(stored_path)

        entry = UnassignedResumeEntry(
            id=resume_id,
            filename=filename,
            stored_path=str(stored_path),
            original_path=original_path,
            size_bytes=len(data),
            extension=extension,
            content_digest=digest,
            preview_available=preview_available(extension),
        )
        doc.resumes.append(entry)
        return entry

    def discard_files(self, paths: list[Path]) -> None:
        for path in paths:
            try:
                self.content.remove(path)
            except StorageError as exc:
                logger.warning("Could not clean up %s: %s", path, exc.message)

    def _schedule_extraction(self, entry: UnassignedResumeEntry) -> None:
        if self.extraction_queue is None:
            return
        resume_id = entry.id

        def _done(text: str | None, error: str | None) -> None:
            if not self.record_extraction(resume_id, text, error) and self.extraction_fallback:
                self.extraction_fallback(resume_id, text, error)

        self.extraction_queue.submit(Path(entry.stored_path), _done)

    def record_extraction(self, resume_id: str, text: str | None, error: str | None = None) -> bool:
        """Store an extraction outcome. Returns False when the entry is no longer staged."""
        with self.store.transaction() as doc:
            entry = doc.find(resume_id)
            if entry is None:
                return False
            if error is None and text is not None:
                entry.extracted_text = text
                entry.extraction_status = "success"
                entry.extraction_error = None
            else:
                entry.extraction_status = "failed"
                entry.extraction_error = error
        return True

    def get(self, resume_id: str) -> UnassignedResumeEntry:
        entry = self.store.load().find(resume_id)
        if entry is None:
            raise NotFoundError(f"Unassigned resume {resume_id} not found")
        return entry

    def list(self) -> list[UnassignedResumeEntry]:
        self.reconcile()
        resumes = self.store.load().resumes
        return sorted(resumes, key=lambda item: item.uploaded_at, reverse=True)

    def delete(self, resume_id: str) -> UnassignedResumeEntry:
        with self.store.transaction() as doc:
            entry = doc.find(resume_id)
            if entry is None:
                raise NotFoundError(f"Unassigned resume {resume_id} not found")
            self.content.remove(Path(entry.stored_path))
            doc.resumes = [item for item in doc.resumes if item.id != resume_id]

        self.operations.log_operation(
            "delete",
            user_action=f"Deleted unassigned resume {entry.filename}",
            affected_files=[entry.stored_path],
            manifest_entries=[entry.id],
        )
        return entry

    def reconcile(self) -> list[str]:
        """Drop staging entries that already made it into a resume lineage.

        Attach saves the resume manifest before the staging manifest; a crash in
        between leaves the entry in both places.
        """
        attached = {
            version.source_staging_id
            for entry in self.resume_store.load().resumes
            for version in entry.versions
            if version.source_staging_id
        }
        if not attached or not any(item.id in attached for item in self.store.load().resumes):
            return []

        removed: list[str] = []
        with self.store.transaction() as doc:
            keep: list[UnassignedResumeEntry] = []
            for item in doc.resumes:
                if item.id in attached:
                    self.content.remove(Path(item.stored_path))
                    removed.append(item.id)
                else:
                    keep.append(item)
            doc.resumes = keep
        logger.warning("Reconciled %s staging entries already attached: %s", len(removed), removed)
        return removed
