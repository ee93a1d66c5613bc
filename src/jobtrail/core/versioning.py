from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jobtrail.config import Settings
from jobtrail.core.naming import sanitize_component
from jobtrail.core.operations import OperationsLog
from jobtrail.core.records import JobRecordStore
from jobtrail.errors import ConflictError, InvalidArgumentError, NotFoundError, StorageError
from jobtrail.storage.content_store import ContentStore, digest_of_file
from jobtrail.storage.documents import JsonDocumentStore
from jobtrail.types import (
    ExtractionStatus,
    FilenameComponents,
    JobRecord,
    OperationLogEntry,
    ResumeManifestDocument,
    ResumeManifestEntry,
    ResumeVersionEntry,
    StagingDocument,
    UnassignedResumeEntry,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)


def version_suffix(existing_versions: int) -> str:
    return "" if existing_versions == 0 else f"_v{existing_versions}"


@dataclass(slots=True)
class VersionChange:
    entry: ResumeManifestEntry
    version: ResumeVersionEntry
    created_entry: bool
    previous_active_version_id: str | None

    def undo_record(self) -> dict[str, Any]:
        return {
            "resume_id": self.entry.id,
            "version_id": self.version.version_id,
            "created_entry": self.created_entry,
            "previous_active_version_id": self.previous_active_version_id,
        }


class VersionEngine:
    """Owns resume lineages: attach, rollback and the one-active-version rule.

    Lock order is staging manifest first, then resume manifest.
    """

    def __init__(
        self,
        settings: Settings,
        resume_store: JsonDocumentStore[ResumeManifestDocument],
        staging_store: JsonDocumentStore[StagingDocument],
        content: ContentStore,
        operations: OperationsLog,
        job_store: JobRecordStore | None = None,
    ):
        self.settings = settings
        self.resume_store = resume_store
        self.staging_store = staging_store
        self.content = content
        self.operations = operations
        self.job_store = job_store

    # queries

    def list_entries(self) -> list[ResumeManifestEntry]:
        return self.resume_store.load().resumes

    def get_entry(self, resume_id: str) -> ResumeManifestEntry:
        entry = self.resume_store.load().find(resume_id)
        if entry is None:
            raise NotFoundError(f"Resume {resume_id} not found in manifest")
        return entry

    def get_entry_for_job(self, job_uuid: str) -> ResumeManifestEntry | None:
        return self.resume_store.load().find_for_job(job_uuid)

    def version_history(self, resume_id: str) -> list[ResumeVersionEntry]:
        return sorted(self.get_entry(resume_id).versions, key=lambda version: version.uploaded_at)

    def active_version(self, resume_id: str) -> ResumeVersionEntry | None:
        return self.get_entry(resume_id).active_version()

    # mutations

    def attach(
        self,
        resume_id: str,
        job_uuid: str,
        *,
        replace_active: bool = False,
        set_as_active: bool = True,
    ) -> ResumeManifestEntry:
        with self.staging_store.lock.hold():
            staged = self.staging_store.load().find(resume_id)
            if staged is None:
                raise NotFoundError(f"Resume {resume_id} not found in unassigned resumes")

            written: list[Path] = []
            try:
                with self.resume_store.transaction() as doc:
                    change = self.add_version_locked(
                        doc,
                        job_uuid,
                        source_path=Path(staged.stored_path),
                        original_filename=staged.filename,
                        original_path=staged.original_path,
                        digest=staged.content_digest,
                        extension=staged.extension,
                        replace_active=replace_active,
                        set_as_active=set_as_active,
                        source_staging_id=staged.id,
                        extracted_text=staged.extracted_text,
                        extraction_status=staged.extraction_status,
                        written=written,
                    )
            except Exception:
                self.discard_files(written)
                raise

            with self.staging_store.transaction() as staging_doc:
                staging_doc.resumes = [item for item in staging_doc.resumes if item.id != staged.id]
            self.content.remove(Path(staged.stored_path))

        logger.info(
            "Attached %s to job %s as version %s%s",
            staged.filename,
            job_uuid,
            change.version.version_id,
            " (active)" if change.version.is_active else "",
        )
        self.sync_job_record(change.entry)
        self.operations.log_operation(
            "update",
            user_action=f"Attached {staged.filename} to job {job_uuid}",
            affected_files=[change.version.stored_path, staged.stored_path],
            manifest_entries=[change.entry.id, staged.id],
            inverse_action="revert_attach",
            inverse_payload={**change.undo_record(), "staging_entry": staged.model_dump(mode="json")},
            can_undo=True,
        )
        return change.entry

    def add_version_locked(
        self,
        doc: ResumeManifestDocument,
        job_uuid: str,
        *,
        source_path: Path | None = None,
        data: bytes | None = None,
        original_filename: str,
        original_path: str = "",
        digest: str,
        extension: str,
        replace_active: bool = False,
        set_as_active: bool = True,
        source_staging_id: str | None = None,
        extracted_text: str | None = None,
        extraction_status: ExtractionStatus | None = None,
        written: list[Path] | None = None,
    ) -> VersionChange:
        """Append a version to the job's lineage inside an open resume-manifest transaction.

        Writes the managed file before touching ``doc``; the caller owns cleanup
        of ``written`` if the surrounding save fails.
        """
        entry = doc.find_for_job(job_uuid)
        if entry is not None:
            existing = entry.find_by_digest(digest)
            if existing is not None:
                raise ConflictError(
                    "This exact file is already attached to the job",
                    details={"existing_version_id": existing.version_id, "resume_id": entry.id},
                )

        created = entry is None
        if entry is None:
            entry = self._new_entry(job_uuid, extension)
        activate = created or set_as_active or replace_active
        suffix = version_suffix(len(entry.versions))
        filename = f"{entry.base_filename}{suffix}{entry.file_extension or extension}"

        if data is not None:
            _, stored_path = self.content.store(data, self.settings.managed_resume_dir, filename)
        elif source_path is not None:
            stored_path = self.content.copy(source_path, self.settings.managed_resume_dir, filename)
        else:
            raise InvalidArgumentError("Either data or source_path is required")
        if written is not None:
            written.append(stored_path)

        previous = entry.active_version()
        version = ResumeVersionEntry(
            version_suffix=suffix,
            stored_path=str(stored_path),
            original_path=original_path,
            original_filename=original_filename,
            content_digest=digest,
            extracted_text=extracted_text,
            extraction_status=extraction_status,
            source_staging_id=source_staging_id,
        )
        if activate:
            for sibling in entry.versions:
                sibling.is_active = False
            version.is_active = True
        entry.versions.append(version)
        entry.last_updated = utc_now()
        if extracted_text and version.is_active:
            entry.latest_extracted_text = extracted_text
            entry.latest_extraction_status = extraction_status or "success"
        if created:
            doc.resumes.append(entry)

        return VersionChange(
            entry=entry,
            version=version,
            created_entry=created,
            previous_active_version_id=previous.version_id if previous else None,
        )

    def _new_entry(self, job_uuid: str, extension: str) -> ResumeManifestEntry:
        company, role = "Unknown_Company", "Unknown_Role"
        job = self._lookup_job(job_uuid)
        if job is not None:
            company = job.company or company
            role = job.role or role
        date = utc_now().strftime("%Y-%m-%d")
        return ResumeManifestEntry(
            job_uuid=job_uuid,
            base_filename=f"{sanitize_component(company)}_{sanitize_component(role)}_{date}",
            filename_components=FilenameComponents(company=company, role=role, date=date),
            file_extension=extension,
        )

    def _lookup_job(self, job_uuid: str) -> JobRecord | None:
        if self.job_store is None:
            return None
        try:
            return self.job_store.get(job_uuid)
        except Exception as exc:
            logger.warning("Could not look up job %s: %s", job_uuid, exc)
            return None

    def rollback(self, resume_id: str, target_version_id: str) -> ResumeVersionEntry:
        written: list[Path] = []
        try:
            with self.resume_store.transaction() as doc:
                entry = doc.find(resume_id)
                if entry is None:
                    raise NotFoundError(f"Resume {resume_id} not found in manifest")
                target = entry.find_version(target_version_id)
                if target is None:
                    if any(other.find_version(target_version_id) for other in doc.resumes):
                        raise InvalidArgumentError(
                            f"Version {target_version_id} belongs to a different resume",
                            details={"resume_id": resume_id},
                        )
                    raise NotFoundError(f"Version {target_version_id} not found")

                source = Path(target.stored_path)
                if not source.is_file():
                    raise StorageError(
                        "Target version file no longer exists",
                        details={"version_id": target_version_id, "path": target.stored_path},
                    )

                suffix = version_suffix(len(entry.versions))
                stored_path = self.content.copy(
                    source,
                    self.settings.managed_resume_dir,
                    f"{entry.base_filename}{suffix}{entry.file_extension}",
                )
                written.append(stored_path)

                previous = entry.active_version()
                version = ResumeVersionEntry(
                    version_suffix=suffix,
                    stored_path=str(stored_path),
                    original_path=target.original_path,
                    original_filename=f"ROLLBACK_TO_{target.version_suffix or 'original'}_{target.original_filename}",
                    content_digest=digest_of_file(stored_path),
                    extracted_text=target.extracted_text,
                    extraction_status=target.extraction_status,
                    rolled_back_from=target.version_id,
                )
                for sibling in entry.versions:
                    sibling.is_active = False
                version.is_active = True
                entry.versions.append(version)
                entry.last_updated = utc_now()
                if target.extracted_text:
                    entry.latest_extracted_text = target.extracted_text
                    entry.latest_extraction_status = target.extraction_status or "success"
        except Exception:
            self.discard_files(written)
            raise

        logger.info("Rolled back resume %s to %s as %s", resume_id, target_version_id, version.version_id)
        self.sync_job_record(entry)
        self.operations.log_operation(
            "update",
            user_action=f"Rolled back resume {entry.base_filename} to version {target.version_suffix or 'original'}",
            affected_files=[version.stored_path],
            manifest_entries=[entry.id],
            inverse_action="revert_version",
            inverse_payload={
                "resume_id": entry.id,
                "version_id": version.version_id,
                "created_entry": False,
                "previous_active_version_id": previous.version_id if previous else None,
            },
            can_undo=True,
        )
        return version

    def delete_resume(self, resume_id: str) -> ResumeManifestEntry:
        operation_id = new_id()
        trash_dir = self.settings.trash_dir / operation_id
        moved: dict[str, str] = {}
        try:
            with self.resume_store.transaction() as doc:
                entry = doc.find(resume_id)
                if entry is None:
                    raise NotFoundError(f"Resume {resume_id} not found in manifest")
                for version in entry.versions:
                    source = Path(version.stored_path)
                    if not source.exists():
                        logger.warning("Version file already missing: %s", source)
                        continue
                    target = trash_dir / f"{version.version_id}_{source.name}"
                    self.content.move(source, target)
                    moved[version.stored_path] = str(target)
                doc.resumes = [item for item in doc.resumes if item.id != resume_id]
        except Exception:
            for original, trashed in moved.items():
                self.content.move(Path(trashed), Path(original))
            raise

        self._clear_job_record(entry.job_uuid)
        self.operations.log_operation(
            "delete",
            user_action=f"Deleted resume {entry.base_filename} ({len(entry.versions)} versions)",
            affected_files=list(moved),
            manifest_entries=[entry.id],
            inverse_action="restore_resume",
            inverse_payload={"entry": entry.model_dump(mode="json"), "trash": moved},
            can_undo=True,
            operation_id=operation_id,
        )
        return entry

    def record_extraction(
        self, resume_id: str, version_id: str, text: str | None, error: str | None = None
    ) -> ResumeVersionEntry:
        with self.resume_store.transaction() as doc:
            entry = doc.find(resume_id)
            version = entry.find_version(version_id) if entry else None
            if entry is None or version is None:
                raise NotFoundError(f"Version {version_id} of resume {resume_id} not found")
            self._apply_extraction(entry, version, text, error)
        if version.is_active:
            self.sync_job_record(entry)
        return version

    def record_staging_extraction(self, staging_id: str, text: str | None, error: str | None = None) -> bool:
        """Deliver a late extraction result to the version created from a staging entry."""
        with self.resume_store.transaction() as doc:
            owner = next(
                (
                    (entry, version)
                    for entry in doc.resumes
                    for version in entry.versions
                    if version.source_staging_id == staging_id
                ),
                None,
            )
            if owner is not None:
                self._apply_extraction(*owner, text, error)
        if owner is None:
            logger.warning("Extraction result for %s has no owner", staging_id)
            return False
        entry, version = owner
        if version.is_active:
            self.sync_job_record(entry)
        return True

    @staticmethod
    def _apply_extraction(
        entry: ResumeManifestEntry, version: ResumeVersionEntry, text: str | None, error: str | None
    ) -> None:
        if error is None and text is not None:
            version.extracted_text = text
            version.extraction_status = "success"
            version.extraction_error = None
        else:
            version.extraction_status = "failed"
            version.extraction_error = error
        if version.is_active:
            entry.latest_extracted_text = version.extracted_text
            entry.latest_extraction_status = version.extraction_status
        entry.last_updated = utc_now()

    # inverse actions used by undo

    def revert_version(self, record: dict[str, Any]) -> ResumeVersionEntry:
        with self.resume_store.transaction() as doc:
            entry, removed = self.remove_version_locked(doc, record)
        self.content.remove(Path(removed.stored_path))
        self._sync_after_revert(doc, entry)
        return removed

    def revert_versions(self, records: list[dict[str, Any]]) -> list[ResumeVersionEntry]:
        removed: list[ResumeVersionEntry] = []
        touched: dict[str, ResumeManifestEntry] = {}
        with self.resume_store.transaction() as doc:
            for record in reversed(records):
                try:
                    entry, version = self.remove_version_locked(doc, record)
                except NotFoundError as exc:
                    logger.warning("Skipping version during revert: %s", exc.message)
                    continue
                removed.append(version)
                touched[entry.id] = entry
        for version in removed:
            self.content.remove(Path(version.stored_path))
        for entry in touched.values():
            self._sync_after_revert(doc, entry)
        return removed

    def revert_attach(self, record: dict[str, Any]) -> ResumeVersionEntry:
        staged = UnassignedResumeEntry.model_validate(record["staging_entry"])
        with self.staging_store.transaction() as staging_doc:
            with self.resume_store.transaction() as doc:
                entry = doc.find(record["resume_id"])
                version = entry.find_version(record["version_id"]) if entry else None
                if version is None:
                    raise NotFoundError(f"Attached version {record['version_id']} no longer exists")
                staged_path = Path(staged.stored_path)
                if not staged_path.exists():
                    self.content.copy(Path(version.stored_path), staged_path.parent, staged_path.name)
                entry, removed = self.remove_version_locked(doc, record)
            if staging_doc.find(staged.id) is None:
                staging_doc.resumes.append(staged)
        self.content.remove(Path(removed.stored_path))
        self._sync_after_revert(doc, entry)
        return removed

    def remove_version_locked(
        self, doc: ResumeManifestDocument, record: dict[str, Any]
    ) -> tuple[ResumeManifestEntry, ResumeVersionEntry]:
        entry = doc.find(record["resume_id"])
        if entry is None:
            raise NotFoundError(f"Resume {record['resume_id']} no longer exists")
        version = entry.find_version(record["version_id"])
        if version is None:
            raise NotFoundError(f"Version {record['version_id']} no longer exists")

        entry.versions = [item for item in entry.versions if item.version_id != version.version_id]
        if not entry.versions:
            doc.resumes = [item for item in doc.resumes if item.id != entry.id]
            return entry, version

        if version.is_active:
            previous = entry.find_version(record.get("previous_active_version_id") or "")
            restored = previous or entry.versions[-1]
            for sibling in entry.versions:
                sibling.is_active = sibling.version_id == restored.version_id
            entry.latest_extracted_text = restored.extracted_text
            entry.latest_extraction_status = restored.extraction_status
        entry.last_updated = utc_now()
        return entry, version

    def restore_resume(self, record: dict[str, Any]) -> ResumeManifestEntry:
        entry = ResumeManifestEntry.model_validate(record["entry"])
        trash: dict[str, str] = record.get("trash", {})
        with self.resume_store.transaction() as doc:
            if doc.find(entry.id) is not None or doc.find_for_job(entry.job_uuid) is not None:
                raise ConflictError(
                    f"Job {entry.job_uuid} already has a resume lineage", details={"resume_id": entry.id}
                )
            for original, trashed in trash.items():
                self.content.move(Path(trashed), Path(original))
            doc.resumes.append(entry)
        self.sync_job_record(entry)
        return entry

    def _sync_after_revert(self, doc: ResumeManifestDocument, entry: ResumeManifestEntry) -> None:
        if doc.find(entry.id) is None:
            self._clear_job_record(entry.job_uuid)
        else:
            self.sync_job_record(entry)

    # job record side effects are best-effort

    def sync_job_record(self, entry: ResumeManifestEntry) -> None:
        active = entry.active_version()
        if self.job_store is None or active is None:
            return
        text = active.extracted_text or entry.latest_extracted_text
        fields = {
            "active_resume_version_id": active.version_id,
            "resume_filename": active.original_filename,
            "resume_path": active.stored_path,
            "resume_text_extracted": text or "",
            "resume_text_source": "extracted" if text else "none",
            "extraction_status": active.extraction_status or "pending",
        }
        try:
            self.job_store.patch(entry.job_uuid, fields)
        except Exception as exc:
            logger.warning("Failed to update job %s with active resume: %s", entry.job_uuid, exc)

    def _clear_job_record(self, job_uuid: str) -> None:
        if self.job_store is None:
            return
        try:
            self.job_store.patch(
                job_uuid,
                {"active_resume_version_id": None, "resume_filename": None, "resume_path": None},
            )
        except Exception as exc:
            logger.warning("Failed to clear resume fields on job %s: %s", job_uuid, exc)

    def discard_files(self, paths: list[Path]) -> None:
        for path in paths:
            try:
                self.content.remove(path)
            except StorageError as exc:
                logger.warning("Could not remove orphan %s: %s", path, exc.message)

    def purge_trash(self, dropped: list[OperationLogEntry]) -> None:
        """Delete trashed files whose delete can no longer be undone."""
        for op in dropped:
            if op.inverse_action is None or op.inverse_action.action != "restore_resume":
                continue
            try:
                if self.content.remove_tree(self.settings.trash_dir / op.id):
                    logger.info("Pruned trash for operation %s", op.id)
            except StorageError as exc:
                logger.warning("Could not prune trash for %s: %s", op.id, exc.message)
