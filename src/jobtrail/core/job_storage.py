from __future__ import annotations

import hashlib
import json
import logging
import re
import shutil
from pathlib import Path
from typing import Any, Protocol

from bs4 import BeautifulSoup

from jobtrail.config import Settings
from jobtrail.core.naming import parse_job_filename
from jobtrail.core.operations import OperationsLog
from jobtrail.errors import InvalidArgumentError, StorageError, TrailError
from jobtrail.storage.documents import JsonDocumentStore, write_text_atomic
from jobtrail.types import (
    AttachmentFile,
    FileManagementPolicy,
    FilePolicyDocument,
    ImportableJob,
    JobFolderPreview,
    JobRecord,
    JobStorageResult,
    MigrationLogEntry,
    MigrationResult,
    MigrationSummary,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

_FOLDER_UNSAFE = re.compile(r"[^A-Za-z0-9]+")
_SNIPPET_LIMIT = 5000
_RELATED_SUFFIXES = (".pdf", ".doc", ".docx")
BACKUP_DIRNAME = "_backups"


class SnapshotCapture(Protocol):
    def capture(self, job: JobRecord, folder: Path) -> Path: ...


def sanitize_folder_name(value: str | None, fallback: str) -> str:
    cleaned = _FOLDER_UNSAFE.sub("_", (value or "").strip()).strip("_")[:100]
    return cleaned or fallback


def job_date(job: JobRecord) -> str:
    if job.applied_date:
        return job.applied_date[:10]
    if job.fetched_at:
        return job.fetched_at.date().isoformat()
    return utc_now().date().isoformat()


def render_job_text(job: JobRecord) -> str:
    lines = [
        f"Job Application: {job.role or 'Unknown Role'}",
        f"Company: {job.company or 'Unknown Company'}",
        f"Date Saved: {(job.fetched_at or utc_now()).date().isoformat()}",
        f"Status: {job.application_status or 'N/A'}",
        f"Applied Date: {job.applied_date or 'N/A'}",
        "",
    ]
    if job.source_url:
        lines += [f"Source URL: {job.source_url}", ""]
    if job.imported_from:
        lines += [f"Imported from: {job.imported_from}", ""]
    lines += ["Job Description:", "---", job.jd_text]
    return "\n".join(lines)


def record_from_detected(detected: dict[str, Any]) -> JobRecord:
    return JobRecord.model_validate({key: value for key, value in detected.items() if value is not None})


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.extract()
    text = soup.get_text("\n")
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return "\n".join(lines)


class JobFileStorage:
    """Per-job folders on disk: ``<root>/<company>/<role>_<YYYYMMDD>/``."""

    def __init__(
        self,
        settings: Settings,
        policy_store: JsonDocumentStore[FilePolicyDocument],
        operations: OperationsLog,
        snapshot: SnapshotCapture | None = None,
    ):
        self.settings = settings
        self.policy_store = policy_store
        self.operations = operations
        self.snapshot = snapshot

    # policy

    def default_policy(self) -> FileManagementPolicy:
        return FileManagementPolicy(
            root_directory=self.settings.job_root_directory,
            attachment_mode=self.settings.attachment_mode,
            generate_snapshots=self.settings.generate_snapshots,
            migration_log_path=self.settings.migration_log_path,
            create_backups=self.settings.create_backups,
        )

    def policy(self) -> FileManagementPolicy:
        return self.policy_store.load().policy or self.default_policy()

    def update_policy(self, **changes: Any) -> FileManagementPolicy:
        unknown = set(changes) - set(FileManagementPolicy.model_fields)
        if unknown:
            raise InvalidArgumentError(f"Unknown policy fields: {sorted(unknown)}")
        with self.policy_store.transaction() as doc:
            current = doc.policy or self.default_policy()
            doc.policy = FileManagementPolicy.model_validate({**current.model_dump(), **changes})
        logger.info("File management policy updated: %s", sorted(changes))
        return doc.policy

    # folders

    def job_folder(self, job: JobRecord, root: Path | None = None) -> Path:
        root = Path(root or self.policy().root_directory)
        company = sanitize_folder_name(job.company, "Unknown_Company")
        role = sanitize_folder_name(job.role, "Unknown_Role")
        return root / company / f"{role}_{job_date(job).replace('-', '')}"

    def preview_job_folder(self, job: JobRecord) -> JobFolderPreview:
        policy = self.policy()
        expected = ["job.json", "job.txt"]
        if policy.attachment_mode == "copy":
            expected += ["resume.pdf", "jd.html"]
        if policy.generate_snapshots:
            expected.append("snapshot-*.png")
        return JobFolderPreview(
            computed_path=str(self.job_folder(job, policy.root_directory)),
            company=job.company or "Unknown Company",
            role=job.role or "Unknown Role",
            date=job_date(job),
            attachment_mode=policy.attachment_mode,
            expected_files=expected,
        )

    @staticmethod
    def _attachment_filename(attachment: AttachmentFile) -> str:
        if attachment.type == "resume":
            return f"resume{Path(attachment.original_path).suffix.lower()}"
        if attachment.filename:
            return Path(attachment.filename).name
        if attachment.type == "job_description":
            return "jd.html"
        if attachment.type == "screenshot":
            return f"snapshot-{utc_now().strftime('%Y-%m-%dT%H-%M-%S')}.png"
        return Path(attachment.original_path).name

    def save_job(
        self,
        job: JobRecord,
        attachments: list[AttachmentFile] | None = None,
        generate_snapshot: bool = False,
    ) -> JobStorageResult:
        policy = self.policy()
        folder = self.job_folder(job, policy.root_directory)
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create job folder {folder}: {exc}") from exc

        result = JobStorageResult(
            folder_path=str(folder),
            job_json_path=str(folder / "job.json"),
            job_txt_path=str(folder / "job.txt"),
        )
        for attachment in attachments or []:
            if policy.attachment_mode == "reference":
                result.attachment_paths[attachment.type] = attachment.original_path
                continue
            target = folder / self._attachment_filename(attachment)
            try:
                if attachment.content is not None:
                    target.write_bytes(attachment.content)
                else:
                    shutil.copyfile(attachment.original_path, target)
            except OSError as exc:
                logger.warning("Failed to store %s attachment for job %s: %s", attachment.type, job.uuid, exc)
                result.attachment_errors.append(f"{attachment.type}: {exc}")
                continue
            result.attachment_paths[attachment.type] = str(target)

        if generate_snapshot and policy.generate_snapshots:
            self._capture_snapshot(job, folder, result)

        payload = {
            **job.model_dump(mode="json"),
            "storage_folder": str(folder),
            "attachment_mode": policy.attachment_mode,
            "attachment_paths": result.attachment_paths,
            "snapshot_paths": result.snapshot_paths,
            "saved_to_disk": True,
            "disk_save_timestamp": utc_now().isoformat(),
        }
        write_text_atomic(Path(result.job_json_path), json.dumps(payload, indent=2))
        write_text_atomic(Path(result.job_txt_path), render_job_text(job))

        self.operations.log_operation(
            "create",
            user_action=f"Saved job {job.company or 'Unknown Company'} / {job.role or 'Unknown Role'} to disk",
            affected_files=[result.job_json_path, result.job_txt_path, *result.attachment_paths.values()],
            manifest_entries=[job.uuid],
        )
        return result

    def _capture_snapshot(self, job: JobRecord, folder: Path, result: JobStorageResult) -> None:
        if self.snapshot is None:
            result.snapshot_errors.append("No snapshot capability configured")
            return
        try:
            result.snapshot_paths.append(str(self.snapshot.capture(job, folder)))
        except Exception as exc:
            logger.warning("Snapshot capture failed for job %s: %s", job.uuid, exc)
            result.snapshot_errors.append(str(exc))

    # migration

    def scan_importable_jobs(self, root: Path) -> list[ImportableJob]:
        if not root.is_dir():
            return []
        found: list[ImportableJob] = []
        seen: set[str] = set()
        for path in sorted(root.rglob("*")):
            if not path.is_file() or BACKUP_DIRNAME in path.relative_to(root).parts:
                continue
            detected = self._detect_job(path)
            if not detected:
                continue
            text = detected.get("jd_text") or ""
            key = "_".join(
                [
                    (detected.get("company") or "").lower(),
                    (detected.get("role") or "").lower(),
                    hashlib.sha256(text.encode("utf-8")).hexdigest()[:8] if text else "",
                ]
            )
            if key in seen:
                continue
            seen.add(key)
            found.append(
                ImportableJob(
                    original_path=str(path),
                    file_name=path.name,
                    detected_job=detected,
                    proposed_folder=str(self.job_folder(record_from_detected(detected), root)),
                )
            )
        return found

    def _detect_job(self, path: Path) -> dict[str, Any] | None:
        name = path.name.lower()
        if name == "job.json":
            try:
                parsed = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable job file %s: %s", path, exc)
                return None
            if not isinstance(parsed, dict) or not (parsed.get("uuid") or parsed.get("company") or parsed.get("role")):
                return None
            return {key: parsed.get(key) for key in ("uuid", "company", "role", "jd_text", "source_url", "applied_date")}

        if path.suffix.lower() not in (".txt", ".html", ".htm") or name == "job.txt":
            return None
        parsed_name = parse_job_filename(path.name)
        if parsed_name is None:
            return None
        company, role, applied = parsed_name
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Skipping unreadable job file %s: %s", path, exc)
            return None
        text = html_to_text(raw) if path.suffix.lower() in (".html", ".htm") else raw.strip()
        return {
            "company": company,
            "role": role,
            "applied_date": applied.isoformat() if applied else None,
            "jd_text": text[:_SNIPPET_LIMIT] if len(text) > 50 else "",
        }

    @staticmethod
    def _estimate(jobs_found: int) -> str:
        if jobs_found > 50:
            return "5-10 minutes"
        if jobs_found > 10:
            return "1-5 minutes"
        return "< 1 minute"

    def prepare_migration(self, new_root: Path | str) -> MigrationSummary:
        old_root = Path(self.policy().root_directory)
        new_root = Path(new_root).expanduser()
        has_existing = old_root.is_dir() and any(old_root.iterdir())
        required = has_existing and old_root.resolve() != new_root.resolve()
        summary = MigrationSummary(
            old_root=str(old_root),
            new_root=str(new_root),
            has_existing_jobs=has_existing,
            migration_required=required,
        )
        if required:
            summary.jobs_found = len(self.scan_importable_jobs(old_root))
            summary.estimated_time = self._estimate(summary.jobs_found)
        return summary

    def execute_migration(
        self,
        new_root: Path | str,
        copy_files: bool = False,
        create_backup: bool = False,
        overwrite_existing: bool = False,
    ) -> MigrationResult:
        old_policy = self.policy()
        new_root = Path(new_root).expanduser()
        try:
            new_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create new root directory {new_root}: {exc}") from exc

        jobs = self.scan_importable_jobs(Path(old_policy.root_directory))
        new_policy = old_policy.model_copy(
            update={
                "root_directory": new_root,
                "attachment_mode": "copy" if copy_files else old_policy.attachment_mode,
                "create_backups": create_backup,
            }
        )
        result = MigrationResult(total_files=len(jobs))
        backup_folder: Path | None = None
        if create_backup:
            backup_folder = new_root / BACKUP_DIRNAME / f"import_{result.operation_id}"
            backup_folder.mkdir(parents=True, exist_ok=True)
            result.backup_folder = str(backup_folder)

        created_folders: list[str] = []
        for job in jobs:
            target = self.job_folder(record_from_detected(job.detected_job), new_root)
            if (target / "job.json").exists() and not overwrite_existing:
                result.skipped += 1
                result.log.append(
                    MigrationLogEntry(action="skip", source_path=job.original_path, target_path=str(target), job_id=job.id)
                )
                continue
            try:
                existed = target.exists()
                record = self._import_job(job, target, new_policy, backup_folder)
            except (OSError, TrailError) as exc:
                result.failed += 1
                message = exc.message if isinstance(exc, TrailError) else str(exc)
                logger.warning("Migration of %s failed: %s", job.original_path, message)
                result.log.append(MigrationLogEntry(action="error", source_path=job.original_path, job_id=job.id, error=message))
                continue
            if not existed:
                created_folders.append(str(target))
            result.successful += 1
            result.log.append(
                MigrationLogEntry(action="import", source_path=job.original_path, target_path=str(target), job_id=record.uuid)
            )

        if result.failed == 0 or result.successful > 0:
            with self.policy_store.transaction() as doc:
                doc.policy = new_policy
            result.config_updated = True
        else:
            logger.warning("Migration to %s failed for every job; keeping %s", new_root, old_policy.root_directory)

        log_path = Path(new_policy.migration_log_path) / f"migration_{result.operation_id}.json"
        write_text_atomic(log_path, result.model_dump_json(indent=2))

        self.operations.log_operation(
            "bulk",
            user_action=f"Migrated {result.successful} jobs to {new_root}",
            affected_files=created_folders,
            inverse_action="remove_job_folders" if created_folders else None,
            inverse_payload={
                "folders": created_folders,
                "previous_policy": old_policy.model_dump(mode="json") if result.config_updated else None,
            },
            can_undo=bool(created_folders),
            operation_id=result.operation_id,
        )
        logger.info(
            "Migration %s: %s imported, %s failed, %s skipped",
            result.operation_id,
            result.successful,
            result.failed,
            result.skipped,
        )
        return result

    def _import_job(
        self,
        job: ImportableJob,
        target: Path,
        policy: FileManagementPolicy,
        backup_folder: Path | None,
    ) -> JobRecord:
        source = Path(job.original_path)
        if backup_folder is not None:
            shutil.copy2(source, backup_folder / f"{job.id}_{source.name}")

        record = JobRecord.model_validate(
            {
                **{key: value for key, value in job.detected_job.items() if value is not None},
                "uuid": job.detected_job.get("uuid") or new_id(),
                "fetched_at": utc_now(),
                "imported_from": job.original_path,
                "imported_at": utc_now(),
            }
        )
        target.mkdir(parents=True, exist_ok=True)
        payload = {
            **record.model_dump(mode="json"),
            "storage_folder": str(target),
            "attachment_mode": policy.attachment_mode,
            "saved_to_disk": True,
            "disk_save_timestamp": utc_now().isoformat(),
        }
        write_text_atomic(target / "job.json", json.dumps(payload, indent=2))
        write_text_atomic(target / "job.txt", render_job_text(record))
        if policy.attachment_mode == "copy":
            self._copy_related_files(source, target)
        return record

    @staticmethod
    def _copy_related_files(source: Path, target: Path) -> None:
        stem = source.stem.lower()
        for sibling in source.parent.iterdir():
            if not sibling.is_file() or sibling == source or sibling.name.lower() in ("job.json", "job.txt"):
                continue
            lower = sibling.name.lower()
            related = "resume" in lower or "cv" in lower or (stem and stem in lower) or lower.endswith(_RELATED_SUFFIXES)
            if not related:
                continue
            base = sibling.stem.lower()
            name = f"resume{sibling.suffix}" if "resume" in base or "cv" in base else sibling.name
            shutil.copy2(sibling, target / name)

    # inverse action used by undo

    def remove_job_folders(self, payload: dict[str, Any]) -> list[str]:
        removed: list[str] = []
        for folder in payload.get("folders", []):
            path = Path(folder)
            if not path.exists():
                logger.warning("Job folder already removed: %s", path)
                continue
            try:
                shutil.rmtree(path)
            except OSError as exc:
                raise StorageError(f"Could not remove {path}: {exc}") from exc
            removed.append(folder)
        previous = payload.get("previous_policy")
        if previous:
            with self.policy_store.transaction() as doc:
                doc.policy = FileManagementPolicy.model_validate(previous)
        return removed
