from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
import uvicorn
from pydantic import BaseModel

from jobtrail.api.app import create_app
from jobtrail.config import get_settings
from jobtrail.core.runtime import TrailServices, get_services
from jobtrail.db.init import init_database
from jobtrail.errors import TrailError, ValidationError
from jobtrail.logging_config import configure_logging
from jobtrail.types import OVERRIDE_CREATE_NEW, OVERRIDE_SKIP, AttachmentFile, DuplicateResult

app = typer.Typer(help="jobtrail CLI")
jobs_app = typer.Typer(help="Job records and their folders on disk")
resume_app = typer.Typer(help="Unassigned resumes and version lineages")
bulk_app = typer.Typer(help="Bulk import from a folder")
dedup_app = typer.Typer(help="Find and merge duplicate job records")
ops_app = typer.Typer(help="Operations log and undo")
files_app = typer.Typer(help="File management policy and migration")

app.add_typer(jobs_app, name="jobs")
app.add_typer(resume_app, name="resume")
app.add_typer(bulk_app, name="bulk")
app.add_typer(dedup_app, name="dedup")
app.add_typer(ops_app, name="ops")
app.add_typer(files_app, name="files")

EXTRACTION_WAIT_SEC = 30.0


def _services() -> TrailServices:
    configure_logging()
    return get_services()


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


def _echo(value: Any) -> None:
    typer.echo(json.dumps(_jsonable(value), indent=2))


@contextmanager
def _reporting() -> Iterator[None]:
    try:
        yield
    except ValidationError as exc:
        raise typer.BadParameter(exc.message) from exc
    except TrailError as exc:
        typer.echo(json.dumps({"error": type(exc).__name__, "message": exc.message, "details": exc.details}, indent=2), err=True)
        raise typer.Exit(code=1) from exc


@app.command("init")
def init_cmd() -> None:
    """Create the data directories and the job records table."""
    configure_logging()
    result = init_database()
    typer.echo(json.dumps({"ok": True, **result}, indent=2))


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    settings = get_settings()
    app_instance = create_app(_services())
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)


# jobs


@jobs_app.command("create")
def jobs_create(
    company: str = typer.Option(..., "--company"),
    role: str = typer.Option(..., "--role"),
    jd_file: Path | None = typer.Option(None, "--jd-file", exists=True, readable=True),
    source_url: str | None = typer.Option(None, "--source-url"),
    applied_date: str | None = typer.Option(None, "--applied-date"),
) -> None:
    services = _services()
    fields: dict[str, Any] = {"company": company, "role": role, "source_url": source_url, "applied_date": applied_date}
    if jd_file is not None:
        fields["jd_text"] = jd_file.read_text(encoding="utf-8")
    with _reporting():
        _echo(services.job_store.create(fields))


@jobs_app.command("list")
def jobs_list(include_archived: bool = typer.Option(False, "--include-archived")) -> None:
    services = _services()
    jobs = [job for job in services.job_store.list() if include_archived or not job.is_archived]
    _echo([{"uuid": job.uuid, "company": job.company, "role": job.role, "status": job.application_status} for job in jobs])


@jobs_app.command("show")
def jobs_show(job_uuid: str) -> None:
    services = _services()
    job = services.job_store.get(job_uuid)
    if job is None:
        raise typer.BadParameter(f"job {job_uuid} not found")
    _echo({"job": _jsonable(job), "resume": _jsonable(services.versions.get_entry_for_job(job_uuid))})


@jobs_app.command("delete")
def jobs_delete(job_uuid: str, note: str | None = typer.Option(None, "--note")) -> None:
    services = _services()
    with _reporting():
        _echo(services.dedup.delete(job_uuid, note))


@jobs_app.command("preview-folder")
def jobs_preview_folder(job_uuid: str) -> None:
    services = _services()
    job = services.job_store.get(job_uuid)
    if job is None:
        raise typer.BadParameter(f"job {job_uuid} not found")
    _echo(services.job_storage.preview_job_folder(job))


@jobs_app.command("save")
def jobs_save(
    job_uuid: str,
    resume: Path | None = typer.Option(None, "--resume", exists=True, readable=True),
    jd_html: Path | None = typer.Option(None, "--jd-html", exists=True, readable=True),
    snapshot: bool = typer.Option(False, "--snapshot"),
) -> None:
    """Write job.json, job.txt and attachments into the job's folder."""
    services = _services()
    job = services.job_store.get(job_uuid)
    if job is None:
        raise typer.BadParameter(f"job {job_uuid} not found")
    attachments: list[AttachmentFile] = []
    if resume is not None:
        attachments.append(AttachmentFile(type="resume", original_path=str(resume)))
    if jd_html is not None:
        attachments.append(AttachmentFile(type="job_description", original_path=str(jd_html)))
    with _reporting():
        _echo(services.job_storage.save_job(job, attachments, generate_snapshot=snapshot))


# resumes


@resume_app.command("upload")
def resume_upload(files: list[Path] = typer.Argument(..., exists=True, readable=True, dir_okay=False)) -> None:
    """Add files to the unassigned pool. Several files go through bulk upload."""
    services = _services()
    with _reporting():
        if len(files) == 1:
            result = services.staging.upload(files[0].read_bytes(), files[0].name, original_path=str(files[0]))
            services.extraction_queue.drain(timeout=EXTRACTION_WAIT_SEC)
            if not isinstance(result, DuplicateResult):
                result = services.staging.get(result.id)
            _echo(result)
            return
        summary = services.staging.bulk_upload([(path.name, path.read_bytes()) for path in files])
        services.extraction_queue.drain(timeout=EXTRACTION_WAIT_SEC)
        _echo({**summary.model_dump(mode="json"), "summary": summary.summary})


@resume_app.command("unassigned")
def resume_unassigned() -> None:
    services = _services()
    with _reporting():
        _echo(services.staging.list())


@resume_app.command("discard")
def resume_discard(resume_id: str) -> None:
    services = _services()
    with _reporting():
        _echo(services.staging.delete(resume_id))


@resume_app.command("attach")
def resume_attach(
    resume_id: str,
    job_uuid: str,
    replace_active: bool = typer.Option(False, "--replace-active"),
    keep_active: bool = typer.Option(False, "--keep-active", help="Add the version without activating it"),
) -> None:
    services = _services()
    with _reporting():
        _echo(services.versions.attach(resume_id, job_uuid, replace_active=replace_active, set_as_active=not keep_active))


@resume_app.command("list")
def resume_list() -> None:
    services = _services()
    _echo(
        [
            {
                "id": entry.id,
                "job_uuid": entry.job_uuid,
                "base_filename": entry.base_filename,
                "versions": len(entry.versions),
                "active_version_id": entry.active_version().version_id if entry.active_version() else None,
            }
            for entry in services.versions.list_entries()
        ]
    )


@resume_app.command("versions")
def resume_versions(resume_id: str) -> None:
    services = _services()
    with _reporting():
        _echo(services.versions.version_history(resume_id))


@resume_app.command("rollback")
def resume_rollback(resume_id: str, version_id: str) -> None:
    services = _services()
    with _reporting():
        _echo(services.versions.rollback(resume_id, version_id))


@resume_app.command("set-text")
def resume_set_text(
    resume_id: str,
    version_id: str,
    text: str | None = typer.Option(None, "--text"),
    text_file: Path | None = typer.Option(None, "--file", exists=True, readable=True, dir_okay=False),
) -> None:
    """Store text for a version by hand, e.g. when automatic extraction failed."""
    if (text is None) == (text_file is None):
        raise typer.BadParameter("pass exactly one of --text, --file")
    if text_file is not None:
        text = text_file.read_text(encoding="utf-8")
    services = _services()
    with _reporting():
        _echo(services.versions.record_extraction(resume_id, version_id, text))


@resume_app.command("delete")
def resume_delete(resume_id: str) -> None:
    services = _services()
    with _reporting():
        _echo(services.versions.delete_resume(resume_id))


# bulk import


@bulk_app.command("scan")
def bulk_scan(
    folder: Path = typer.Argument(..., exists=True, file_okay=False),
    recursive: bool | None = typer.Option(None, "--recursive/--no-recursive"),
) -> None:
    services = _services()
    with _reporting():
        _echo(services.bulk_import.scan(folder, recursive=recursive))


@bulk_app.command("current")
def bulk_current() -> None:
    services = _services()
    _echo(services.bulk_import.current())


@bulk_app.command("override")
def bulk_override(
    item_id: str,
    job_uuid: str | None = typer.Option(None, "--job"),
    skip: bool = typer.Option(False, "--skip"),
    create_new: bool = typer.Option(False, "--create-new"),
    clear: bool = typer.Option(False, "--clear"),
) -> None:
    """Point a preview item at a job, skip it, create a new job for it, or clear the override."""
    chosen = [option for option in (job_uuid, skip or None, create_new or None, clear or None) if option]
    if len(chosen) != 1:
        raise typer.BadParameter("pass exactly one of --job, --skip, --create-new, --clear")
    override = job_uuid if job_uuid else OVERRIDE_SKIP if skip else OVERRIDE_CREATE_NEW if create_new else None
    services = _services()
    with _reporting():
        _echo(services.bulk_import.update_preview_item(item_id, override))


@bulk_app.command("execute")
def bulk_execute(overwrite_existing: bool = typer.Option(False, "--overwrite-existing")) -> None:
    services = _services()
    with _reporting():
        _echo(services.bulk_import.execute(overwrite_existing=overwrite_existing))


@bulk_app.command("cancel")
def bulk_cancel() -> None:
    services = _services()
    with _reporting():
        _echo(services.bulk_import.cancel())


# dedup


@dedup_app.command("find")
def dedup_find(target: str | None = typer.Option(None, "--target")) -> None:
    services = _services()
    with _reporting():
        result = services.dedup.find_duplicates(target)
    _echo(
        {
            "total_duplicates_found": result.total_duplicates_found,
            "threshold_used": result.threshold_used,
            "groups": [
                {
                    "primary": group.primary_job.uuid,
                    "duplicates": [{"uuid": match.uuid, "score": round(match.similarity_score, 3)} for match in group.duplicates],
                }
                for group in result.duplicate_groups
            ],
        }
    )


@dedup_app.command("merge")
def dedup_merge(
    primary_id: str,
    duplicate_ids: list[str],
    note: str | None = typer.Option(None, "--note"),
) -> None:
    services = _services()
    with _reporting():
        _echo(services.dedup.merge(primary_id, duplicate_ids, note))


# operations


@ops_app.command("recent")
def ops_recent(limit: int = typer.Option(10, "--limit")) -> None:
    services = _services()
    _echo(services.operations.get_recent_operations(limit))


@ops_app.command("undoable")
def ops_undoable() -> None:
    services = _services()
    _echo(
        [
            {"id": entry.id, "type": entry.type, "user_action": entry.user_action, "timestamp": entry.timestamp.isoformat()}
            for entry in services.operations.get_undoable_operations()
        ]
    )


@ops_app.command("undo")
def ops_undo(operation_id: str) -> None:
    services = _services()
    with _reporting():
        entry = services.undo.undo(operation_id)
    _echo({"ok": True, "operation_id": entry.id, "user_action": entry.user_action})


@ops_app.command("clear")
def ops_clear(days: int = typer.Option(30, "--days")) -> None:
    services = _services()
    _echo({"removed": services.operations.clear_old_entries(days)})


# files


@files_app.command("policy")
def files_policy() -> None:
    services = _services()
    _echo(services.job_storage.policy())


@files_app.command("migrate")
def files_migrate(
    new_root: Path,
    copy_files: bool = typer.Option(True, "--copy-files/--reference-files"),
    backup: bool = typer.Option(True, "--backup/--no-backup"),
    overwrite_existing: bool = typer.Option(False, "--overwrite-existing"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report what would be migrated"),
) -> None:
    services = _services()
    with _reporting():
        if dry_run:
            _echo(services.job_storage.prepare_migration(new_root))
            return
        _echo(
            services.job_storage.execute_migration(
                new_root, copy_files=copy_files, create_backup=backup, overwrite_existing=overwrite_existing
            )
        )
