import threading
from pathlib import Path

import pytest

from jobtrail.core.runtime import build_services
from jobtrail.errors import ConflictError, InvalidArgumentError, NotFoundError, StorageError
from jobtrail.storage.content_store import digest_of_file


def _stage(services, make_pdf, marker: str):
    entry = services.staging.upload(make_pdf(marker), f"{marker}.pdf")
    services.extraction_queue.drain(timeout=10)
    return entry


def test_first_attach_creates_active_lineage(services, make_pdf, make_job) -> None:
    job = make_job()
    staged = _stage(services, make_pdf, "first")

    entry = services.versions.attach(staged.id, job.uuid)

    assert entry.job_uuid == job.uuid
    assert entry.base_filename.startswith("Acme_Backend_Engineer_")
    (version,) = entry.versions
    assert version.version_suffix == ""
    assert version.is_active
    assert version.source_staging_id == staged.id
    assert version.extracted_text == "extracted resume text"
    managed = Path(version.stored_path)
    assert managed.parent == services.settings.managed_resume_dir
    assert managed.name == f"{entry.base_filename}.pdf"
    assert managed.read_bytes() == make_pdf("first")

    assert not Path(staged.stored_path).exists()
    with pytest.raises(NotFoundError):
        services.staging.get(staged.id)

    record = services.job_store.get(job.uuid)
    assert record.active_resume_version_id == version.version_id
    assert record.resume_path == version.stored_path
    assert record.resume_text_source == "extracted"


def test_new_version_becomes_the_only_active_one(services, make_pdf, make_job) -> None:
    job = make_job()
    services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    entry = services.versions.attach(_stage(services, make_pdf, "v1").id, job.uuid)

    assert [version.version_suffix for version in entry.versions] == ["", "_v1"]
    assert [version.is_active for version in entry.versions] == [False, True]
    assert Path(entry.versions[1].stored_path).name == f"{entry.base_filename}_v1.pdf"


def test_set_as_active_false_keeps_current_version(services, make_pdf, make_job) -> None:
    job = make_job()
    services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    entry = services.versions.attach(_stage(services, make_pdf, "v1").id, job.uuid, set_as_active=False)

    assert [version.is_active for version in entry.versions] == [True, False]


def test_replace_active_wins_over_set_as_active(services, make_pdf, make_job) -> None:
    job = make_job()
    services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    entry = services.versions.attach(
        _stage(services, make_pdf, "v1").id, job.uuid, replace_active=True, set_as_active=False
    )

    assert entry.active_version().version_suffix == "_v1"


def test_attaching_identical_content_conflicts_and_keeps_staging(services, make_pdf, make_job) -> None:
    job = make_job()
    entry = services.versions.attach(_stage(services, make_pdf, "same").id, job.uuid)
    again = _stage(services, make_pdf, "same")

    with pytest.raises(ConflictError) as caught:
        services.versions.attach(again.id, job.uuid)

    assert caught.value.details["existing_version_id"] == entry.versions[0].version_id
    assert services.staging.get(again.id).id == again.id
    assert len(services.versions.get_entry(entry.id).versions) == 1
    assert len(list(services.settings.managed_resume_dir.iterdir())) == 1


def test_attach_unknown_staging_entry(services, make_job) -> None:
    with pytest.raises(NotFoundError):
        services.versions.attach("missing", make_job().uuid)


def test_rollback_clones_historical_content_as_new_active_version(services, make_pdf, make_job) -> None:
    job = make_job()
    first = services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid).versions[0]
    entry = services.versions.attach(_stage(services, make_pdf, "v1").id, job.uuid)

    rolled = services.versions.rollback(entry.id, first.version_id)

    assert rolled.version_suffix == "_v2"
    assert rolled.is_active
    assert rolled.rolled_back_from == first.version_id
    assert rolled.original_filename == f"ROLLBACK_TO_original_{first.original_filename}"
    assert rolled.content_digest == first.content_digest
    assert digest_of_file(Path(rolled.stored_path)) == first.content_digest

    history = services.versions.version_history(entry.id)
    assert [version.is_active for version in history] == [False, False, True]
    assert services.job_store.get(job.uuid).active_resume_version_id == rolled.version_id


def test_rollback_rejects_foreign_and_unknown_versions(services, make_pdf, make_job) -> None:
    a = services.versions.attach(_stage(services, make_pdf, "a").id, make_job("Acme").uuid)
    b = services.versions.attach(_stage(services, make_pdf, "b").id, make_job("Globex").uuid)

    with pytest.raises(InvalidArgumentError):
        services.versions.rollback(a.id, b.versions[0].version_id)
    with pytest.raises(NotFoundError):
        services.versions.rollback(a.id, "no-such-version")
    with pytest.raises(NotFoundError):
        services.versions.rollback("no-such-resume", a.versions[0].version_id)


def test_rollback_to_missing_file_leaves_manifest_untouched(services, make_pdf, make_job) -> None:
    job = make_job()
    first = services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid).versions[0]
    entry = services.versions.attach(_stage(services, make_pdf, "v1").id, job.uuid)
    Path(first.stored_path).unlink()
    before = services.versions.resume_store.path.read_text(encoding="utf-8")

    with pytest.raises(StorageError):
        services.versions.rollback(entry.id, first.version_id)

    assert services.versions.resume_store.path.read_text(encoding="utf-8") == before


def test_concurrent_attaches_keep_one_active_version(services, make_pdf, make_job) -> None:
    job = make_job()
    staged = [_stage(services, make_pdf, f"resume-{i}") for i in range(8)]
    errors: list[Exception] = []

    def attach(resume_id: str) -> None:
        try:
            services.versions.attach(resume_id, job.uuid)
        except Exception as exc:  # collected for the assertion below
            errors.append(exc)

    threads = [threading.Thread(target=attach, args=(item.id,)) for item in staged]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    entry = services.versions.get_entry_for_job(job.uuid)
    assert len(entry.versions) == 8
    assert sum(version.is_active for version in entry.versions) == 1
    assert sorted(version.version_suffix for version in entry.versions) == sorted(
        ["", *[f"_v{i}" for i in range(1, 8)]]
    )
    assert len({version.stored_path for version in entry.versions}) == 8
    assert services.staging.list() == []


def test_delete_resume_moves_files_to_trash_and_clears_job(services, make_pdf, make_job) -> None:
    job = make_job()
    entry = services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    path = Path(entry.versions[0].stored_path)

    services.versions.delete_resume(entry.id)

    assert not path.exists()
    trashed = list(services.settings.trash_dir.rglob("*.pdf"))
    assert len(trashed) == 1
    assert services.versions.get_entry_for_job(job.uuid) is None
    assert services.job_store.get(job.uuid).active_resume_version_id is None


class _GatedExtractor:
    def __init__(self) -> None:
        self.gate = threading.Event()

    def extract(self, path: Path) -> str:
        self.gate.wait(10)
        return "late text"


@pytest.fixture
def gated_services(settings, job_store):
    extractor = _GatedExtractor()
    built = build_services(settings, job_store=job_store, extractor=extractor)
    yield built, extractor
    extractor.gate.set()
    built.close()


def test_extraction_finishing_after_attach_reaches_the_version(gated_services, make_pdf) -> None:
    services, extractor = gated_services
    job = services.job_store.create({"company": "Acme", "role": "Engineer"})
    staged = services.staging.upload(make_pdf("slow"), "slow.pdf")

    entry = services.versions.attach(staged.id, job.uuid)
    assert entry.versions[0].extracted_text is None

    extractor.gate.set()
    services.extraction_queue.drain(timeout=10)

    version = services.versions.get_entry(entry.id).versions[0]
    assert version.extracted_text == "late text"
    assert version.extraction_status == "success"
    assert services.versions.get_entry(entry.id).latest_extracted_text == "late text"

    record = services.job_store.get(job.uuid)
    assert record.extraction_status == "success"
    assert record.resume_text_extracted == "late text"
    assert record.resume_text_source == "extracted"


def test_late_extraction_for_inactive_version_leaves_job_alone(gated_services, make_pdf) -> None:
    services, extractor = gated_services
    job = services.job_store.create({"company": "Acme", "role": "Engineer"})
    extractor.gate.set()
    first = services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    services.extraction_queue.drain(timeout=10)
    extractor.gate.clear()

    staged = services.staging.upload(make_pdf("v1"), "v1.pdf")
    services.versions.attach(staged.id, job.uuid, set_as_active=False)
    extractor.gate.set()
    services.extraction_queue.drain(timeout=10)

    record = services.job_store.get(job.uuid)
    assert record.active_resume_version_id == first.versions[0].version_id
    assert services.versions.get_entry(first.id).versions[1].extraction_status == "success"


def test_manual_text_updates_version_and_job(services, make_pdf, make_job) -> None:
    job = make_job()
    entry = services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    version_id = entry.versions[0].version_id

    version = services.versions.record_extraction(entry.id, version_id, "typed by hand")

    assert version.extracted_text == "typed by hand"
    assert services.versions.get_entry(entry.id).latest_extracted_text == "typed by hand"
    assert services.job_store.get(job.uuid).resume_text_extracted == "typed by hand"

    with pytest.raises(NotFoundError):
        services.versions.record_extraction(entry.id, "missing", "text")


def test_trash_is_pruned_when_delete_entry_leaves_the_log(services, make_pdf, make_job) -> None:
    job = make_job()
    entry = services.versions.attach(_stage(services, make_pdf, "v0").id, job.uuid)
    services.versions.delete_resume(entry.id)
    delete_op = services.operations.get_recent_operations(1)[0]
    trash = services.settings.trash_dir / delete_op.id
    assert trash.is_dir()

    services.operations.max_entries = 1
    services.operations.log_operation("update", user_action="Something later")

    assert not trash.exists()
    assert services.operations.get(delete_op.id) is None
