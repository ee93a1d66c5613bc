from datetime import UTC, datetime
from pathlib import Path

from jobtrail.core.job_storage import html_to_text, job_date, render_job_text, sanitize_folder_name
from jobtrail.types import JobRecord


def test_sanitize_folder_name_collapses_runs_and_falls_back() -> None:
    assert sanitize_folder_name("Acme, Inc.", "Unknown_Company") == "Acme_Inc"
    assert sanitize_folder_name("   ", "Unknown_Company") == "Unknown_Company"
    assert sanitize_folder_name(None, "Unknown_Role") == "Unknown_Role"
    assert len(sanitize_folder_name("x" * 300, "f")) == 100


def test_job_date_prefers_applied_date() -> None:
    fetched = datetime(2024, 3, 9, 12, 0, tzinfo=UTC)
    assert job_date(JobRecord(applied_date="2024-05-01T10:00:00Z", fetched_at=fetched)) == "2024-05-01"
    assert job_date(JobRecord(fetched_at=fetched)) == "2024-03-09"


def test_job_folder_layout(services) -> None:
    job = JobRecord(company="Acme Corp", role="Staff Engineer (Platform)", applied_date="2024-05-01")
    folder = services.job_storage.job_folder(job, Path("/jobs"))
    assert folder == Path("/jobs/Acme_Corp/Staff_Engineer_Platform_20240501")


def test_render_job_text_includes_description() -> None:
    text = render_job_text(
        JobRecord(company="Acme", role="Engineer", jd_text="Build things.", source_url="https://acme.test/jobs/1")
    )
    assert "Job Application: Engineer" in text
    assert "Company: Acme" in text
    assert "Source URL: https://acme.test/jobs/1" in text
    assert text.endswith("Build things.")


def test_html_to_text_strips_markup_and_scripts() -> None:
    html = "<html><head><script>var x = 1;</script></head><body><h1>Engineer</h1><p>Python &amp; SQL</p></body></html>"
    assert html_to_text(html) == "Engineer\nPython & SQL"
