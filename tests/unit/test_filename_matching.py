from datetime import date

import pytest

from jobtrail.core.bulk_import import suggest_job_match
from jobtrail.core.naming import parse_job_filename, sanitize_component
from jobtrail.core.versioning import version_suffix
from jobtrail.types import JobRecord


def test_suggest_job_match_scores_company_and_role_words() -> None:
    acme = JobRecord(company="Acme", role="Data Engineer")
    globex = JobRecord(company="Globex", role="Designer")

    match = suggest_job_match("acme_data_engineer_resume.pdf", [globex, acme])

    assert match is not None
    assert match.job_uuid == acme.uuid
    # acme(4) + data(4) + engineer(8) over len("acme_data_engineer_resume")
    assert match.confidence == pytest.approx(16 / 25)


def test_suggest_job_match_needs_a_minimum_score() -> None:
    jobs = [JobRecord(company="HP", role="QA")]
    assert suggest_job_match("hp_cv.pdf", jobs) is None


def test_suggest_job_match_without_jobs() -> None:
    assert suggest_job_match("anything.pdf", []) is None


def test_confidence_is_capped_at_one() -> None:
    job = JobRecord(company="Stripe", role="Stripe")
    match = suggest_job_match("stripe.pdf", [job])
    assert match is not None
    assert match.confidence == 1.0


def test_parse_job_filename() -> None:
    assert parse_job_filename("Acme_Senior_Data_Engineer_20240115.txt") == (
        "Acme",
        "Senior Data Engineer",
        date(2024, 1, 15),
    )
    assert parse_job_filename("Acme_Engineer_20241399.html") == ("Acme", "Engineer", None)
    assert parse_job_filename("resume.pdf") is None


def test_sanitize_component_keeps_only_word_characters() -> None:
    assert sanitize_component(" Acme, Inc. ") == "Acme__Inc_"


def test_version_suffix() -> None:
    assert version_suffix(0) == ""
    assert version_suffix(1) == "_v1"
    assert version_suffix(4) == "_v4"
