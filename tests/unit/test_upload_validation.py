import pytest

from jobtrail.config import Settings
from jobtrail.core.validation import preview_available, validate_upload
from jobtrail.errors import InvalidFormatError, ValidationError


@pytest.fixture
def limits() -> Settings:
    return Settings(app_env="test", max_upload_bytes=1024, min_upload_bytes=100)


def test_accepts_pdf_and_normalizes_extension(limits: Settings) -> None:
    data = b"%PDF-1.7\n" + b"x" * 200
    assert validate_upload(data, "Resume.PDF", limits) == ".pdf"


def test_rejects_unsupported_extension_before_size_checks(limits: Settings) -> None:
    with pytest.raises(ValidationError, match="Unsupported file type"):
        validate_upload(b"", "setup.exe", limits)


def test_rejects_oversized_file(limits: Settings) -> None:
    with pytest.raises(ValidationError, match="File too large"):
        validate_upload(b"%PDF" + b"x" * 2048, "big.pdf", limits)


def test_empty_and_tiny_files_have_distinct_messages(limits: Settings) -> None:
    with pytest.raises(ValidationError, match=r"Empty file \(0 bytes\)"):
        validate_upload(b"", "empty.pdf", limits)
    with pytest.raises(ValidationError, match="likely corrupt"):
        validate_upload(b"%PDF-1.4", "tiny.pdf", limits)


def test_magic_bytes_must_match_extension(limits: Settings) -> None:
    with pytest.raises(InvalidFormatError):
        validate_upload(b"GIF89a" + b"x" * 200, "fake.pdf", limits)
    with pytest.raises(InvalidFormatError):
        validate_upload(b"%PDF" + b"x" * 200, "fake.docx", limits)
    assert validate_upload(b"PK\x03\x04" + b"x" * 200, "real.docx", limits) == ".docx"


def test_invalid_format_is_a_validation_error(limits: Settings) -> None:
    with pytest.raises(ValidationError):
        validate_upload(b"hello" * 50, "notes.pdf", limits)


def test_text_files_are_not_sniffed(limits: Settings) -> None:
    assert validate_upload(b"plain text resume " * 10, "resume.txt", limits) == ".txt"


def test_preview_available_only_for_document_formats() -> None:
    assert preview_available(".pdf")
    assert preview_available(".DOCX")
    assert not preview_available(".txt")
