from __future__ import annotations

from pathlib import Path

from jobtrail.config import Settings
from jobtrail.errors import InvalidFormatError, ValidationError

PREVIEWABLE_EXTENSIONS = {".pdf", ".docx", ".doc"}

_MAGIC = {
    ".pdf": (b"%PDF", "Invalid PDF file (corrupt or not a PDF)"),
    ".docx": (b"PK", "Invalid DOCX file (corrupt or not a DOCX)"),
}


def file_extension(filename: str) -> str:
    return Path(filename).suffix.lower()


def validate_upload(data: bytes, filename: str, settings: Settings) -> str:
    """Check an uploaded file and return its normalized extension.

    Order matters: type, ceiling, empty, floor, then content sniffing.
    """
    extension = file_extension(filename)
    if extension not in settings.supported_extension_set:
        raise ValidationError(
            f"Unsupported file type: {extension or filename}",
            details={"filename": filename, "supported": sorted(settings.supported_extension_set)},
        )

    size = len(data)
    if size > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise ValidationError(f"File too large (max {limit_mb}MB)", details={"filename": filename, "size": size})
    if size == 0:
        raise ValidationError("Empty file (0 bytes)", details={"filename": filename})
    if size < settings.min_upload_bytes:
        raise ValidationError("File too small (likely corrupt)", details={"filename": filename, "size": size})

    magic = _MAGIC.get(extension)
    if magic and not data.startswith(magic[0]):
        raise InvalidFormatError(magic[1], details={"filename": filename})
    return extension


def preview_available(extension: str) -> bool:
    return extension.lower() in PREVIEWABLE_EXTENSIONS
