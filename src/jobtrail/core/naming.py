from __future__ import annotations

import re
from datetime import date
from pathlib import Path

_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9]")
_JOB_FILENAME = re.compile(r"^(?P<company>[^_]+)_(?P<role>.+?)_(?P<date>\d{8})$")


def sanitize_component(value: str) -> str:
    return _NAME_UNSAFE.sub("_", value.strip())


def parse_job_filename(filename: str) -> tuple[str, str, date | None] | None:
    """Split ``Company_Role_YYYYMMDD.ext`` into its parts.

    Underscores inside the role become spaces. Returns None when the stem does
    not follow the pattern.
    """
    match = _JOB_FILENAME.match(Path(filename).stem)
    if not match:
        return None
    company = match.group("company").strip()
    role = match.group("role").replace("_", " ").strip()
    raw_date = match.group("date")
    try:
        parsed = date(int(raw_date[:4]), int(raw_date[4:6]), int(raw_date[6:]))
    except ValueError:
        parsed = None
    if not company or not role:
        return None
    return company, role, parsed
