from __future__ import annotations

from pathlib import Path

from jobtrail.config import Settings, get_settings
from jobtrail.db.base import Base
from jobtrail.db import models  # noqa: F401
from jobtrail.db.session import create_db_engine


def ensure_data_directories(settings: Settings | None = None) -> list[Path]:
    settings = settings or get_settings()
    paths: list[Path] = [
        settings.data_dir,
        settings.unassigned_dir,
        settings.managed_resume_dir,
        settings.trash_dir,
        settings.job_root_directory,
        settings.migration_log_path,
    ]
    for path in paths:
        path.mkdir(parents=True, exist_ok=True)
    return paths


def init_database(settings: Settings | None = None) -> dict[str, object]:
    settings = settings or get_settings()
    created = ensure_data_directories(settings)
    engine = create_db_engine(settings.database_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    return {"database_url": settings.database_url, "directories": [str(path) for path in created]}
