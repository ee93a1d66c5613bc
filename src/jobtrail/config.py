from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

MiB = 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "jobtrail"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8788
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/jobtrail.db"
    data_dir: Path = Path("./data")

    max_upload_bytes: int = 10 * MiB
    min_upload_bytes: int = 100
    supported_extensions: str = ".pdf,.docx,.doc,.txt,.rtf"

    dedup_similarity_threshold: float = 0.8
    bulk_import_recursive: bool = False

    extraction_url: str = ""
    extraction_timeout_sec: int = 30
    extraction_workers: int = 2

    operations_log_max_entries: int = 1000
    undoable_window: int = 10

    job_root_directory: Path = Path("./data/job-applications")
    attachment_mode: Literal["copy", "reference"] = "copy"
    generate_snapshots: bool = True
    create_backups: bool = True
    migration_log_path: Path = Path("./data/migration-logs")

    cors_origins: str = "http://127.0.0.1:8788"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("dedup_similarity_threshold")
    @classmethod
    def validate_threshold(cls, value: float) -> float:
        if value <= 0 or value > 1:
            raise ValueError("dedup_similarity_threshold must be in (0, 1]")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def supported_extension_set(self) -> set[str]:
        values = set()
        for raw in self.supported_extensions.split(","):
            ext = raw.strip().lower()
            if not ext:
                continue
            values.add(ext if ext.startswith(".") else f".{ext}")
        return values

    @property
    def staging_manifest_path(self) -> Path:
        return self.data_dir / "unassigned-manifest.json"

    @property
    def resume_manifest_path(self) -> Path:
        return self.data_dir / "resume-manifest.json"

    @property
    def bulk_import_path(self) -> Path:
        return self.data_dir / "bulk-import-current.json"

    @property
    def operations_log_path(self) -> Path:
        return self.data_dir / "operations-log.json"

    @property
    def file_policy_path(self) -> Path:
        return self.data_dir / "file-management-config.json"

    @property
    def unassigned_dir(self) -> Path:
        return self.data_dir / "unassigned-resumes"

    @property
    def managed_resume_dir(self) -> Path:
        return self.data_dir / "managed-resumes"

    @property
    def trash_dir(self) -> Path:
        return self.data_dir / "trash"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
