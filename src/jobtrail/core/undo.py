from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from jobtrail.core.dedup import DeduplicationEngine
from jobtrail.core.job_storage import JobFileStorage
from jobtrail.core.operations import OperationsLog
from jobtrail.core.staging import StagingArea
from jobtrail.core.versioning import VersionEngine
from jobtrail.errors import InvalidArgumentError, NotFoundError
from jobtrail.types import OperationLogEntry

logger = logging.getLogger(__name__)


class UndoService:
    """Replays the inverse recorded with an operation, once."""

    def __init__(
        self,
        operations: OperationsLog,
        staging: StagingArea,
        versions: VersionEngine,
        dedup: DeduplicationEngine,
        job_storage: JobFileStorage,
    ):
        self.operations = operations
        self.staging = staging
        self.versions = versions
        self.dedup = dedup
        self.job_storage = job_storage
        self._handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            "delete_staging_entries": self._delete_staging_entries,
            "revert_attach": versions.revert_attach,
            "revert_version": versions.revert_version,
            "revert_versions": lambda payload: versions.revert_versions(payload.get("versions", [])),
            "restore_resume": versions.restore_resume,
            "revert_merge": dedup.revert_merge,
            "recreate_records": dedup.recreate_records,
            "remove_job_folders": job_storage.remove_job_folders,
        }

    def undo(self, operation_id: str) -> OperationLogEntry:
        entry = self.operations.get(operation_id)
        if entry is None:
            raise NotFoundError(f"Operation {operation_id} not found")
        if not entry.can_undo or entry.inverse_action is None:
            raise NotFoundError(
                f"Operation {operation_id} cannot be undone",
                details={"undone_at": entry.undone_at.isoformat() if entry.undone_at else None},
            )

        handler = self._handlers.get(entry.inverse_action.action)
        if handler is None:
            raise InvalidArgumentError(f"Unknown inverse action {entry.inverse_action.action}")

        handler(entry.inverse_action.payload)
        undone = self.operations.mark_undone(operation_id)
        self.operations.log_operation(
            entry.type,
            user_action=f"Undid: {entry.user_action}",
            affected_files=entry.affected_files,
            manifest_entries=entry.manifest_entries,
        )
        logger.info("Undid operation %s (%s)", operation_id, entry.inverse_action.action)
        return undone

    def _delete_staging_entries(self, payload: dict[str, Any]) -> list[str]:
        removed: list[str] = []
        for resume_id in payload.get("resume_ids", []):
            try:
                self.staging.delete(resume_id)
            except NotFoundError:
                logger.warning("Staged resume %s is already gone", resume_id)
                continue
            removed.append(resume_id)
        return removed
