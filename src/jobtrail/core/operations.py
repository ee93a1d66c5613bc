from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from jobtrail.errors import InvalidArgumentError, NotFoundError
from jobtrail.storage.documents import JsonDocumentStore
from jobtrail.types import (
    InverseAction,
    OperationLogEntry,
    OperationsLogDocument,
    OperationType,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)


class OperationsLog:
    def __init__(
        self,
        store: JsonDocumentStore[OperationsLogDocument],
        max_entries: int = 1000,
        undoable_window: int = 10,
    ):
        self.store = store
        self.max_entries = max_entries
        self.undoable_window = undoable_window
        self.session_id = new_id()
        # Called with entries that fall out of the log (cap or age), after the save.
        self.on_discard: Callable[[list[OperationLogEntry]], None] | None = None

    def log_operation(
        self,
        op_type: OperationType,
        *,
        user_action: str,
        affected_files: list[str] | None = None,
        manifest_entries: list[str] | None = None,
        inverse_action: str | None = None,
        inverse_payload: dict[str, Any] | None = None,
        can_undo: bool = False,
        operation_id: str | None = None,
    ) -> OperationLogEntry:
        if can_undo and not inverse_action:
            raise InvalidArgumentError("An undoable operation needs an inverse action")

        entry = OperationLogEntry(
            id=operation_id or new_id(),
            type=op_type,
            user_action=user_action,
            affected_files=affected_files or [],
            manifest_entries=manifest_entries or [],
            can_undo=can_undo,
            inverse_action=InverseAction(action=inverse_action, payload=inverse_payload or {})
            if inverse_action
            else None,
            session_id=self.session_id,
        )
        dropped: list[OperationLogEntry] = []
        with self.store.transaction() as doc:
            doc.entries.append(entry)
            if len(doc.entries) > self.max_entries:
                dropped = doc.entries[: -self.max_entries]
                doc.entries = doc.entries[-self.max_entries :]
        self._discard(dropped)
        logger.info("Logged %s operation %s: %s", op_type, entry.id, user_action)
        return entry

    def get(self, operation_id: str) -> OperationLogEntry | None:
        return self.store.load().find(operation_id)

    def get_recent_operations(self, limit: int = 10) -> list[OperationLogEntry]:
        entries = self.store.load().entries
        return list(reversed(entries[-limit:])) if limit > 0 else []

    def get_undoable_operations(self) -> list[OperationLogEntry]:
        undoable = [entry for entry in self.store.load().entries if entry.can_undo]
        return list(reversed(undoable[-self.undoable_window :]))

    def get_operations_by_type(self, op_type: OperationType) -> list[OperationLogEntry]:
        return [entry for entry in self.store.load().entries if entry.type == op_type]

    def mark_undone(self, operation_id: str) -> OperationLogEntry:
        with self.store.transaction() as doc:
            entry = doc.find(operation_id)
            if entry is None:
                raise NotFoundError(f"Operation {operation_id} not found")
            entry.can_undo = False
            entry.undone_at = utc_now()
        return entry

    def clear_old_entries(self, older_than_days: int = 30) -> int:
        cutoff = utc_now() - timedelta(days=older_than_days)
        with self.store.transaction() as doc:
            dropped = [entry for entry in doc.entries if entry.timestamp <= cutoff]
            doc.entries = [entry for entry in doc.entries if entry.timestamp > cutoff]
            removed = len(dropped)
        self._discard(dropped)
        if removed:
            logger.info("Cleared %s operations older than %s days", removed, older_than_days)
        return removed

    def _discard(self, dropped: list[OperationLogEntry]) -> None:
        if dropped and self.on_discard is not None:
            self.on_discard(dropped)
