from datetime import timedelta
from pathlib import Path

import pytest

from jobtrail.core.operations import OperationsLog
from jobtrail.errors import InvalidArgumentError, NotFoundError
from jobtrail.storage.documents import JsonDocumentStore
from jobtrail.types import OperationsLogDocument, utc_now


@pytest.fixture
def log(tmp_path: Path) -> OperationsLog:
    store = JsonDocumentStore(tmp_path / "operations-log.json", OperationsLogDocument)
    return OperationsLog(store, max_entries=5, undoable_window=3)


def test_recent_operations_are_most_recent_first(log: OperationsLog) -> None:
    for i in range(3):
        log.log_operation("create", user_action=f"op {i}")
    assert [entry.user_action for entry in log.get_recent_operations(2)] == ["op 2", "op 1"]


def test_log_is_capped_at_max_entries(log: OperationsLog) -> None:
    for i in range(8):
        log.log_operation("create", user_action=f"op {i}")
    entries = log.store.load().entries
    assert len(entries) == 5
    assert entries[0].user_action == "op 3"


def test_undoable_operations_respect_window(log: OperationsLog) -> None:
    for i in range(4):
        log.log_operation("delete", user_action=f"undoable {i}", inverse_action="recreate_records", can_undo=True)
    log.log_operation("update", user_action="plain")

    undoable = log.get_undoable_operations()
    assert [entry.user_action for entry in undoable] == ["undoable 3", "undoable 2", "undoable 1"]


def test_undoable_operation_needs_inverse(log: OperationsLog) -> None:
    with pytest.raises(InvalidArgumentError):
        log.log_operation("delete", user_action="oops", can_undo=True)


def test_mark_undone_keeps_entry_for_audit(log: OperationsLog) -> None:
    entry = log.log_operation("delete", user_action="x", inverse_action="recreate_records", can_undo=True)
    log.mark_undone(entry.id)

    stored = log.get(entry.id)
    assert stored is not None
    assert stored.can_undo is False
    assert stored.undone_at is not None
    assert log.get_undoable_operations() == []

    with pytest.raises(NotFoundError):
        log.mark_undone("missing")


def test_operations_by_type_and_clear_old_entries(log: OperationsLog) -> None:
    log.log_operation("create", user_action="new")
    old = log.log_operation("bulk", user_action="old")
    with log.store.transaction() as doc:
        doc.find(old.id).timestamp = utc_now() - timedelta(days=45)

    assert [entry.user_action for entry in log.get_operations_by_type("bulk")] == ["old"]
    assert log.clear_old_entries(30) == 1
    assert [entry.user_action for entry in log.store.load().entries] == ["new"]


def test_affected_files_are_deduplicated(log: OperationsLog) -> None:
    entry = log.log_operation("create", user_action="x", affected_files=["/a", "/a", "/b"])
    assert entry.affected_files == ["/a", "/b"]


def test_dropped_entries_are_handed_to_on_discard(log: OperationsLog) -> None:
    discarded: list[str] = []
    log.on_discard = lambda entries: discarded.extend(entry.user_action for entry in entries)

    for i in range(7):
        log.log_operation("create", user_action=f"op {i}")
    assert discarded == ["op 0", "op 1"]

    newest = log.get_recent_operations(1)[0]
    with log.store.transaction() as doc:
        doc.find(newest.id).timestamp = utc_now() - timedelta(days=45)
    log.clear_old_entries(30)
    assert discarded == ["op 0", "op 1", "op 6"]
