from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from jobtrail.errors import StorageError
from jobtrail.storage.locks import ManifestLock, lock_for

logger = logging.getLogger(__name__)

DocumentT = TypeVar("DocumentT", bound=BaseModel)


def write_text_atomic(path: Path, text: str) -> None:
    """Write via a temp file in the same directory, fsync, then rename over the target."""
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as exc:
        raise StorageError(f"Could not write {path}: {exc}") from exc
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)


class JsonDocumentStore(Generic[DocumentT]):
    """Whole-document persistence for one JSON file.

    Mutations go through ``transaction()``, which holds the document's lock from
    load to save. Plain ``load()`` is lock-free and sees the last fully written
    document.
    """

    def __init__(self, path: Path, model: type[DocumentT]):
        self.path = Path(path)
        self.model = model
        self.lock: ManifestLock = lock_for(self.path)

    def load(self) -> DocumentT:
        if not self.path.exists():
            return self.model()
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Could not read {self.path}: {exc}") from exc
        if not raw.strip():
            return self.model()
        try:
            return self.model.model_validate(json.loads(raw))
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            raise StorageError(f"Document {self.path} is corrupt: {exc}") from exc

    def save(self, document: DocumentT) -> None:
        write_text_atomic(self.path, document.model_dump_json(indent=2))
        logger.debug("Saved %s", self.path)

    @contextmanager
    def transaction(self) -> Iterator[DocumentT]:
        """Lock, load, hand the document to the caller, then save on clean exit.

        An exception inside the block skips the save, so the document on disk
        stays as it was.
        """
        with self.lock.hold():
            document = self.load()
            yield document
            self.save(document)
