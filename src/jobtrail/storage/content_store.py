from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
from pathlib import Path

from jobtrail.errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def digest_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def digest_of_file(path: Path) -> str:
    hasher = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                hasher.update(chunk)
    except OSError as exc:
        raise StorageError(f"Could not read {path}: {exc}") from exc
    return hasher.hexdigest()


def safe_filename(name: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
    return cleaned or "file"


def unique_path(directory: Path, filename: str) -> Path:
    candidate = directory / filename
    if not candidate.exists():
        return candidate
    stem, suffix = os.path.splitext(filename)
    counter = 1
    while True:
        candidate = directory / f"{stem}_{counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


class ContentStore:
    """Writes raw bytes to disk. Identity is the sha256 of the bytes.

    Exact-match reuse is decided by the caller against a manifest; the store
    itself always writes the file it is asked to write.
    """

    def store(self, data: bytes, directory: Path, filename: str) -> tuple[str, Path]:
        digest = digest_of(data)
        tmp: Path | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            target = unique_path(directory, filename)
            tmp = target.with_name(f".{target.name}.partial")
            with open(tmp, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp, target)
        except OSError as exc:
            if tmp is not None:
                tmp.unlink(missing_ok=True)
            raise StorageError(f"Could not store {filename}: {exc}") from exc
        logger.debug("Stored %s (%s)", target, digest[:12])
        return digest, target

    def copy(self, source: Path, directory: Path, filename: str) -> Path:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            target = unique_path(directory, filename)
            shutil.copy2(source, target)
        except OSError as exc:
            raise StorageError(f"Could not copy {source}: {exc}") from exc
        return target

    def move(self, source: Path, target: Path) -> Path:
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as exc:
            raise StorageError(f"Could not move {source} to {target}: {exc}") from exc
        return target

    def remove(self, path: Path) -> bool:
        """Delete a file; a file that is already gone is not an error."""
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("File already removed: %s", path)
            return False
        except OSError as exc:
            raise StorageError(f"Could not delete {path}: {exc}") from exc
        return True

    def remove_tree(self, path: Path) -> bool:
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
        except OSError as exc:
            raise StorageError(f"Could not delete {path}: {exc}") from exc
        return True
