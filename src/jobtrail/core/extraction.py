from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Protocol

import requests

from jobtrail.config import Settings
from jobtrail.errors import ExtractionError

logger = logging.getLogger(__name__)

_RTF_CONTROL = re.compile(r"\\[a-zA-Z]+-?\d* ?|[{}]|\\'[0-9a-fA-F]{2}")


class TextExtractor(Protocol):
    def extract(self, path: Path) -> str: ...


class PlainTextExtractor:
    def extract(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix not in {".txt", ".rtf"}:
            raise ExtractionError(f"No local extractor for {suffix or 'unknown'} files", details={"path": str(path)})
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise ExtractionError(f"Could not read {path}: {exc}") from exc
        if suffix == ".rtf":
            raw = _RTF_CONTROL.sub("", raw)
        lines = [line.strip() for line in raw.splitlines() if line.strip()]
        return "\n".join(lines)


class HttpTextExtractor:
    """Delegates to an extraction service that reads the file by path."""

    def __init__(self, url: str, timeout_sec: int = 30):
        self.url = url
        self.timeout_sec = timeout_sec

    def extract(self, path: Path) -> str:
        try:
            response = requests.post(self.url, json={"filePath": str(path)}, timeout=self.timeout_sec)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExtractionError(f"Extraction request failed for {path}: {exc}") from exc

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str):
            raise ExtractionError(f"Extraction service returned no text for {path}")
        return text


def build_text_extractor(settings: Settings) -> TextExtractor:
    if settings.extraction_url:
        return HttpTextExtractor(settings.extraction_url, timeout_sec=settings.extraction_timeout_sec)
    return PlainTextExtractor()


ExtractionCallback = Callable[[str | None, str | None], None]


class ExtractionQueue:
    """Fire-and-forget extraction work.

    ``submit`` returns at once; the callback receives ``(text, None)`` or
    ``(None, error)`` on a worker thread. Nothing here raises into the caller.
    """

    def __init__(self, extractor: TextExtractor, max_workers: int = 2):
        self.extractor = extractor
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="extract")
        self._pending: set[Future[None]] = set()
        self._guard = threading.Lock()

    def submit(self, path: Path, callback: ExtractionCallback) -> Future[None]:
        future = self._executor.submit(self._run, path, callback)
        with self._guard:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future[None]) -> None:
        with self._guard:
            self._pending.discard(future)

    def _run(self, path: Path, callback: ExtractionCallback) -> None:
        try:
            text = self.extractor.extract(path)
        except ExtractionError as exc:
            logger.warning("Text extraction failed for %s: %s", path, exc.message)
            self._deliver(callback, None, exc.message)
            return
        except Exception as exc:
            logger.warning("Text extraction crashed for %s: %s", path, exc)
            self._deliver(callback, None, str(exc))
            return
        self._deliver(callback, text, None)

    @staticmethod
    def _deliver(callback: ExtractionCallback, text: str | None, error: str | None) -> None:
        try:
            callback(text, error)
        except Exception:
            logger.exception("Recording extraction result failed")

    def drain(self, timeout: float | None = None) -> None:
        with self._guard:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
