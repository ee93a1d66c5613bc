from __future__ import annotations

from typing import Any, Protocol

from jobtrail.types import JobRecord


class JobRecordStore(Protocol):
    def list(self) -> list[JobRecord]: ...

    def get(self, uuid: str) -> JobRecord | None: ...

    def patch(self, uuid: str, fields: dict[str, Any]) -> JobRecord: ...

    def create(self, fields: dict[str, Any]) -> JobRecord: ...

    def delete(self, uuid: str) -> bool: ...
