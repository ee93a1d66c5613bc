from __future__ import annotations

import logging
from typing import Any, Protocol

from rapidfuzz import fuzz

from jobtrail.core.operations import OperationsLog
from jobtrail.core.records import JobRecordStore
from jobtrail.errors import InvalidArgumentError, NotFoundError
from jobtrail.types import DeduplicationResult, DuplicateGroup, DuplicateMatch, JobRecord, utc_now

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {"jd_text": 0.7, "company": 0.2, "role": 0.1}
# Fields copied from a duplicate into the primary when the primary has none.
MERGEABLE_FIELDS = ("company", "role", "jd_text", "source_url", "applied_date")


def normalize_text(value: str | None) -> str:
    return " ".join((value or "").lower().split())


class SimilarityScorer(Protocol):
    def score(self, left: JobRecord, right: JobRecord) -> float: ...


class WeightedTextScorer:
    """Weighted average of per-field string similarity in [0, 1].

    A field only counts when both records have it, so two records without a
    description are compared on company and role alone.
    """

    def __init__(self, weights: dict[str, float] | None = None):
        self.weights = weights or dict(DEFAULT_WEIGHTS)

    def score(self, left: JobRecord, right: JobRecord) -> float:
        total = 0.0
        weight_sum = 0.0
        for field, weight in self.weights.items():
            a = normalize_text(getattr(left, field, None))
            b = normalize_text(getattr(right, field, None))
            if not a or not b:
                continue
            total += fuzz.ratio(a, b) / 100.0 * weight
            weight_sum += weight
        return total / weight_sum if weight_sum else 0.0


class DeduplicationEngine:
    def __init__(
        self,
        job_store: JobRecordStore,
        operations: OperationsLog,
        scorer: SimilarityScorer | None = None,
        threshold: float = 0.8,
    ):
        self.job_store = job_store
        self.operations = operations
        self.scorer = scorer or WeightedTextScorer()
        self.threshold = threshold

    def find_duplicates(self, target_uuid: str | None = None) -> DeduplicationResult:
        jobs = [job for job in self.job_store.list() if not job.is_archived]
        if target_uuid is not None:
            target = self.job_store.get(target_uuid)
            if target is None:
                raise NotFoundError(f"Job {target_uuid} not found")
            candidates = [target]
        else:
            candidates = jobs

        groups: list[DuplicateGroup] = []
        grouped: set[str] = set()
        for primary in candidates:
            if primary.uuid in grouped:
                continue
            matches: list[DuplicateMatch] = []
            for other in jobs:
                if other.uuid == primary.uuid or other.uuid in grouped:
                    continue
                similarity = self.scorer.score(primary, other)
                if similarity >= self.threshold:
                    matches.append(DuplicateMatch(uuid=other.uuid, similarity_score=similarity, job=other))
            if not matches:
                continue
            groups.append(
                DuplicateGroup(
                    primary_job=primary,
                    duplicates=matches,
                    max_similarity=max(match.similarity_score for match in matches),
                )
            )
            grouped.add(primary.uuid)
            grouped.update(match.uuid for match in matches)

        total = sum(len(group.duplicates) for group in groups)
        logger.info("Found %s duplicate records in %s groups", total, len(groups))
        return DeduplicationResult(duplicate_groups=groups, total_duplicates_found=total, threshold_used=self.threshold)

    def merge(self, primary_id: str, duplicate_ids: list[str], note: str | None = None) -> JobRecord:
        if primary_id in duplicate_ids:
            raise InvalidArgumentError("A record cannot be merged into itself")
        primary = self.job_store.get(primary_id)
        if primary is None:
            raise NotFoundError(f"Primary job {primary_id} not found")
        duplicates = [job for job in (self.job_store.get(uuid) for uuid in duplicate_ids) if job is not None]
        if not duplicates:
            raise NotFoundError("No duplicate jobs found", details={"duplicate_ids": duplicate_ids})

        merged_ids = [job.uuid for job in duplicates]
        fields: dict[str, Any] = {}
        for name in MERGEABLE_FIELDS:
            if getattr(primary, name):
                continue
            donor = next((getattr(job, name) for job in duplicates if getattr(job, name)), None)
            if donor:
                fields[name] = donor
        fields["merged_from"] = [*primary.merged_from, *merged_ids]
        fields["merge_history"] = [
            *primary.merge_history,
            {
                "timestamp": utc_now().isoformat(),
                "action": "merge",
                "source_uuids": merged_ids,
                "user_action": note,
            },
        ]
        before = {name: value for name, value in primary.model_dump(mode="json").items() if name in fields}

        updated = self.job_store.patch(primary_id, fields)
        for job in duplicates:
            self.job_store.delete(job.uuid)

        self.operations.log_operation(
            "bulk",
            user_action=note or f"Merged {len(merged_ids)} duplicate jobs into {primary_id}",
            manifest_entries=[primary_id, *merged_ids],
            inverse_action="revert_merge",
            inverse_payload={
                "primary_uuid": primary_id,
                "primary_before": before,
                "records": [job.model_dump(mode="json") for job in duplicates],
            },
            can_undo=True,
        )
        logger.info("Merged %s into %s", merged_ids, primary_id)
        return updated

    def delete(self, uuid: str, note: str | None = None) -> JobRecord:
        job = self.job_store.get(uuid)
        if job is None:
            raise NotFoundError(f"Job {uuid} not found")
        self.job_store.delete(uuid)
        self.operations.log_operation(
            "delete",
            user_action=note or f"Deleted job {job.company or ''} {job.role or ''}".strip(),
            manifest_entries=[uuid],
            inverse_action="recreate_records",
            inverse_payload={"records": [job.model_dump(mode="json")]},
            can_undo=True,
        )
        return job

    # inverse actions used by undo

    def recreate_records(self, payload: dict[str, Any]) -> list[JobRecord]:
        restored: list[JobRecord] = []
        for record in payload.get("records", []):
            if self.job_store.get(record["uuid"]) is not None:
                logger.warning("Job %s already exists, not recreating", record["uuid"])
                continue
            restored.append(self.job_store.create(record))
        return restored

    def revert_merge(self, payload: dict[str, Any]) -> JobRecord:
        self.recreate_records(payload)
        return self.job_store.patch(payload["primary_uuid"], payload.get("primary_before", {}))
