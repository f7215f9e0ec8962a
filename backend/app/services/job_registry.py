from collections import Counter
from typing import Dict, List, Optional

from app.core.errors import NotFoundError
from app.core.logging_config import get_logger
from app.models import JobPatch, JobRecord, JobSnapshot, JobStatus, apply_patch

logger = get_logger(__name__)


class JobRegistry:
    """
    authoritative in-memory store of job records

    all access happens on the event loop thread and every record has a single
    owning pipeline task, so a plain dict keyed by job id is enough
    """

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, source_url: Optional[str] = None) -> str:
        """create a queued job record and return its id"""
        record = JobRecord(source_url=source_url)
        while record.id in self._jobs:
            record = JobRecord(source_url=source_url)
        self._jobs[record.id] = record
        logger.info(f"job {record.id} created")
        return record.id

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def require(self, job_id: str) -> JobRecord:
        record = self._jobs.get(job_id)
        if record is None:
            raise NotFoundError("job not found")
        return record

    def update(self, job_id: str, patch: JobPatch) -> JobRecord:
        """merge only the fields set on the patch"""
        current = self.require(job_id)
        updated = apply_patch(current, patch)
        if updated is current:
            if current.is_terminal:
                logger.debug(f"job {job_id} is {current.status.value}, ignoring update")
            return current
        self._jobs[job_id] = updated
        return updated

    def snapshot(self, job_id: str) -> JobSnapshot:
        return self.require(job_id).snapshot()

    def list(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[JobRecord]:
        """newest first"""
        # dicts keep insertion order, which is creation order
        records = list(reversed(self._jobs.values()))
        if status is not None:
            records = [r for r in records if r.status == status]
        return records[:limit]

    def counts(self) -> Dict[str, int]:
        counter = Counter(r.status.value for r in self._jobs.values())
        return {s.value: counter.get(s.value, 0) for s in JobStatus}


# singleton instance
job_registry = JobRegistry()
