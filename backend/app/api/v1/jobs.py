from fastapi import APIRouter, Depends, Query
from typing import Optional

from app.api.deps import get_registry
from app.models import JobRecord, JobStatus
from app.services.job_registry import JobRegistry

router = APIRouter()


def _job_dict(job: JobRecord) -> dict:
    return {
        "id": job.id,
        "status": job.status.value,
        "progress": job.progress,
        "url": job.url,
        "error": job.error,
        "source_url": job.source_url,
        "created_at": job.created_at.isoformat(),
        "updated_at": job.updated_at.isoformat(),
    }


@router.get("/")
def get_jobs(
    registry: JobRegistry = Depends(get_registry),
    status: Optional[JobStatus] = None,
    limit: int = Query(default=50, ge=1, le=200)
):
    """recent jobs, newest first, with per-status totals"""
    jobs = registry.list(status=status, limit=limit)
    counts = registry.counts()
    active = counts["starting"] + counts["downloading"] + counts["converting"]

    return {
        "jobs": [_job_dict(job) for job in jobs],
        "summary": {
            "total": len(registry),
            "active_count": active,
            **{f"{status_name}_count": count for status_name, count in counts.items()},
        }
    }


@router.get("/{job_id}")
def get_job(job_id: str, registry: JobRegistry = Depends(get_registry)):
    """current snapshot of one job"""
    return registry.snapshot(job_id).model_dump(mode="json")
