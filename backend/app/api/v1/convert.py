from typing import Optional

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_orchestrator
from app.worker import PipelineOrchestrator

router = APIRouter()

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_submitted_url(request: Request) -> Optional[str]:
    """the target url from a json or form-encoded body"""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        url = form.get("url")
        return url if isinstance(url, str) else None

    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    url = body.get("url")
    return url if isinstance(url, str) else None


@router.post("/convert")
async def convert(request: Request, pipeline: PipelineOrchestrator = Depends(get_orchestrator)):
    """create a conversion job; returns immediately, the pipeline runs in the background"""
    url = await read_submitted_url(request)
    job_id = pipeline.submit(url)
    status_url = str(request.url_for("job_status_stream", job_id=job_id))
    return {"jobId": job_id, "statusUrl": status_url}
