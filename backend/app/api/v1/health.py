from fastapi import APIRouter, Depends
import shutil
from datetime import datetime

from app.api.deps import get_orchestrator
from app.core.config import settings
from app.services.log_publisher import get_redis_client, pending_publishes
from app.worker import PipelineOrchestrator

router = APIRouter()

@router.get("/")
def health_check():
    """basic liveness check"""
    return {
        "ok": True,
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "simpleshare-backend"
    }

@router.get("/ready")
def readiness_check(pipeline: PipelineOrchestrator = Depends(get_orchestrator)):
    """verifies the external tools and storage the pipeline depends on"""
    checks = {}
    all_healthy = True

    # check external tools
    for label, binary in (("fetcher", pipeline.commands.fetcher_bin), ("transcoder", pipeline.commands.transcoder_bin)):
        resolved = shutil.which(binary)
        if resolved:
            checks[label] = {"status": "healthy", "message": resolved}
        else:
            checks[label] = {"status": "unhealthy", "message": f"{binary} not found on PATH"}
            all_healthy = False

    # check storage
    if pipeline.storage.is_writable():
        checks["storage"] = {"status": "healthy", "message": pipeline.storage.root}
    else:
        checks["storage"] = {"status": "unhealthy", "message": f"{pipeline.storage.root} is not writable"}
        all_healthy = False

    # check redis (only needed for the live log stream)
    if settings.LOG_STREAM_ENABLED:
        try:
            get_redis_client().ping()
            checks["redis"] = {"status": "healthy", "message": "connected"}
        except Exception as e:
            checks["redis"] = {"status": "warning", "message": str(e)}
    else:
        checks["redis"] = {"status": "warning", "message": "log stream disabled"}

    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks
    }

@router.get("/metrics")
def get_metrics(pipeline: PipelineOrchestrator = Depends(get_orchestrator)):
    """job counts and storage usage"""
    return {
        "timestamp": datetime.utcnow().isoformat(),
        "jobs": {
            **pipeline.registry.counts(),
            "total": len(pipeline.registry),
            "running_tasks": pipeline.active_jobs,
        },
        "storage": pipeline.storage.get_disk_usage(),
        "log_stream": {
            "enabled": settings.LOG_STREAM_ENABLED,
            "pending_publishes": pending_publishes(),
        }
    }
