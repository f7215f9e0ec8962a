from fastapi import Depends

from app.services.job_registry import JobRegistry
from app.services.notification_hub import NotificationHub
from app.worker import PipelineOrchestrator, orchestrator


def get_orchestrator() -> PipelineOrchestrator:
    return orchestrator


def get_registry(pipeline: PipelineOrchestrator = Depends(get_orchestrator)) -> JobRegistry:
    return pipeline.registry


def get_hub(pipeline: PipelineOrchestrator = Depends(get_orchestrator)) -> NotificationHub:
    return pipeline.hub
