import logging

from app.services.log_publisher import publish_log

logger = logging.getLogger(__name__)


def handle_job_error(job_id: str, error: Exception):
    """
    centralized error handler for pipeline jobs
    logs the failure with traceback and mirrors it on the live log stream
    """
    logger.error(f"job {job_id} failed: {error}", exc_info=error)
    publish_log('pipeline', 'ERROR', f'❌ job failed: {error}', {'job_id': job_id})


class SimpleShareException(Exception):
    """base exception for simpleshare-specific errors"""
    pass


class ValidationError(SimpleShareException):
    """raised when job submission input is missing or unusable"""
    pass


class NotFoundError(SimpleShareException):
    """raised when a job identifier is unknown"""
    pass


class JobError(SimpleShareException):
    """base for failures that terminate a single job"""
    pass


class ProcessSpawnError(JobError):
    """raised when an external process could not be started"""
    pass


class ProcessExecutionError(JobError):
    """raised when an external process exits with a non-zero code"""

    def __init__(self, message: str, returncode: int = None):
        super().__init__(message)
        self.returncode = returncode


class ArtifactMissingError(JobError):
    """raised when an expected file is absent after a stage"""
    pass


class ChannelClosedError(SimpleShareException):
    """raised when a subscriber channel can no longer accept events"""
    pass
