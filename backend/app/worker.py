import asyncio
import os
from typing import Dict, List, Optional

from app.core.config import settings
from app.core.errors import ArtifactMissingError, ValidationError, handle_job_error
from app.core.logging_config import get_logger
from app.models import EventKind, JobPatch, JobRecord, JobStatus
from app.services.ffmpeg import build_transcode_command
from app.services.filenames import public_url
from app.services.job_registry import JobRegistry, job_registry
from app.services.log_publisher import publish_log
from app.services.notification_hub import NotificationHub, notification_hub
from app.services.process import run_process
from app.services.progress import TranscodeProgress, parse_fetcher_line
from app.services.storage_manager import StorageManager, storage_manager
from app.services.ytdlp import build_fetch_command

logger = get_logger(__name__)


class ToolCommands:
    """builds the argv for the fetcher and the transcoder"""

    def __init__(self, fetcher_bin: str = None, transcoder_bin: str = None, media_format: str = None):
        self.fetcher_bin = fetcher_bin or settings.FETCHER_BIN
        self.transcoder_bin = transcoder_bin or settings.TRANSCODER_BIN
        self.media_format = media_format or settings.FETCHER_FORMAT

    @property
    def fetcher_name(self) -> str:
        return os.path.basename(self.fetcher_bin)

    @property
    def transcoder_name(self) -> str:
        return os.path.basename(self.transcoder_bin)

    def fetch(self, url: str, output_template: str) -> List[str]:
        return build_fetch_command(url, output_template, binary=self.fetcher_bin, media_format=self.media_format)

    def transcode(self, input_path: str, output_path: str) -> List[str]:
        return build_transcode_command(input_path, output_path, binary=self.transcoder_bin)


class PipelineOrchestrator:
    """
    drives each job through queued -> starting -> downloading -> converting -> done

    every job runs in its own asyncio task. any failure inside a job ends that
    job in the error state and never escapes the task
    """

    def __init__(
        self,
        registry: JobRegistry,
        hub: NotificationHub,
        commands: Optional[ToolCommands] = None,
        storage: Optional[StorageManager] = None,
        public_base_url: Optional[str] = None,
    ):
        self.registry = registry
        self.hub = hub
        self.commands = commands or ToolCommands()
        self.storage = storage or StorageManager()
        self.public_base_url = public_base_url or settings.PUBLIC_URL
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def submit(self, source_url: Optional[str]) -> str:
        """create a job and start its pipeline in the background, returns the job id"""
        if not source_url or not str(source_url).strip():
            raise ValidationError("missing url")

        job_id = self.registry.create(source_url=str(source_url).strip())
        task = asyncio.get_running_loop().create_task(self.run(job_id))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))

        publish_log('pipeline', 'INFO', f'📋 queued job for: {source_url}', {'job_id': job_id})
        return job_id

    def _publish(self, job_id: str, kind: EventKind, **fields) -> JobRecord:
        """apply a patch and broadcast the resulting full snapshot"""
        before = self.registry.require(job_id)
        if before.is_terminal:
            return before
        record = self.registry.update(job_id, JobPatch(**fields))
        self.hub.broadcast(job_id, kind, record.snapshot())
        return record

    def _fail(self, job_id: str, message: str) -> None:
        record = self.registry.get(job_id)
        if record is None or record.is_terminal:
            return
        self._publish(job_id, EventKind.ERROR, status=JobStatus.ERROR, error=message)

    async def run(self, job_id: str) -> None:
        try:
            self._publish(job_id, EventKind.UPDATE, status=JobStatus.STARTING, progress=0)
            fetched_path = await self._download(job_id)
            await self._convert(job_id, fetched_path)
        except asyncio.CancelledError:
            logger.warning(f"job {job_id} cancelled")
            self.storage.discard_staged(job_id)
            self._fail(job_id, "job cancelled: service shutting down")
            raise
        except Exception as e:
            handle_job_error(job_id, e)
            self.storage.discard_staged(job_id)
            self._fail(job_id, str(e) or type(e).__name__)

    async def _download(self, job_id: str) -> str:
        record = self._publish(job_id, EventKind.UPDATE, status=JobStatus.DOWNLOADING, progress=0)
        argv = self.commands.fetch(record.source_url, self.storage.staging_template_path(job_id))
        publish_log('pipeline', 'INFO', f'📥 downloading: {record.source_url}', {'job_id': job_id})

        async def on_stdout(line: str):
            percent = parse_fetcher_line(line)
            if percent is None:
                # fetcher is alive but reported no percentage
                self._publish(job_id, EventKind.MESSAGE)
            else:
                self._publish(job_id, EventKind.DOWNLOAD_PROGRESS, progress=percent)

        result = await run_process(argv, self.commands.fetcher_name, on_stdout=on_stdout)
        result.check()

        fetched_path = self.storage.find_fetched_file(job_id)
        publish_log('pipeline', 'SUCCESS', f'✅ download complete: {os.path.basename(fetched_path)}', {'job_id': job_id})
        return fetched_path

    def _surface_convert_percent(self, job_id: str, percent: int) -> Optional[JobRecord]:
        """broadcast a convert percentage unless it equals the last one surfaced for the job"""
        record = self.registry.require(job_id)
        if record.last_surfaced_percent == percent:
            return None
        return self._publish(
            job_id, EventKind.CONVERT_PROGRESS,
            progress=percent, last_surfaced_percent=percent
        )

    async def _convert(self, job_id: str, input_path: str) -> None:
        self._publish(
            job_id, EventKind.UPDATE,
            status=JobStatus.CONVERTING, progress=0, last_surfaced_percent=0
        )
        tracker = TranscodeProgress()
        output_path = self.storage.output_path(job_id)
        argv = self.commands.transcode(input_path, output_path)
        publish_log('pipeline', 'INFO', f'🎬 converting: {os.path.basename(input_path)}', {'job_id': job_id})

        async def on_stdout(line: str):
            signal = tracker.feed_line(line)
            if signal is None:
                return
            if signal.percent is None:
                # duration still unknown, echo the last known progress
                self._publish(job_id, EventKind.CONVERT_PROGRESS)
            else:
                self._surface_convert_percent(job_id, signal.percent)

        async def on_stderr(line: str):
            if tracker.duration_seconds:
                return
            duration = tracker.discover_duration(line)
            if duration:
                logger.info(f"job {job_id}: input duration {duration:.2f}s")

        try:
            result = await run_process(argv, self.commands.transcoder_name, on_stdout=on_stdout, on_stderr=on_stderr)
        finally:
            self.storage.discard(input_path)
        result.check()

        if not os.path.isfile(output_path):
            raise ArtifactMissingError("converted file not found")

        url = public_url(self.public_base_url, job_id)
        self._publish(job_id, EventKind.DONE, status=JobStatus.DONE, progress=100, url=url)
        publish_log('pipeline', 'SUCCESS', f'🎉 job complete: {url}', {'job_id': job_id})
        logger.info(f"job {job_id} done: {url}")

    async def wait_idle(self) -> None:
        """wait until every submitted job has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """cancel in-flight jobs (their processes are killed) and close every channel"""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.hub.close_all()


# singleton instance
orchestrator = PipelineOrchestrator(job_registry, notification_hub, ToolCommands(), storage_manager)
