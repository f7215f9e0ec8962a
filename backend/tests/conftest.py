import os
import sys
import tempfile
from pathlib import Path

# must be set before app.core.config is imported
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="simpleshare-test-")
os.environ["LOG_STREAM_ENABLED"] = "false"

import pytest

from app.services.job_registry import JobRegistry
from app.services.notification_hub import NotificationHub
from app.services.storage_manager import StorageManager
from app.worker import PipelineOrchestrator, ToolCommands

FAKES_DIR = Path(__file__).resolve().parent / "fakes"


class FakeToolCommands(ToolCommands):
    """runs the fake yt-dlp / ffmpeg scripts with the current interpreter"""

    def __init__(self, fetcher_bin: str = None):
        super().__init__(fetcher_bin=fetcher_bin or sys.executable, transcoder_bin=sys.executable)

    @property
    def fetcher_name(self) -> str:
        return "yt-dlp"

    @property
    def transcoder_name(self) -> str:
        return "ffmpeg"

    def fetch(self, url, output_template):
        return [self.fetcher_bin, str(FAKES_DIR / "fake_ytdlp.py"), url, output_template]

    def transcode(self, input_path, output_path):
        return [self.transcoder_bin, str(FAKES_DIR / "fake_ffmpeg.py"), input_path, output_path]


def build_pipeline(storage_dir, public_base_url="http://testserver", commands=None) -> PipelineOrchestrator:
    registry = JobRegistry()
    hub = NotificationHub(registry)
    storage = StorageManager(str(storage_dir))
    storage.ensure_dirs()
    return PipelineOrchestrator(
        registry,
        hub,
        commands=commands or FakeToolCommands(),
        storage=storage,
        public_base_url=public_base_url,
    )


@pytest.fixture(name="storage_dir")
def storage_dir_fixture(tmp_path):
    path = tmp_path / "storage"
    path.mkdir()
    return path


@pytest.fixture(name="pipeline")
def pipeline_fixture(storage_dir):
    return build_pipeline(storage_dir)
