import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# backend/app/core/config.py -> repository root
REPO_ROOT = Path(__file__).resolve().parents[3]


class Settings:
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "SimpleShare")
    PORT: int = int(os.getenv("PORT", "5000"))
    PUBLIC_URL: str = os.getenv("PUBLIC_URL", "http://localhost:5000").rstrip("/")
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # storage paths (fetched intermediates and final outputs share one directory)
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", str(REPO_ROOT / "storage"))

    # logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "")  # empty = stdout only
    LOG_STREAM_ENABLED: bool = os.getenv("LOG_STREAM_ENABLED", "false").lower() == "true"

    # external tools
    FETCHER_BIN: str = os.getenv("FETCHER_BIN", "yt-dlp")
    FETCHER_FORMAT: str = os.getenv("FETCHER_FORMAT", "bestvideo+bestaudio/best")
    TRANSCODER_BIN: str = os.getenv("TRANSCODER_BIN", "ffmpeg")

    # delivery
    SUBSCRIBER_QUEUE_SIZE: int = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "256"))
    STDERR_TAIL_CHARS: int = int(os.getenv("STDERR_TAIL_CHARS", "4000"))

settings = Settings()
