import os
from typing import List, Optional

from app.core.config import settings
from app.core.errors import ArtifactMissingError
from app.core.logging_config import get_logger
from app.services.filenames import output_filename, staging_prefix, staging_template

logger = get_logger(__name__)

# leftovers of an interrupted or in-progress fetch, never a finished download
INCOMPLETE_SUFFIXES = (".part", ".ytdl", ".temp")


class StorageManager:
    """manages the shared directory for fetched intermediates and final outputs"""

    def __init__(self, root: Optional[str] = None):
        self.root = root or settings.STORAGE_DIR

    def ensure_dirs(self) -> None:
        os.makedirs(self.root, exist_ok=True)

    def staging_template_path(self, job_id: str) -> str:
        return os.path.join(self.root, staging_template(job_id))

    def output_path(self, job_id: str) -> str:
        return os.path.join(self.root, output_filename(job_id))

    def _fetched_candidates(self, job_id: str) -> List[str]:
        prefix = staging_prefix(job_id)
        try:
            names = os.listdir(self.root)
        except FileNotFoundError:
            return []
        return [
            os.path.join(self.root, name)
            for name in names
            if name.startswith(prefix)
            and not name.endswith(INCOMPLETE_SUFFIXES)
            and os.path.isfile(os.path.join(self.root, name))
        ]

    def find_fetched_file(self, job_id: str) -> str:
        """
        locate the file the fetcher produced for a job
        raises ArtifactMissingError when there is none
        """
        matches = self._fetched_candidates(job_id)
        if not matches:
            raise ArtifactMissingError("downloaded file not found")
        if len(matches) > 1:
            # yt-dlp left more than one file behind, the newest one is the merged result
            matches.sort(key=os.path.getmtime, reverse=True)
            logger.warning(f"job {job_id}: {len(matches)} fetched files, using {os.path.basename(matches[0])}")
        return matches[0]

    def discard(self, path: str) -> bool:
        """best-effort delete, failures are logged and swallowed"""
        try:
            os.remove(path)
            logger.info(f"deleted intermediate file: {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"could not delete {path}: {e}")
            return False

    def discard_staged(self, job_id: str) -> int:
        """remove every staged file of a job, partial downloads included"""
        prefix = staging_prefix(job_id)
        try:
            names = os.listdir(self.root)
        except FileNotFoundError:
            return 0
        return sum(
            1 for name in names
            if name.startswith(prefix) and self.discard(os.path.join(self.root, name))
        )

    def _get_directory_size(self, path: str) -> int:
        """recursively calculate directory size in bytes"""
        total = 0
        try:
            for entry in os.scandir(path):
                if entry.is_file():
                    total += entry.stat().st_size
                elif entry.is_dir():
                    total += self._get_directory_size(entry.path)
        except OSError as e:
            logger.warning(f"error calculating size for {path}: {e}")
        return total

    def get_disk_usage(self) -> dict:
        """current storage usage statistics"""
        total_bytes = self._get_directory_size(self.root)
        try:
            file_count = sum(1 for entry in os.scandir(self.root) if entry.is_file())
        except OSError:
            file_count = 0
        return {
            "path": self.root,
            "files": file_count,
            "total_mb": round(total_bytes / (1024**2), 2),
        }

    def is_writable(self) -> bool:
        return os.path.isdir(self.root) and os.access(self.root, os.W_OK)


# singleton instance
storage_manager = StorageManager()
