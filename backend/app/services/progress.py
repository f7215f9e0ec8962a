"""
progress parsing for the fetcher (yt-dlp) and transcoder (ffmpeg)

fetcher lines look like:
    [download]  12.3% of 3.45MiB at 123.45KiB/s ETA 00:12

the transcoder runs with `-progress pipe:1` and writes key=value blocks
terminated by `progress=continue` / `progress=end`; its total duration is
only announced once on stderr as `Duration: 00:00:12.34, start: ...`
"""
import math
import re
from typing import List, NamedTuple, Optional, Tuple

FETCH_STAGE = "download"
CONVERT_STAGE = "convert"

FETCHER_PROGRESS_RE = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d+(?:\.\d+)?)")
LINE_SPLIT_RE = re.compile(r"\r\n|\r|\n")

# ffmpeg reports out_time_ms in microseconds despite the name
ELAPSED_KEYS = ("out_time_ms", "out_time_us")


class ProgressSignal(NamedTuple):
    """percent is None for a status-only signal (process alive, no new number)"""
    stage: str
    percent: Optional[int]


def round_percent(value: float) -> int:
    """round half up and clamp to 0-100"""
    return max(0, min(100, int(math.floor(value + 0.5))))


def parse_fetcher_line(line: str) -> Optional[int]:
    """return the download percentage in a fetcher line, or None if it has none"""
    match = FETCHER_PROGRESS_RE.search(line)
    if not match:
        return None
    try:
        return round_percent(float(match.group(1)))
    except ValueError:
        return None


def parse_duration(text: str) -> Optional[float]:
    """return total seconds from a `Duration: HH:MM:SS.ff` line, or None"""
    match = DURATION_RE.search(text)
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2))
    seconds = float(match.group(3))
    return hours * 3600 + minutes * 60 + seconds


def parse_progress_pair(line: str) -> Optional[Tuple[str, str]]:
    """split a `key=value` progress line"""
    key, sep, value = line.strip().partition("=")
    if not sep or not key:
        return None
    return key.strip(), value.strip()


class LineBuffer:
    """
    reassembles lines from arbitrary read chunks

    a partial trailing line stays buffered until its terminator arrives
    (or until flush at end of stream)
    """

    def __init__(self):
        self._pending = ""

    def feed(self, chunk: str) -> List[str]:
        self._pending += chunk
        parts = LINE_SPLIT_RE.split(self._pending)
        self._pending = parts.pop()
        return [p.strip() for p in parts if p.strip()]

    def flush(self) -> List[str]:
        rest, self._pending = self._pending.strip(), ""
        return [rest] if rest else []


class TranscodeProgress:
    """per-job transcoder progress state"""

    def __init__(self, duration_seconds: Optional[float] = None):
        self.duration_seconds = duration_seconds
        self.finished = False

    def discover_duration(self, line: str) -> Optional[float]:
        """scan a diagnostic (stderr) line for the input duration"""
        if self.duration_seconds:
            return self.duration_seconds
        duration = parse_duration(line)
        if duration:
            self.duration_seconds = duration
        return self.duration_seconds

    def feed_line(self, line: str) -> Optional[ProgressSignal]:
        pair = parse_progress_pair(line)
        if pair is None:
            return None
        return self.feed_pair(*pair)

    def feed_pair(self, key: str, value: str) -> Optional[ProgressSignal]:
        if key in ELAPSED_KEYS:
            try:
                elapsed_seconds = max(0, int(value)) / 1_000_000
            except ValueError:
                # N/A before the first frame is encoded
                return None

            if not self.duration_seconds:
                return ProgressSignal(CONVERT_STAGE, None)

            percent = min(100, round_percent(elapsed_seconds / self.duration_seconds * 100))
            return ProgressSignal(CONVERT_STAGE, percent)

        if key == "duration":
            # some builds report the duration inside the progress block
            try:
                duration = float(value)
            except ValueError:
                return None
            if duration > 0:
                self.duration_seconds = duration
            return None

        if key == "progress" and value == "end":
            self.finished = True

        return None
