from typing import List

from app.core.config import settings

# browser-friendly h.264 baseline / aac mp4, capped at 1280px wide
MAX_WIDTH = 1280


def build_transcode_command(input_path: str, output_path: str, binary: str = None) -> List[str]:
    """
    ffmpeg argv that converts input_path into a web-playable mp4

    progress goes to stdout as key=value blocks (-progress pipe:1),
    the Duration banner stays on stderr
    """
    return [
        binary or settings.TRANSCODER_BIN,
        "-y",
        "-i", str(input_path),
        "-c:v", "libx264",
        "-profile:v", "baseline",
        "-level", "3.0",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "128k",
        "-movflags", "+faststart",
        "-vf", f"scale='min({MAX_WIDTH},iw)':-2",  # -2 = keep aspect, round to even (required for h.264)
        "-progress", "pipe:1",
        "-nostats",
        str(output_path)
    ]
