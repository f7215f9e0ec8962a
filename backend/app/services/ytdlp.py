from typing import List

from app.core.config import settings


def build_fetch_command(url: str, output_template: str, binary: str = None, media_format: str = None) -> List[str]:
    """yt-dlp argv; --newline makes every progress update its own stdout line"""
    return [
        binary or settings.FETCHER_BIN,
        "-f", media_format or settings.FETCHER_FORMAT,
        "-o", str(output_template),
        "--newline",
        url
    ]
