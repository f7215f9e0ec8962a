OUTPUT_EXTENSION = "mp4"

# fetched intermediates carry a marker so a fetched .mp4 never collides with the output
STAGING_MARKER = "source"


def staging_prefix(job_id: str) -> str:
    return f"{job_id}.{STAGING_MARKER}."


def staging_template(job_id: str) -> str:
    """yt-dlp output template; the fetcher picks the extension"""
    return f"{staging_prefix(job_id)}%(ext)s"


def output_filename(job_id: str) -> str:
    return f"{job_id}.{OUTPUT_EXTENSION}"


def public_url(base_url: str, job_id: str) -> str:
    """
    public location of a finished artifact
    example: http://localhost:5000/public/5b0c...e1.mp4
    """
    return f"{base_url.rstrip('/')}/public/{output_filename(job_id)}"
