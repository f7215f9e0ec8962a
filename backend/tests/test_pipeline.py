import asyncio
import os

import pytest

from app.core.config import settings
from app.core.errors import ValidationError
from app.models import EventKind, JobPatch, JobStatus
from app.services import log_publisher
from tests.conftest import FakeToolCommands, build_pipeline


def run_job(pipeline, url, subscribers=1):
    """submit a job, attach before it starts and collect every event until it settles"""
    async def scenario():
        job_id = pipeline.submit(url)
        channels = [pipeline.hub.attach(job_id) for _ in range(subscribers)]
        await pipeline.wait_idle()
        collected = []
        for channel in channels:
            events = []
            while channel.pending():
                event = await channel.receive()
                if event is not None:
                    events.append(event)
            collected.append(events)
        return job_id, collected

    job_id, collected = asyncio.run(scenario())
    return (job_id, collected[0]) if subscribers == 1 else (job_id, collected)


def statuses(events):
    """distinct statuses in the order they were observed"""
    seen = []
    for event in events:
        status = event.snapshot.status
        if not seen or seen[-1] != status:
            seen.append(status)
    return seen


def test_successful_job(pipeline, storage_dir):
    job_id, events = run_job(pipeline, "https://media.example/watch?v=ok")

    assert events[0].kind == EventKind.MESSAGE
    assert events[0].snapshot.status == JobStatus.QUEUED
    assert statuses(events) == [
        JobStatus.QUEUED,
        JobStatus.STARTING,
        JobStatus.DOWNLOADING,
        JobStatus.CONVERTING,
        JobStatus.DONE,
    ]

    download = [e.snapshot.progress for e in events if e.kind == EventKind.DOWNLOAD_PROGRESS]
    assert download == [0, 26, 50, 100]

    # "[youtube] ...: Downloading webpage" carries no percentage
    assert any(e.kind == EventKind.MESSAGE and e.snapshot.status == JobStatus.DOWNLOADING for e in events)

    # 50% arrives twice from ffmpeg but is surfaced once. the first block may
    # land before the Duration banner is read and then degrades to status-only
    convert = [e.snapshot.progress for e in events if e.kind == EventKind.CONVERT_PROGRESS]
    assert convert[-2:] == [50, 100]
    assert convert[:-2] in ([25], [0])

    final = events[-1]
    assert final.kind == EventKind.DONE
    assert final.payload() == {
        "status": "done",
        "progress": 100,
        "url": f"http://testserver/public/{job_id}.mp4",
        "error": None,
    }

    record = pipeline.registry.get(job_id)
    assert record.last_surfaced_percent == 100

    # intermediate removed, output kept
    assert sorted(os.listdir(storage_dir)) == [f"{job_id}.mp4"]


def test_progress_monotonic_within_each_stage(pipeline):
    _, events = run_job(pipeline, "https://media.example/watch?v=ok")
    for stage in (JobStatus.DOWNLOADING, JobStatus.CONVERTING):
        values = [e.snapshot.progress for e in events if e.snapshot.status == stage]
        assert values == sorted(values)
        assert all(0 <= v <= 100 for v in values)


def test_fetcher_failure(pipeline, storage_dir):
    job_id, events = run_job(pipeline, "https://media.example/fail")

    final = events[-1]
    assert final.kind == EventKind.ERROR
    assert final.snapshot.status == JobStatus.ERROR
    assert final.snapshot.error.startswith("yt-dlp failed:")
    assert "Unsupported URL" in final.snapshot.error
    assert final.snapshot.url is None
    assert JobStatus.CONVERTING not in statuses(events)
    assert os.listdir(storage_dir) == []


def test_fetched_file_missing(pipeline):
    job_id, events = run_job(pipeline, "https://media.example/nofile")
    assert events[-1].kind == EventKind.ERROR
    assert pipeline.registry.get(job_id).error == "downloaded file not found"
    assert JobStatus.CONVERTING not in statuses(events)


def test_fetcher_spawn_failure(storage_dir):
    pipeline = build_pipeline(storage_dir, commands=FakeToolCommands(fetcher_bin=str(storage_dir / "no-such-binary")))
    job_id, events = run_job(pipeline, "https://media.example/watch?v=ok")

    record = pipeline.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.error.startswith("yt-dlp spawn failed:")
    assert events[-1].kind == EventKind.ERROR


def test_transcoder_failure(pipeline, storage_dir):
    job_id, events = run_job(pipeline, "https://media.example/badmedia")

    record = pipeline.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert record.error.startswith("ffmpeg failed:")
    assert "Invalid data found" in record.error
    assert JobStatus.CONVERTING in statuses(events)
    # the intermediate is cleaned up on failure too
    assert os.listdir(storage_dir) == []


def test_transcoder_output_missing(pipeline):
    job_id, events = run_job(pipeline, "https://media.example/nooutput")
    assert events[-1].kind == EventKind.ERROR
    assert pipeline.registry.get(job_id).error == "converted file not found"


def test_unknown_duration_degrades_to_status_only(pipeline):
    job_id, events = run_job(pipeline, "https://media.example/noduration")

    convert = [e for e in events if e.kind == EventKind.CONVERT_PROGRESS]
    assert len(convert) == 4
    assert all(e.snapshot.progress == 0 for e in convert)
    assert events[-1].kind == EventKind.DONE
    assert events[-1].snapshot.progress == 100


def test_two_subscribers_see_the_same_sequence(pipeline):
    _, (first, second) = run_job(pipeline, "https://media.example/watch?v=ok", subscribers=2)
    assert first == second
    assert first[-1].kind == EventKind.DONE


def test_nothing_changes_after_terminal_state(pipeline):
    job_id, events = run_job(pipeline, "https://media.example/fail")
    terminal_index = next(i for i, e in enumerate(events) if e.is_terminal)
    assert terminal_index == len(events) - 1

    final = pipeline.registry.snapshot(job_id)
    pipeline._publish(job_id, EventKind.DOWNLOAD_PROGRESS, progress=80)
    pipeline._fail(job_id, "second failure")
    assert pipeline.registry.snapshot(job_id) == final


def test_jobs_run_concurrently(pipeline):
    async def scenario():
        ok = pipeline.submit("https://media.example/watch?v=a")
        failing = pipeline.submit("https://media.example/fail")
        other = pipeline.submit("https://media.example/watch?v=b")
        assert pipeline.active_jobs == 3
        await pipeline.wait_idle()
        return ok, failing, other

    ok, failing, other = asyncio.run(scenario())
    assert pipeline.registry.get(ok).status == JobStatus.DONE
    assert pipeline.registry.get(other).status == JobStatus.DONE
    assert pipeline.registry.get(failing).status == JobStatus.ERROR
    assert pipeline.active_jobs == 0


def test_submission_does_not_wait_for_the_pipeline(pipeline):
    async def scenario():
        job_id = pipeline.submit("https://media.example/watch?v=ok")
        status = pipeline.registry.get(job_id).status
        await pipeline.wait_idle()
        return status

    assert asyncio.run(scenario()) == JobStatus.QUEUED


@pytest.mark.parametrize("url", [None, "", "   "])
def test_submit_requires_url(pipeline, url):
    async def scenario():
        pipeline.submit(url)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())
    assert len(pipeline.registry) == 0


def test_shutdown_cancels_running_jobs(pipeline):
    async def scenario():
        job_id = pipeline.submit("https://media.example/hang")
        subscriber = pipeline.hub.attach(job_id)
        # let the fake fetcher start
        for _ in range(100):
            await asyncio.sleep(0.02)
            if pipeline.registry.get(job_id).status == JobStatus.DOWNLOADING:
                break
        await pipeline.shutdown()
        return job_id, subscriber

    job_id, subscriber = asyncio.run(scenario())
    record = pipeline.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert "cancelled" in record.error
    assert subscriber.closed
    assert pipeline.active_jobs == 0


def test_interrupted_fetch_leaves_no_partial_files(pipeline, storage_dir):
    job_id, events = run_job(pipeline, "https://media.example/partial")

    record = pipeline.registry.get(job_id)
    assert record.status == JobStatus.ERROR
    assert "HTTP Error 403" in record.error
    assert os.listdir(storage_dir) == []


def test_convert_percentage_compared_with_record(pipeline):
    """a percentage equal to the job's last surfaced one is not broadcast again"""
    job_id = pipeline.registry.create()
    pipeline.registry.update(job_id, JobPatch(status=JobStatus.CONVERTING, progress=0, last_surfaced_percent=0))
    subscriber = pipeline.hub.attach(job_id)

    assert pipeline._surface_convert_percent(job_id, 0) is None
    assert pipeline._surface_convert_percent(job_id, 40).last_surfaced_percent == 40
    assert pipeline._surface_convert_percent(job_id, 40) is None
    assert pipeline._surface_convert_percent(job_id, 41).progress == 41

    async def collect():
        events = []
        while subscriber.pending():
            events.append(await subscriber.receive())
        return events

    events = asyncio.run(collect())
    assert [e.snapshot.progress for e in events if e.kind == EventKind.CONVERT_PROGRESS] == [40, 41]


def test_unresponsive_log_stream_does_not_stall_jobs(pipeline, monkeypatch):
    """a redis that accepts connections but never answers must not block the event loop"""
    async def scenario():
        async def never_answer(reader, writer):
            await reader.read()

        server = await asyncio.start_server(never_answer, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        monkeypatch.setattr(settings, "REDIS_URL", f"redis://127.0.0.1:{port}/0")
        monkeypatch.setattr(settings, "LOG_STREAM_ENABLED", True)

        loop = asyncio.get_running_loop()
        gaps = []
        stop = asyncio.Event()

        async def ticker():
            last = loop.time()
            while not stop.is_set():
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        tick = asyncio.create_task(ticker())
        started = loop.time()
        job_id = pipeline.submit("https://media.example/watch?v=ok")
        submit_took = loop.time() - started
        backgrounded = log_publisher.pending_publishes()
        await pipeline.wait_idle()
        stop.set()
        await tick
        server.close()
        return job_id, submit_took, backgrounded, max(gaps)

    job_id, submit_took, backgrounded, worst_gap = asyncio.run(scenario())
    assert submit_took < 0.2
    assert backgrounded >= 1
    assert worst_gap < 0.5
    assert pipeline.registry.get(job_id).status == JobStatus.DONE
