"""
spawn an external tool and consume its output while it runs

stdout and stderr are read by two tasks while a third waits for exit; all
three are joined before the result is returned. pipes are read in raw chunks
so a slow reader on one stream never stalls the other.
"""
import asyncio
import codecs
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from app.core.config import settings
from app.core.errors import ProcessExecutionError, ProcessSpawnError
from app.core.logging_config import get_logger
from app.services.progress import LineBuffer

logger = get_logger(__name__)

CHUNK_SIZE = 4096

LineCallback = Callable[[str], Awaitable[None]]


@dataclass
class ProcessResult:
    name: str
    returncode: int
    stderr_tail: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "ProcessResult":
        """raise ProcessExecutionError on a non-zero exit"""
        if not self.ok:
            detail = self.stderr_tail.strip() or f"exit code {self.returncode}"
            raise ProcessExecutionError(f"{self.name} failed: {detail}", self.returncode)
        return self


class _Tail:
    """keeps the last `limit` characters written to it"""

    def __init__(self, limit: int):
        self.limit = limit
        self.text = ""

    def append(self, chunk: str) -> None:
        self.text = (self.text + chunk)[-self.limit:]


async def _pump(stream: asyncio.StreamReader, on_line: Optional[LineCallback], tail: Optional[_Tail] = None):
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = LineBuffer()

    async def emit(lines: List[str]):
        if on_line is None:
            return
        for line in lines:
            await on_line(line)

    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if tail is not None:
            tail.append(text)
        await emit(buffer.feed(text))

    rest = decoder.decode(b"", final=True)
    if tail is not None and rest:
        tail.append(rest)
    await emit(buffer.feed(rest) + buffer.flush())


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def run_process(
    argv: List[str],
    name: str,
    on_stdout: Optional[LineCallback] = None,
    on_stderr: Optional[LineCallback] = None,
    tail_chars: int = settings.STDERR_TAIL_CHARS,
) -> ProcessResult:
    """
    run argv to completion, streaming complete lines into the callbacks

    raises ProcessSpawnError if the executable cannot be started. a non-zero
    exit is reported in the result, call .check() to turn it into an error.
    on cancellation (or a failing callback) the process is killed and reaped.
    """
    logger.info(f"spawning {name}: {' '.join(argv)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProcessSpawnError(f"{name} spawn failed: {e}") from e

    stderr_tail = _Tail(tail_chars)
    tasks = [
        asyncio.ensure_future(_pump(process.stdout, on_stdout)),
        asyncio.ensure_future(_pump(process.stderr, on_stderr, stderr_tail)),
        asyncio.ensure_future(process.wait()),
    ]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        _kill(process)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await process.wait()
        raise

    logger.info(f"{name} exited with code {process.returncode}")
    return ProcessResult(name=name, returncode=process.returncode, stderr_tail=stderr_tail.text)
