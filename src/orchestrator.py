"""
Request orchestration: validate a batch of segments, fetch and cut each one,
stitch them, publish the result and report progress over an event channel.
"""
import asyncio
import logging
import shutil
import tempfile
import time
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence
from uuid import uuid4

from config import Settings
from jobs import JobRegistry, new_job_id
from metrics import jobs_created, jobs_failed, jobs_processing_seconds, jobs_succeeded
from models import (
    Channel,
    DoneEvent,
    ErrorEvent,
    Job,
    LogEvent,
    ParsedSegment,
    SegmentRequest,
    Stage,
    StatusEvent,
    TerminalEvent,
)
from pipeline import CommandRunner, fetch_segment, stitch_segments
from runner import run_command
from timestamps import parse_timestamp

logger = logging.getLogger("clip-stitcher.orchestrator")

TEMP_PREFIX = "yt-stitch-"


class SegmentValidationError(ValueError):
    def __init__(self, message: str, row: Optional[int] = None):
        self.row = row
        super().__init__(f"Row {row}: {message}" if row is not None else message)


def validate_segments(segments: Sequence[SegmentRequest]) -> List[ParsedSegment]:
    """Parse a batch, stopping at the first bad row (rows are 1-based)."""
    if not segments:
        raise SegmentValidationError("No segments provided")

    parsed = []
    for row, segment in enumerate(segments, start=1):
        url = (segment.url or "").strip()
        if not url:
            raise SegmentValidationError("URL required", row)
        start = parse_timestamp(segment.start)
        end = parse_timestamp(segment.end)
        if start is None or end is None or start >= end:
            raise SegmentValidationError("Invalid timestamps", row)
        parsed.append(ParsedSegment(url=url, start_seconds=start, end_seconds=end))
    return parsed


class EventChannel:
    """Queue of progress events closed by exactly one error or done event."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, event) -> None:
        if self._closed:
            raise RuntimeError("event channel already closed")
        self._queue.put_nowait(event)

    def status(self, stage: Stage, message: str) -> None:
        self._put(StatusEvent(stage=stage, message=message))

    def log(self, text: str, is_stderr: bool = False) -> None:
        self._put(LogEvent(channel=Channel.STDERR if is_stderr else Channel.STDOUT, message=text))

    def finish(self, event: TerminalEvent) -> None:
        if not isinstance(event, (ErrorEvent, DoneEvent)):
            raise TypeError(f"{type(event).__name__} cannot terminate the event stream")
        self._put(event)
        self._closed = True

    async def events(self) -> AsyncIterator:
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, (ErrorEvent, DoneEvent)):
                return


def download_url(job_id: str) -> str:
    return f"/api/download/{job_id}"


async def process_segments(segments: Sequence[SegmentRequest], channel: EventChannel,
                           settings: Settings, registry: JobRegistry,
                           run: CommandRunner = run_command) -> Optional[Job]:
    """Run one request end to end. Returns the registered job, or None on failure.

    Every failure is reported on ``channel`` as a single error event and the
    request's scratch directory is removed; failed jobs are never registered.
    """
    try:
        parsed = validate_segments(segments)
    except SegmentValidationError as e:
        logger.info("Rejected request: %s", e)
        channel.finish(ErrorEvent(message=str(e)))
        return None
    except Exception as e:
        logger.exception("Could not validate request: %s", e)
        channel.finish(ErrorEvent(message=str(e) or "Processing failed"))
        return None

    job_id = new_job_id()
    try:
        work_dir = Path(tempfile.mkdtemp(prefix=TEMP_PREFIX, dir=settings.temp_root))
    except OSError as e:
        logger.exception("Could not create scratch directory for job_id=%s", job_id)
        channel.finish(ErrorEvent(message=str(e)))
        return None
    jobs_created.inc()
    logger.info("Created job_id=%s segments=%d work_dir=%s", job_id, len(parsed), work_dir)
    channel.status(Stage.STARTING, "Validating inputs")

    start = time.perf_counter()
    final_path: Optional[Path] = None
    try:
        clips = []
        for index, segment in enumerate(parsed):
            clip = await fetch_segment(
                segment, index, len(parsed), work_dir, settings, channel.status, channel.log, run
            )
            clips.append(clip)

        channel.status(Stage.STITCHING, "Stitching segments")
        stitched = await stitch_segments(clips, work_dir, settings, channel.log, run)

        settings.public_path.mkdir(parents=True, exist_ok=True)
        final_path = settings.public_path / f"stitch-{uuid4().hex}.mp4"
        await asyncio.to_thread(shutil.copyfile, stitched, final_path)

        job = Job(id=job_id, final_path=str(final_path))
        await asyncio.to_thread(registry.insert, job)
    except Exception as e:
        jobs_failed.inc()
        logger.exception("Job job_id=%s failed: %s", job_id, e)
        if final_path is not None:
            try:
                final_path.unlink(missing_ok=True)
            except OSError as cleanup_error:
                logger.warning("Could not remove partial artifact %s: %s", final_path, cleanup_error)
        channel.finish(ErrorEvent(message=str(e) or "Processing failed"))
        return None
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    processing_time = time.perf_counter() - start
    jobs_processing_seconds.observe(processing_time)
    jobs_succeeded.inc()
    logger.info("job_id=%s stitched successfully in %.2f seconds.", job_id, processing_time)
    channel.finish(DoneEvent(download_id=job_id, download_url=download_url(job_id)))
    return job


def close_channel_on_exit(task: asyncio.Task, channel: EventChannel) -> None:
    """Done-callback for a ``process_segments`` task.

    Finishes the channel with an error if the task ended without doing so,
    so a streaming response never waits on it forever.
    """
    if task.cancelled() or channel.closed:
        return
    error = task.exception()
    logger.error("Job task ended without a terminal event: %r", error)
    channel.finish(ErrorEvent(message=str(error) if error else "Processing failed"))
