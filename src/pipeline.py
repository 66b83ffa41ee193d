"""
Per-segment fetch/cut and the final concatenation step.

The resolver (yt-dlp) and transcoder (ffmpeg) are driven as subprocesses
through an injectable ``run`` coroutine with the same signature as
``runner.run_command``.
"""
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Sequence

from config import Settings
from models import ParsedSegment, Stage
from runner import OutputSink, run_command
from timestamps import decimal_text, format_timestamp

logger = logging.getLogger("clip-stitcher.pipeline")

CommandRunner = Callable[..., Awaitable[str]]
StatusSink = Callable[[Stage, str], None]

MANIFEST_NAME = "concat-list.txt"
STITCHED_NAME = "stitched.mp4"


def segment_path(work_dir: Path, index: int) -> Path:
    return work_dir / f"segment-{index}.mp4"


def _first_line(output: str) -> str:
    for line in output.splitlines():
        if line.strip():
            return line.strip()
    return ""


async def resolve_locator(url: str, settings: Settings, sink: OutputSink,
                          run: CommandRunner = run_command) -> str:
    output = await run(
        settings.resolver_bin,
        ["-f", settings.resolver_format, "-g", url],
        sink,
        timeout=settings.command_timeout,
    )
    return _first_line(output)


async def cut_segment(locator: str, segment: ParsedSegment, destination: Path,
                      settings: Settings, sink: OutputSink,
                      run: CommandRunner = run_command) -> Path:
    await run(
        settings.transcoder_bin,
        [
            "-ss", decimal_text(segment.start_seconds),
            "-i", locator,
            "-t", decimal_text(segment.duration_seconds),
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            "-y", str(destination),
        ],
        sink,
        timeout=settings.command_timeout,
    )
    return destination


async def fetch_segment(segment: ParsedSegment, index: int, total: int, work_dir: Path,
                        settings: Settings, status: StatusSink, sink: OutputSink,
                        run: CommandRunner = run_command) -> Path:
    """Resolve one segment's source and cut its window into ``work_dir``.

    ``index`` is zero-based; progress messages use the 1-based position.
    Failures propagate untouched.
    """
    label = f"{index + 1}/{total}"

    status(Stage.RESOLVING, f"Resolving segment {label}")
    locator = await resolve_locator(segment.url, settings, sink, run)

    status(Stage.DOWNLOADING, f"Downloading segment {label}")
    destination = await cut_segment(locator, segment, segment_path(work_dir, index), settings, sink, run)

    window = f"{format_timestamp(segment.start_seconds)}-{format_timestamp(segment.end_seconds)}"
    status(Stage.DOWNLOADED, f"Segment {label} ready ({window})")
    logger.info("Segment %s cut to %s", label, destination)
    return destination


def quote_manifest_path(path: Path) -> str:
    # concat demuxer syntax: close the quote, emit an escaped quote, reopen
    return "'" + str(path).replace("'", "'\\''") + "'"


def write_concat_manifest(paths: Sequence[Path], work_dir: Path) -> Path:
    manifest = work_dir / MANIFEST_NAME
    lines = [f"file {quote_manifest_path(path)}" for path in paths]
    manifest.write_text("\n".join(lines), encoding="utf-8")
    return manifest


async def stitch_segments(paths: List[Path], work_dir: Path, settings: Settings, sink: OutputSink,
                          run: CommandRunner = run_command) -> Path:
    """Concatenate ``paths`` in order without re-encoding; returns the merged file."""
    manifest = write_concat_manifest(paths, work_dir)
    output = work_dir / STITCHED_NAME
    await run(
        settings.transcoder_bin,
        ["-f", "concat", "-safe", "0", "-i", str(manifest), "-c", "copy", "-y", str(output)],
        sink,
        timeout=settings.command_timeout,
    )
    return output
