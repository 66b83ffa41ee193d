import asyncio
from pathlib import Path

import pytest

from conftest import FakeTools, read_manifest
from models import ParsedSegment, Stage
from pipeline import fetch_segment, quote_manifest_path, stitch_segments, write_concat_manifest
from runner import CommandError


def _noop_sink(text, is_stderr):
    pass


def test_manifest_escapes_single_quotes(tmp_path):
    paths = [tmp_path / "plain.mp4", tmp_path / "it's here.mp4"]
    manifest = write_concat_manifest(paths, tmp_path)
    lines = manifest.read_text(encoding="utf-8").splitlines()
    assert lines[0] == f"file '{tmp_path}/plain.mp4'"
    assert lines[1] == f"file '{tmp_path}/it'\\''s here.mp4'"
    assert read_manifest(manifest) == paths


def test_quote_manifest_path_without_quotes():
    assert quote_manifest_path(Path("/tmp/a/segment-0.mp4")) == "'/tmp/a/segment-0.mp4'"


def test_fetch_segment_resolves_then_cuts(tmp_path, settings):
    tools = FakeTools()
    statuses = []
    segment = ParsedSegment(url="https://youtu.be/abc", start_seconds=65, end_seconds=80)

    path = asyncio.run(fetch_segment(
        segment, 1, 3, tmp_path, settings,
        lambda stage, message: statuses.append((stage, message)), _noop_sink, tools,
    ))

    assert path == tmp_path / "segment-1.mp4"
    assert path.read_bytes() == b"https://cdn.example/https://youtu.be/abc@65+15;"
    assert statuses == [
        (Stage.RESOLVING, "Resolving segment 2/3"),
        (Stage.DOWNLOADING, "Downloading segment 2/3"),
        (Stage.DOWNLOADED, "Segment 2/3 ready (00:01:05-00:01:20)"),
    ]

    resolve_call, cut_call = tools.calls
    assert resolve_call == ("yt-dlp", ["-f", "best", "-g", "https://youtu.be/abc"])
    command, args = cut_call
    assert command == "ffmpeg"
    assert args[args.index("-c") + 1] == "copy"
    assert "-y" in args


def test_fetch_segment_failure_stops_before_cut(tmp_path, settings):
    tools = FakeTools(fail_url="https://bad.example/v")
    statuses = []
    segment = ParsedSegment(url="https://bad.example/v", start_seconds=0, end_seconds=5)

    with pytest.raises(CommandError, match="Unsupported URL"):
        asyncio.run(fetch_segment(
            segment, 0, 1, tmp_path, settings,
            lambda stage, message: statuses.append(stage), _noop_sink, tools,
        ))

    assert tools.commands() == ["yt-dlp"]
    assert statuses == [Stage.RESOLVING]


def test_resolver_output_uses_first_line(tmp_path, settings):
    async def run(command, args, sink, timeout=None):
        if command == "yt-dlp":
            return "https://cdn.example/video\nhttps://cdn.example/audio"
        Path(args[-1]).write_bytes(b"")
        return ""

    segment = ParsedSegment(url="u", start_seconds=0, end_seconds=1)
    seen = []

    async def recording_run(command, args, sink, timeout=None):
        seen.append(list(args))
        return await run(command, args, sink, timeout)

    asyncio.run(fetch_segment(segment, 0, 1, tmp_path, settings, lambda *a: None, _noop_sink, recording_run))
    cut_args = seen[1]
    assert cut_args[cut_args.index("-i") + 1] == "https://cdn.example/video"


def test_stitch_preserves_order(tmp_path, settings):
    tools = FakeTools()
    clips = []
    for index, name in enumerate(["b", "a", "c"]):
        clip = tmp_path / f"segment-{index}.mp4"
        clip.write_bytes(name.encode())
        clips.append(clip)

    output = asyncio.run(stitch_segments(clips, tmp_path, settings, _noop_sink, tools))

    assert output == tmp_path / "stitched.mp4"
    assert output.read_bytes() == b"bac"
    command, args = tools.calls[0]
    assert args[:6] == ["-f", "concat", "-safe", "0", "-i", str(tmp_path / "concat-list.txt")]
