import os
import tempfile
from pathlib import Path

import pytest

# main builds its module-level app from the environment at import time
os.environ.setdefault("STITCH_DATA_DIR", tempfile.mkdtemp(prefix="clip-stitcher-test-"))

from config import Settings
from jobs import InMemoryJobRegistry
from runner import CommandError


def read_manifest(manifest: Path):
    paths = []
    for line in manifest.read_text(encoding="utf-8").splitlines():
        quoted = line[len("file "):]
        paths.append(Path(quoted[1:-1].replace("'\\''", "'")))
    return paths


class FakeTools:
    """Stands in for yt-dlp and ffmpeg; clips hold their locator and window as text."""

    def __init__(self, fail_url=None):
        self.fail_url = fail_url
        self.calls = []
        self.cut_paths = []
        self.stitched = None

    async def __call__(self, command, args, sink, timeout=None):
        self.calls.append((command, list(args)))
        if command == "yt-dlp":
            url = args[-1]
            sink(f"[info] resolving {url}\n", False)
            if url == self.fail_url:
                raise CommandError(command, 1, f"ERROR: Unsupported URL: {url}")
            return f"https://cdn.example/{url}"

        destination = Path(args[-1])
        if "concat" in args:
            manifest = Path(args[args.index("-i") + 1])
            self.stitched = b"".join(p.read_bytes() for p in read_manifest(manifest))
            destination.write_bytes(self.stitched)
        else:
            locator = args[args.index("-i") + 1]
            start = args[args.index("-ss") + 1]
            duration = args[args.index("-t") + 1]
            destination.write_bytes(f"{locator}@{start}+{duration};".encode())
            self.cut_paths.append(destination)
        sink("frame=  24 fps=0.0\n", True)
        return ""

    def commands(self):
        return [command for command, _ in self.calls]


@pytest.fixture
def settings(tmp_path):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return Settings(data_dir=tmp_path / "data", temp_root=scratch)


@pytest.fixture
def registry():
    return InMemoryJobRegistry()


@pytest.fixture
def fake_tools():
    return FakeTools()
