"""
Asynchronous execution of external command-line tools.

Output from both streams is forwarded to a sink as it arrives so callers can
relay live progress, while stdout is also collected as the command's result.
"""
import asyncio
import codecs
import logging
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger("clip-stitcher.runner")

# sink(text, is_stderr)
OutputSink = Callable[[str, bool], None]

CHUNK_SIZE = 4096


class CommandError(Exception):
    """An external command exited with a nonzero status or timed out."""

    def __init__(self, command: str, returncode: Optional[int], stderr: str, message: Optional[str] = None):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message or stderr or f"Command failed: {command}")


async def _pump(stream: asyncio.StreamReader, sink: OutputSink, is_stderr: bool, captured: List[str]) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            captured.append(text)
            sink(text, is_stderr)
        if not chunk:
            return


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass


async def run_command(command: str, args: Sequence[str], sink: OutputSink,
                      timeout: Optional[float] = None) -> str:
    """Run ``command`` with ``args`` and return its trimmed stdout.

    Raises CommandError on a nonzero exit or timeout. OSError from a failed
    spawn (missing binary, bad permissions) propagates as is.
    """
    logger.debug("Running command: %s %s", command, " ".join(str(a) for a in args))
    process = await asyncio.create_subprocess_exec(
        command,
        *args,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdout_parts: List[str] = []
    stderr_parts: List[str] = []
    try:
        await asyncio.wait_for(
            asyncio.gather(
                _pump(process.stdout, sink, False, stdout_parts),
                _pump(process.stderr, sink, True, stderr_parts),
                process.wait(),
            ),
            timeout,
        )
    except asyncio.TimeoutError:
        _kill(process)
        await process.wait()
        raise CommandError(
            command,
            None,
            "".join(stderr_parts),
            message=f"Command timed out after {timeout}s: {command}",
        )
    finally:
        # cancelled by the caller, e.g. the client went away
        if process.returncode is None:
            _kill(process)
            await asyncio.shield(process.wait())

    if process.returncode != 0:
        logger.warning("Command %s exited with code %s", command, process.returncode)
        raise CommandError(command, process.returncode, "".join(stderr_parts))
    return "".join(stdout_parts).strip()
