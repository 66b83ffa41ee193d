import asyncio
import html
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import FileResponse, HTMLResponse, StreamingResponse
from starlette import status

from config import Settings, get_settings
from jobs import InMemoryJobRegistry, JobRegistry, RedisJobRegistry
from metrics import jobs_evicted
from models import ProcessRequest
from orchestrator import EventChannel, close_channel_on_exit, process_segments
from pipeline import CommandRunner
from redis_client import create_redis_client
from runner import run_command

NDJSON_MEDIA_TYPE = "application/x-ndjson"

# Logging
logFormatter = logging.Formatter("%(asctime)s [%(threadName)-12.12s] [%(levelname)-5.5s]  %(message)s")
logger = logging.getLogger("clip-stitcher")
logger.setLevel(level=logging.INFO)
logger.propagate = False


def configure_logging(settings: Settings) -> None:
    if logger.handlers:
        return
    settings.log_path.mkdir(parents=True, exist_ok=True)

    fileHandler = RotatingFileHandler(settings.log_file, maxBytes=5*1024*1024, backupCount=2, encoding="utf-8")
    fileHandler.setFormatter(logFormatter)
    logger.addHandler(fileHandler)

    consoleHandler = logging.StreamHandler()
    consoleHandler.setFormatter(logFormatter)
    logger.addHandler(consoleHandler)


def tail_logs(log_file: Path, n: int = 200) -> str:
    try:
        with open(log_file, "r", encoding="utf-8") as f:
            lines = f.readlines()
            return "".join(lines[-n:])
    except OSError as e:
        logger.error(f"Error reading log file: {e}")
        return "Could not read log file."


def build_registry(settings: Settings) -> JobRegistry:
    retention = timedelta(seconds=settings.retention_seconds)
    if settings.registry_backend == "redis":
        logger.info("Using Redis job registry at %s", settings.redis_url)
        return RedisJobRegistry(create_redis_client(settings.redis_url), retention)
    return InMemoryJobRegistry(retention)


# Maintenance
async def evict_periodically(registry: JobRegistry, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            evicted = await asyncio.to_thread(registry.evict_expired)
        except Exception:
            logger.exception("Eviction pass failed")
            continue
        jobs_evicted.inc(len(evicted))


# FastAPI
def create_app(settings: Optional[Settings] = None,
               registry: Optional[JobRegistry] = None,
               run: CommandRunner = run_command) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    settings.public_path.mkdir(parents=True, exist_ok=True)
    if registry is None:
        registry = build_registry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        eviction = asyncio.create_task(evict_periodically(registry, settings.eviction_interval_seconds))
        logger.info("Serving artifacts from %s", settings.public_path)
        try:
            yield
        finally:
            eviction.cancel()
            with suppress(asyncio.CancelledError):
                await eviction

    app = FastAPI(title="Clip Stitcher", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry

    @app.get("/metrics", include_in_schema=False)
    def metrics():
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz", include_in_schema=False)
    def healthz() -> dict:
        return {"status": "ok"}

    @app.post("/api/process")
    async def process(request: ProcessRequest) -> StreamingResponse:
        channel = EventChannel()
        task = asyncio.create_task(process_segments(request.segments, channel, settings, registry, run))
        task.add_done_callback(lambda done: close_channel_on_exit(done, channel))

        async def stream():
            try:
                async for event in channel.events():
                    yield event.model_dump_json(by_alias=True) + "\n"
            finally:
                if not task.done():
                    logger.info("Client went away; cancelling in-flight job")
                    task.cancel()

        return StreamingResponse(
            stream(),
            media_type=NDJSON_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/api/download/{job_id}")
    def download(job_id: str) -> FileResponse:
        job = registry.lookup(job_id)
        if not job:
            logger.error("Download for unknown job_id=%s", job_id)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Job not found"
                )

        output_path = Path(job.final_path)
        if not output_path.is_file():
            logger.error("Artifact missing for job_id=%s path=%s", job_id, output_path)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Artifact unavailable"
                )
        logger.info("Serving artifact for job_id=%s file=%s", job_id, output_path.name)
        return FileResponse(output_path, media_type="video/mp4", filename=output_path.name)

    @app.get("/logs", response_class=HTMLResponse, include_in_schema=False)
    def logs(n: int = 200):
        log_text = html.escape(tail_logs(settings.log_file, n=n))
        page = f"""
        <html>
        <head>
            <title>Clip Stitcher Logs</title>
            <meta http-equiv="refresh" content="5">
            <style>
                body {{ font-family: monospace; background-color: #f0f0f0; padding: 20px; }}
            </style>
        </head>
        <body>
            <h1>Last {n} Log Entries from {html.escape(str(settings.log_file))}</h1>
            <pre style="white-space: pre-wrap; word-break: break-word;">{log_text}</pre>
        </body>
        </html>
        """
        return HTMLResponse(content=page)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
