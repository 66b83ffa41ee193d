"""
Registry of finished stitch jobs.

Jobs live for a fixed retention window. Eviction removes the registry entry
and deletes the artifact and scratch directory behind it.
"""
import logging
import shutil
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

from models import Job

logger = logging.getLogger("clip-stitcher.jobs")

PREFIX = "job:"
DEFAULT_RETENTION = timedelta(hours=1)


def new_job_id() -> str:
    return str(uuid4())


def remove_job_files(job: Job) -> None:
    """Delete a job's artifact and scratch directory, logging rather than raising."""
    try:
        Path(job.final_path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not delete artifact job_id=%s path=%s: %s", job.id, job.final_path, e)
    if job.temp_dir:
        shutil.rmtree(job.temp_dir, ignore_errors=True)


class JobRegistry:
    """Base registry; subclasses provide storage."""

    def __init__(self, retention: timedelta = DEFAULT_RETENTION):
        self.retention = retention

    def insert(self, job: Job) -> None:
        raise NotImplementedError

    def lookup(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    def list_jobs(self) -> List[Job]:
        raise NotImplementedError

    def remove(self, job_id: str) -> None:
        raise NotImplementedError

    def evict_expired(self, now: Optional[datetime] = None) -> List[str]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        evicted = []
        for job in self.list_jobs():
            if job.created_at < cutoff:
                remove_job_files(job)
                self.remove(job.id)
                evicted.append(job.id)
        if evicted:
            logger.info("Evicted %d expired jobs.", len(evicted))
        return evicted


class InMemoryJobRegistry(JobRegistry):
    def __init__(self, retention: timedelta = DEFAULT_RETENTION):
        super().__init__(retention)
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def insert(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def lookup(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        with self._lock:
            return list(self._jobs.values())

    def remove(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)


def job_key(job_id: str) -> str:
    return f"{PREFIX}{job_id}"


class RedisJobRegistry(JobRegistry):
    # Keys carry no TTL: expiry is left to evict_expired so files get deleted too.

    def __init__(self, client, retention: timedelta = DEFAULT_RETENTION):
        super().__init__(retention)
        self.client = client

    def insert(self, job: Job) -> None:
        self.client.set(job_key(job.id), job.model_dump_json())

    def lookup(self, job_id: str) -> Optional[Job]:
        data = self.client.get(job_key(job_id))
        if data is None:
            return None
        return Job.model_validate_json(data)

    def list_jobs(self) -> List[Job]:
        jobs: List[Job] = []
        for key in self.client.scan_iter(f"{PREFIX}*"):
            data = self.client.get(key)
            if data:
                jobs.append(Job.model_validate_json(data))
        return jobs

    def remove(self, job_id: str) -> None:
        self.client.delete(job_key(job_id))
