import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel

ENV_PREFIX = "STITCH_"


class Settings(BaseModel):
    data_dir: Path = Path("data")
    artifact_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    temp_root: Optional[Path] = None

    retention_seconds: int = 60 * 60
    eviction_interval_seconds: int = 15 * 60

    resolver_bin: str = "yt-dlp"
    resolver_format: str = "best"
    transcoder_bin: str = "ffmpeg"
    command_timeout: Optional[float] = None

    registry_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"

    port: int = 3001

    @property
    def public_path(self) -> Path:
        return self.artifact_dir or self.data_dir / "public"

    @property
    def log_path(self) -> Path:
        return self.log_dir or self.data_dir / "logs"

    @property
    def log_file(self) -> Path:
        return self.log_path / "clip-stitcher.log"

    @classmethod
    def from_env(cls, environ=None) -> "Settings":
        """Build settings from ``STITCH_*`` variables; unset ones keep their defaults."""
        environ = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
