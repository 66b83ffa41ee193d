from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SegmentRequest(BaseModel):
    url: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None


class ProcessRequest(BaseModel):
    segments: List[SegmentRequest] = Field(default_factory=list)


class ParsedSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    start_seconds: int
    end_seconds: int

    @property
    def duration_seconds(self) -> int:
        return self.end_seconds - self.start_seconds


class Job(BaseModel):
    id: str
    final_path: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    temp_dir: Optional[str] = None


class Stage(str, Enum):
    STARTING = "starting"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    STITCHING = "stitching"


class Channel(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    stage: Stage
    message: str


class LogEvent(BaseModel):
    type: Literal["log"] = "log"
    channel: Channel
    message: str


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class DoneEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["done"] = "done"
    download_id: str = Field(alias="downloadId")
    download_url: str = Field(alias="downloadUrl")


TerminalEvent = Union[ErrorEvent, DoneEvent]

ProgressEvent = Annotated[
    Union[StatusEvent, LogEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]
