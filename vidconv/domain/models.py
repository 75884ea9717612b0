import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProgressKind(str, Enum):
    FRAME_INDEX = "frame_index"
    TIMESTAMP_MILLIS = "timestamp_millis"
    TIMESTAMP_MICROS = "timestamp_micros"
    TIMECODE = "timecode"
    TERMINAL_MARKER = "terminal_marker"


class JobState(str, Enum):
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ErrorClass(str, Enum):
    CLIENT = "CLIENT"  # bad input or format
    SERVER = "SERVER"


def _as_text(v) -> str:
    if v is None:
        return ""
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    return v


class FormatInfo(BaseModel):
    """Container-level section of an ffprobe report. Numeric fields stay text."""

    duration: str = ""
    size: str = ""
    bit_rate: str = ""

    @field_validator("duration", "size", "bit_rate", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _as_text(v)


class StreamInfo(BaseModel):
    codec_name: str = ""
    width: int = 0
    height: int = 0
    duration: str = ""
    nb_frames: str = ""
    avg_frame_rate: str = ""

    @field_validator("codec_name", "duration", "nb_frames", "avg_frame_rate", mode="before")
    @classmethod
    def coerce_text(cls, v):
        return _as_text(v)

    @field_validator("width", "height", mode="before")
    @classmethod
    def coerce_dimension(cls, v):
        return 0 if v is None else v


class SourceMetadata(BaseModel):
    format: FormatInfo = Field(default_factory=FormatInfo)
    streams: List[StreamInfo] = Field(default_factory=list)

    @property
    def primary_stream(self) -> Optional[StreamInfo]:
        """First stream with a picture size, else the first stream, else None."""
        for stream in self.streams:
            if stream.width > 0 or stream.height > 0:
                return stream
        if self.streams:
            return self.streams[0]
        return None

    @property
    def resolution(self) -> str:
        stream = self.primary_stream
        if stream is not None and stream.width > 0 and stream.height > 0:
            return f"{stream.width}x{stream.height}"
        return ""

    @property
    def codec(self) -> str:
        stream = self.primary_stream
        return stream.codec_name if stream is not None else ""

    @property
    def size_bytes(self) -> int:
        try:
            return int(self.format.size)
        except ValueError:
            return 0


class MediaTotals(BaseModel):
    """Progress denominators; values <= 0 mean unknown."""

    duration_seconds: float = 0.0
    total_frames: float = 0.0


class ProgressSample(BaseModel):
    key: str
    raw_value: str
    kind: ProgressKind


class ConversionRequest(BaseModel):
    """What the upload ingress hands to the orchestrator."""

    input_path: Path
    file_name: str
    output_format: str
    output_name: str
    output_path: Path


class ConversionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    output_name: str = Field(alias="outputName")
    download_url: str = Field(alias="downloadUrl")
    duration: float = 0.0
    file_size: int = Field(default=0, alias="fileSize")
    resolution: str = ""
    codec: str = ""


class ConversionResult(BaseModel):
    state: JobState
    summary: Optional[ConversionSummary] = None
    message: Optional[str] = None
    error_class: Optional[ErrorClass] = None

    @classmethod
    def succeeded(cls, summary: ConversionSummary) -> "ConversionResult":
        return cls(state=JobState.SUCCEEDED, summary=summary)

    @classmethod
    def cancelled(cls) -> "ConversionResult":
        return cls(state=JobState.CANCELLED, message=CANCELLED_MESSAGE)

    @classmethod
    def failed(cls, message: str, error_class: ErrorClass = ErrorClass.SERVER) -> "ConversionResult":
        return cls(state=JobState.FAILED, message=message, error_class=error_class)

    @property
    def http_status(self) -> int:
        if self.state == JobState.SUCCEEDED:
            return 200
        if self.state == JobState.CANCELLED:
            return 409
        if self.error_class == ErrorClass.CLIENT:
            return 400
        return 500


CANCELLED_MESSAGE = "Conversion cancelled by user"


@dataclass
class ConversionProcess:
    """Registry entry for one in-flight conversion.

    `cancelled` only ever flips to True, and only through an explicit cancel.
    """

    key: str
    process: Optional[subprocess.Popen] = None
    cancelled: bool = False
