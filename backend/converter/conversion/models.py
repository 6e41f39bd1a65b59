"""Conversion job models."""
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from converter.conversion.errors import ConversionError, InvalidOption


class JobState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Container(str, Enum):
    MP4 = "mp4"
    WEBM = "webm"

    @property
    def counterpart(self) -> "Container":
        return Container.WEBM if self is Container.MP4 else Container.MP4

    @property
    def mime_type(self) -> str:
        return f"video/{self.value}"


class Optimization(str, Enum):
    NONE = "none"
    LIMIT_FPS = "fps"
    LIMIT_DURATION = "length"
    LOWER_QUALITY = "quality"
    TARGET_SIZE = "size"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Optimization":
        name = (value or "none").strip().lower()
        for member in cls:
            if member.value == name:
                return member
        raise InvalidOption(f"Unknown optimization: {value}")


@dataclass(frozen=True)
class ConversionOptions:
    include_audio: bool = True
    optimization: Optimization = Optimization.NONE


@dataclass
class MediaJob:
    """One conversion request, built from a validated upload."""

    filename: str
    data: bytes
    source: Container
    target: Container
    download_name: str
    options: ConversionOptions = field(default_factory=ConversionOptions)
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    submitted: bool = False

    @property
    def size(self) -> int:
        return len(self.data)

    def update_options(self, **changes) -> ConversionOptions:
        """Replace option fields. Only allowed before the job is submitted."""
        if self.submitted:
            raise InvalidOption("Options cannot change after submission")
        self.options = replace(self.options, **changes)
        return self.options

    def snapshot(self) -> ConversionOptions:
        """Mark the job consumed and return the options it will run with."""
        if self.submitted:
            raise InvalidOption(f"Job {self.job_id} was already submitted")
        self.submitted = True
        return self.options


@dataclass
class JobResult:
    ok: bool
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    filename: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, data: bytes, target: Container, filename: str) -> "JobResult":
        return cls(ok=True, data=data, mime_type=target.mime_type, filename=filename)

    @classmethod
    def failure(cls, error: ConversionError) -> "JobResult":
        return cls(ok=False, error_code=error.code, message=error.message)

    @property
    def size(self) -> Optional[int]:
        return len(self.data) if self.data is not None else None

    def release(self) -> None:
        self.data = None
