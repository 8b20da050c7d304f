"""Data model for the logcat capture engine."""

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class CaptureConfig:
    output_target: str | os.PathLike
    session_start_time: int              # epoch millis, supplied by the recorder
    package_filter: str | None = None


@dataclass(frozen=True)
class LogRecord:
    timestamp: str       # "MM-DD HH:MM:SS.mmm" as printed by logcat
    pid: int
    tid: int
    level: str           # V, D, I, W, E, F
    tag: str
    message: str


@dataclass(frozen=True)
class LogcatEntry:
    timestamp: int       # epoch millis at processing time (approximate)
    relative_time: int   # millis since session start
    level: str
    tag: str
    pid: int
    message: str


@dataclass
class CaptureStats:
    lines_read: int = 0
    records_written: int = 0
    unparsed_written: int = 0
    filtered_out: int = 0
    line_errors: int = 0


@dataclass
class SessionSummary:
    session_id: str
    start_time: int
    end_time: int
    output_target: str
    package_filter: str | None
    capability: str
    stats: CaptureStats = field(default_factory=CaptureStats)

    @property
    def duration_ms(self) -> int:
        return max(0, self.end_time - self.start_time)
