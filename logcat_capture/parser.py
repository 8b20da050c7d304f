"""Regex parser for logcat ``threadtime`` lines.

Lines that do not match the grammar (stack-trace continuations, the
``--------- beginning of main`` banners) are not errors: ``parse_line``
returns None and the caller persists them verbatim.
"""

import re
import time

from logcat_capture.models import LogcatEntry, LogRecord

LOGCAT_PATTERN = re.compile(
    r'(?P<timestamp>\d{2}-\d{2}\s\d{2}:\d{2}:\d{2}\.\d{3})\s+'
    r'(?P<pid>\d+)\s+'
    r'(?P<tid>\d+)\s+'
    r'(?P<level>[VDIWEF])\s+'
    r'(?P<tag>.+?): '
    r'(?P<message>.*)',
    re.ASCII,
)


def _safe_int(value: str | None) -> int:
    """Convert to int, falling back to 0 so a bad pid never drops the line."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def parse_line(line: str) -> LogRecord | None:
    """Parse one raw logcat line. Returns None when the line is unparsed."""
    m = LOGCAT_PATTERN.fullmatch(line.rstrip("\r\n"))
    if not m:
        return None
    return LogRecord(
        timestamp=m.group("timestamp"),
        pid=_safe_int(m.group("pid")),
        tid=_safe_int(m.group("tid")),
        level=m.group("level"),
        tag=m.group("tag").rstrip(),
        message=m.group("message"),
    )


def format_record(record: LogRecord, relative_ms: int) -> str:
    """Render a record as ``[+NNNNNNms] <ts> <pid>/<tid> <level>/<tag>: <msg>``."""
    return (
        f"[+{relative_ms:06d}ms] "
        f"{record.timestamp} "
        f"{record.pid}/{record.tid} "
        f"{record.level}/{record.tag}: "
        f"{record.message}"
    )


def parse_entry(line: str, base_timestamp: int, now_ms: int | None = None) -> LogcatEntry | None:
    """Parse a line into a LogcatEntry relative to ``base_timestamp`` (epoch ms).

    The absolute timestamp is the processing time, not the time logcat
    printed; the line's own timestamp carries no year or timezone.
    """
    record = parse_line(line)
    if record is None:
        return None
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return LogcatEntry(
        timestamp=now_ms,
        relative_time=now_ms - base_timestamp,
        level=record.level,
        tag=record.tag,
        pid=record.pid,
        message=record.message,
    )
