"""Append-only session log writer with a coarse flush heuristic and a footer on close."""

import logging
import os
from datetime import datetime

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_wall_time(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).strftime(TIME_FORMAT)


class SinkWriter:
    """Writes one capture session's text file.

    Owned by a single pump task; not safe for concurrent writers.
    A session that is never closed leaves a valid file without footer.
    """

    def __init__(self, path, product_name: str = "QA BlackBox", flush_modulus: int = 10, time_func=None) -> None:
        self._path = os.fspath(path)
        self._product_name = product_name
        self._flush_modulus = flush_modulus
        self._time_func = time_func or datetime.now
        self._file = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def closed(self) -> bool:
        return self._file is None

    async def open(self) -> None:
        parent = os.path.dirname(self._path)
        if parent:
            await aiofiles.os.makedirs(parent, exist_ok=True)
        self._file = await aiofiles.open(self._path, mode="w", encoding="utf-8")

    async def write_header(self, session_start_ms: int, package_filter: str | None = None) -> None:
        """Write session metadata and flush it before any log line arrives."""
        await self._file.write(f"# {self._product_name} Logcat Recording\n")
        await self._file.write(f"# Session Start: {format_wall_time(session_start_ms)}\n")
        if package_filter:
            await self._file.write(f"# Package Filter: {package_filter}\n")
        await self._file.write("#\n")
        await self._file.flush()

    async def write_record(self, text: str, relative_ms: int) -> None:
        await self._file.write(text + "\n")
        if relative_ms % self._flush_modulus == 0:
            await self._file.flush()

    async def write_raw(self, line: str) -> None:
        await self._file.write(line + "\n")

    async def flush(self) -> None:
        if self._file is not None:
            await self._file.flush()

    async def close(self) -> None:
        """Write the footer, flush and release the file. No-op once closed."""
        if self._file is None:
            return
        f, self._file = self._file, None
        try:
            await f.write(f"# Session End: {self._time_func().strftime(TIME_FORMAT)}\n")
            await f.flush()
        finally:
            await f.close()

    async def abort(self) -> None:
        """Release the file without a footer."""
        if self._file is None:
            return
        f, self._file = self._file, None
        await f.close()
