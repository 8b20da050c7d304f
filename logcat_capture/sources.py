"""Stream sources: a running logcat subprocess exposed as an async line iterator.

Two strategies share one contract (``open``, ``line_filter``):

- ElevatedSource launches through the privileged channel and scopes the
  capture to the target package's pid when it can be resolved.
- UnprivilegedSource launches a plain subprocess. It cannot scope by pid,
  so package filtering falls back to a substring match on the raw line.
  That match is weaker: a line mentioning the package from another process
  passes, and a line from the package that never names it is dropped.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from logcat_capture.models import CaptureConfig
from logcat_capture.privilege import Capability, PrivilegeChannel

logger = logging.getLogger(__name__)

DEFAULT_LOGCAT_ARGS = ["logcat", "-v", "threadtime"]
ALL_LEVELS = "*:V"

Spawner = Callable[[list[str]], Awaitable[asyncio.subprocess.Process]]
LineFilter = Callable[[str], bool]


class SourceError(Exception):
    """Raised when a stream source fails to launch its process."""


async def spawn_process(argv: list[str]) -> asyncio.subprocess.Process:
    """Unprivileged spawn: run argv directly with stdout piped."""
    return await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )


async def _read_line(reader: asyncio.StreamReader) -> bytes:
    """Read one newline-terminated line of any length; b"" at EOF.

    Lines longer than the reader's buffer limit are reassembled from
    chunks instead of being dropped.
    """
    chunks = []
    while True:
        try:
            chunks.append(await reader.readuntil(b"\n"))
            break
        except asyncio.LimitOverrunError as e:
            chunks.append(await reader.readexactly(e.consumed))
        except asyncio.IncompleteReadError as e:
            chunks.append(e.partial)
            break
    return b"".join(chunks)


def _kill_quietly(process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass


class RunningStream:
    """Handle on a running log process."""

    def __init__(self, process, terminate_timeout: float = 2.0) -> None:
        self._process = process
        self._terminate_timeout = terminate_timeout

    async def lines(self):
        """Yield decoded lines until the process closes its stdout."""
        reader = self._process.stdout
        while True:
            raw = await _read_line(reader)
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def terminate(self) -> None:
        """SIGTERM, wait up to terminate_timeout, then SIGKILL."""
        if self._process.returncode is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(self._process.wait(), self._terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Log process did not exit within %.1fs, killing it", self._terminate_timeout
            )
            try:
                self._process.kill()
            except ProcessLookupError:
                return
            await self._process.wait()


def _wrap_process(process, terminate_timeout: float) -> RunningStream:
    if process.stdout is None:
        _kill_quietly(process)
        raise SourceError("log process has no readable stdout")
    return RunningStream(process, terminate_timeout)


class StreamSource(Protocol):
    capability: Capability

    def line_filter(self, config: CaptureConfig) -> LineFilter | None: ...

    async def open(self, config: CaptureConfig) -> RunningStream: ...


class ElevatedSource:
    capability = Capability.ELEVATED

    def __init__(
        self,
        channel: PrivilegeChannel,
        logcat_args: list[str] | None = None,
        terminate_timeout: float = 2.0,
        pid_timeout: float = 3.0,
    ) -> None:
        self._channel = channel
        self._logcat_args = list(logcat_args or DEFAULT_LOGCAT_ARGS)
        self._terminate_timeout = terminate_timeout
        self._pid_timeout = pid_timeout

    async def resolve_pid(self, package: str) -> int | None:
        """Best-effort ``pidof -s <package>``; None when nothing is running.

        A lookup that fails or outlives pid_timeout is killed and treated
        as "no pid".
        """
        proc = None
        try:
            proc = await self._channel.spawn(["pidof", "-s", package])
            out = await asyncio.wait_for(proc.stdout.read(), self._pid_timeout)
            await asyncio.wait_for(proc.wait(), self._pid_timeout)
        except Exception as e:
            logger.warning("Could not resolve pid for %s: %r", package, e)
            if proc is not None:
                _kill_quietly(proc)
            return None

        tokens = out.decode("utf-8", errors="replace").split()
        if not tokens:
            return None
        try:
            return int(tokens[0])
        except ValueError:
            return None

    async def build_command(self, config: CaptureConfig) -> list[str]:
        argv = list(self._logcat_args)
        if config.package_filter:
            pid = await self.resolve_pid(config.package_filter)
            if pid is None:
                logger.info("No running process for %s, capturing all output", config.package_filter)
            else:
                argv.append(f"--pid={pid}")
        argv.append(ALL_LEVELS)
        return argv

    def line_filter(self, config: CaptureConfig) -> LineFilter | None:
        return None

    async def open(self, config: CaptureConfig) -> RunningStream:
        argv = await self.build_command(config)
        try:
            process = await self._channel.spawn(argv)
        except Exception as e:
            raise SourceError(f"elevated spawn failed: {e}") from e
        logger.debug("Elevated logcat started: %s", " ".join(argv))
        return _wrap_process(process, self._terminate_timeout)


class UnprivilegedSource:
    capability = Capability.UNPRIVILEGED

    def __init__(
        self,
        spawner: Spawner = spawn_process,
        logcat_args: list[str] | None = None,
        terminate_timeout: float = 2.0,
    ) -> None:
        self._spawner = spawner
        self._logcat_args = list(logcat_args or DEFAULT_LOGCAT_ARGS)
        self._terminate_timeout = terminate_timeout

    def build_command(self, config: CaptureConfig) -> list[str]:
        return self._logcat_args + [ALL_LEVELS]

    def line_filter(self, config: CaptureConfig) -> LineFilter | None:
        package = config.package_filter
        if not package:
            return None
        return lambda line: package in line

    async def open(self, config: CaptureConfig) -> RunningStream:
        argv = self.build_command(config)
        try:
            process = await self._spawner(argv)
        except Exception as e:
            raise SourceError(f"spawn of {argv[0]} failed: {e}") from e
        logger.debug("Local logcat started: %s", " ".join(argv))
        return _wrap_process(process, self._terminate_timeout)
