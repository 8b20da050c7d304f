"""CaptureSession: the IDLE -> RECORDING -> STOPPING -> IDLE state machine.

One session object records at most one capture at a time. ``start`` picks a
stream source through the privilege selector, writes the file header and
schedules a pump task; ``stop`` signals the pump, waits for it, terminates
the log process and finalizes the file.
"""

import asyncio
import contextlib
import logging
import os
import time
import uuid
from datetime import datetime
from enum import Enum

from logcat_capture.config import Config
from logcat_capture.models import CaptureConfig, CaptureStats, SessionSummary
from logcat_capture.parser import format_record, parse_line
from logcat_capture.privilege import PrivilegeSelector
from logcat_capture.sink import SinkWriter
from logcat_capture.sources import LineFilter, RunningStream, StreamSource

logger = logging.getLogger(__name__)


class CaptureState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"


def _now_ms() -> int:
    return int(time.time() * 1000)


async def _next_line(lines):
    return await lines.__anext__()


class CaptureSession:
    def __init__(
        self,
        selector: PrivilegeSelector,
        elevated: StreamSource | None,
        unprivileged: StreamSource,
        config: Config | None = None,
        clock=None,
    ) -> None:
        self._selector = selector
        self._elevated = elevated
        self._unprivileged = unprivileged
        self._config = config or Config()
        self._clock = clock or _now_ms

        self.state = CaptureState.IDLE
        self.capability = None
        self.stats = CaptureStats()
        self.last_summary: SessionSummary | None = None

        self._transitioning = False
        self._listeners: list = []
        self._capture_config: CaptureConfig | None = None
        self._session_id: str | None = None
        self._sink: SinkWriter | None = None
        self._stream: RunningStream | None = None
        self._pump_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    # ── Status signal ───────────────────────────────────────────────

    @property
    def selector(self) -> PrivilegeSelector:
        return self._selector

    @property
    def is_recording(self) -> bool:
        return self.state == CaptureState.RECORDING

    @property
    def active_stream(self) -> RunningStream | None:
        return self._stream

    def add_status_listener(self, callback) -> None:
        """Register ``callback(is_recording: bool)``, called on every transition."""
        self._listeners.append(callback)

    def _set_state(self, state: CaptureState) -> None:
        self.state = state
        recording = self.is_recording
        for callback in list(self._listeners):
            try:
                callback(recording)
            except Exception as e:
                logger.warning("Status listener failed: %s", e)

    # ── Start ───────────────────────────────────────────────────────

    async def start(self, capture_config: CaptureConfig) -> bool:
        """Begin a capture. Returns False (and leaves no open resources) on failure."""
        if self.state != CaptureState.IDLE or self._transitioning:
            logger.warning("Already recording logcat")
            return False

        self._transitioning = True
        try:
            return await self._start(capture_config)
        finally:
            self._transitioning = False

    async def _start(self, capture_config: CaptureConfig) -> bool:
        sink = SinkWriter(
            capture_config.output_target,
            product_name=self._config.product_name,
            flush_modulus=self._config.flush_modulus,
            time_func=lambda: datetime.fromtimestamp(self._clock() / 1000),
        )
        stream = None
        try:
            await sink.open()
            await sink.write_header(capture_config.session_start_time, capture_config.package_filter)
            source = await self._select_source()
            stream = await source.open(capture_config)
        except Exception as e:
            logger.error("Failed to start logcat recording: %s", e)
            await self._rollback(sink, stream)
            return False
        except asyncio.CancelledError:
            await self._rollback(sink, stream)
            raise

        self._capture_config = capture_config
        self._session_id = uuid.uuid4().hex
        self._sink = sink
        self._stream = stream
        self.capability = source.capability
        self.stats = CaptureStats()
        self._stop_event = asyncio.Event()
        self._pump_task = asyncio.create_task(
            self._pump(stream, sink, source.line_filter(capture_config), capture_config.session_start_time)
        )
        self._set_state(CaptureState.RECORDING)
        logger.info("Logcat recording started (%s) -> %s", self.capability.value, sink.path)
        return True

    async def _select_source(self) -> StreamSource:
        if self._elevated is not None and await self._selector.is_elevated_available():
            return self._elevated
        logger.warning(
            "Elevated channel not available, using local logcat (limited: "
            "package filter applied by substring match)"
        )
        return self._unprivileged

    async def _rollback(self, sink: SinkWriter, stream: RunningStream | None) -> None:
        if stream is not None:
            await self._terminate_stream(stream)
        try:
            await sink.abort()
        except Exception as e:
            logger.error("Error releasing log file during rollback: %s", e)

    # ── Pump ────────────────────────────────────────────────────────

    async def _pump(self, stream: RunningStream, sink: SinkWriter, line_filter: LineFilter | None, start_ms: int):
        """Move lines from the stream to the sink until stopped or EOF.

        The stop event is raced against the next read only; once a line has
        been read it is processed to completion before the event is seen.
        """
        lines = stream.lines()
        stop_wait = asyncio.ensure_future(self._stop_event.wait())
        try:
            while True:
                next_line = asyncio.ensure_future(_next_line(lines))
                done, _ = await asyncio.wait({next_line, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if next_line not in done:
                    next_line.cancel()
                    await asyncio.gather(next_line, return_exceptions=True)
                    break
                try:
                    line = next_line.result()
                except StopAsyncIteration:
                    logger.info("Logcat stream ended")
                    await sink.flush()
                    break
                await self._process_line(line, sink, line_filter, start_ms)
        except Exception as e:
            if not self._stop_event.is_set():
                logger.error("Error reading logcat stream: %s", e)
        finally:
            stop_wait.cancel()
            try:
                await lines.aclose()
            except Exception as e:
                logger.debug("Error closing line iterator: %s", e)

    async def _process_line(self, line: str, sink: SinkWriter, line_filter: LineFilter | None, start_ms: int):
        self.stats.lines_read += 1
        try:
            if line_filter is not None and not line_filter(line):
                self.stats.filtered_out += 1
                return
            record = parse_line(line)
            if record is None:
                await sink.write_raw(line)
                self.stats.unparsed_written += 1
                return
            relative_ms = self._clock() - start_ms
            await sink.write_record(format_record(record, relative_ms), relative_ms)
            self.stats.records_written += 1
        except Exception as e:
            self.stats.line_errors += 1
            logger.warning("Error processing log line: %s", e)

    # ── Stop ────────────────────────────────────────────────────────

    async def stop(self) -> bool:
        """Finish the capture. Returns False when nothing is recording."""
        if self.state != CaptureState.RECORDING or self._transitioning:
            logger.warning("Not recording")
            return False

        self._transitioning = True
        stream, sink, pump_task = self._stream, self._sink, self._pump_task
        self._stream = None
        self._set_state(CaptureState.STOPPING)
        try:
            async with contextlib.AsyncExitStack() as stack:
                stack.callback(self._reset)
                stack.push_async_callback(self._close_sink, sink)
                stack.push_async_callback(self._terminate_stream, stream)
                await self._join_pump(pump_task)
        finally:
            self._transitioning = False

        logger.info(
            "Logcat recording stopped: %d lines read, %d records, %d unparsed, %d filtered, %d errors",
            self.stats.lines_read, self.stats.records_written, self.stats.unparsed_written,
            self.stats.filtered_out, self.stats.line_errors,
        )
        return True

    async def _join_pump(self, pump_task: asyncio.Task | None) -> None:
        self._stop_event.set()
        if pump_task is None:
            return
        try:
            await asyncio.shield(pump_task)
        except asyncio.CancelledError:
            # let the in-flight line land before the sink is closed
            await asyncio.wait({pump_task})
            raise
        except Exception as e:
            logger.error("Error stopping logcat pump: %s", e)

    async def _terminate_stream(self, stream: RunningStream | None) -> None:
        if stream is None:
            return
        try:
            await stream.terminate()
        except Exception as e:
            logger.error("Error destroying process: %s", e)

    async def _close_sink(self, sink: SinkWriter | None) -> None:
        if sink is None:
            return
        try:
            await sink.close()
        except Exception as e:
            logger.error("Error closing log file: %s", e)

    def _reset(self) -> None:
        cfg = self._capture_config
        if cfg is not None:
            self.last_summary = SessionSummary(
                session_id=self._session_id,
                start_time=cfg.session_start_time,
                end_time=self._clock(),
                output_target=os.fspath(cfg.output_target),
                package_filter=cfg.package_filter,
                capability=self.capability.value if self.capability else "",
                stats=self.stats,
            )
        self._capture_config = None
        self._session_id = None
        self._sink = None
        self._stream = None
        self._pump_task = None
        self._stop_event = None
        self._set_state(CaptureState.IDLE)
