#!/usr/bin/env python3
"""Logcat capture entry point."""

import argparse
import asyncio
import logging
import signal
import sys
import time

from logcat_capture.config import load_config, load_yaml_config
from logcat_capture.models import CaptureConfig
from logcat_capture.privilege import PrivilegeSelector, SuChannel
from logcat_capture.session import CaptureSession
from logcat_capture.sources import ElevatedSource, UnprivilegedSource

logger = logging.getLogger(__name__)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Record the device log stream to a session file")
    parser.add_argument(
        "--output", required=True,
        help="Path of the session log file to write",
    )
    parser.add_argument(
        "--package", default=None,
        help="Only capture output from this package",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--duration", type=float, default=None,
        help="Stop after this many seconds (default: until SIGINT/SIGTERM)",
    )
    parser.add_argument(
        "--product-name", default=None,
        help="Product name written in the file header",
    )
    parser.add_argument(
        "--request-grant", action="store_true",
        help="Ask for elevated access before recording",
    )
    parser.add_argument(
        "--no-elevated", action="store_true",
        help="Never use the elevated channel",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    return parser


def build_session(config, use_elevated: bool = True) -> CaptureSession:
    channel = SuChannel(config.su_binary) if use_elevated else None
    elevated = (
        ElevatedSource(channel, config.logcat_args(), config.terminate_timeout)
        if channel is not None else None
    )
    unprivileged = UnprivilegedSource(
        logcat_args=config.logcat_args(), terminate_timeout=config.terminate_timeout
    )
    return CaptureSession(PrivilegeSelector(channel), elevated, unprivileged, config)


async def run(args) -> int:
    config = load_config(args, load_yaml_config(args.config))
    logger.info("Config: product=%s, flush_modulus=%d, terminate_timeout=%.1fs",
                config.product_name, config.flush_modulus, config.terminate_timeout)

    session = build_session(config, use_elevated=not args.no_elevated)
    session.add_status_listener(lambda recording: logger.debug("Recording: %s", recording))

    if args.request_grant:
        await session.selector.request_authorization()

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_requested.set)

    capture_config = CaptureConfig(
        output_target=args.output,
        session_start_time=int(time.time() * 1000),
        package_filter=args.package,
    )
    if not await session.start(capture_config):
        logger.error("Could not start logcat recording")
        return 1

    logger.info("Recording to %s. Press Ctrl+C to stop.", args.output)
    try:
        await asyncio.wait_for(stop_requested.wait(), args.duration)
    except asyncio.TimeoutError:
        logger.info("Duration of %.1fs elapsed", args.duration)

    await session.stop()

    summary = session.last_summary
    if summary is not None:
        logger.info("Session %s: %s, %d ms, %d records, %d unparsed, %d filtered -> %s",
                    summary.session_id, summary.capability, summary.duration_ms,
                    summary.stats.records_written, summary.stats.unparsed_written,
                    summary.stats.filtered_out, summary.output_target)
    return 0


def main():
    parser = build_cli_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [LOGCAT] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
