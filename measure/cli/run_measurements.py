"""CLI to run the configured measurements for a fixed duration.

Usage:
    cd measure && python -m cli.run_measurements config.yml --duration 300
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import uuid
from pathlib import Path

# Ensure measure/ is on sys.path
_src_dir = str(Path(__file__).resolve().parent.parent)
if _src_dir not in sys.path:
    sys.path.insert(0, _src_dir)

from core.config import settings
from core.langfuse_config import flush_langfuse, init_langfuse
from core.logging_config import configure_logging
from models.measurement_schemas import JobContext

logger = logging.getLogger("cli.run_measurements")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run periodic measurements against a cluster.")
    parser.add_argument("config", type=Path, help="YAML/JSON file with a measurements section")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Seconds to run before stopping (default: until SIGINT/SIGTERM)",
    )
    parser.add_argument("--job", default="", help="Job name used in log context")
    parser.add_argument("--uuid", default="", help="Run UUID (generated when omitted)")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


async def _wait_until_done(duration: float | None, fatal: asyncio.Event) -> None:
    """Return on duration elapsed, SIGINT/SIGTERM, or a fatal start failure."""
    interrupted = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, interrupted.set)
        except (NotImplementedError, RuntimeError):
            pass

    waiters = [
        asyncio.create_task(interrupted.wait()),
        asyncio.create_task(fatal.wait()),
    ]
    try:
        await asyncio.wait(waiters, timeout=duration, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


async def run(args: argparse.Namespace) -> int:
    from services.cluster import ClusterContext
    from services.measurement_config import ConfigError, load_measurements_config
    from services.measurements.factory import MeasurementFactory
    from services.measurements.lifecycle import MeasurementController

    try:
        config = load_measurements_config(args.config)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2

    try:
        context = ClusterContext.from_settings(settings)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2
    factory = MeasurementFactory(context)
    registry = factory.build(config.measurements)
    factory.set_job_config(JobContext(name=args.job, uuid=args.uuid or str(uuid.uuid4())))

    if not len(registry):
        print("[cli] No measurements registered, nothing to do.")
        return 0

    print(f"[cli] Starting measurements: {', '.join(registry.names())}")
    controller = MeasurementController(registry, start_wait_timeout=settings.stop_timeout_seconds)
    controller.start_all()

    await _wait_until_done(args.duration, controller.fatal)

    rc = await controller.stop_all()
    if controller.fatal.is_set():
        print("[cli] A measurement could not start. Check logs.")
        rc = rc or 1
    print(f"[cli] Done (exit code {rc}).")
    return rc


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or settings.log_level)
    init_langfuse()
    try:
        return asyncio.run(run(args))
    finally:
        flush_langfuse()


if __name__ == "__main__":
    sys.exit(main())
