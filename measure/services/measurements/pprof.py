"""pprof measurement: periodic fan-out profile collection from running pods.

Each pass resolves the pods of every configured target and runs one
``curl`` inside each of them through the shared executor, streaming the
output into ``<directory>/<target>-<pod>-<unix ts>.pprof``. All tasks of a
pass are joined before the next tick is honoured.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable

from langfuse import observe

from core.langfuse_config import trace_metadata
from models.measurement_schemas import (
    DEFAULT_PPROF_DIRECTORY,
    Artifact,
    JobContext,
    MeasurementSpec,
    PProfTarget,
    StopResult,
)
from services.cluster import ClusterContext
from services.endpoints import resolve_endpoints
from services.remote_exec import collect_from_endpoint
from .base import register_measurement_kind
from .exceptions import (
    MeasurementAlreadyStoppedError,
    MeasurementError,
    MeasurementNotRunningError,
    OutputDirectoryError,
    StopTimeoutError,
)

logger = logging.getLogger(__name__)


class State(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@register_measurement_kind("pprof")
class PProfMeasurement:
    name = "pprof"

    def __init__(self, context: ClusterContext, now: Callable[[], float] = time.time) -> None:
        self.context = context
        self.spec: MeasurementSpec | None = None
        self.directory = Path(DEFAULT_PPROF_DIRECTORY)
        self.targets: list[PProfTarget] = []
        self.interval = 0.0
        self.stop_timeout = context.stop_timeout
        self.job = JobContext()
        self.state = State.IDLE
        self.last_error: BaseException | None = None
        self._now = now
        self._stop_event: asyncio.Event | None = None
        self._first_pass_done: asyncio.Event | None = None
        self._loop_task: asyncio.Task | None = None

    def set_config(self, spec: MeasurementSpec) -> None:
        if self.spec is not None:
            raise MeasurementError(f"Measurement {self.name} is already configured")
        self.spec = spec
        self.name = spec.name
        self.directory = Path(spec.pprof_directory or DEFAULT_PPROF_DIRECTORY)
        self.targets = list(spec.pprof_targets)
        self.interval = spec.pprof_interval.total_seconds()

    async def start(self) -> None:
        """Create the output directory, run the first pass, then keep ticking.

        Returns once the first pass has been joined; the periodic loop keeps
        running in its own task until stop().
        """
        if self.spec is None:
            raise MeasurementError(f"Measurement {self.name} started before set_config")
        if self.state is not State.IDLE:
            raise MeasurementError(f"Measurement {self.name} cannot start from state {self.state.value}")

        try:
            self.directory.mkdir(mode=0o744, parents=True, exist_ok=True)
        except OSError as exc:
            logger.critical("Error creating pprof directory %s: %s", self.directory, exc)
            self.state = State.FAILED
            self.last_error = OutputDirectoryError(f"cannot create {self.directory}: {exc}")
            raise self.last_error from exc

        logger.info(
            "Starting %s measurement (job=%s, interval=%ss, targets=%d)",
            self.name,
            self.job.name or "-",
            self.interval,
            len(self.targets),
        )
        self._stop_event = asyncio.Event()
        self._first_pass_done = asyncio.Event()
        self.state = State.RUNNING
        self._loop_task = asyncio.create_task(self._run(), name=f"{self.name}-collector")
        self._loop_task.add_done_callback(self._record_loop_failure)
        await self._first_pass_done.wait()
        if self._loop_task.done() and not self._loop_task.cancelled():
            exc = self._loop_task.exception()
            if exc is not None:
                raise exc

    async def stop(self) -> StopResult:
        if self.state is State.IDLE:
            return StopResult(1, MeasurementNotRunningError(f"{self.name} was never started"))
        if self.state is State.FAILED:
            return StopResult(1, self.last_error)
        if self.state is State.STOPPED:
            return StopResult(0, MeasurementAlreadyStoppedError(f"{self.name} is already stopped"))

        self.state = State.STOPPED
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._loop_task), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            self._loop_task.cancel()
            return StopResult(
                1, StopTimeoutError(f"{self.name} did not stop within {self.stop_timeout}s")
            )
        except Exception as exc:
            return StopResult(1, exc)
        return StopResult(0, None)

    @observe(name="pprof_collection_pass", capture_input=False, capture_output=False)
    async def collect_once(self) -> list[Artifact]:
        """Run one pass over all targets and wait for every collection task."""
        trace_metadata(self.job.name, self.job.uuid, tags=["pprof", self.name])
        tasks: list[asyncio.Task] = []
        for target in self.targets:
            logger.info("Collecting %s pprof", target.name)
            endpoints = await resolve_endpoints(self.context.pod_lister, target)
            for endpoint in endpoints:
                tasks.append(
                    asyncio.create_task(
                        collect_from_endpoint(
                            self.context.executor,
                            self.directory,
                            target,
                            endpoint,
                            now=self._now,
                        )
                    )
                )

        results = await asyncio.gather(*tasks, return_exceptions=True)
        artifacts: list[Artifact] = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Collection task failed in %s: %s", self.name, result)
                continue
            artifacts.append(result)

        collected = sum(1 for artifact in artifacts if artifact.ok)
        logger.debug("%s pass finished: %d/%d collected", self.name, collected, len(tasks))
        return artifacts

    async def _run(self) -> None:
        try:
            await self.collect_once()
        finally:
            self._first_pass_done.set()

        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            if await self._wait_for_stop(next_tick - loop.time()):
                break
            await self.collect_once()
            now = loop.time()
            next_tick += self.interval
            if next_tick <= now:
                # Ticks missed while the pass ran are dropped
                skipped = int((now - next_tick) // self.interval) + 1
                next_tick += skipped * self.interval
        logger.info("Stopped %s measurement", self.name)

    async def _wait_for_stop(self, delay: float) -> bool:
        """Wait until the next tick or stop, whichever comes first."""
        if self._stop_event.is_set():
            return True
        if self.interval <= 0:
            await self._stop_event.wait()
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(delay, 0))
        except asyncio.TimeoutError:
            return self._stop_event.is_set()
        return True

    def _record_loop_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s collection loop crashed: %s", self.name, exc)
            self.last_error = exc
