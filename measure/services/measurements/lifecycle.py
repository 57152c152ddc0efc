"""Start and stop every registered measurement."""

from __future__ import annotations

import asyncio
import logging

from .exceptions import OutputDirectoryError
from .factory import MeasurementRegistry

logger = logging.getLogger(__name__)


class MeasurementController:
    def __init__(self, registry: MeasurementRegistry, start_wait_timeout: float = 30) -> None:
        self.registry = registry
        self.start_wait_timeout = start_wait_timeout
        self.start_errors: dict[str, BaseException] = {}
        self.fatal = asyncio.Event()
        self._start_tasks: dict[str, asyncio.Task] = {}

    def start_all(self) -> None:
        """Launch start() of every measurement as its own task and return.

        Start failures are not raised here; they land in ``start_errors`` and
        on each measurement's ``last_error``. An unrecoverable failure also
        sets ``fatal``.
        """
        for name, measurement in self.registry.items():
            task = asyncio.create_task(measurement.start(), name=f"start-{name}")
            task.add_done_callback(lambda t, name=name: self._on_started(name, t))
            self._start_tasks[name] = task

    async def wait_started(self) -> dict[str, BaseException]:
        """Wait for every start() launched by start_all()."""
        if self._start_tasks:
            await asyncio.gather(*self._start_tasks.values(), return_exceptions=True)
        return dict(self.start_errors)

    async def stop_all(self) -> int:
        """Stop measurements in registry order.

        Returns the last non-zero exit code reported, or 0.
        """
        rc = 0
        for name, measurement in self.registry.items():
            logger.info("Stopping measurement: %s", name)
            task = self._start_tasks.get(name)
            if task is not None and not task.done():
                # Let a pending start() reach its loop before stopping it
                await asyncio.wait({task}, timeout=self.start_wait_timeout)
            try:
                r, err = await measurement.stop()
            except Exception as exc:
                r, err = 1, exc
            if err is not None:
                logger.error("Error stopping measurement %s: %s", name, err)
            if r != 0:
                rc = r
        return rc

    def _on_started(self, name: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            logger.debug("Measurement %s started", name)
            return
        self.start_errors[name] = exc
        measurement = self.registry.get(name)
        if getattr(measurement, "last_error", None) is None:
            measurement.last_error = exc
        if isinstance(exc, OutputDirectoryError):
            logger.critical("Measurement %s cannot run: %s", name, exc)
            self.fatal.set()
        else:
            logger.error("Error starting measurement %s: %s", name, exc)
