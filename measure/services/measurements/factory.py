"""Measurement registry and the factory that builds it from configuration."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping

from models.measurement_schemas import JobContext, MeasurementSpec
from services.cluster import ClusterContext
from .base import MEASUREMENT_KINDS, Measurement, MeasurementConstructor

logger = logging.getLogger(__name__)


class MeasurementRegistry:
    """Name -> live measurement. Append-only; the first registrant wins."""

    def __init__(self) -> None:
        self._entries: dict[str, Measurement] = {}

    def register(self, spec: MeasurementSpec, measurement: Measurement) -> bool:
        if spec.name in self._entries:
            logger.warning("Measurement already registered: %s", spec.name)
            return False
        measurement.set_config(spec)
        self._entries[spec.name] = measurement
        logger.info("Registered measurement: %s", spec.name)
        return True

    def get(self, name: str) -> Measurement:
        try:
            return self._entries[name]
        except KeyError as exc:
            raise KeyError(f"No measurement registered as '{name}'") from exc

    def names(self) -> list[str]:
        return list(self._entries)

    def items(self) -> list[tuple[str, Measurement]]:
        return list(self._entries.items())

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)


class MeasurementFactory:
    """Builds a MeasurementRegistry from configured specs.

    Every measurement is constructed with the same read-only ClusterContext.
    """

    def __init__(
        self,
        context: ClusterContext,
        kinds: Mapping[str, MeasurementConstructor] | None = None,
    ) -> None:
        if kinds is None:
            # Import kinds to trigger registration
            import services.measurements.pprof  # noqa: F401

            kinds = MEASUREMENT_KINDS
        self.context = context
        self.kinds = kinds
        self.job = JobContext()
        self.registry = MeasurementRegistry()

    def build(self, specs: Iterable[MeasurementSpec]) -> MeasurementRegistry:
        logger.info("Creating measurement factory")
        for spec in specs:
            constructor = self.kinds.get(spec.name)
            if constructor is None:
                logger.warning("Measurement not found: %s", spec.name)
                continue
            measurement = constructor(self.context)
            if self.registry.register(spec, measurement):
                measurement.job = self.job
        return self.registry

    def set_job_config(self, job: JobContext) -> None:
        """Attach the current job to every registered measurement for log context."""
        self.job = job
        for _, measurement in self.registry.items():
            measurement.job = job
