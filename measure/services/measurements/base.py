"""Measurement Protocol and the constructor table of measurement kinds."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

from models.measurement_schemas import JobContext, MeasurementSpec, StopResult

if TYPE_CHECKING:
    from services.cluster import ClusterContext


@runtime_checkable
class Measurement(Protocol):
    name: str
    job: JobContext
    last_error: BaseException | None

    def set_config(self, spec: MeasurementSpec) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> StopResult: ...


MeasurementConstructor = Callable[["ClusterContext"], Measurement]

MEASUREMENT_KINDS: dict[str, MeasurementConstructor] = {}


def register_measurement_kind(
    name: str,
    kinds: dict[str, MeasurementConstructor] | None = None,
) -> Callable[[MeasurementConstructor], MeasurementConstructor]:
    """Class decorator adding a measurement kind to the constructor table."""
    table = MEASUREMENT_KINDS if kinds is None else kinds

    def decorator(constructor: MeasurementConstructor) -> MeasurementConstructor:
        if name in table:
            raise ValueError(f"Measurement kind '{name}' is already registered")
        table[name] = constructor
        return constructor

    return decorator


def available_measurements() -> list[str]:
    """Return the registered measurement kind names, sorted."""
    # Import kinds to trigger registration
    import services.measurements.pprof  # noqa: F401

    return sorted(MEASUREMENT_KINDS)
