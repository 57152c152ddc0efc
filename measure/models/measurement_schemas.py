"""Pydantic models for measurement configuration and collection results."""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_PPROF_DIRECTORY = "pprof"

# Artifact names carry whole seconds, and artifacts are created exclusively.
MIN_PPROF_INTERVAL = timedelta(seconds=1)


# --- Duration parsing ---

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration such as ``"30s"``, ``"1m30s"`` or ``"250ms"``.

    A bare number is read as seconds.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    if re.fullmatch(r"\d+(?:\.\d*)?|\.\d+", text):
        return timedelta(seconds=float(text))

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=total)


# --- Configuration models ---

class PProfTarget(BaseModel):
    """One logical profiling source; resolves to zero or more pods per pass."""

    name: str = Field(min_length=1)
    namespace: str = Field(min_length=1)
    label_selector: dict[str, str] = Field(default_factory=dict, alias="labelSelector")
    url: str = Field(min_length=1)
    bearer_token: str = Field(default="", alias="bearerToken")

    model_config = {"populate_by_name": True}


class MeasurementSpec(BaseModel):
    """A configured measurement entry.

    Only ``name`` is common to every measurement kind. The pprof options are
    declared here; unknown keys are kept for other kinds.
    """

    name: str = Field(min_length=1)
    pprof_directory: str = Field(default="", alias="pprofDirectory")
    pprof_interval: timedelta = Field(default=timedelta(0), alias="pprofInterval")
    pprof_targets: list[PProfTarget] = Field(default_factory=list, alias="pprofTargets")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("pprof_interval", mode="before")
    @classmethod
    def _parse_interval(cls, value):
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @model_validator(mode="after")
    def _interval_required_with_targets(self) -> "MeasurementSpec":
        if self.pprof_targets and self.pprof_interval < MIN_PPROF_INTERVAL:
            raise ValueError("pprofInterval must be at least 1s when pprofTargets are set")
        return self


class MeasurementsConfig(BaseModel):
    measurements: list[MeasurementSpec] = Field(default_factory=list)


# --- Runtime models ---

class Endpoint(BaseModel):
    """A live pod matched by a target's selector at resolution time."""

    name: str
    namespace: str
    container: str
    phase: str = "Running"

    model_config = {"frozen": True}


class Artifact(BaseModel):
    """Outcome of one collection task."""

    path: Path
    target: str
    endpoint: str
    timestamp: int
    ok: bool = True
    error: str | None = None


class JobContext(BaseModel):
    """Current benchmark job, used for log context only."""

    name: str = ""
    uuid: str = ""


class StopResult(NamedTuple):
    exit_code: int
    error: Exception | None = None
