"""Load the measurements section of a benchmark configuration file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from models.measurement_schemas import MeasurementsConfig

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """The configuration file is missing, unreadable or invalid."""


def _measurements_section(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping")
    # Accept the nested ``global.measurements`` layout as well as a flat one
    if "global" in data and isinstance(data["global"], dict):
        return {"measurements": data["global"].get("measurements") or []}
    return {"measurements": data.get("measurements") or []}


def load_measurements_config(path: str | Path) -> MeasurementsConfig:
    """Parse a YAML (or JSON) file into a MeasurementsConfig."""
    path = Path(path)
    try:
        raw = path.read_text()
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    try:
        config = MeasurementsConfig.model_validate(_measurements_section(data))
    except ValidationError as exc:
        raise ConfigError(f"invalid measurements in {path}: {exc}") from exc

    logger.info("Loaded %d measurement(s) from %s", len(config.measurements), path)
    return config
