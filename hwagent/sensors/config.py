from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

_RESERVED_NAMES = frozenset({"timestamp", "pc_name"})
_YAML_SUFFIXES = {".yaml", ".yml"}


class MetricConfigError(ValueError):
    """Invalid metric configuration."""


@dataclass(frozen=True)
class MetricDefinition:
    name: str
    description: str
    path: tuple[str, ...]
    unit: str


@dataclass(frozen=True)
class MetricConfig:
    metrics: tuple[MetricDefinition, ...]
    origin: str = "<inline>"

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(m.name for m in self.metrics)


def load_metric_config(path: str | Path) -> MetricConfig:
    """Read the metric definitions file (JSON, or YAML by suffix)."""

    config_path = Path(path).expanduser()
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise MetricConfigError(f"failed to read metric config at {config_path}: {exc}") from exc

    try:
        if config_path.suffix.lower() in _YAML_SUFFIXES:
            loaded = yaml.safe_load(text)
        else:
            loaded = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise MetricConfigError(f"failed to parse metric config at {config_path}: {exc}") from exc

    return parse_metric_config(loaded, origin=str(config_path))


def parse_metric_config(raw: Any, *, origin: str) -> MetricConfig:
    if not isinstance(raw, Mapping):
        raise MetricConfigError(f"{origin}: metric config must be an object")

    raw_metrics = raw.get("metrics")
    if not isinstance(raw_metrics, list):
        raise MetricConfigError(f"{origin}: 'metrics' must be a list")

    metrics: list[MetricDefinition] = []
    seen: set[str] = set()
    for idx, item in enumerate(raw_metrics):
        definition = _parse_metric(item, origin=f"{origin}:metrics[{idx}]")
        if definition.name in seen:
            raise MetricConfigError(f"{origin}:metrics[{idx}]: duplicate metric name '{definition.name}'")
        seen.add(definition.name)
        metrics.append(definition)

    return MetricConfig(metrics=tuple(metrics), origin=origin)


def _parse_metric(raw: Any, *, origin: str) -> MetricDefinition:
    if not isinstance(raw, Mapping):
        raise MetricConfigError(f"{origin} must be an object")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise MetricConfigError(f"{origin}: invalid metric name {name!r}")
    if name in _RESERVED_NAMES:
        raise MetricConfigError(f"{origin}: metric name '{name}' is reserved")

    description = raw.get("description", "")
    if description is None:
        description = ""
    if not isinstance(description, str):
        raise MetricConfigError(f"{origin}: 'description' must be a string")

    raw_path = raw.get("path")
    if not isinstance(raw_path, list) or not all(isinstance(step, str) for step in raw_path):
        raise MetricConfigError(f"{origin}: 'path' must be a list of strings")

    unit = raw.get("unit", "")
    if unit is None:
        unit = ""
    if not isinstance(unit, str):
        raise MetricConfigError(f"{origin}: 'unit' must be a string")

    return MetricDefinition(
        name=name,
        description=description,
        path=tuple(raw_path),
        unit=unit,
    )
