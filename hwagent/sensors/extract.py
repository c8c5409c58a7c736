from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from .config import MetricDefinition
from .tree import SensorNode, SensorTree, find_match
from .values import resolve_value

TIMESTAMP_KEY = "timestamp"
HOST_NAME_KEY = "pc_name"


@dataclass(frozen=True)
class MetricResult:
    name: str
    value: float | None

    @property
    def resolved(self) -> bool:
        return self.value is not None


@dataclass
class MetricSnapshot:
    """Metrics extracted from one fetched sensor tree.

    ``values`` keeps the configured metric order. Metrics listed in
    ``unresolved`` are still present in ``values`` with 0.0.
    """

    timestamp: int
    host_name: str | None = None
    values: dict[str, float] = field(default_factory=dict)
    unresolved: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {TIMESTAMP_KEY: self.timestamp}
        if self.host_name is None:
            return payload
        payload[HOST_NAME_KEY] = self.host_name
        payload.update(self.values)
        return payload


def resolve_path(root: SensorNode, path: Sequence[str], unit: str) -> float | None:
    """Follow path from root's children down to a leaf and parse its value.

    Returns None when a step has no match or the leaf value is unparseable.
    """

    if not path:
        return None

    nodes: Sequence[SensorNode] = root.children
    last = len(path) - 1
    for idx, step in enumerate(path):
        node = find_match(nodes, step)
        if node is None:
            return None
        if idx == last:
            return resolve_value(node.value, unit)
        nodes = node.children
    return None


def extract_path(root: SensorNode, path: Sequence[str], unit: str) -> float:
    value = resolve_path(root, path, unit)
    if value is None:
        return 0.0
    return value


def resolve_metric(root: SensorNode, definition: MetricDefinition) -> MetricResult:
    return MetricResult(
        name=definition.name,
        value=resolve_path(root, definition.path, definition.unit),
    )


def extract_all(
    tree: SensorTree,
    definitions: Sequence[MetricDefinition],
    *,
    now: Callable[[], float] = time.time,
) -> MetricSnapshot:
    """Apply every metric definition to the first machine in the tree.

    An empty tree yields a snapshot carrying only the timestamp.
    """

    snapshot = MetricSnapshot(timestamp=int(now()))

    host = tree.host
    if host is None:
        return snapshot

    snapshot.host_name = host.text
    unresolved: list[str] = []
    for definition in definitions:
        result = resolve_metric(host, definition)
        if result.value is None:
            unresolved.append(result.name)
            snapshot.values[result.name] = 0.0
        else:
            snapshot.values[result.name] = result.value
    snapshot.unresolved = tuple(unresolved)
    return snapshot
