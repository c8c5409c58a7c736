from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence


class SensorTreeError(ValueError):
    """The monitor returned JSON that does not have the sensor tree shape."""


@dataclass(frozen=True)
class SensorNode:
    """One entry of the hardware monitor tree.

    Hardware components and sensor categories carry children; leaf readings
    carry a textual value such as ``"55.0 °C"``.
    """

    text: str
    value: str = ""
    children: tuple["SensorNode", ...] = ()


@dataclass(frozen=True)
class SensorTree:
    """Root document; one top-level node per monitored machine."""

    children: tuple[SensorNode, ...] = ()

    @property
    def host(self) -> SensorNode | None:
        if not self.children:
            return None
        return self.children[0]


def parse_sensor_tree(raw: Any) -> SensorTree:
    """Decode ``{"Children": [{"Text", "Value", "Children"}, ...]}``.

    Missing or null fields decode as empty values. Wrong types raise
    SensorTreeError.
    """

    if not isinstance(raw, Mapping):
        raise SensorTreeError("sensor tree must be a JSON object")
    return SensorTree(children=_parse_children(raw.get("Children"), path="Children"))


def _parse_children(raw: Any, *, path: str) -> tuple[SensorNode, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise SensorTreeError(f"{path} must be a list")
    return tuple(_parse_node(item, path=f"{path}[{idx}]") for idx, item in enumerate(raw))


def _parse_node(raw: Any, *, path: str) -> SensorNode:
    if not isinstance(raw, Mapping):
        raise SensorTreeError(f"{path} must be an object")
    return SensorNode(
        text=_optional_str(raw.get("Text"), path=f"{path}.Text"),
        value=_optional_str(raw.get("Value"), path=f"{path}.Value"),
        children=_parse_children(raw.get("Children"), path=f"{path}.Children"),
    )


def _optional_str(value: Any, *, path: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise SensorTreeError(f"{path} must be a string")
    return value


def split_pattern(pattern: str) -> list[str]:
    """Split a ``|`` alternation into trimmed alternatives.

    Empty alternatives are kept; an empty string is contained in every label,
    so ``"Fan|"`` matches the first sibling.
    """

    return [alt.strip() for alt in pattern.split("|")]


def find_match(siblings: Sequence[SensorNode], pattern: str) -> SensorNode | None:
    """Return the first sibling whose text contains any alternative of pattern.

    Sibling order wins over alternative order: every alternative is tried
    against the first sibling before moving on to the second.
    """

    alternatives = split_pattern(pattern)
    for node in siblings:
        for alt in alternatives:
            if alt in node.text:
                return node
    return None
