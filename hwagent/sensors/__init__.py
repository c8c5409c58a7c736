from .config import MetricConfig, MetricConfigError, MetricDefinition, load_metric_config, parse_metric_config
from .extract import MetricResult, MetricSnapshot, extract_all, extract_path, resolve_path
from .tree import SensorNode, SensorTree, SensorTreeError, find_match, parse_sensor_tree
from .values import parse_value, resolve_value

__all__ = [
    "MetricConfig",
    "MetricConfigError",
    "MetricDefinition",
    "MetricResult",
    "MetricSnapshot",
    "SensorNode",
    "SensorTree",
    "SensorTreeError",
    "extract_all",
    "extract_path",
    "find_match",
    "load_metric_config",
    "parse_metric_config",
    "parse_sensor_tree",
    "parse_value",
    "resolve_path",
    "resolve_value",
]
