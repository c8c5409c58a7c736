from __future__ import annotations

import pytest

from hwagent.sensors.values import parse_value, resolve_value


@pytest.mark.parametrize(
    ("raw", "unit", "expected"),
    [
        ("72.3 °C", "°C", 72.3),
        ("65.7 W", "W", 65.7),
        ("  41.0 °C  ", "°C", 41.0),
        ("1200 RPM", "RPM", 1200.0),
        ("-3.5 dB", "dB", -3.5),
        ("12", "W", 12.0),
    ],
)
def test_parse_value_strips_configured_unit(raw: str, unit: str, expected: float) -> None:
    assert parse_value(raw, unit) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", "N/A", "   ", "°C", "-", "nan", "inf"])
def test_parse_value_returns_zero_when_unparseable(raw: str) -> None:
    assert parse_value(raw, "W") == 0.0
    assert resolve_value(raw, "W") is None


def test_parse_value_only_removes_unit_with_single_leading_space() -> None:
    # The unit token is not a general suffix stripper; the leading number still parses.
    assert parse_value("72.3°C", "°C") == pytest.approx(72.3)
    assert parse_value("72.3 °F", "°C") == pytest.approx(72.3)


def test_parse_value_ignores_locale_decimal_comma() -> None:
    assert parse_value("55,5 °C", "°C") == pytest.approx(55.0)


def test_resolve_value_distinguishes_true_zero_from_missing() -> None:
    assert resolve_value("0.0 W", "W") == 0.0
    assert resolve_value(None, "W") is None
    assert parse_value(None, "W") == 0.0


def test_resolve_value_rejects_overflowing_exponent() -> None:
    assert resolve_value("1e999 W", "W") is None


@pytest.mark.parametrize("raw", ["1e W", "2.5e- W", "3E+"])
def test_resolve_value_rejects_dangling_exponent(raw: str) -> None:
    assert resolve_value(raw, "W") is None
    assert parse_value(raw, "W") == 0.0


def test_resolve_value_reads_complete_exponent() -> None:
    assert resolve_value("1.5e3 W", "W") == pytest.approx(1500.0)
