from __future__ import annotations

import json
import signal
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest
import requests

from hwagent import hwmon_agent
from hwagent.hwmon_agent import PollState, poll_once, run_poll_loop
from hwagent.sensors.config import MetricDefinition
from hwagent.sensors.extract import MetricSnapshot
from hwagent.settings import Settings

TREE = {
    "Children": [
        {
            "Text": "PC",
            "Children": [{"Text": "CPU", "Children": [{"Text": "Core Tctl", "Value": "55.0 °C"}]}],
        }
    ]
}
DEFINITIONS = (
    MetricDefinition(name="cpu_temp_tctl", description="", path=("CPU", "Core Tctl|Tctl"), unit="°C"),
    MetricDefinition(name="gpu_temp", description="", path=("GPU", "GPU Core"), unit="°C"),
)


class _FakeResponse:
    def __init__(self, body: bytes, status_code: int = 200) -> None:
        self.status_code = status_code
        self.content = body

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, *exc: object) -> None:
        return None


class _FakeHttpSession:
    def __init__(self, script: list[Any]) -> None:
        self.script = list(script)
        self.calls = 0

    def get(self, url: str, *, timeout: float, stream: bool) -> _FakeResponse:
        self.calls += 1
        item = self.script.pop(0) if self.script else _FakeResponse(json.dumps(TREE).encode("utf-8"))
        if isinstance(item, Exception):
            raise item
        return item


class _RecordingPublisher:
    def __init__(self, *, ok: bool = True) -> None:
        self.ok = ok
        self.snapshots: list[MetricSnapshot] = []

    def describe(self) -> str:
        return "recording"

    def publish(self, snapshot: MetricSnapshot) -> bool:
        self.snapshots.append(snapshot)
        return self.ok


class _CountingStop:
    """Stop event that trips after a number of waits."""

    def __init__(self, *, stop_after_waits: int) -> None:
        self.waits: list[float] = []
        self.stop_after_waits = stop_after_waits

    def is_set(self) -> bool:
        return len(self.waits) >= self.stop_after_waits

    def wait(self, timeout: float | None = None) -> bool:
        self.waits.append(float(timeout or 0.0))
        return self.is_set()


def _settings(**overrides: Any) -> Settings:
    base = Settings(
        monitor_url="http://monitor.local/data.json",
        monitor_url_is_default=False,
        fetch_timeout_s=5.0,
        fetch_max_attempts=3,
        fetch_retry_interval_s=12.0,
        poll_interval_s=10.0,
        metrics_config_path="metrics-config.json",
        redis_host=None,
        redis_port=6379,
        redis_username="default",
        redis_password=None,
        redis_tls=True,
        redis_socket_timeout_s=5.0,
        publish_mode="latest",
        metrics_key="hardware:metrics",
        stream_max_len=1000,
        stream_approximate=True,
        stream_field="data",
        log_level="INFO",
        log_format="text",
    )
    return replace(base, **overrides)


def _ok() -> _FakeResponse:
    return _FakeResponse(json.dumps(TREE).encode("utf-8"))


def _down() -> Exception:
    return requests.exceptions.ConnectionError("refused")


def test_poll_once_fetches_extracts_and_publishes() -> None:
    publisher = _RecordingPublisher()
    state = PollState()

    published = poll_once(
        session=_FakeHttpSession([_ok()]),  # type: ignore[arg-type]
        publisher=publisher,
        definitions=DEFINITIONS,
        settings=_settings(),
        state=state,
        stop=_CountingStop(stop_after_waits=99),
        now=lambda: 1_700_000_000.0,
    )

    assert published is True
    assert state.published == 1
    payload = publisher.snapshots[0].to_payload()
    assert payload == {"timestamp": 1_700_000_000, "pc_name": "PC", "cpu_temp_tctl": 55.0, "gpu_temp": 0.0}
    assert state.last_unresolved == ("gpu_temp",)


def test_poll_once_skips_publish_when_fetch_budget_exhausted() -> None:
    publisher = _RecordingPublisher()
    session = _FakeHttpSession([_down(), _down(), _down()])
    stop = _CountingStop(stop_after_waits=99)

    published = poll_once(
        session=session,  # type: ignore[arg-type]
        publisher=publisher,
        definitions=DEFINITIONS,
        settings=_settings(),
        stop=stop,
    )

    assert published is False
    assert publisher.snapshots == []
    assert session.calls == 3
    assert stop.waits == [12.0, 12.0]


def test_poll_once_reports_publish_failure() -> None:
    state = PollState()
    published = poll_once(
        session=_FakeHttpSession([_ok()]),  # type: ignore[arg-type]
        publisher=_RecordingPublisher(ok=False),
        definitions=DEFINITIONS,
        settings=_settings(),
        state=state,
    )
    assert published is False
    assert state.published == 0


def test_empty_tree_is_published_with_timestamp_only() -> None:
    publisher = _RecordingPublisher()
    poll_once(
        session=_FakeHttpSession([_FakeResponse(b'{"Children": []}')]),  # type: ignore[arg-type]
        publisher=publisher,
        definitions=DEFINITIONS,
        settings=_settings(),
        now=lambda: 7.0,
    )
    assert publisher.snapshots[0].to_payload() == {"timestamp": 7}


def test_run_poll_loop_sleeps_between_cycles_and_keeps_going_after_failures() -> None:
    publisher = _RecordingPublisher()
    # Cycle 1 fails completely (3 attempts), cycles 2 and 3 succeed.
    session = _FakeHttpSession([_down(), _down(), _down(), _ok(), _ok()])
    stop = _CountingStop(stop_after_waits=5)

    state = run_poll_loop(
        session=session,  # type: ignore[arg-type]
        publisher=publisher,
        definitions=DEFINITIONS,
        settings=_settings(),
        stop=stop,
    )

    # waits: 2 retry delays + 3 inter-cycle sleeps
    assert stop.waits == [12.0, 12.0, 10.0, 10.0, 10.0]
    assert state.cycles == 3
    assert state.published == 2
    timestamps = [s.timestamp for s in publisher.snapshots]
    assert timestamps == sorted(timestamps)


def test_run_poll_loop_honors_max_cycles_without_sleeping() -> None:
    stop = _CountingStop(stop_after_waits=99)
    state = run_poll_loop(
        session=_FakeHttpSession([]),  # type: ignore[arg-type]
        publisher=_RecordingPublisher(),
        definitions=DEFINITIONS,
        settings=_settings(),
        stop=stop,
        max_cycles=1,
    )
    assert state.cycles == 1
    assert stop.waits == []


def test_run_poll_loop_exits_immediately_when_already_stopped() -> None:
    stop = threading.Event()
    stop.set()
    session = _FakeHttpSession([])

    state = run_poll_loop(
        session=session,  # type: ignore[arg-type]
        publisher=_RecordingPublisher(),
        definitions=DEFINITIONS,
        settings=_settings(),
        stop=stop,
    )
    assert state.cycles == 0
    assert session.calls == 0


def test_unresolved_warning_is_logged_only_when_set_changes(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger="hwagent.agent")
    state = PollState()
    for _ in range(3):
        poll_once(
            session=_FakeHttpSession([_ok()]),  # type: ignore[arg-type]
            publisher=_RecordingPublisher(),
            definitions=DEFINITIONS,
            settings=_settings(),
            state=state,
        )

    warnings = [r for r in caplog.records if "unresolved metrics" in r.getMessage()]
    assert len(warnings) == 1
    assert "gpu_temp" in warnings[0].getMessage()

class _ExplodingPublisher:
    def __init__(self) -> None:
        self.calls = 0

    def describe(self) -> str:
        return "exploding"

    def publish(self, snapshot: MetricSnapshot) -> bool:
        self.calls += 1
        raise RuntimeError("publisher bug")


def test_run_poll_loop_survives_unexpected_cycle_errors(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("ERROR", logger="hwagent.agent")
    publisher = _ExplodingPublisher()
    stop = _CountingStop(stop_after_waits=2)

    state = run_poll_loop(
        session=_FakeHttpSession([]),  # type: ignore[arg-type]
        publisher=publisher,
        definitions=DEFINITIONS,
        settings=_settings(),
        stop=stop,
    )

    assert publisher.calls == 2
    assert state.cycles == 2
    assert state.failed == 2
    assert state.published == 0
    assert stop.waits == [10.0, 10.0]
    failures = [r for r in caplog.records if r.getMessage() == "poll cycle failed unexpectedly"]
    assert len(failures) == 2
    assert failures[0].exc_info is not None


def test_signal_handler_only_sets_the_stop_event(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    installed: dict[int, Any] = {}
    monkeypatch.setattr(hwmon_agent.signal, "signal", lambda sig, handler: installed.__setitem__(sig, handler))
    caplog.set_level("DEBUG")
    stop = threading.Event()

    hwmon_agent._install_signal_handlers(stop)
    assert set(installed) == {signal.SIGINT, signal.SIGTERM}

    installed[signal.SIGTERM](signal.SIGTERM, None)

    assert stop.is_set()
    assert caplog.records == []


def _write_config(tmp_path: Path) -> Path:
    path = tmp_path / "metrics-config.json"
    path.write_text(
        json.dumps({"metrics": [{"name": "cpu_temp_tctl", "path": ["CPU", "Core Tctl"], "unit": "°C"}]}),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("UPSTASH_REDIS_ADDR", "UPSTASH_REDIS_PASSWORD", "METRICS_CONFIG_PATH", "LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(hwmon_agent, "load_dotenv", lambda *a, **k: False)
    monkeypatch.setattr(hwmon_agent, "_install_signal_handlers", lambda stop: None)
    monkeypatch.setattr(hwmon_agent, "configure_logging", lambda **kwargs: None)


@pytest.mark.usefixtures("_isolated_env")
def test_main_exits_when_credentials_missing(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        hwmon_agent.main(["--config", str(_write_config(tmp_path)), "--once"])
    assert "UPSTASH_REDIS_ADDR" in str(exc.value.code)


@pytest.mark.usefixtures("_isolated_env")
def test_main_exits_when_metric_config_unreadable(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        hwmon_agent.main(["--config", str(tmp_path / "missing.json"), "--dry-run", "--once"])
    assert "failed to load metric config" in str(exc.value.code)


@pytest.mark.usefixtures("_isolated_env")
def test_main_dry_run_once_polls_a_single_cycle(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls: list[dict[str, Any]] = []

    def _fake_run_poll_loop(**kwargs: Any) -> PollState:
        calls.append(kwargs)
        return PollState(cycles=1, published=1)

    monkeypatch.setattr(hwmon_agent, "run_poll_loop", _fake_run_poll_loop)

    hwmon_agent.main(["--config", str(_write_config(tmp_path)), "--dry-run", "--once"])

    assert len(calls) == 1
    assert calls[0]["max_cycles"] == 1
    assert calls[0]["publisher"].describe() == "dry-run"
    assert [d.name for d in calls[0]["definitions"]] == ["cpu_temp_tctl"]
