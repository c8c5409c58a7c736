from __future__ import annotations

import argparse
import logging
import signal
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Sequence

import requests
from dotenv import load_dotenv

from .fetch import StopSignal, fetch_with_retry
from .observability import configure_logging
from .publisher import LogOnlyPublisher, SnapshotPublisher, build_publisher, build_redis_client
from .sensors import MetricConfigError, MetricDefinition, MetricSnapshot, extract_all, load_metric_config
from .settings import Settings, SettingsError, load_settings_from_env

log = logging.getLogger("hwagent.agent")


@dataclass
class PollState:
    """What the loop remembers between cycles."""

    last_unresolved: tuple[str, ...] = ()
    cycles: int = 0
    published: int = 0
    failed: int = 0


def _summarize(snapshot: MetricSnapshot, *, max_items: int = 6) -> str:
    parts = [f"{name}={value:.1f}" for name, value in list(snapshot.values.items())[:max_items]]
    if len(snapshot.values) > max_items:
        parts.append(f"+{len(snapshot.values) - max_items} more")
    return " | ".join(parts)


def _report_unresolved(snapshot: MetricSnapshot, state: PollState) -> None:
    if snapshot.host_name is None:
        return
    if snapshot.unresolved == state.last_unresolved:
        return
    if snapshot.unresolved:
        log.warning(
            "unresolved metrics (reported as 0.0): %s",
            ", ".join(snapshot.unresolved),
            extra={"fields": {"unresolved": list(snapshot.unresolved)}},
        )
    else:
        log.info("all configured metrics resolved")
    state.last_unresolved = snapshot.unresolved


def poll_once(
    *,
    session: requests.Session,
    publisher: SnapshotPublisher,
    definitions: Sequence[MetricDefinition],
    settings: Settings,
    state: PollState | None = None,
    stop: StopSignal | None = None,
    now: Callable[[], float] = time.time,
) -> bool:
    """Run one Polling -> Publishing pass. Returns True when a snapshot was published."""

    if state is None:
        state = PollState()
    state.cycles += 1

    tree, ok = fetch_with_retry(
        session,
        settings.monitor_url,
        max_attempts=settings.fetch_max_attempts,
        retry_interval_s=settings.fetch_retry_interval_s,
        timeout_s=settings.fetch_timeout_s,
        stop=stop,
    )
    if not ok or tree is None:
        log.warning(
            "failed to fetch hardware data after %d attempts, waiting before next cycle",
            settings.fetch_max_attempts,
        )
        return False

    snapshot = extract_all(tree, definitions, now=now)

    if snapshot.host_name is None:
        log.warning("hardware monitor returned an empty sensor tree")
    _report_unresolved(snapshot, state)

    if not publisher.publish(snapshot):
        return False

    state.published += 1
    log.info(
        "metrics stored [%s] host=%s",
        _summarize(snapshot),
        snapshot.host_name,
        extra={"fields": {"timestamp": snapshot.timestamp, "metrics": len(snapshot.values)}},
    )
    return True


def run_poll_loop(
    *,
    session: requests.Session,
    publisher: SnapshotPublisher,
    definitions: Sequence[MetricDefinition],
    settings: Settings,
    stop: StopSignal,
    max_cycles: int | None = None,
    state: PollState | None = None,
) -> PollState:
    """Poll, publish, sleep; until stop is set or max_cycles cycles ran."""

    if state is None:
        state = PollState()

    while not stop.is_set():
        try:
            poll_once(
                session=session,
                publisher=publisher,
                definitions=definitions,
                settings=settings,
                state=state,
                stop=stop,
            )
        except Exception:
            # Unexpected errors end the cycle, not the process.
            log.exception("poll cycle failed unexpectedly")
            state.failed += 1
        if max_cycles is not None and state.cycles >= max_cycles:
            break
        if stop.wait(settings.poll_interval_s):
            break

    return state


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle(_signum: int, _frame: object) -> None:
        # Only set the event here; logging takes locks a signal may interrupt.
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handle)
        except ValueError:
            # Not on the main thread (embedded use); rely on the caller's stop event.
            return


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Relay hardware monitor sensors to Redis")
    parser.add_argument("--config", default=None, help="metric definitions file (overrides METRICS_CONFIG_PATH)")
    parser.add_argument("--once", action="store_true", help="run a single poll cycle and exit")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="log snapshots instead of writing them (Redis credentials not required)",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    load_dotenv()

    args = _parse_args(argv)

    try:
        settings = load_settings_from_env(require_store=not args.dry_run)
    except SettingsError as exc:
        raise SystemExit(f"[hwmon-relay] invalid settings: {exc}") from exc

    configure_logging(level=settings.log_level, log_format=settings.log_format)

    config_path = args.config or settings.metrics_config_path
    try:
        metric_config = load_metric_config(config_path)
    except MetricConfigError as exc:
        raise SystemExit(f"[hwmon-relay] failed to load metric config: {exc}") from exc
    log.info("loaded %d metrics from %s", len(metric_config.metrics), metric_config.origin)

    if settings.monitor_url_is_default:
        log.info("using default HARDWARE_MONITOR_URL: %s", settings.monitor_url)

    stop = threading.Event()
    _install_signal_handlers(stop)

    with ExitStack() as stack:
        session = stack.enter_context(requests.Session())

        publisher: SnapshotPublisher
        if args.dry_run:
            publisher = LogOnlyPublisher()
        else:
            client = stack.enter_context(build_redis_client(settings))
            publisher = build_publisher(client, settings)

        log.info(
            "monitor=%s publish=%s interval=%.0fs retries=%dx%.0fs",
            settings.monitor_url,
            publisher.describe(),
            settings.poll_interval_s,
            settings.fetch_max_attempts,
            settings.fetch_retry_interval_s,
        )

        state = run_poll_loop(
            session=session,
            publisher=publisher,
            definitions=metric_config.metrics,
            settings=settings,
            stop=stop,
            max_cycles=1 if args.once else None,
        )

    if stop.is_set():
        log.info("stop requested; shutting down")
    log.info("stopped after %d cycles (%d published)", state.cycles, state.published)


if __name__ == "__main__":
    main()
