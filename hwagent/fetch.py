from __future__ import annotations

import json
import logging
import time
from typing import Protocol

import requests

from .sensors.tree import SensorTree, parse_sensor_tree

log = logging.getLogger("hwagent.fetch")


class StopSignal(Protocol):
    """The subset of threading.Event used for interruptible waits."""

    def is_set(self) -> bool: ...

    def wait(self, timeout: float | None = None) -> bool: ...


class FetchError(RuntimeError):
    """One failed attempt to read the sensor tree.

    stage is one of "request", "read" or "parse".
    """

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


def fetch_sensor_tree(
    session: requests.Session,
    url: str,
    *,
    timeout_s: float = 5.0,
) -> SensorTree:
    try:
        resp = session.get(url, timeout=timeout_s, stream=True)
    except requests.RequestException as exc:
        raise FetchError("request", f"HTTP request failed: {exc}") from exc

    with resp:
        if not 200 <= resp.status_code < 300:
            raise FetchError("request", f"HTTP request failed: status {resp.status_code}")
        try:
            body = resp.content
        except requests.RequestException as exc:
            raise FetchError("read", f"failed to read response: {exc}") from exc

    try:
        return parse_sensor_tree(json.loads(body))
    except (ValueError, RecursionError) as exc:
        # RecursionError: nesting deeper than the decoder can follow.
        raise FetchError("parse", f"failed to parse JSON: {exc}") from exc


def _wait(seconds: float, stop: StopSignal | None) -> bool:
    """Sleep for seconds; returns True when a stop was requested meanwhile."""

    if stop is None:
        time.sleep(seconds)
        return False
    return stop.wait(seconds)


def fetch_with_retry(
    session: requests.Session,
    url: str,
    *,
    max_attempts: int,
    retry_interval_s: float,
    timeout_s: float = 5.0,
    stop: StopSignal | None = None,
) -> tuple[SensorTree | None, bool]:
    """Fetch the sensor tree, retrying with a fixed delay.

    The retry budget is spent per call: a monitor that stays down costs at most
    (max_attempts - 1) * retry_interval_s of waiting plus the request timeouts.
    Returns (tree, True) on the first success and (None, False) once every
    attempt failed or a stop was requested.
    """

    for attempt in range(1, max_attempts + 1):
        try:
            tree = fetch_sensor_tree(session, url, timeout_s=timeout_s)
        except FetchError as exc:
            log.warning(
                "%s (attempt %d/%d)",
                exc,
                attempt,
                max_attempts,
                extra={"fields": {"stage": exc.stage, "attempt": attempt, "url": url}},
            )
            if attempt >= max_attempts:
                break
            if _wait(retry_interval_s, stop):
                log.info("stop requested; abandoning fetch retries")
                break
            continue
        return tree, True

    return None, False
