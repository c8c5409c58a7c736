from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import redis

from .sensors.extract import MetricSnapshot
from .settings import Settings

log = logging.getLogger("hwagent.publisher")


class SnapshotPublisher(Protocol):
    """Persists one snapshot per poll cycle; failures are reported, not raised."""

    def publish(self, snapshot: MetricSnapshot) -> bool: ...

    def describe(self) -> str: ...


def serialize_snapshot(snapshot: MetricSnapshot) -> str:
    return json.dumps(snapshot.to_payload(), separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _serialize_or_log(snapshot: MetricSnapshot) -> str | None:
    try:
        return serialize_snapshot(snapshot)
    except (TypeError, ValueError) as exc:
        log.error("failed to serialize metrics snapshot: %s", exc)
        return None


@dataclass
class LatestValuePublisher:
    """Overwrites one key with the newest snapshot (no expiry, no history)."""

    client: redis.Redis
    key: str

    def describe(self) -> str:
        return f"latest key={self.key}"

    def publish(self, snapshot: MetricSnapshot) -> bool:
        payload = _serialize_or_log(snapshot)
        if payload is None:
            return False
        try:
            self.client.set(self.key, payload)
        except redis.RedisError as exc:
            log.error("Redis SET failed: %s", exc, extra={"fields": {"key": self.key}})
            return False
        return True


@dataclass
class StreamPublisher:
    """Appends each snapshot to a stream capped at max_len entries.

    Approximate trimming lets the server keep a few extra entries in exchange
    for cheaper writes; exact trimming enforces the cap on every write.
    """

    client: redis.Redis
    stream: str
    max_len: int
    approximate: bool = True
    field: str = "data"

    def describe(self) -> str:
        trim = "~" if self.approximate else "="
        return f"stream key={self.stream} maxlen{trim}{self.max_len}"

    def publish(self, snapshot: MetricSnapshot) -> bool:
        payload = _serialize_or_log(snapshot)
        if payload is None:
            return False
        try:
            self.client.xadd(
                self.stream,
                {self.field: payload},
                maxlen=self.max_len,
                approximate=self.approximate,
            )
        except redis.RedisError as exc:
            log.error("Redis stream add failed: %s", exc, extra={"fields": {"stream": self.stream}})
            return False
        return True


@dataclass
class LogOnlyPublisher:
    """Dry-run publisher: logs the payload instead of writing it."""

    def describe(self) -> str:
        return "dry-run"

    def publish(self, snapshot: MetricSnapshot) -> bool:
        payload = _serialize_or_log(snapshot)
        if payload is None:
            return False
        log.info("dry-run snapshot %s", payload)
        return True


def build_redis_client(settings: Settings) -> redis.Redis:
    if not settings.redis_configured:
        raise ValueError("Redis address and password are required to build a client")
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username,
        password=settings.redis_password,
        ssl=settings.redis_tls,
        socket_timeout=settings.redis_socket_timeout_s,
        socket_connect_timeout=settings.redis_socket_timeout_s,
        decode_responses=True,
    )


def build_publisher(client: redis.Redis, settings: Settings) -> SnapshotPublisher:
    if settings.publish_mode == "stream":
        return StreamPublisher(
            client=client,
            stream=settings.metrics_key,
            max_len=settings.stream_max_len,
            approximate=settings.stream_approximate,
            field=settings.stream_field,
        )
    return LatestValuePublisher(client=client, key=settings.metrics_key)


def read_latest_snapshot(
    client: redis.Redis,
    *,
    mode: str,
    key: str,
    field: str = "data",
) -> dict[str, Any] | None:
    """Return the newest published snapshot, or None when nothing is stored.

    Stream entries are read newest-first with XREVRANGE ... COUNT 1, the way
    dashboards consume the stream.
    """

    if mode == "stream":
        entries = client.xrevrange(key, max="+", min="-", count=1)
        if not entries:
            return None
        _entry_id, fields = entries[0]
        raw = fields.get(field)
        if raw is None:
            raw = fields.get(field.encode("utf-8"))
    else:
        raw = client.get(key)

    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"stored snapshot under {key!r} is not a JSON object")
    return data
