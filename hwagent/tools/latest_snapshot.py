from __future__ import annotations

import argparse
import json

import redis
from dotenv import load_dotenv

from hwagent.publisher import build_redis_client, read_latest_snapshot
from hwagent.settings import SettingsError, load_settings_from_env


def main() -> None:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Print the newest published hardware metrics snapshot")
    parser.add_argument(
        "--mode",
        choices=("latest", "stream"),
        default=None,
        help="storage mode (defaults to PUBLISH_MODE)",
    )
    parser.add_argument("--key", default=None, help="key or stream name (defaults to METRICS_KEY)")
    args = parser.parse_args()

    try:
        settings = load_settings_from_env()
    except SettingsError as exc:
        raise SystemExit(f"[hwmon-latest] invalid settings: {exc}") from exc

    mode = args.mode or settings.publish_mode
    key = args.key or settings.metrics_key

    with build_redis_client(settings) as client:
        try:
            snapshot = read_latest_snapshot(client, mode=mode, key=key, field=settings.stream_field)
        except (redis.RedisError, ValueError) as exc:
            raise SystemExit(f"[hwmon-latest] read failed: {exc}") from exc

    if snapshot is None:
        raise SystemExit(f"[hwmon-latest] no snapshot stored under {key!r}")
    print(json.dumps(snapshot, sort_keys=True, ensure_ascii=False))


if __name__ == "__main__":
    main()
