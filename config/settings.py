"""JSON config file loading and validation."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from config.defaults import (
    CONFIG_ENV_VAR,
    DEFAULT_BLE_ADAPTER,
    DEFAULT_COMMAND,
    DEFAULT_HEARTBEAT_INTERVAL_SEC,
    DEFAULT_HTTP_PATH,
    DEFAULT_METRICS_ADDR,
)

# Loose on purpose: hostnames and ip addresses are not validated.
MQTT_HOST_RE = re.compile(r"^\w{3,}://.{3,}:\d{2,5}$")
MQTT_TOPIC_RE = re.compile(r"^([\w%]+)(/[\w%]+)*$")


class SettingsError(ValueError):
    pass


@dataclass(frozen=True)
class MqttSettings:
    host: str
    topic: str
    user: str | None = None
    password: str | None = None


@dataclass(frozen=True)
class HttpSettings:
    addr: str
    path: str = DEFAULT_HTTP_PATH


@dataclass(frozen=True)
class BleSettings:
    device_name: str
    adapter: str = DEFAULT_BLE_ADAPTER


@dataclass(frozen=True)
class Settings:
    command: tuple[str, ...] = DEFAULT_COMMAND
    metrics_addr: str = DEFAULT_METRICS_ADDR
    metrics_file: str | None = None
    heartbeat_interval_sec: float = DEFAULT_HEARTBEAT_INTERVAL_SEC
    strict_handlers: bool = False
    verify_token: str | None = None
    mqtt: MqttSettings | None = None
    http: HttpSettings | None = None
    ble: BleSettings | None = None
    source: Path | None = field(default=None, compare=False)

    @property
    def transports(self) -> list[str]:
        names = []
        if self.mqtt is not None:
            names.append("mqtt")
        if self.http is not None:
            names.append("http")
        if self.ble is not None:
            names.append("ble")
        return names

    def summary_rows(self) -> list[tuple[str, str]]:
        rows = [
            ("cmd", " ".join(self.command)),
            ("metrics_addr", self.metrics_addr or "<disabled>"),
            ("metrics_file", self.metrics_file or "<none>"),
            ("heartbeat_interval_sec", f"{self.heartbeat_interval_sec:g}"),
            ("strict_handlers", str(self.strict_handlers).lower()),
            ("verification", "shared token" if self.verify_token else "none"),
        ]
        if self.mqtt is not None:
            rows.append(("mqtt_host", self.mqtt.host))
            rows.append(("mqtt_topic", self.mqtt.topic))
            rows.append(("mqtt_user", self.mqtt.user or "<anonymous>"))
        if self.http is not None:
            rows.append(("http", f"POST {self.http.addr}{self.http.path}"))
        if self.ble is not None:
            rows.append(("ble", f"{self.ble.device_name} on {self.ble.adapter}"))
        return rows


_KNOWN_KEYS = {
    "cmd",
    "metrics_addr",
    "metrics_file",
    "heartbeat_interval_sec",
    "strict_handlers",
    "verify_token",
    "mqtt_host",
    "mqtt_topic",
    "mqtt_user",
    "mqtt_password",
    "http_addr",
    "http_path",
    "ble_device_name",
    "ble_adapter",
}


def resolve_config_path(cli_value: str | None) -> Path:
    raw = (cli_value or os.environ.get(CONFIG_ENV_VAR, "")).strip()
    if not raw:
        raise SettingsError(f"No config file specified, use flag '--conf' or env var '{CONFIG_ENV_VAR}'")
    return Path(raw).expanduser()


def load_settings(path: Path | str) -> Settings:
    path = Path(path).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SettingsError(f"could not read config from file {path}: {exc}") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SettingsError(f"invalid JSON in {path}: {exc.msg} (line {exc.lineno})") from exc
    return replace(parse_settings(payload), source=path)


def parse_settings(payload: Any) -> Settings:
    if not isinstance(payload, dict):
        raise SettingsError("config must be a JSON object")

    unknown = sorted(set(payload) - _KNOWN_KEYS)
    if unknown:
        raise SettingsError(f"unknown config keys: {', '.join(unknown)}")

    command = payload.get("cmd", list(DEFAULT_COMMAND))
    if not isinstance(command, list) or not command or not all(isinstance(part, str) and part for part in command):
        raise SettingsError("field `cmd` must be a non-empty list of non-empty strings")

    interval = payload.get("heartbeat_interval_sec", DEFAULT_HEARTBEAT_INTERVAL_SEC)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
        raise SettingsError("field `heartbeat_interval_sec` must be a positive number")

    strict = payload.get("strict_handlers", False)
    if not isinstance(strict, bool):
        raise SettingsError("field `strict_handlers` must be boolean")

    settings = Settings(
        command=tuple(command),
        metrics_addr=_optional_str(payload, "metrics_addr", DEFAULT_METRICS_ADDR) or "",
        metrics_file=_optional_str(payload, "metrics_file"),
        heartbeat_interval_sec=float(interval),
        strict_handlers=strict,
        verify_token=_optional_str(payload, "verify_token"),
        mqtt=_parse_mqtt(payload),
        http=_parse_http(payload),
        ble=_parse_ble(payload),
    )
    if not settings.transports:
        raise SettingsError("no transport configured: set at least one of `mqtt_host`, `http_addr`, `ble_device_name`")
    if settings.metrics_addr:
        parse_listen_addr(settings.metrics_addr)
    return settings


def parse_listen_addr(addr: str, default_host: str = "0.0.0.0") -> tuple[str, int]:
    host, sep, port_text = addr.strip().rpartition(":")
    if not sep:
        raise SettingsError(f"listen address `{addr}` must be in host:port form")
    host = host.strip("[]") or default_host
    try:
        port = int(port_text)
    except ValueError:
        raise SettingsError(f"listen address `{addr}` has an invalid port") from None
    if not 0 <= port <= 65535:
        raise SettingsError(f"listen address `{addr}` has an out of range port")
    return host, port


def _parse_mqtt(payload: dict[str, Any]) -> MqttSettings | None:
    host = _optional_str(payload, "mqtt_host")
    if host is None:
        return None
    topic = _optional_str(payload, "mqtt_topic") or ""
    if not MQTT_HOST_RE.match(host):
        raise SettingsError("invalid mqtt host format used, expected scheme://host:port")
    if not MQTT_TOPIC_RE.match(topic):
        raise SettingsError("invalid mqtt topic provided")
    return MqttSettings(
        host=host,
        topic=topic,
        user=_optional_str(payload, "mqtt_user"),
        password=_optional_str(payload, "mqtt_password"),
    )


def _parse_http(payload: dict[str, Any]) -> HttpSettings | None:
    addr = _optional_str(payload, "http_addr")
    if addr is None:
        return None
    parse_listen_addr(addr)
    path = _optional_str(payload, "http_path", DEFAULT_HTTP_PATH) or DEFAULT_HTTP_PATH
    if not path.startswith("/"):
        raise SettingsError("field `http_path` must start with '/'")
    return HttpSettings(addr=addr, path=path)


def _parse_ble(payload: dict[str, Any]) -> BleSettings | None:
    name = _optional_str(payload, "ble_device_name")
    if name is None:
        return None
    adapter = _optional_str(payload, "ble_adapter", DEFAULT_BLE_ADAPTER) or DEFAULT_BLE_ADAPTER
    return BleSettings(device_name=name, adapter=adapter)


def _optional_str(payload: dict[str, Any], key: str, default: str | None = None) -> str | None:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise SettingsError(f"field `{key}` must be string")
    value = value.strip()
    if not value and default is None:
        return None
    return value
