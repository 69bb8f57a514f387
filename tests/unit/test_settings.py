from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from config.defaults import CONFIG_ENV_VAR, DEFAULT_COMMAND, DEFAULT_HTTP_PATH, DEFAULT_METRICS_ADDR
from config.settings import (
    SettingsError,
    load_settings,
    parse_listen_addr,
    parse_settings,
    resolve_config_path,
)

MQTT_CONFIG = {
    "mqtt_host": "tcp://broker.local:1883",
    "mqtt_topic": "hosts/nas/shutdown",
}


class ParseSettingsTests(unittest.TestCase):
    def test_defaults_are_applied(self) -> None:
        settings = parse_settings(dict(MQTT_CONFIG))

        self.assertEqual(settings.command, DEFAULT_COMMAND)
        self.assertEqual(settings.metrics_addr, DEFAULT_METRICS_ADDR)
        self.assertFalse(settings.strict_handlers)
        self.assertIsNone(settings.verify_token)
        self.assertEqual(settings.transports, ["mqtt"])
        self.assertIsNone(settings.mqtt.user)  # type: ignore[union-attr]

    def test_all_transports(self) -> None:
        settings = parse_settings(
            {
                **MQTT_CONFIG,
                "cmd": ["/usr/bin/true"],
                "http_addr": ":8080",
                "ble_device_name": "nas-listener",
                "metrics_addr": "",
            }
        )

        self.assertEqual(settings.transports, ["mqtt", "http", "ble"])
        self.assertEqual(settings.http.path, DEFAULT_HTTP_PATH)  # type: ignore[union-attr]
        self.assertEqual(settings.ble.adapter, "hci0")  # type: ignore[union-attr]
        self.assertEqual(settings.metrics_addr, "")
        self.assertEqual(settings.command, ("/usr/bin/true",))

    def test_no_transport_is_rejected(self) -> None:
        with self.assertRaises(SettingsError):
            parse_settings({"cmd": ["true"]})

    def test_invalid_mqtt_host(self) -> None:
        for host in ("broker.local:1883", "tcp://broker.local", "tcp://b:1"):
            with self.subTest(host=host), self.assertRaises(SettingsError):
                parse_settings({**MQTT_CONFIG, "mqtt_host": host})

    def test_invalid_mqtt_topic(self) -> None:
        for topic in ("", "hosts/", "/hosts", "hosts/+/shutdown", "hosts/#"):
            with self.subTest(topic=topic), self.assertRaises(SettingsError):
                parse_settings({**MQTT_CONFIG, "mqtt_topic": topic})

    def test_empty_or_malformed_cmd(self) -> None:
        for cmd in ([], "poweroff", ["sudo", ""], [1]):
            with self.subTest(cmd=cmd), self.assertRaises(SettingsError):
                parse_settings({**MQTT_CONFIG, "cmd": cmd})

    def test_unknown_keys_are_rejected(self) -> None:
        with self.assertRaises(SettingsError) as exc:
            parse_settings({**MQTT_CONFIG, "mqtt_hots": "typo"})
        self.assertIn("mqtt_hots", str(exc.exception))

    def test_bad_field_types(self) -> None:
        with self.assertRaises(SettingsError):
            parse_settings({**MQTT_CONFIG, "strict_handlers": "yes"})
        with self.assertRaises(SettingsError):
            parse_settings({**MQTT_CONFIG, "heartbeat_interval_sec": 0})
        with self.assertRaises(SettingsError):
            parse_settings({**MQTT_CONFIG, "heartbeat_interval_sec": True})
        with self.assertRaises(SettingsError):
            parse_settings({**MQTT_CONFIG, "mqtt_user": 42})

    def test_http_path_must_be_absolute(self) -> None:
        with self.assertRaises(SettingsError):
            parse_settings({"http_addr": ":8080", "http_path": "shutdown"})

    def test_top_level_must_be_object(self) -> None:
        with self.assertRaises(SettingsError):
            parse_settings(["mqtt_host"])

    def test_summary_hides_password(self) -> None:
        settings = parse_settings({**MQTT_CONFIG, "mqtt_user": "listener", "mqtt_password": "secret"})
        rendered = " ".join(value for _key, value in settings.summary_rows())
        self.assertIn("listener", rendered)
        self.assertNotIn("secret", rendered)


class ListenAddrTests(unittest.TestCase):
    def test_host_defaults_to_all_interfaces(self) -> None:
        self.assertEqual(parse_listen_addr(":9194"), ("0.0.0.0", 9194))
        self.assertEqual(parse_listen_addr("127.0.0.1:8080"), ("127.0.0.1", 8080))
        self.assertEqual(parse_listen_addr("[::1]:8080"), ("::1", 8080))

    def test_invalid_addresses(self) -> None:
        for addr in ("8080", "host:port", ":70000"):
            with self.subTest(addr=addr), self.assertRaises(SettingsError):
                parse_listen_addr(addr)


class LoadSettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmp_dir = Path(self._tmp.name)

    def test_load_from_file_records_source(self) -> None:
        path = self.tmp_dir / "listener.json"
        path.write_text(json.dumps({**MQTT_CONFIG, "verify_token": "s3cret"}), encoding="utf-8")

        settings = load_settings(path)

        self.assertEqual(settings.source, path)
        self.assertEqual(settings.verify_token, "s3cret")

    def test_missing_file(self) -> None:
        with self.assertRaises(SettingsError):
            load_settings(self.tmp_dir / "missing.json")

    def test_invalid_json(self) -> None:
        path = self.tmp_dir / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(SettingsError) as exc:
            load_settings(path)
        self.assertIn("invalid JSON", str(exc.exception))

    def test_resolve_prefers_cli_over_env(self) -> None:
        with patch.dict(os.environ, {CONFIG_ENV_VAR: "/etc/from-env.json"}):
            self.assertEqual(resolve_config_path("/etc/from-cli.json"), Path("/etc/from-cli.json"))
            self.assertEqual(resolve_config_path(None), Path("/etc/from-env.json"))

    def test_resolve_expands_home(self) -> None:
        with patch.dict(os.environ, {"HOME": str(self.tmp_dir)}):
            self.assertEqual(resolve_config_path("~/listener.json"), self.tmp_dir / "listener.json")

    def test_resolve_without_any_source(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(SettingsError):
                resolve_config_path(None)


if __name__ == "__main__":
    unittest.main()
