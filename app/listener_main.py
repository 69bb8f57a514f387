"""Shutdown listener entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from common.reporting import make_reporter  # noqa: E402
from config.defaults import APP_NAME, BUILD_VERSION, COMMIT_HASH  # noqa: E402
from config.settings import Settings, SettingsError, load_settings, resolve_config_path  # noqa: E402
from handlers.base import Handler, HandlerStartError  # noqa: E402
from handlers.ble_handler import BleHandler  # noqa: E402
from handlers.http_handler import HttpHandler  # noqa: E402
from handlers.mqtt_handler import MqttHandler  # noqa: E402
from server.command_center import CommandCenter, ConfigurationError  # noqa: E402
from server.preflight import format_preflight_report, preflight_rows, run_preflight_checks  # noqa: E402
from services.metrics import ListenerMetrics, start_metrics_server, write_metrics  # noqa: E402
from services.verification import build_verifier  # noqa: E402

logger = logging.getLogger(APP_NAME)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a local command when a shutdown signal is received")
    parser.add_argument("--conf", default=None, help="path to the JSON config file")
    parser.add_argument("--version", action="store_true", help="print version and exit")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--skip-preflight", action="store_true", help="start even if preflight checks fail")
    parser.add_argument("--plain", action="store_true", help="disable rich formatting of startup output")
    return parser.parse_args(argv)


def build_handlers(settings: Settings, metrics: ListenerMetrics) -> list[Handler]:
    logger.info("Building message handlers...")
    handlers: list[Handler] = []
    if settings.mqtt is not None:
        handlers.append(MqttHandler(settings.mqtt, metrics=metrics))
    if settings.http is not None:
        handlers.append(HttpHandler(settings.http.addr, settings.http.path, metrics=metrics))
    if settings.ble is not None:
        handlers.append(BleHandler(settings.ble.device_name, adapter=settings.ble.adapter))
    return handlers


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    if args.version:
        print(f"{BUILD_VERSION} (revision {COMMIT_HASH})")
        return

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )
    logger.info("This is %s version %s, commit %s", APP_NAME, BUILD_VERSION, COMMIT_HASH)

    try:
        settings = load_settings(resolve_config_path(args.conf))
    except SettingsError as exc:
        raise SystemExit(f"could not read config: {exc}") from exc

    reporter, print_table = make_reporter(use_rich=not args.plain)
    print_table(f"Configuration ({settings.source})", ["key", "value"], settings.summary_rows())

    preflight = run_preflight_checks(settings)
    if args.plain:
        reporter(format_preflight_report(preflight))
    else:
        print_table("Preflight", ["status", "check", "detail"], preflight_rows(preflight))
    if not preflight.ok:
        if not args.skip_preflight:
            raise SystemExit("Preflight failed. Resolve the checks above or pass --skip-preflight.")
        logger.warning("Preflight failed, continuing because --skip-preflight is set")

    metrics = ListenerMetrics.create()
    metrics.version.labels(BUILD_VERSION, COMMIT_HASH).set(1)
    if settings.metrics_addr:
        try:
            start_metrics_server(settings.metrics_addr, metrics)
        except OSError as exc:
            raise SystemExit(f"Can not start metrics server at {settings.metrics_addr}: {exc}") from exc

    logger.info("Building message verification implementation...")
    verifier = build_verifier(settings)
    try:
        handlers = build_handlers(settings, metrics)
        logger.info("Building command center..")
        center = CommandCenter(
            verifier,
            handlers,
            settings.command,
            metrics=metrics,
            heartbeat_interval=settings.heartbeat_interval_sec,
            strict_handlers=settings.strict_handlers,
        )
    except (ConfigurationError, ValueError) as exc:
        raise SystemExit(f"could not build command center: {exc}") from exc

    try:
        await center.run()
    except HandlerStartError as exc:
        raise SystemExit(f"could not run: {exc}") from exc
    finally:
        if settings.metrics_file:
            write_metrics(settings.metrics_file, metrics)


def run() -> int:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print(f"\n[{APP_NAME}] interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
