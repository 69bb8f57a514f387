"""Prometheus metrics shared by the command center and handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server, write_to_textfile

from config.defaults import APP_NAME
from config.settings import parse_listen_addr

NAMESPACE = APP_NAME.replace("-", "_")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListenerMetrics:
    registry: CollectorRegistry
    message_verify_errors: Counter
    command_execution_failures: Counter
    mqtt_reconnections: Counter
    http_request_errors: Counter
    heartbeat: Gauge
    version: Gauge

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> ListenerMetrics:
        """Register all metrics; a private registry is used unless one is given."""
        registry = registry if registry is not None else CollectorRegistry()
        return cls(
            registry=registry,
            message_verify_errors=Counter(
                "message_verify_errors",
                "Total amount of messages that could not be verified",
                namespace=NAMESPACE,
                subsystem="server",
                registry=registry,
            ),
            command_execution_failures=Counter(
                "command_execution_failures",
                "Total amount of failed command executions",
                namespace=NAMESPACE,
                subsystem="server",
                registry=registry,
            ),
            mqtt_reconnections=Counter(
                "reconnections_triggered",
                "Total amount of reconnecting to the MQTT broker",
                namespace=NAMESPACE,
                subsystem="mqtt",
                registry=registry,
            ),
            http_request_errors=Counter(
                "message_request_errors",
                "Total amount of HTTP requests whose body could not be read",
                namespace=NAMESPACE,
                subsystem="http",
                registry=registry,
            ),
            heartbeat=Gauge(
                "heartbeat_seconds",
                "Continuous heartbeat",
                namespace=NAMESPACE,
                registry=registry,
            ),
            version=Gauge(
                "version",
                "Version information",
                ["version", "commit"],
                namespace=NAMESPACE,
                registry=registry,
            ),
        )

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        return self.registry.get_sample_value(f"{NAMESPACE}_{name}", labels or {})


def start_metrics_server(addr: str, metrics: ListenerMetrics) -> None:
    host, port = parse_listen_addr(addr)
    start_http_server(port, addr=host, registry=metrics.registry)
    logger.info("Serving metrics at http://%s:%d/metrics", host, port)


def write_metrics(path: str | Path, metrics: ListenerMetrics) -> None:
    logger.info("Dumping metrics to %s", path)
    try:
        write_to_textfile(str(path), metrics.registry)
    except OSError as exc:
        logger.error("Error writing metrics to '%s': %s", path, exc)
