"""Project defaults and config key constants."""

APP_NAME = "shutdown-listener"
BUILD_VERSION = "1.2.0"
COMMIT_HASH = "unknown"

CONFIG_ENV_VAR = "SHUTDOWN_LISTENER_CONFIG"

DEFAULT_COMMAND = ("sudo", "systemctl", "poweroff")
DEFAULT_METRICS_ADDR = ":9194"
DEFAULT_HTTP_PATH = "/shutdown"
DEFAULT_BLE_ADAPTER = "hci0"

# Liveness gauge refresh period.
DEFAULT_HEARTBEAT_INTERVAL_SEC = 60.0

# Upper bound for blocking handler start calls to return after shutdown().
HANDLER_STOP_TIMEOUT_SEC = 5.0

MQTT_WAIT_TIMEOUT_SEC = 15.0
MQTT_RECONNECT_DELAY_SEC = 5.0
MQTT_QOS = 1

BLE_STOP_TIMEOUT_SEC = 5.0

# Command output kept for log lines.
MAX_COMMAND_OUTPUT_CHARS = 2000
