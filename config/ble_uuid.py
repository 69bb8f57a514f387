"""GATT identifiers for the BLE signal transport."""

SERVICE_UUID = "6f1b0001-5c3a-4f6e-9d2b-8a41c7e2b5d0"
CHAR_SIGNAL_UUID = "6f1b0002-5c3a-4f6e-9d2b-8a41c7e2b5d0"
