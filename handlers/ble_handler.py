"""BLE GATT transport: each write to the signal characteristic is one message."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ble.runtime import decode_write_value, load_bless_symbols, signal_properties, stop_bless_server
from config.ble_uuid import CHAR_SIGNAL_UUID, SERVICE_UUID
from config.defaults import BLE_STOP_TIMEOUT_SEC
from handlers.base import HandlerStartError, OneShotGuard, forward
from server.message_channel import MessageChannel

logger = logging.getLogger(__name__)


class BleHandler:
    name = "ble"

    def __init__(self, device_name: str, adapter: str | None = None) -> None:
        if not device_name:
            raise ValueError("no device name given")
        self.device_name = device_name
        self.adapter = adapter
        self.server: Any | None = None
        self._guard = OneShotGuard(self.name)
        self._outbound: MessageChannel | None = None
        self._stopped = False

    async def start(self, outbound: MessageChannel) -> None:
        self._guard.claim()
        if self._stopped:
            return
        try:
            bless_server_cls, gatt_props, gatt_perms = load_bless_symbols()
        except Exception as exc:  # noqa: BLE001
            raise HandlerStartError(self.name, f"failed to load bless runtime symbols: {exc}") from exc

        server = bless_server_cls(name=self.device_name, loop=asyncio.get_running_loop(), adapter=self.adapter)
        try:
            await server.add_new_service(SERVICE_UUID)
            await server.add_new_characteristic(
                SERVICE_UUID,
                CHAR_SIGNAL_UUID,
                properties=signal_properties(gatt_props),
                permissions=gatt_perms.writeable,
                value=bytearray(),
            )
        except Exception as exc:  # noqa: BLE001
            await self._stop_server(server)
            raise HandlerStartError(self.name, f"GATT service setup failed: {exc}") from exc
        if self._stopped:
            await self._stop_server(server)
            return

        setattr(server, "write_request_func", self._handle_write_request)
        self._outbound = outbound
        try:
            await server.start()
        except Exception as exc:  # noqa: BLE001
            self._outbound = None
            await self._stop_server(server)
            adapter_name = self.adapter or "<auto>"
            raise HandlerStartError(
                self.name,
                f"failed to register BLE advertisement on adapter {adapter_name}: {exc}. "
                "Try: sudo, `hciconfig hci0 up`, and `systemctl restart bluetooth`.",
            ) from exc
        if self._stopped:
            # shutdown() ran while advertising was being registered
            self._outbound = None
            await self._stop_server(server)
            return

        self.server = server
        logger.info("BLE signal service advertising as %s", self.device_name)

    async def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._outbound = None
        if self.server is None:
            return

        server = self.server
        self.server = None
        await self._stop_server(server)

    async def _stop_server(self, server: Any) -> None:
        logger.info("Stopping BLE advertisement")
        try:
            await stop_bless_server(server, timeout=BLE_STOP_TIMEOUT_SEC)
            logger.info("BLE advertisement stopped")
        except Exception as exc:  # noqa: BLE001
            logger.warning("BLE shutdown failed: %s", exc)

    def _handle_write_request(self, _characteristic: Any, value: Any, **_kwargs: Any) -> None:
        try:
            raw = decode_write_value(value)
        except (TypeError, ValueError) as exc:
            logger.warning("[BLE RX] undecodable write: %s", exc)
            return
        if not forward(self._outbound, raw):
            logger.warning("[BLE RX] dropping write, handler is not accepting messages")
            return
        logger.debug("[BLE RX] queued %d bytes", len(raw))
