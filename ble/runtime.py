"""Shared BLE runtime helpers for the Bless-based transport."""

from __future__ import annotations

import asyncio
import importlib
import inspect
from typing import Any, Awaitable, cast


def load_bless_symbols() -> tuple[type[Any], Any, Any]:
    # Imported lazily: bless pulls in the platform BLE backend on import.
    module = importlib.import_module("bless")
    return (
        getattr(module, "BlessServer"),
        getattr(module, "GATTCharacteristicProperties"),
        getattr(module, "GATTAttributePermissions"),
    )


def signal_properties(gatt_props: Any) -> Any:
    props = gatt_props.write
    without_response = getattr(gatt_props, "write_without_response", None)
    if without_response is not None:
        props |= without_response
    return props


async def stop_bless_server(server: Any, timeout: float) -> None:
    stop_fn = getattr(server, "stop", None)
    if not callable(stop_fn):
        return

    result = stop_fn()
    if inspect.isawaitable(result):
        await asyncio.wait_for(cast(Awaitable[Any], result), timeout=timeout)


def decode_write_value(value: Any) -> bytes:
    if isinstance(value, memoryview):
        return value.tobytes()
    return bytes(value)
