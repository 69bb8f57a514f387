from __future__ import annotations

import asyncio
import socket
import unittest

import httpx

from handlers.base import HandlerStartError
from handlers.http_handler import HttpHandler
from server.message_channel import MessageChannel
from services.metrics import ListenerMetrics


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class HttpHandlerRouteTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.handler = HttpHandler("127.0.0.1:0", "/shutdown", metrics=ListenerMetrics.create())
        self.client = httpx.AsyncClient(transport=httpx.ASGITransport(app=self.handler.app), base_url="http://listener")

    async def asyncTearDown(self) -> None:
        await self.client.aclose()

    async def test_post_is_forwarded_verbatim(self) -> None:
        channel = MessageChannel()
        self.handler._outbound = channel

        resp = await self.client.post("/shutdown", content=b"  poweroff now\n")

        self.assertEqual(resp.status_code, 202)
        self.assertEqual(await asyncio.wait_for(channel.receive(), 1.0), "  poweroff now\n")

    async def test_post_before_start_is_refused(self) -> None:
        with self.assertLogs("handlers.http_handler", level="WARNING"):
            resp = await self.client.post("/shutdown", content=b"poweroff")
        self.assertEqual(resp.status_code, 503)

    async def test_post_after_channel_closed_is_refused(self) -> None:
        channel = MessageChannel()
        channel.close()
        self.handler._outbound = channel

        with self.assertLogs("handlers.http_handler", level="WARNING"):
            resp = await self.client.post("/shutdown", content=b"poweroff")
        self.assertEqual(resp.status_code, 503)

    async def test_other_paths_and_methods_are_not_served(self) -> None:
        self.handler._outbound = MessageChannel()
        self.assertEqual((await self.client.post("/other", content=b"x")).status_code, 404)
        self.assertEqual((await self.client.get("/shutdown")).status_code, 405)


class HttpHandlerLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def test_serves_until_shutdown(self) -> None:
        port = _free_port()
        handler = HttpHandler(f"127.0.0.1:{port}", "/shutdown")
        channel = MessageChannel()
        start_task = asyncio.create_task(handler.start(channel))

        resp = None
        async with httpx.AsyncClient(trust_env=False) as client:
            for _ in range(100):
                try:
                    resp = await client.post(f"http://127.0.0.1:{port}/shutdown", content=b"ping")
                    break
                except httpx.TransportError:
                    await asyncio.sleep(0.05)

        self.assertIsNotNone(resp)
        self.assertEqual(resp.status_code, 202)  # type: ignore[union-attr]
        self.assertEqual(await asyncio.wait_for(channel.receive(), 1.0), "ping")

        self.assertFalse(start_task.done())
        await handler.shutdown()
        await asyncio.wait_for(start_task, timeout=5.0)

    async def test_port_in_use_raises_start_error(self) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
            occupied.bind(("127.0.0.1", 0))
            occupied.listen()
            port = occupied.getsockname()[1]

            handler = HttpHandler(f"127.0.0.1:{port}", "/shutdown")
            with self.assertRaises(HandlerStartError) as exc:
                await handler.start(MessageChannel())

        self.assertEqual(exc.exception.handler_name, "http")
        self.assertIn(str(port), str(exc.exception))

    async def test_second_start_is_rejected(self) -> None:
        handler = HttpHandler("127.0.0.1:0", "/shutdown")
        await handler.shutdown()
        await handler.start(MessageChannel())
        with self.assertRaises(HandlerStartError):
            await handler.start(MessageChannel())


class HttpHandlerConstructionTests(unittest.TestCase):
    def test_requires_addr_and_path(self) -> None:
        with self.assertRaises(ValueError):
            HttpHandler("", "/shutdown")
        with self.assertRaises(ValueError):
            HttpHandler(":8080", "")
        with self.assertRaises(ValueError):
            HttpHandler("no-port", "/shutdown")


if __name__ == "__main__":
    unittest.main()
