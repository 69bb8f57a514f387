"""HTTP POST transport served by uvicorn."""

from __future__ import annotations

import contextlib
import logging
import socket
from typing import Iterator

import uvicorn
from fastapi import FastAPI, Request, Response
from starlette.requests import ClientDisconnect

from config.defaults import APP_NAME, DEFAULT_HTTP_PATH
from config.settings import SettingsError, parse_listen_addr
from handlers.base import HandlerStartError, OneShotGuard, forward
from server.message_channel import MessageChannel
from services.metrics import ListenerMetrics

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    # Process signals belong to the command center, not to uvicorn.
    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen()
    except OSError:
        sock.close()
        raise
    return sock


class HttpHandler:
    name = "http"

    def __init__(self, addr: str, path: str = DEFAULT_HTTP_PATH, metrics: ListenerMetrics | None = None) -> None:
        if not addr:
            raise ValueError("no addr given")
        if not path:
            raise ValueError("no path given")
        try:
            self._host, self._port = parse_listen_addr(addr)
        except SettingsError as exc:
            raise ValueError(str(exc)) from exc
        self._addr = addr
        self._path = path
        self._metrics = metrics
        self._guard = OneShotGuard(self.name)
        self._outbound: MessageChannel | None = None
        self._server: _EmbeddedServer | None = None
        self._stopped = False
        self.app = self._build_app()

    async def start(self, outbound: MessageChannel) -> None:
        """Serve until shutdown() is called; only returns early on bind failure."""
        self._guard.claim()
        if self._stopped:
            return
        try:
            sock = bind_socket(self._host, self._port)
        except OSError as exc:
            raise HandlerStartError(self.name, f"can not listen on {self._addr}: {exc}") from exc

        config = uvicorn.Config(self.app, log_config=None, access_log=False, lifespan="off")
        self._server = _EmbeddedServer(config)
        self._outbound = outbound
        logger.info("Listening for shutdown requests on http://%s:%d%s", self._host, self._port, self._path)
        try:
            await self._server.serve(sockets=[sock])
        finally:
            self._outbound = None
            sock.close()
        logger.info("Stopped http listener on %s", self._addr)

    async def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down http handler...")
        self._outbound = None
        if self._server is not None:
            self._server.should_exit = True

    def _build_app(self) -> FastAPI:
        app = FastAPI(title=APP_NAME, docs_url=None, redoc_url=None, openapi_url=None)

        @app.post(self._path)
        async def receive_signal(request: Request) -> Response:
            try:
                body = await request.body()
            except ClientDisconnect as exc:
                if self._metrics is not None:
                    self._metrics.http_request_errors.inc()
                logger.warning("Could not read request body from %s: %s", _peer(request), exc)
                return Response(status_code=400)

            if not forward(self._outbound, body):
                logger.warning("Dropping http message from %s, handler is not accepting messages", _peer(request))
                return Response(status_code=503)
            logger.debug("Queued http message from %s (%d bytes)", _peer(request), len(body))
            return Response(status_code=202)

        return app


def _peer(request: Request) -> str:
    return request.client.host if request.client else "-"
