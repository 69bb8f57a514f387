"""Lifecycle and dispatch coordinator for shutdown signal handlers."""

from __future__ import annotations

import asyncio
import logging
import signal
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from config.defaults import DEFAULT_HEARTBEAT_INTERVAL_SEC, HANDLER_STOP_TIMEOUT_SEC
from handlers.base import Handler, HandlerStartError
from server.message_channel import MessageChannel
from services.command_runner import CommandRunError, run_command
from services.metrics import ListenerMetrics
from services.verification import VerificationError, VerificationStrategy

CommandRunner = Callable[[Sequence[str]], Awaitable[Any]]

DEFAULT_STOP_SIGNALS = (signal.SIGINT, signal.SIGHUP, signal.SIGTERM)

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    pass


class CenterState(Enum):
    CONSTRUCTED = "constructed"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class CommandCenter:
    """Fans in messages from all handlers and runs the command for verified ones.

    Lifecycle is one way: constructed -> running -> shutting down -> stopped.
    Every handler gets its own start task because ``Handler.start`` may block
    for the lifetime of its transport. A single dispatch worker consumes the
    shared channel, so command executions never overlap.

    With ``strict_handlers`` the first handler start failure stops the center
    and is re-raised from ``run()``; otherwise it is logged and the remaining
    handlers keep serving.
    """

    def __init__(
        self,
        verifier: VerificationStrategy | None,
        handlers: Sequence[Handler],
        command: Sequence[str],
        *,
        metrics: ListenerMetrics | None = None,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SEC,
        strict_handlers: bool = False,
        runner: CommandRunner = run_command,
        handler_stop_timeout: float = HANDLER_STOP_TIMEOUT_SEC,
    ) -> None:
        if verifier is None:
            raise ConfigurationError("no verification strategy provided")
        if not handlers:
            raise ConfigurationError("no handlers provided")
        if not command:
            raise ConfigurationError("no cmd provided")
        if heartbeat_interval <= 0:
            raise ConfigurationError("heartbeat interval must be positive")

        self._verifier = verifier
        self._handlers = tuple(handlers)
        self._command = tuple(command)
        self._metrics = metrics if metrics is not None else ListenerMetrics.create()
        self._heartbeat_interval = heartbeat_interval
        self._strict_handlers = strict_handlers
        self._runner = runner
        self._handler_stop_timeout = handler_stop_timeout

        self._state = CenterState.CONSTRUCTED
        self._stop_requested = asyncio.Event()
        self._shutdown_done = asyncio.Event()
        self._channel: MessageChannel | None = None
        self._start_tasks: list[asyncio.Task[None]] = []
        self._dispatch_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._start_failures: list[HandlerStartError] = []
        self._fatal_error: HandlerStartError | None = None

    @property
    def state(self) -> CenterState:
        return self._state

    @property
    def handlers(self) -> tuple[Handler, ...]:
        return self._handlers

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    @property
    def metrics(self) -> ListenerMetrics:
        return self._metrics

    @property
    def start_failures(self) -> list[HandlerStartError]:
        return list(self._start_failures)

    async def run(self, stop_signals: Sequence[signal.Signals] = DEFAULT_STOP_SIGNALS) -> None:
        """Start, block until a stop signal arrives, then shut everything down."""
        await self.start()
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in stop_signals:
            try:
                loop.add_signal_handler(sig, self.request_stop, f"signal {sig.name}")
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                logger.warning("Can not install handler for %s: %s", sig.name, exc)
                continue
            installed.append(sig)

        try:
            await self._stop_requested.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.shutdown()

        if self._fatal_error is not None:
            raise self._fatal_error

    async def start(self) -> None:
        if self._state is not CenterState.CONSTRUCTED:
            raise RuntimeError(f"command center cannot start from state {self._state.value}")

        channel = MessageChannel()
        self._channel = channel
        for handler in self._handlers:
            logger.info("Starting handler %s", handler.name)
            self._start_tasks.append(
                asyncio.create_task(self._start_handler(handler, channel), name=f"handler-start-{handler.name}")
            )
        self._dispatch_task = asyncio.create_task(self._dispatch_loop(channel), name="dispatch-worker")
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="heartbeat")
        self._state = CenterState.RUNNING

    def request_stop(self, reason: str = "stop request") -> None:
        if self._stop_requested.is_set():
            return
        logger.info("Received %s, shutting down...", reason)
        self._stop_requested.set()

    async def shutdown(self) -> None:
        """Tear everything down once; concurrent callers wait for the first one to finish."""
        if self._state in (CenterState.SHUTTING_DOWN, CenterState.STOPPED):
            await self._shutdown_done.wait()
            return
        if self._state is CenterState.CONSTRUCTED:
            self._state = CenterState.STOPPED
            self._shutdown_done.set()
            return

        self._state = CenterState.SHUTTING_DOWN
        self._stop_requested.set()
        try:
            await self._teardown()
        finally:
            self._shutdown_done.set()
        self._state = CenterState.STOPPED
        logger.info("Command center stopped")

    async def _teardown(self) -> None:
        if self._channel is not None:
            self._channel.close()
        if self._dispatch_task is not None:
            try:
                await self._dispatch_task
            except Exception:  # noqa: BLE001
                logger.exception("Dispatch worker failed")

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._heartbeat_task

        for handler in self._handlers:
            logger.info("Shutting down handler %s", handler.name)
            try:
                await handler.shutdown()
            except Exception:  # noqa: BLE001
                logger.exception("Shutting down handler %s failed", handler.name)

        await self._finish_start_tasks()

    async def _start_handler(self, handler: Handler, channel: MessageChannel) -> None:
        try:
            await handler.start(channel)
        except HandlerStartError as exc:
            self._on_start_failure(handler, exc)
        except Exception as exc:  # noqa: BLE001
            error = HandlerStartError(handler.name, f"{type(exc).__name__}: {exc}")
            error.__cause__ = exc
            self._on_start_failure(handler, error)

    def _on_start_failure(self, handler: Handler, error: HandlerStartError) -> None:
        self._start_failures.append(error)
        if not self._strict_handlers:
            logger.error("%s; continuing with remaining handlers", error)
            return
        logger.error("%s; aborting", error)
        if self._fatal_error is None:
            self._fatal_error = error
        self.request_stop(f"start failure of handler {handler.name}")

    async def _finish_start_tasks(self) -> None:
        pending = [task for task in self._start_tasks if not task.done()]
        if not pending:
            return
        _, stragglers = await asyncio.wait(pending, timeout=self._handler_stop_timeout)
        for task in stragglers:
            logger.warning("%s still running after shutdown, cancelling", task.get_name())
            task.cancel()
        if stragglers:
            await asyncio.gather(*stragglers, return_exceptions=True)

    async def _dispatch_loop(self, channel: MessageChannel) -> None:
        async for message in channel:
            await self._verify_and_run(message)
        logger.debug("Message channel closed and drained, dispatch worker exiting")

    async def _verify_and_run(self, message: str) -> None:
        try:
            self._verifier.verify(message)
        except VerificationError as exc:
            self._metrics.message_verify_errors.inc()
            logger.warning("Received message but could not verify it: %s", exc)
            return
        except Exception:  # noqa: BLE001
            self._metrics.message_verify_errors.inc()
            logger.exception("Verification strategy failed, dropping message")
            return

        logger.info(
            "Received and successfully verified message, running cmd %s with args %s",
            self._command[0],
            list(self._command[1:]),
        )
        try:
            await self._runner(self._command)
        except CommandRunError as exc:
            self._metrics.command_execution_failures.inc()
            logger.error("Could not run command: %s", exc)
        except Exception:  # noqa: BLE001
            self._metrics.command_execution_failures.inc()
            logger.exception("Unexpected failure running command")

    async def _heartbeat_loop(self) -> None:
        while True:
            self._metrics.heartbeat.set_to_current_time()
            await asyncio.sleep(self._heartbeat_interval)
