"""Execution of the configured local command."""

from __future__ import annotations

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Sequence

from config.defaults import MAX_COMMAND_OUTPUT_CHARS

logger = logging.getLogger(__name__)


class CommandRunError(RuntimeError):
    pass


class EmptyCommandError(CommandRunError):
    def __init__(self) -> None:
        super().__init__("empty command given")


class CommandExecutionError(CommandRunError):
    def __init__(self, command: Sequence[str], returncode: int | None, detail: str) -> None:
        super().__init__(f"could not run command {format_command(command)}: {detail}")
        self.command = tuple(command)
        self.returncode = returncode
        self.detail = detail


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str


def format_command(command: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in command)


async def run_command(command: Sequence[str]) -> CommandResult:
    """Run ``command`` to completion; no timeout is applied."""
    if not command:
        raise EmptyCommandError()

    logger.debug("Executing: %s", format_command(command))
    try:
        proc = await asyncio.create_subprocess_exec(
            command[0],
            *command[1:],
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CommandExecutionError(command, None, f"{type(exc).__name__}: {exc}") from exc

    stdout, stderr = await proc.communicate()
    output = _summarize_output(stdout, stderr)
    if proc.returncode != 0:
        detail = f"exit status {proc.returncode}"
        if output:
            detail = f"{detail}: {output}"
        raise CommandExecutionError(command, proc.returncode, detail)
    return CommandResult(returncode=proc.returncode, output=output)


def _summarize_output(stdout: bytes, stderr: bytes) -> str:
    out = stdout.decode("utf-8", errors="ignore").strip()
    err = stderr.decode("utf-8", errors="ignore").strip()
    text = err or out
    if len(text) > MAX_COMMAND_OUTPUT_CHARS:
        text = text[:MAX_COMMAND_OUTPUT_CHARS] + "...(truncated)"
    return text
