from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

import asyncssh
from loguru import logger

from ssh_session_mcp.constants import DEFAULT_COMMAND_TIMEOUT_MS, DEFAULT_CONNECTION_ID
from ssh_session_mcp.exceptions import (
    CommandExecutionError,
    CommandTimeoutError,
    NetworkError,
)
from ssh_session_mcp.session_registry import SessionRecord, SessionRegistry
from ssh_session_mcp.types import CommandOutcomeDict

T = TypeVar("T")


def _to_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


@dataclass(frozen=True)
class RemoteCommandOutcome:
    command: str
    exit_code: int | None
    signal: str | None
    stdout: str
    stderr: str

    def render_status(self) -> str:
        exit_code = "unknown" if self.exit_code is None else str(self.exit_code)
        text = f"Exit Code: {exit_code}\n"
        if self.signal:
            text += f"Signal: {self.signal}\n"
        text += f"Output:\n{self.stdout}"
        if self.stderr:
            text += f"\nError Output:\n{self.stderr}"
        return text

    def render(self) -> str:
        return f"Command: {self.command}\n{self.render_status()}"

    def to_dict(self) -> CommandOutcomeDict:
        return {
            "command": self.command,
            "exit_code": self.exit_code,
            "signal": self.signal,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }


async def run_with_deadline(
    awaitable: Awaitable[T],
    *,
    timeout_ms: int,
    message: str,
) -> T:
    """在截止时间内等待操作完成，超时抛出 CommandTimeoutError。

    超时只放弃本地等待，不向远端发送任何取消信号，会话保持注册。

    Raises:
        ValueError: timeout_ms 不是正数，此时操作不会开始
    """
    if timeout_ms <= 0:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise ValueError("timeout must be a positive number of milliseconds")
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        logger.warning(message)
        raise CommandTimeoutError(message, timeout_ms=timeout_ms) from exc


async def run_on_connection(record: SessionRecord, command: str) -> RemoteCommandOutcome:
    """在会话上执行命令，同时读取stdout与stderr直到进程退出。

    Raises:
        CommandExecutionError: 命令通道无法打开
        NetworkError: 会话在执行过程中断开
    """
    conn = record.connection
    try:
        process = await conn.create_process(command, encoding="utf-8", errors="replace")
    except asyncssh.ChannelOpenError as exc:
        raise CommandExecutionError(
            f"Failed to execute command: {exc}", command=command
        ) from exc
    except (asyncssh.DisconnectError, OSError) as exc:
        raise NetworkError(
            f"Connection '{record.connection_id}' lost: {exc}",
            host=record.host,
            port=record.port,
        ) from exc
    except asyncssh.Error as exc:
        raise CommandExecutionError(
            f"Failed to execute command: {exc}", command=command
        ) from exc

    try:
        completed = await process.wait(check=False)
    except (asyncssh.DisconnectError, OSError) as exc:
        raise NetworkError(
            f"Connection '{record.connection_id}' lost: {exc}",
            host=record.host,
            port=record.port,
        ) from exc

    signal: str | None = None
    if completed.exit_signal:
        signal = str(completed.exit_signal[0])

    exit_code = completed.exit_status
    if exit_code is not None and signal is not None and exit_code < 0:
        exit_code = None

    return RemoteCommandOutcome(
        command=command,
        exit_code=exit_code,
        signal=signal,
        stdout=_to_text(completed.stdout),
        stderr=_to_text(completed.stderr),
    )


class CommandExecutor:
    def __init__(self, *, registry: SessionRegistry) -> None:
        self._registry = registry

    async def execute(
        self,
        *,
        command: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
        timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS,
    ) -> RemoteCommandOutcome:
        if not command.strip():
            raise ValueError("command must not be empty")

        record = await self._registry.lookup(connection_id)
        logger.debug(f"[{connection_id}] exec: {command}")
        outcome = await run_with_deadline(
            run_on_connection(record, command),
            timeout_ms=timeout_ms,
            message=f"Command timeout after {timeout_ms}ms",
        )
        logger.debug(f"[{connection_id}] exit={outcome.exit_code} signal={outcome.signal}")
        return outcome
