"""远程脚本执行模块

将脚本内容暂存到远程主机后执行，支持：
- 自动剥离 Markdown 代码块围栏（```bash ... ```）
- 缺少解释器指令时按 interpreter 补全 shebang
- 临时文件名由当前时间生成，执行后总是删除
- 指定文件名上传执行，可选择保留脚本文件
- 暂存与执行共用同一个截止时间
"""
from __future__ import annotations

import posixpath
import re
import shlex
import time
from collections.abc import Callable
from dataclasses import dataclass

import asyncssh
from loguru import logger

from ssh_session_mcp.command_executor import (
    RemoteCommandOutcome,
    run_on_connection,
    run_with_deadline,
)
from ssh_session_mcp.constants import (
    DEFAULT_CONNECTION_ID,
    DEFAULT_INTERPRETER,
    DEFAULT_SCRIPT_FILENAME,
    DEFAULT_SCRIPT_TIMEOUT_MS,
    PYTHON_INTERPRETERS,
    PYTHON_SHEBANG,
    SHELL_SHEBANG,
)
from ssh_session_mcp.exceptions import ScriptStagingError
from ssh_session_mcp.session_registry import SessionRecord, SessionRegistry
from ssh_session_mcp.settings import SSHSessionSettings
from ssh_session_mcp.types import ScriptOutcomeDict

_CODE_BLOCK_RE = re.compile(r"^```[\w]*\n?([\s\S]*?)\n?```$")


def extract_code_block(script: str) -> str:
    """去除代码块围栏及语言标记，返回去除首尾空白的脚本正文。

    对不带围栏的脚本只做 strip，因此重复调用结果不变。
    """
    stripped = script.strip()
    match = _CODE_BLOCK_RE.match(stripped)
    if match is None:
        return stripped
    return match.group(1).strip()


def is_python(interpreter: str) -> bool:
    return interpreter in PYTHON_INTERPRETERS


def ensure_shebang(content: str, interpreter: str) -> str:
    if content.startswith("#!"):
        return content
    shebang = PYTHON_SHEBANG if is_python(interpreter) else SHELL_SHEBANG
    return f"{shebang}\n{content}"


def build_run_command(
    remote_path: str,
    *,
    cleanup: bool,
    working_dir: str | None = None,
) -> str:
    """组装 chmod + 执行 (+ 删除) 的命令链。

    cleanup 时无论脚本成功与否都删除文件，并以脚本的退出码退出。
    """
    path = shlex.quote(remote_path)
    command = f"chmod +x {path} && {path}"
    if working_dir:
        command = f"cd {shlex.quote(working_dir)} && {command}"
    if cleanup:
        command = f"{command}; status=$?; rm -f {path}; exit $status"
    return command


@dataclass(frozen=True)
class ScriptOutcome:
    interpreter: str
    remote_path: str
    cleaned_up: bool
    outcome: RemoteCommandOutcome
    filename: str | None = None

    @property
    def exit_code(self) -> int | None:
        return self.outcome.exit_code

    def render(self) -> str:
        if self.filename is None:
            return f"Script executed with {self.interpreter}\n{self.outcome.render_status()}"

        text = (
            f"Uploaded and executed: {self.filename}\n"
            f"Interpreter: {self.interpreter}\n"
            f"{self.outcome.render_status()}"
        )
        if self.cleaned_up:
            return text + "\nScript file removed after execution."
        return text + f"\nScript file preserved at: {self.remote_path}"

    def to_dict(self) -> ScriptOutcomeDict:
        return {
            "interpreter": self.interpreter,
            "remote_path": self.remote_path,
            "cleaned_up": self.cleaned_up,
            "outcome": self.outcome.to_dict(),
        }


class ScriptRunner:
    def __init__(
        self,
        *,
        settings: SSHSessionSettings,
        registry: SessionRegistry,
        time_ns_provider: Callable[[], int] = time.time_ns,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._time_ns = time_ns_provider

    async def execute_inline(
        self,
        *,
        script: str,
        interpreter: str = DEFAULT_INTERPRETER,
        connection_id: str = DEFAULT_CONNECTION_ID,
        timeout_ms: int = DEFAULT_SCRIPT_TIMEOUT_MS,
        working_dir: str | None = None,
    ) -> ScriptOutcome:
        content = self._prepare(script, interpreter)
        record = await self._registry.lookup(connection_id)

        suffix = "py" if is_python(interpreter) else "sh"
        remote_path = posixpath.join(
            self._settings.remote_temp_dir, f"mcp_temp_{self._time_ns()}.{suffix}"
        )
        command = build_run_command(remote_path, cleanup=True, working_dir=working_dir)

        outcome = await run_with_deadline(
            self._stage_and_run(record, remote_path, content, command),
            timeout_ms=timeout_ms,
            message=f"Script timeout after {timeout_ms}ms",
        )
        return ScriptOutcome(
            interpreter=interpreter,
            remote_path=remote_path,
            cleaned_up=True,
            outcome=outcome,
        )

    async def upload_and_execute(
        self,
        *,
        script: str,
        filename: str = DEFAULT_SCRIPT_FILENAME,
        interpreter: str = DEFAULT_INTERPRETER,
        connection_id: str = DEFAULT_CONNECTION_ID,
        cleanup: bool = True,
        timeout_ms: int = DEFAULT_SCRIPT_TIMEOUT_MS,
    ) -> ScriptOutcome:
        # 只取文件名部分，防止路径穿越到暂存目录之外
        name = posixpath.basename(filename.replace("\\", "/"))
        if name in ("", ".", ".."):
            raise ValueError(f"invalid script filename: {filename!r}")

        content = self._prepare(script, interpreter)
        record = await self._registry.lookup(connection_id)

        remote_path = posixpath.join(self._settings.remote_temp_dir, name)
        command = build_run_command(remote_path, cleanup=cleanup)

        outcome = await run_with_deadline(
            self._stage_and_run(record, remote_path, content, command),
            timeout_ms=timeout_ms,
            message=f"Upload and execute timeout after {timeout_ms}ms",
        )
        return ScriptOutcome(
            interpreter=interpreter,
            remote_path=remote_path,
            cleaned_up=cleanup,
            outcome=outcome,
            filename=filename,
        )

    @staticmethod
    def _prepare(script: str, interpreter: str) -> str:
        content = extract_code_block(script)
        if not content:
            raise ValueError("script must not be empty")
        return ensure_shebang(content, interpreter)

    async def _stage_and_run(
        self,
        record: SessionRecord,
        remote_path: str,
        content: str,
        command: str,
    ) -> RemoteCommandOutcome:
        await self._stage(record, remote_path, content)
        logger.debug(f"[{record.connection_id}] staged {remote_path}, running")
        return await run_on_connection(record, command)

    @staticmethod
    async def _stage(record: SessionRecord, remote_path: str, content: str) -> None:
        try:
            async with record.connection.start_sftp_client() as sftp:
                async with sftp.open(remote_path, "wb") as rf:
                    await rf.write(content.encode("utf-8"))
        except (OSError, asyncssh.Error) as exc:
            raise ScriptStagingError(
                f"Failed to upload script: {exc}",
                remote_path=remote_path,
            ) from exc
