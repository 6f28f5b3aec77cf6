"""SSH Session MCP Server 模块

本模块提供基于 MCP (Model Context Protocol) 的多会话SSH工具集。
支持以下功能：
- 命名连接管理（建立、断开、列出）
- 远程命令执行（带超时）
- 脚本执行（内联临时脚本、指定文件名上传执行）
- SFTP 文件上传/下载
- 远程目录列表（简略/详细）
- 凭据管理（keyring存储）

使用方式：
    通过 stdio 启动 MCP 服务器，供 Claude Desktop 等客户端调用。
"""
from __future__ import annotations

import sys
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from io import TextIOWrapper
from pathlib import Path
from tempfile import gettempdir
from typing import Any, BinaryIO, Literal, cast

import anyio
from loguru import logger
from mcp.server.fastmcp import FastMCP
from mcp.server.stdio import stdio_server

from ssh_session_mcp.auth_manager import AuthManager
from ssh_session_mcp.command_executor import CommandExecutor
from ssh_session_mcp.constants import (
    DEFAULT_CONNECTION_ID,
    DEFAULT_INTERPRETER,
    DEFAULT_LIST_PATH,
    DEFAULT_SCRIPT_FILENAME,
    DEFAULT_SSH_PORT,
)
from ssh_session_mcp.directory_manager import DirectoryManager
from ssh_session_mcp.file_transfer_manager import FileTransferManager
from ssh_session_mcp.script_runner import ScriptRunner
from ssh_session_mcp.session_registry import SessionRegistry, render_connections
from ssh_session_mcp.settings import SSHSessionSettings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

STARTUP_ERROR_LOG = "ssh-session-mcp-startup-error.log"


def _utf8_stream(binary: BinaryIO) -> anyio.AsyncFile[str]:
    return anyio.wrap_file(TextIOWrapper(binary, encoding="utf-8", errors="replace"))


def _record_fatal_error() -> Path:
    """stdout 被 MCP 协议占用，致命错误的堆栈追加到临时目录下的日志文件。"""
    error_path = Path(gettempdir()) / STARTUP_ERROR_LOG
    with error_path.open("a", encoding="utf-8") as f:
        f.write(f"\n==== {datetime.now().isoformat(timespec='seconds')} ====\n")
        f.write(traceback.format_exc())
    return error_path


def run_stdio_server(server: FastMCP) -> None:
    """以 UTF-8 stdio 运行服务器直到客户端断开。

    Ctrl+C 视为正常退出；其他异常记录到启动错误日志后继续抛出。
    """

    async def _serve() -> None:
        stdin = _utf8_stream(sys.stdin.buffer)
        stdout = _utf8_stream(sys.stdout.buffer)
        async with stdio_server(stdin=stdin, stdout=stdout) as (read_stream, write_stream):
            lowlevel = cast(Any, server)._mcp_server
            await lowlevel.run(
                read_stream,
                write_stream,
                lowlevel.create_initialization_options(),
            )

    try:
        anyio.run(_serve)
    except KeyboardInterrupt:
        logger.info("server stopped by user")
    except Exception:
        error_path = _record_fatal_error()
        logger.exception(f"server terminated, traceback appended to {error_path}")
        raise


def create_mcp_server(
    *,
    settings: SSHSessionSettings,
    registry: SessionRegistry | None = None,
) -> FastMCP:
    auth = AuthManager(service_name=settings.keyring_service)
    registry = registry or SessionRegistry(settings=settings, auth=auth)
    executor = CommandExecutor(registry=registry)
    scripts = ScriptRunner(settings=settings, registry=registry)
    transfer = FileTransferManager(settings=settings, registry=registry)
    directory = DirectoryManager(settings=settings, registry=registry)

    @asynccontextmanager
    async def lifespan(_app: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await registry.close_all()

    mcp = FastMCP(
        name="ssh-session-mcp",
        instructions="Named multi-session SSH: connect, run commands and scripts, transfer files",
        log_level=cast(LogLevel, settings.log_level),
        lifespan=lifespan,
    )

    @mcp.tool()
    async def ssh_connect(
        *,
        host: str,
        username: str,
        port: int = DEFAULT_SSH_PORT,
        password: str | None = None,
        private_key: str | None = None,
        passphrase: str | None = None,
        connection_id: str = DEFAULT_CONNECTION_ID,
    ) -> str:
        """Connect to an SSH server using password or SSH key authentication.

        Supports IPv4 and IPv6. If both a key and a password are given the
        key is used. With neither, credentials stored via
        ssh_store_credentials are tried.

        Args:
            host: SSH server hostname or IP address (IPv4 or IPv6)
            username: Username for SSH authentication
            port: SSH server port, default 22
            password: Password for authentication (if using password auth)
            private_key: Path to private SSH key file (if using key auth)
            passphrase: Passphrase for an encrypted private key
            connection_id: Unique identifier for this connection
        """
        record = await registry.connect(
            host=host,
            username=username,
            port=port,
            password=password,
            private_key_path=private_key,
            passphrase=passphrase,
            connection_id=connection_id,
        )
        return record.render_connected()

    @mcp.tool()
    async def ssh_execute(
        *,
        command: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
        timeout: int | None = None,
    ) -> str:
        """Execute a command on an established SSH connection.

        A non-zero exit code is reported in the result, not as an error.

        Args:
            command: Command to execute on the remote server
            connection_id: Connection ID to use
            timeout: Command timeout in milliseconds (default 30000)
        """
        outcome = await executor.execute(
            command=command,
            connection_id=connection_id,
            timeout_ms=settings.command_timeout_ms if timeout is None else timeout,
        )
        return outcome.render()

    @mcp.tool()
    async def ssh_disconnect(*, connection_id: str = DEFAULT_CONNECTION_ID) -> str:
        """Disconnect from an SSH server.

        Args:
            connection_id: Connection ID to disconnect
        """
        await registry.disconnect(connection_id)
        return f"Disconnected from connection: {connection_id}"

    @mcp.tool()
    async def ssh_list_connections() -> str:
        """List all active SSH connections."""
        return render_connections(await registry.list_ids())

    @mcp.tool()
    async def ssh_execute_script(
        *,
        script: str,
        interpreter: str = DEFAULT_INTERPRETER,
        connection_id: str = DEFAULT_CONNECTION_ID,
        timeout: int | None = None,
        working_dir: str | None = None,
    ) -> str:
        """Execute a multi-line script or code block on an SSH connection.

        Triple-backtick code blocks (```bash, ```python, ...) are unwrapped
        automatically. The script is staged to a temporary file, run and
        removed.

        Args:
            script: Script or code block to execute
            interpreter: Script interpreter (bash, sh, python, python3, ...)
            connection_id: Connection ID to use
            timeout: Script timeout in milliseconds (default 60000)
            working_dir: Working directory to execute the script in
        """
        result = await scripts.execute_inline(
            script=script,
            interpreter=interpreter,
            connection_id=connection_id,
            timeout_ms=settings.script_timeout_ms if timeout is None else timeout,
            working_dir=working_dir,
        )
        return result.render()

    @mcp.tool()
    async def ssh_upload_and_execute(
        *,
        script: str,
        filename: str = DEFAULT_SCRIPT_FILENAME,
        interpreter: str = DEFAULT_INTERPRETER,
        connection_id: str = DEFAULT_CONNECTION_ID,
        cleanup: bool = True,
        timeout: int | None = None,
    ) -> str:
        """Upload a script file and execute it on the remote server.

        Args:
            script: Script content to upload and execute
            filename: Filename for the script on the remote server
            interpreter: Script interpreter (bash, python, ...)
            connection_id: Connection ID to use
            cleanup: Remove the script file after execution
            timeout: Execution timeout in milliseconds (default 60000)
        """
        result = await scripts.upload_and_execute(
            script=script,
            filename=filename,
            interpreter=interpreter,
            connection_id=connection_id,
            cleanup=cleanup,
            timeout_ms=settings.script_timeout_ms if timeout is None else timeout,
        )
        return result.render()

    @mcp.tool()
    async def ssh_upload_file(
        *,
        local_path: str,
        remote_path: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
        create_dirs: bool = True,
    ) -> str:
        """Upload a file to the remote server via SFTP.

        Args:
            local_path: Local file path to upload
            remote_path: Remote destination path
            connection_id: Connection ID to use
            create_dirs: Create remote directories if they don't exist
        """
        result = await transfer.upload_file(
            local_path=local_path,
            remote_path=remote_path,
            connection_id=connection_id,
            create_dirs=create_dirs,
        )
        return result.render()

    @mcp.tool()
    async def ssh_download_file(
        *,
        remote_path: str,
        local_path: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
        create_dirs: bool = True,
    ) -> str:
        """Download a file from the remote server via SFTP.

        Args:
            remote_path: Remote file path to download
            local_path: Local destination path
            connection_id: Connection ID to use
            create_dirs: Create local directories if they don't exist
        """
        result = await transfer.download_file(
            remote_path=remote_path,
            local_path=local_path,
            connection_id=connection_id,
            create_dirs=create_dirs,
        )
        return result.render()

    @mcp.tool()
    async def ssh_list_files(
        *,
        remote_path: str = DEFAULT_LIST_PATH,
        connection_id: str = DEFAULT_CONNECTION_ID,
        detailed: bool = False,
    ) -> str:
        """List files and directories on the remote server.

        Args:
            remote_path: Remote directory path to list
            connection_id: Connection ID to use
            detailed: Show permissions, size and modification time
        """
        listing = await directory.list_directory(
            remote_path=remote_path,
            connection_id=connection_id,
            detailed=detailed,
        )
        return listing.render()

    @mcp.tool()
    def ssh_store_credentials(
        *,
        host: str,
        username: str,
        password: str | None = None,
        private_key: str | None = None,
    ) -> str:
        """Store SSH credentials in the system keyring.

        Later ssh_connect calls for the same host and username may omit
        password and private_key.

        Args:
            host: SSH server hostname or IP address
            username: SSH username
            password: Password to store
            private_key: Path to a private key file to store
        """
        auth.store_credentials(
            host=host,
            username=username,
            password=password,
            private_key_path=private_key,
        )
        return f"Stored credentials for {username}@{host}"

    return mcp
