"""SSH文件传输管理模块

提供基于SFTP的单文件上传、下载功能：
- 整文件传输：上传前完整读取本地文件，下载完成后一次性写入本地
- 自动建目录：上传时创建远程父目录，下载时创建本地父目录（失败忽略）
- 原子写入：下载内容先写入同目录临时文件，再替换目标文件
"""
from __future__ import annotations

import os
import posixpath
import stat
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import asyncssh
from loguru import logger

from ssh_session_mcp.command_executor import run_with_deadline
from ssh_session_mcp.constants import DEFAULT_CONNECTION_ID
from ssh_session_mcp.exceptions import (
    LocalReadError,
    LocalWriteError,
    RemoteReadError,
    RemoteWriteError,
)
from ssh_session_mcp.session_registry import SessionRecord, SessionRegistry
from ssh_session_mcp.settings import SSHSessionSettings
from ssh_session_mcp.types import TransferResultDict

Direction = Literal["upload", "download"]


def resolve_local_path(path: str) -> Path:
    return Path(path).expanduser().resolve()


def _remote_parent(remote_path: str) -> str | None:
    parent = posixpath.dirname(remote_path)
    if parent in ("", ".", "/"):
        return None
    return parent


@dataclass(frozen=True)
class TransferResult:
    """文件传输结果数据类。

    Attributes:
        connection_id: 使用的连接ID
        direction: upload 或 download
        local_path: 解析后的本地绝对路径
        remote_path: 远程路径（原样）
        bytes_transferred: 传输字节数
    """

    connection_id: str
    direction: Direction
    local_path: str
    remote_path: str
    bytes_transferred: int

    def render(self) -> str:
        if self.direction == "upload":
            return f"Successfully uploaded {self.local_path} to {self.remote_path}"
        return f"Successfully downloaded {self.remote_path} to {self.local_path}"

    def to_dict(self) -> TransferResultDict:
        return {
            "connection_id": self.connection_id,
            "direction": self.direction,
            "local_path": self.local_path,
            "remote_path": self.remote_path,
            "bytes_transferred": self.bytes_transferred,
        }


class FileTransferManager:
    """文件传输管理器。

    每次调用都在会话上新开一个SFTP通道，与命令执行通道互不影响。
    """

    def __init__(
        self,
        *,
        settings: SSHSessionSettings,
        registry: SessionRegistry,
    ) -> None:
        self._settings = settings
        self._registry = registry

    @property
    def _timeout_ms(self) -> int:
        return int(self._settings.sftp_timeout_seconds * 1000)

    async def upload_file(
        self,
        *,
        local_path: str,
        remote_path: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
        create_dirs: bool = True,
    ) -> TransferResult:
        record = await self._registry.lookup(connection_id)

        local = resolve_local_path(local_path)
        try:
            data = local.read_bytes()
        except OSError as exc:
            raise LocalReadError(
                f"Failed to read local file: {exc}",
                local_path=str(local),
                remote_path=remote_path,
            ) from exc

        await run_with_deadline(
            self._write_remote(record, remote_path, data, create_dirs=create_dirs),
            timeout_ms=self._timeout_ms,
            message=f"Upload timeout after {self._timeout_ms}ms",
        )
        logger.info(f"[{connection_id}] uploaded {local} -> {remote_path} ({len(data)} bytes)")
        return TransferResult(
            connection_id=connection_id,
            direction="upload",
            local_path=str(local),
            remote_path=remote_path,
            bytes_transferred=len(data),
        )

    async def download_file(
        self,
        *,
        remote_path: str,
        local_path: str,
        connection_id: str = DEFAULT_CONNECTION_ID,
        create_dirs: bool = True,
    ) -> TransferResult:
        record = await self._registry.lookup(connection_id)

        local = resolve_local_path(local_path)
        if create_dirs:
            try:
                local.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.warning(f"could not create local directory {local.parent}: {exc}")

        data = await run_with_deadline(
            self._read_remote(record, remote_path),
            timeout_ms=self._timeout_ms,
            message=f"Download timeout after {self._timeout_ms}ms",
        )

        try:
            self._write_local_atomic(local, data)
        except OSError as exc:
            raise LocalWriteError(
                f"Failed to write local file: {exc}",
                local_path=str(local),
                remote_path=remote_path,
            ) from exc

        logger.info(f"[{connection_id}] downloaded {remote_path} -> {local} ({len(data)} bytes)")
        return TransferResult(
            connection_id=connection_id,
            direction="download",
            local_path=str(local),
            remote_path=remote_path,
            bytes_transferred=len(data),
        )

    @staticmethod
    async def _write_remote(
        record: SessionRecord,
        remote_path: str,
        data: bytes,
        *,
        create_dirs: bool,
    ) -> None:
        try:
            async with record.connection.start_sftp_client() as sftp:
                parent = _remote_parent(remote_path)
                if create_dirs and parent is not None:
                    try:
                        await sftp.makedirs(parent, exist_ok=True)
                    except (OSError, asyncssh.SFTPError) as exc:
                        # 目录可能已存在或无权限，交由后续写入决定成败
                        logger.warning(f"could not create remote directory {parent}: {exc}")

                async with sftp.open(remote_path, "wb") as rf:
                    await rf.write(data)
        except (OSError, asyncssh.Error) as exc:
            raise RemoteWriteError(
                f"Upload failed: {exc}",
                remote_path=remote_path,
            ) from exc

    @staticmethod
    async def _read_remote(record: SessionRecord, remote_path: str) -> bytes:
        try:
            async with record.connection.start_sftp_client() as sftp:
                async with sftp.open(remote_path, "rb") as rf:
                    chunk = await rf.read()
        except (OSError, asyncssh.Error) as exc:
            raise RemoteReadError(
                f"Download failed: {exc}",
                remote_path=remote_path,
            ) from exc

        if isinstance(chunk, str):
            return chunk.encode()
        return bytes(chunk)

    @staticmethod
    def _write_local_atomic(local: Path, data: bytes) -> None:
        # 普通方式创建临时文件，新文件权限遵循 umask
        tmp = local.with_name(f".{local.name}.{uuid.uuid4().hex[:8]}.part")
        try:
            tmp.write_bytes(data)
            if local.exists():
                # 覆盖已有文件时沿用其权限
                os.chmod(tmp, stat.S_IMODE(local.stat().st_mode))
            os.replace(tmp, local)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
