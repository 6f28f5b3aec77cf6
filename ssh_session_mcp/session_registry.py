"""SSH会话注册表模块

按调用方指定的连接ID管理存活的SSH会话，支持：
- 每个连接ID至多对应一个会话（握手期间即占用该ID）
- 私钥/密码认证，私钥优先；未提供凭据时回退到keyring
- 后台监听会话关闭事件，远端断开后自动移除记录
- 查找时剔除已关闭的会话，保证过期ID不会解析到死连接
- close_all() 统一清理，供服务器生命周期结束时调用
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import asyncssh
from loguru import logger

from ssh_session_mcp.auth_manager import AuthManager, SSHCredentials
from ssh_session_mcp.constants import DEFAULT_CONNECTION_ID, DEFAULT_SSH_PORT
from ssh_session_mcp.exceptions import (
    AuthenticationError,
    ConnectionExistsError,
    ConnectionNotFoundError,
    NetworkError,
)
from ssh_session_mcp.settings import SSHSessionSettings
from ssh_session_mcp.types import SessionRecordDict

NO_ACTIVE_CONNECTIONS = "No active connections"


def format_host(host: str) -> str:
    """为不带方括号的IPv6字面量补上方括号，其余形式原样返回。"""
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


def _transport_host(host: str) -> str:
    # asyncssh 的地址解析不接受方括号
    if host.startswith("[") and host.endswith("]"):
        return host[1:-1]
    return host


@dataclass(frozen=True)
class SessionRecord:
    """连接ID与一个存活SSH会话的绑定。

    Attributes:
        connection_id: 调用方指定的连接ID
        host: 规范化后的主机地址（IPv6带方括号）
        port: SSH端口
        username: 登录用户名
        connection: asyncssh 客户端连接
        connected_at: 建立时间（epoch秒）
    """

    connection_id: str
    host: str
    port: int
    username: str
    connection: asyncssh.SSHClientConnection
    connected_at: float

    def render_connected(self) -> str:
        return (
            f"Successfully connected to {self.host}:{self.port} as {self.username} "
            f"(connection: {self.connection_id})"
        )

    def to_dict(self) -> SessionRecordDict:
        return {
            "connection_id": self.connection_id,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "connected_at": self.connected_at,
        }


def render_connections(connection_ids: list[str]) -> str:
    if not connection_ids:
        return NO_ACTIVE_CONNECTIONS
    return f"Active connections: {', '.join(connection_ids)}"


class SessionRegistry:
    """连接ID到SSH会话的内存注册表。

    注册表是"连接是否打开"的唯一事实来源。所有对记录表的修改与
    查找都在同一把 asyncio.Lock 下进行，查找不会看到写入一半的记录。

    Attributes:
        _settings: 服务配置
        _auth: 可选的keyring凭据管理器
    """

    def __init__(
        self,
        *,
        settings: SSHSessionSettings,
        auth: AuthManager | None = None,
        time_provider: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._auth = auth
        self._time = time_provider

        self._lock = asyncio.Lock()
        self._records: dict[str, SessionRecord] = {}
        # 正在握手的连接ID，避免并发connect同一ID
        self._connecting: set[str] = set()
        self._watchers: dict[str, asyncio.Task[None]] = {}

    async def connect(
        self,
        *,
        host: str,
        username: str,
        port: int = DEFAULT_SSH_PORT,
        password: str | None = None,
        private_key_path: str | None = None,
        passphrase: str | None = None,
        connection_id: str = DEFAULT_CONNECTION_ID,
    ) -> SessionRecord:
        """建立新会话并以 connection_id 注册。

        Raises:
            ConnectionExistsError: 连接ID已存在或正在建立
            CredentialError: 未提供任何凭据，或私钥不可用
            AuthenticationError: 远端拒绝认证
            NetworkError: 主机不可达、握手失败或超时
        """
        async with self._lock:
            self._purge_dead_locked()
            if connection_id in self._records or connection_id in self._connecting:
                raise ConnectionExistsError(connection_id)
            self._connecting.add(connection_id)

        display_host = format_host(host)
        try:
            credentials = self._resolve_credentials(
                host=host,
                username=username,
                password=password,
                private_key_path=private_key_path,
                passphrase=passphrase,
            )
            conn = await self._open(host=display_host, port=port, credentials=credentials)
            try:
                record = SessionRecord(
                    connection_id=connection_id,
                    host=display_host,
                    port=port,
                    username=username,
                    connection=conn,
                    connected_at=self._time(),
                )
                async with self._lock:
                    self._records[connection_id] = record
                    self._watchers[connection_id] = asyncio.create_task(
                        self._watch_closed(record)
                    )
            except BaseException:
                # 握手已完成但未登记（如被取消），连接不能遗留
                await self._close_quietly(conn)
                raise
        finally:
            self._connecting.discard(connection_id)

        logger.info(
            f"connected {connection_id}: {username}@{display_host}:{port} "
            f"({credentials.auth_mode} auth)"
        )
        return record

    async def lookup(self, connection_id: str) -> SessionRecord:
        """按ID查找存活会话。

        返回的记录并不保证在后续多步操作中一直有效，调用方对连接的
        每次操作都可能因会话关闭而失败。

        Raises:
            ConnectionNotFoundError: ID不存在或会话已关闭
        """
        async with self._lock:
            self._purge_dead_locked()
            record = self._records.get(connection_id)
        if record is None:
            raise ConnectionNotFoundError(connection_id)
        return record

    async def disconnect(self, connection_id: str) -> SessionRecord:
        """关闭会话并移除记录，重复调用会再次抛出 ConnectionNotFoundError。"""
        async with self._lock:
            record = self._records.pop(connection_id, None)
            watcher = self._watchers.pop(connection_id, None)

        if record is None:
            raise ConnectionNotFoundError(connection_id)

        if watcher is not None:
            watcher.cancel()
        await self._close_quietly(record.connection)
        logger.info(f"disconnected {connection_id}")
        return record

    async def list_ids(self) -> list[str]:
        async with self._lock:
            self._purge_dead_locked()
            return list(self._records)

    async def close_all(self) -> int:
        """关闭全部会话并停止后台监听任务。

        Returns:
            被关闭的会话数量
        """
        async with self._lock:
            records = list(self._records.values())
            watchers = list(self._watchers.values())
            self._records.clear()
            self._watchers.clear()

        for watcher in watchers:
            watcher.cancel()
        await asyncio.gather(*watchers, return_exceptions=True)

        await asyncio.gather(
            *[self._close_quietly(record.connection) for record in records],
            return_exceptions=True,
        )
        if records:
            logger.info(f"closed {len(records)} session(s)")
        return len(records)

    def _resolve_credentials(
        self,
        *,
        host: str,
        username: str,
        password: str | None,
        private_key_path: str | None,
        passphrase: str | None,
    ) -> SSHCredentials:
        credentials = SSHCredentials(
            host=host,
            username=username,
            password=password,
            private_key_path=private_key_path,
            passphrase=passphrase,
        )
        if (
            credentials.auth_mode == "none"
            and self._auth is not None
            and self._settings.use_keyring
        ):
            stored = self._auth.get_credentials(host=host, username=username)
            credentials = SSHCredentials(
                host=host,
                username=username,
                password=stored.password,
                private_key_path=stored.private_key_path,
                passphrase=passphrase,
            )
        credentials.require_mode()
        return credentials

    async def _open(
        self,
        *,
        host: str,
        port: int,
        credentials: SSHCredentials,
    ) -> asyncssh.SSHClientConnection:
        """创建新的SSH连接。

        私钥在此处本地解密，失败时不会发起任何网络请求。

        Raises:
            CredentialError: 私钥读取失败
            AuthenticationError: 认证被拒绝
            NetworkError: 其他连接失败
        """
        options: dict[str, Any] = {
            "host": _transport_host(host),
            "port": port,
            "username": credentials.username,
            "known_hosts": (
                str(self._settings.known_hosts) if self._settings.known_hosts else None
            ),
        }

        if credentials.require_mode() == "key":
            options["client_keys"] = [credentials.load_client_key()]
            options["preferred_auth"] = "publickey"
        else:
            options["password"] = credentials.password
            options["preferred_auth"] = "keyboard-interactive,password"

        timeout = self._settings.connect_timeout_seconds
        try:
            connect_task = asyncssh.connect(**options)
            if timeout is None:
                return await connect_task
            return await asyncio.wait_for(connect_task, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"SSH connection failed: timed out after {timeout}s",
                host=host,
                port=port,
            ) from exc
        except asyncssh.PermissionDenied as exc:
            raise AuthenticationError(
                f"SSH connection failed: {exc}",
                host=host,
                port=port,
            ) from exc
        except (OSError, asyncssh.Error) as exc:
            raise NetworkError(
                f"SSH connection failed: {exc}",
                host=host,
                port=port,
            ) from exc

    async def _watch_closed(self, record: SessionRecord) -> None:
        """等待会话关闭，并从注册表中移除仍指向它的记录。"""
        try:
            await record.connection.wait_closed()
        except Exception as exc:
            logger.debug(f"wait_closed raised for {record.connection_id}: {exc}")

        async with self._lock:
            if self._records.get(record.connection_id) is record:
                del self._records[record.connection_id]
                self._watchers.pop(record.connection_id, None)
                logger.warning(f"connection {record.connection_id} closed by peer")

    def _purge_dead_locked(self) -> None:
        dead = [
            cid
            for cid, record in self._records.items()
            if self._is_connection_dead(record.connection)
        ]
        for cid in dead:
            self._records.pop(cid, None)
            watcher = self._watchers.pop(cid, None)
            if watcher is not None:
                watcher.cancel()
            logger.warning(f"dropped stale connection {cid}")

    @staticmethod
    def _is_connection_dead(conn: asyncssh.SSHClientConnection) -> bool:
        try:
            if hasattr(conn, "is_closed"):
                return bool(conn.is_closed())
        except Exception:
            return True
        return False

    @staticmethod
    async def _close_quietly(conn: asyncssh.SSHClientConnection) -> None:
        try:
            conn.close()
            await conn.wait_closed()
        except Exception as exc:
            logger.debug(f"error while closing connection: {exc}")
