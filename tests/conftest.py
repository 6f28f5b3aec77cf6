from __future__ import annotations

import asyncio
import posixpath
from collections.abc import Callable

import pytest

from ssh_session_mcp.session_registry import SessionRecord, SessionRegistry
from ssh_session_mcp.settings import SSHSessionSettings


class FakeCompleted:
    def __init__(
        self,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_status: int | None = 0,
        exit_signal: tuple[str, bool, str, str] | None = None,
    ) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status = exit_status
        self.exit_signal = exit_signal


class FakeProcess:
    def __init__(self, completed: FakeCompleted, *, delay: float = 0.0) -> None:
        self._completed = completed
        self._delay = delay

    async def wait(self, check: bool = False) -> FakeCompleted:
        if self._delay:
            await asyncio.sleep(self._delay)
        return self._completed


class FakeAttrs:
    def __init__(
        self,
        *,
        permissions: int | None = None,
        size: int | None = None,
        mtime: int | None = None,
    ) -> None:
        self.permissions = permissions
        self.size = size
        self.mtime = mtime


class FakeName:
    def __init__(self, filename: str, attrs: FakeAttrs) -> None:
        self.filename = filename
        self.attrs = attrs


class FakeRemoteFile:
    def __init__(self, store: dict[str, bytearray], path: str, mode: str) -> None:
        self._store = store
        self._path = path
        if "w" in mode:
            self._store[path] = bytearray()
        elif path not in self._store:
            raise FileNotFoundError(path)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def write(self, data: bytes) -> None:
        self._store[self._path].extend(data)

    async def read(self, size: int = -1) -> bytes:
        return bytes(self._store[self._path])


class FakeSFTP:
    def __init__(self, conn: FakeConnection) -> None:
        self._conn = conn

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def makedirs(self, path: str, exist_ok: bool = False) -> None:
        if self._conn.fail_makedirs:
            raise PermissionError(path)
        while path not in ("", "/", "."):
            self._conn.dirs.add(path)
            path = posixpath.dirname(path)

    def open(self, path: str, mode: str) -> FakeRemoteFile:
        parent = posixpath.dirname(path)
        if "w" in mode and parent not in ("", ".", "/") and parent not in self._conn.dirs:
            raise FileNotFoundError(parent)
        return FakeRemoteFile(self._conn.files, path, mode)

    async def readdir(self, path: str) -> list[FakeName]:
        if path not in self._conn.listings:
            raise FileNotFoundError(path)
        return [
            FakeName(".", FakeAttrs(permissions=0o40755)),
            FakeName("..", FakeAttrs(permissions=0o40755)),
            *self._conn.listings[path],
        ]


class FakeConnection:
    """模拟 asyncssh.SSHClientConnection 的假连接对象。"""

    def __init__(
        self,
        *,
        handler: Callable[[str], FakeCompleted] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.closed = False
        self.close_count = 0
        self.commands: list[str] = []
        self.files: dict[str, bytearray] = {}
        self.dirs: set[str] = {"/tmp"}
        self.listings: dict[str, list[FakeName]] = {}
        self.fail_sftp: Exception | None = None
        self.fail_exec: Exception | None = None
        self.fail_makedirs = False
        self.sftp_opened = 0
        self._handler = handler or (lambda _cmd: FakeCompleted())
        self._delay = delay
        self._closed_event = asyncio.Event()

    def is_closed(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True
        self.close_count += 1
        self._closed_event.set()

    def drop(self) -> None:
        """模拟远端断开连接。"""
        self.closed = True
        self._closed_event.set()

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    async def create_process(self, command: str, **_kwargs) -> FakeProcess:
        if self.fail_exec is not None:
            raise self.fail_exec
        self.commands.append(command)
        return FakeProcess(self._handler(command), delay=self._delay)

    def start_sftp_client(self) -> FakeSFTP:
        if self.fail_sftp is not None:
            raise self.fail_sftp
        self.sftp_opened += 1
        return FakeSFTP(self)


def register(registry: SessionRegistry, conn: FakeConnection, connection_id: str = "default") -> SessionRecord:
    """绕过握手，直接把假连接放入注册表。"""
    record = SessionRecord(
        connection_id=connection_id,
        host="10.0.0.5",
        port=22,
        username="ops",
        connection=conn,  # type: ignore[arg-type]
        connected_at=0.0,
    )
    registry._records[connection_id] = record
    return record


@pytest.fixture
def settings() -> SSHSessionSettings:
    return SSHSessionSettings(use_keyring=False, remote_temp_dir="/tmp")


@pytest.fixture
def registry(settings: SSHSessionSettings) -> SessionRegistry:
    return SessionRegistry(settings=settings)
