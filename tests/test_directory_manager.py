import asyncssh
import pytest
from conftest import FakeAttrs, FakeConnection, FakeName, register

from ssh_session_mcp.directory_manager import DirectoryEntry, DirectoryManager
from ssh_session_mcp.exceptions import ConnectionNotFoundError, RemoteReadError
from ssh_session_mcp.session_registry import SessionRegistry
from ssh_session_mcp.settings import SSHSessionSettings

# 2024-01-02T03:04:05Z
_MTIME = 1704164645


def _manager(registry: SessionRegistry, settings: SSHSessionSettings) -> DirectoryManager:
    return DirectoryManager(settings=settings, registry=registry)


def _sample_conn() -> FakeConnection:
    conn = FakeConnection()
    conn.listings["/srv"] = [
        FakeName("app.py", FakeAttrs(permissions=0o100644, size=1234, mtime=_MTIME)),
        FakeName("logs", FakeAttrs(permissions=0o40755, size=4096, mtime=_MTIME)),
        FakeName("run.sh", FakeAttrs(permissions=0o100755)),
    ]
    conn.listings["/empty"] = []
    return conn


@pytest.mark.asyncio
async def test_empty_directory(registry: SessionRegistry, settings: SSHSessionSettings) -> None:
    register(registry, _sample_conn())

    listing = await _manager(registry, settings).list_directory(remote_path="/empty")

    assert listing.entries == []
    assert listing.render() == "Directory listing for: /empty\n\nDirectory is empty"


@pytest.mark.asyncio
async def test_simple_listing_groups_entries(
    registry: SessionRegistry, settings: SSHSessionSettings
) -> None:
    register(registry, _sample_conn())

    listing = await _manager(registry, settings).list_directory(remote_path="/srv")

    assert [e.name for e in listing.entries] == ["app.py", "logs", "run.sh"]
    assert listing.render() == (
        "Directory listing for: /srv\n\n"
        "Directories:\n  logs/\n\n"
        "Files:\n  app.py\n  run.sh\n"
    )


@pytest.mark.asyncio
async def test_detailed_listing(registry: SessionRegistry, settings: SSHSessionSettings) -> None:
    register(registry, _sample_conn())

    listing = await _manager(registry, settings).list_directory(
        remote_path="/srv", detailed=True
    )
    lines = listing.render().splitlines()

    assert lines[2] == "Permissions  Size     Modified                Name"
    assert lines[3] == "-" * 60
    assert lines[4] == "-644          1234   2024-01-02T03:04:05.000Z  app.py"
    assert lines[5] == "d755          4096   2024-01-02T03:04:05.000Z  logs"
    assert lines[6] == "-755           ???   Unknown  run.sh"


def test_entry_without_permissions() -> None:
    entry = DirectoryEntry(name="x", is_dir=False)
    assert entry.render_detailed() == "-???           ???   Unknown  x"


def test_entry_from_sftp_name_detects_directory() -> None:
    entry = DirectoryEntry.from_sftp_name(FakeName("d", FakeAttrs(permissions=0o40700)))
    assert entry.is_dir is True
    assert entry.to_dict()["permissions"] == 0o40700


@pytest.mark.asyncio
async def test_missing_directory(registry: SessionRegistry, settings: SSHSessionSettings) -> None:
    register(registry, _sample_conn())

    with pytest.raises(RemoteReadError, match="Failed to list directory"):
        await _manager(registry, settings).list_directory(remote_path="/nope")


@pytest.mark.asyncio
async def test_sftp_unavailable(registry: SessionRegistry, settings: SSHSessionSettings) -> None:
    conn = _sample_conn()
    conn.fail_sftp = asyncssh.SFTPError(4, "no sftp")
    register(registry, conn)

    with pytest.raises(RemoteReadError) as exc_info:
        await _manager(registry, settings).list_directory()

    assert exc_info.value.kind == "RemoteReadFailure"


@pytest.mark.asyncio
async def test_unknown_connection(registry: SessionRegistry, settings: SSHSessionSettings) -> None:
    with pytest.raises(ConnectionNotFoundError):
        await _manager(registry, settings).list_directory(connection_id="nope")
