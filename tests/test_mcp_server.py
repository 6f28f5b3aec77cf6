import pytest
from conftest import FakeCompleted, FakeConnection, register
from mcp.shared.memory import create_connected_server_and_client_session

from ssh_session_mcp.mcp_server import STARTUP_ERROR_LOG, create_mcp_server, run_stdio_server
from ssh_session_mcp.session_registry import SessionRegistry
from ssh_session_mcp.settings import SSHSessionSettings


@pytest.mark.asyncio
async def test_mcp_server_registers_expected_tools() -> None:
    server = create_mcp_server(settings=SSHSessionSettings(use_keyring=False))
    tools = await server.list_tools()
    names = sorted(t.name for t in tools)

    assert names == sorted(
        [
            "ssh_connect",
            "ssh_disconnect",
            "ssh_download_file",
            "ssh_execute",
            "ssh_execute_script",
            "ssh_list_connections",
            "ssh_list_files",
            "ssh_store_credentials",
            "ssh_upload_and_execute",
            "ssh_upload_file",
        ]
    )


@pytest.mark.asyncio
async def test_connect_tool_schema_uses_snake_case() -> None:
    server = create_mcp_server(settings=SSHSessionSettings(use_keyring=False))
    tools = {t.name: t for t in await server.list_tools()}

    schema = tools["ssh_connect"].inputSchema
    assert set(schema["required"]) == {"host", "username"}
    assert {"port", "password", "private_key", "passphrase", "connection_id"} <= set(
        schema["properties"]
    )


def _text(result) -> str:
    return "".join(getattr(block, "text", "") for block in result.content)


@pytest.mark.asyncio
async def test_list_connections_tool_when_empty() -> None:
    server = create_mcp_server(settings=SSHSessionSettings(use_keyring=False))

    async with create_connected_server_and_client_session(server._mcp_server) as client:
        result = await client.call_tool("ssh_list_connections", {})

    assert result.isError is False
    assert _text(result) == "No active connections"


@pytest.mark.asyncio
async def test_tool_failure_is_returned_as_error_text() -> None:
    server = create_mcp_server(settings=SSHSessionSettings(use_keyring=False))

    async with create_connected_server_and_client_session(server._mcp_server) as client:
        result = await client.call_tool("ssh_disconnect", {})
        # 失败后服务仍可继续处理请求
        follow_up = await client.call_tool("ssh_list_connections", {})

    assert result.isError is True
    assert "No active connection found for ID: default" in _text(result)
    assert _text(follow_up) == "No active connections"


@pytest.mark.asyncio
async def test_execute_tool_on_registered_session(
    registry: SessionRegistry, settings: SSHSessionSettings
) -> None:
    conn = FakeConnection(handler=lambda _c: FakeCompleted(stdout="hi\n"))
    register(registry, conn, "web")
    server = create_mcp_server(settings=settings, registry=registry)

    async with create_connected_server_and_client_session(server._mcp_server) as client:
        result = await client.call_tool(
            "ssh_execute", {"command": "echo hi", "connection_id": "web"}
        )
        listed = await client.call_tool("ssh_list_connections", {})

    assert result.isError is False
    assert _text(result) == "Command: echo hi\nExit Code: 0\nOutput:\nhi\n"
    assert _text(listed) == "Active connections: web"
    assert conn.commands == ["echo hi"]


@pytest.mark.asyncio
async def test_execute_tool_rejects_zero_timeout(
    registry: SessionRegistry, settings: SSHSessionSettings
) -> None:
    conn = FakeConnection()
    register(registry, conn)
    server = create_mcp_server(settings=settings, registry=registry)

    async with create_connected_server_and_client_session(server._mcp_server) as client:
        result = await client.call_tool("ssh_execute", {"command": "ls", "timeout": 0})

    assert result.isError is True
    assert conn.commands == []


def test_run_stdio_server_records_fatal_error(tmp_path, mocker) -> None:
    mocker.patch("ssh_session_mcp.mcp_server.gettempdir", return_value=str(tmp_path))
    mocker.patch("anyio.run", side_effect=RuntimeError("stdin closed unexpectedly"))
    server = create_mcp_server(settings=SSHSessionSettings(use_keyring=False))

    with pytest.raises(RuntimeError):
        run_stdio_server(server)

    log_text = (tmp_path / STARTUP_ERROR_LOG).read_text(encoding="utf-8")
    assert "RuntimeError: stdin closed unexpectedly" in log_text


def test_run_stdio_server_keyboard_interrupt_is_clean_exit(tmp_path, mocker) -> None:
    mocker.patch("ssh_session_mcp.mcp_server.gettempdir", return_value=str(tmp_path))
    mocker.patch("anyio.run", side_effect=KeyboardInterrupt)
    server = create_mcp_server(settings=SSHSessionSettings(use_keyring=False))

    run_stdio_server(server)

    assert not (tmp_path / STARTUP_ERROR_LOG).exists()
