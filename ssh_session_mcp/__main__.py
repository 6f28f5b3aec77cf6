from ssh_session_mcp.config_manager import ConfigManager
from ssh_session_mcp.logger import setup_logger
from ssh_session_mcp.mcp_server import create_mcp_server, run_stdio_server


def main() -> int:
    """
    SSH Session MCP 服务器主入口

    加载配置、初始化日志后在 stdio 上提供服务，root 下的 main.py 也调用这里
    """
    config_manager = ConfigManager.load()
    setup_logger(config_manager.settings)
    run_stdio_server(create_mcp_server(settings=config_manager.settings))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
