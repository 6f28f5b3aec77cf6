"""
SSH Session MCP 多会话远程Shell工具

基于 MCP 协议的命名SSH会话管理工具集，支持命令执行、脚本执行、文件传输与目录列表。
"""

__version__ = "0.1.0"

__all__ = [
    "auth_manager",
    "command_executor",
    "config_manager",
    "constants",
    "directory_manager",
    "exceptions",
    "file_transfer_manager",
    "logger",
    "mcp_server",
    "script_runner",
    "session_registry",
    "settings",
]
