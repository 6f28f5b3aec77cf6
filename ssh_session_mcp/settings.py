"""SSH Session MCP 配置设置模块

使用 Pydantic Settings 管理配置，支持以下配置方式（优先级从高到低）：
1. 环境变量（前缀：SSH_SESSION_MCP_）
2. .env 文件
3. JSON 配置文件
4. 默认值

示例环境变量：
    SSH_SESSION_MCP_LOG_LEVEL=DEBUG
    SSH_SESSION_MCP_REMOTE_TEMP_DIR=/var/tmp
    SSH_SESSION_MCP_CONNECT_TIMEOUT_SECONDS=15
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ssh_session_mcp.constants import (
    DEFAULT_COMMAND_TIMEOUT_MS,
    DEFAULT_REMOTE_TEMP_DIR,
    DEFAULT_SCRIPT_TIMEOUT_MS,
    DEFAULT_SFTP_TIMEOUT_SECONDS,
    KEYRING_SERVICE_NAME,
)


class SSHSessionSettings(BaseSettings):
    """SSH Session MCP 服务器配置类。

    支持通过环境变量、.env文件、JSON文件或默认值进行配置。
    环境变量前缀为 SSH_SESSION_MCP_。
    """

    model_config = SettingsConfigDict(env_prefix="SSH_SESSION_MCP_", extra="ignore")

    # 配置文件路径
    config_file: Path = Field(default=Path("ssh_session_mcp_config.json"))

    # 日志配置
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=Path("logs"), description="日志目录")
    log_rotation: str = Field(default="10 MB", description="日志轮转大小")
    log_retention: str = Field(default="30 days", description="日志保留时间")

    # 超时配置
    command_timeout_ms: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT_MS, ge=1, description="命令执行默认超时(毫秒)"
    )
    script_timeout_ms: int = Field(
        default=DEFAULT_SCRIPT_TIMEOUT_MS, ge=1, description="脚本执行默认超时(毫秒)"
    )
    connect_timeout_seconds: float | None = Field(
        default=None, gt=0, description="SSH握手超时(秒)，None表示不限制"
    )
    sftp_timeout_seconds: float = Field(
        default=DEFAULT_SFTP_TIMEOUT_SECONDS, gt=0, description="文件传输/目录列表超时(秒)"
    )

    # 远程脚本暂存目录
    remote_temp_dir: str = Field(
        default=DEFAULT_REMOTE_TEMP_DIR, min_length=1, description="远程脚本暂存目录"
    )

    # SSH 安全配置
    known_hosts: Path | None = Field(
        default=None,
        description="known_hosts 文件路径，None 表示不校验主机密钥",
    )

    # 凭据配置
    use_keyring: bool = Field(default=True, description="未提供凭据时是否回退到keyring")
    keyring_service: str = Field(default=KEYRING_SERVICE_NAME, description="keyring服务名")
