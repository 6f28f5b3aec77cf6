"""SSH Session MCP 自定义异常模块

定义项目中使用的所有自定义异常类，提供结构化的错误处理。
每个异常类的 ``kind`` 对应工具层对外暴露的错误类别。

异常层次结构：
    SSHSessionError (基类)
    ├── ConnectionNotFoundError   - 连接ID不存在 (NotFound)
    ├── ConnectionExistsError     - 连接ID已被占用 (AlreadyExists)
    ├── CredentialError           - 凭据缺失或无法读取 (MissingCredential)
    ├── SSHConnectionError        - SSH连接相关错误
    │   ├── AuthenticationError   - 认证被拒绝 (AuthFailure)
    │   └── NetworkError          - 网络不可达/连接中断 (NetworkFailure)
    ├── CommandTimeoutError       - 操作超时 (Timeout)
    ├── CommandExecutionError     - 命令无法启动 (ExecFailure)
    └── FileTransferError         - 文件传输相关错误
        ├── LocalReadError        - 本地文件读取失败
        ├── LocalWriteError       - 本地文件写入失败
        ├── RemoteReadError       - 远程读取失败
        ├── RemoteWriteError      - 远程写入失败
        └── ScriptStagingError    - 脚本暂存失败
"""
from __future__ import annotations


class SSHSessionError(Exception):
    """SSH Session MCP 基础异常类。

    所有自定义异常的基类，提供统一的错误消息格式。

    Attributes:
        message: 用户友好的错误描述信息
        details: 可选的附加错误详情字典
    """

    kind = "Error"

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error_dict(self) -> dict[str, object]:
        """将异常转换为结构化的错误字典。

        Returns:
            包含error_type、kind、message和details的字典
        """
        return {
            "error_type": type(self).__name__,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ConnectionNotFoundError(SSHSessionError):
    """连接ID在注册表中不存在。

    Attributes:
        connection_id: 查找的连接ID
    """

    kind = "NotFound"

    def __init__(
        self,
        connection_id: str,
        *,
        message: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"connection_id": connection_id, **(details or {})}
        super().__init__(
            message or f"No active connection found for ID: {connection_id}",
            details=merged_details,
        )
        self.connection_id = connection_id


class ConnectionExistsError(SSHSessionError):
    """连接ID已对应一个存活（或正在建立）的会话。"""

    kind = "AlreadyExists"

    def __init__(self, connection_id: str, *, details: dict[str, object] | None = None) -> None:
        merged_details = {"connection_id": connection_id, **(details or {})}
        super().__init__(
            f"Connection '{connection_id}' already exists. "
            "Disconnect first or use a different ID.",
            details=merged_details,
        )
        self.connection_id = connection_id


class CredentialError(SSHSessionError):
    """凭据错误。

    当凭据缺失、私钥无法读取或口令错误时抛出。

    Attributes:
        host: 关联的主机地址
        username: 关联的用户名
    """

    kind = "MissingCredential"

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        username: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"host": host, "username": username, **(details or {})}
        super().__init__(message, details=merged_details)
        self.host = host
        self.username = username


class SSHConnectionError(SSHSessionError):
    """SSH连接错误。

    当SSH连接建立失败、被拒绝或在使用中断开时抛出。

    Attributes:
        host: 目标主机地址
        port: 目标SSH端口
    """

    kind = "NetworkFailure"

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        port: int = 22,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"host": host, "port": port, **(details or {})}
        super().__init__(message, details=merged_details)
        self.host = host
        self.port = port


class AuthenticationError(SSHConnectionError):
    """远程主机拒绝了提供的凭据。"""

    kind = "AuthFailure"


class NetworkError(SSHConnectionError):
    """主机不可达，或会话在操作过程中关闭。"""

    kind = "NetworkFailure"


class CommandTimeoutError(SSHSessionError):
    """操作在截止时间内未完成。

    超时只代表调用方放弃等待，远程进程可能仍在运行。

    Attributes:
        timeout_ms: 超时时间（毫秒）
    """

    kind = "Timeout"

    def __init__(
        self,
        message: str,
        *,
        timeout_ms: int = 0,
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"timeout_ms": timeout_ms, **(details or {})}
        super().__init__(message, details=merged_details)
        self.timeout_ms = timeout_ms


class CommandExecutionError(SSHSessionError):
    """命令无法启动。

    非零退出码属于正常结果，不会抛出此异常。

    Attributes:
        command: 执行失败的命令
    """

    kind = "ExecFailure"

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"command": command, **(details or {})}
        super().__init__(message, details=merged_details)
        self.command = command


class FileTransferError(SSHSessionError):
    """文件传输错误。

    Attributes:
        local_path: 本地文件路径
        remote_path: 远程文件路径
    """

    kind = "TransferFailure"

    def __init__(
        self,
        message: str,
        *,
        local_path: str = "",
        remote_path: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {
            "local_path": local_path,
            "remote_path": remote_path,
            **(details or {}),
        }
        super().__init__(message, details=merged_details)
        self.local_path = local_path
        self.remote_path = remote_path


class LocalReadError(FileTransferError):
    kind = "LocalReadFailure"


class LocalWriteError(FileTransferError):
    kind = "LocalWriteFailure"


class RemoteReadError(FileTransferError):
    kind = "RemoteReadFailure"


class RemoteWriteError(FileTransferError):
    kind = "RemoteWriteFailure"


class ScriptStagingError(FileTransferError):
    kind = "StagingFailure"
