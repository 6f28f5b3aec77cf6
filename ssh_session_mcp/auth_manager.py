"""SSH凭据模块

提供连接所需的凭据对象，以及基于系统keyring的凭据存储：
- 私钥（可带口令）与密码二选一，同时提供时私钥优先
- 私钥在发起网络连接前于本地读取、解密
- 未显式提供凭据时可回退到keyring中保存的凭据
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import asyncssh
import keyring
from keyring.errors import KeyringError
from loguru import logger

from ssh_session_mcp.constants import KEYRING_SERVICE_NAME
from ssh_session_mcp.exceptions import CredentialError

AuthMode = Literal["key", "password", "none"]


@dataclass(frozen=True)
class SSHCredentials:
    host: str
    username: str
    password: str | None = None
    private_key_path: str | None = None
    passphrase: str | None = None

    @property
    def auth_mode(self) -> AuthMode:
        if self.private_key_path:
            return "key"
        if self.password:
            return "password"
        return "none"

    def require_mode(self) -> AuthMode:
        """返回生效的认证方式，无可用凭据时抛出 CredentialError。"""
        mode = self.auth_mode
        if mode == "none":
            raise CredentialError(
                "Either password or privateKey must be provided",
                host=self.host,
                username=self.username,
            )
        return mode

    def load_client_key(self) -> asyncssh.SSHKey:
        """读取并解密私钥文件。

        Raises:
            CredentialError: 文件不可读、格式不支持或口令错误
        """
        if not self.private_key_path:
            raise CredentialError(
                "No private key configured",
                host=self.host,
                username=self.username,
            )
        key_path = Path(self.private_key_path).expanduser().resolve()
        try:
            return asyncssh.read_private_key(str(key_path), self.passphrase)
        except (OSError, asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as exc:
            raise CredentialError(
                f"Failed to read private key: {exc}",
                host=self.host,
                username=self.username,
                details={"private_key_path": str(key_path)},
            ) from exc


class AuthManager:
    def __init__(self, *, service_name: str = KEYRING_SERVICE_NAME) -> None:
        self._service_name = service_name

    def store_credentials(
        self,
        *,
        host: str,
        username: str,
        password: str | None = None,
        private_key_path: str | None = None,
    ) -> None:
        if not password and not private_key_path:
            raise CredentialError(
                "Either password or privateKey must be provided",
                host=host,
                username=username,
            )

        try:
            if password:
                keyring.set_password(
                    self._service_name,
                    self._key(host, username, "password"),
                    password,
                )
            if private_key_path:
                keyring.set_password(
                    self._service_name,
                    self._key(host, username, "private_key_path"),
                    private_key_path,
                )
        except KeyringError as exc:
            raise CredentialError(
                f"Failed to store credentials in keyring: {exc}",
                host=host,
                username=username,
            ) from exc

    def get_credentials(self, *, host: str, username: str) -> SSHCredentials:
        try:
            password = keyring.get_password(
                self._service_name, self._key(host, username, "password")
            )
            private_key_path = keyring.get_password(
                self._service_name,
                self._key(host, username, "private_key_path"),
            )
        except KeyringError as exc:
            # 无可用keyring后端时视为未保存凭据
            logger.warning(f"keyring unavailable for {username}@{host}: {exc}")
            password = None
            private_key_path = None
        return SSHCredentials(
            host=host,
            username=username,
            password=password,
            private_key_path=private_key_path,
        )

    @staticmethod
    def _key(host: str, username: str, field: str) -> str:
        return f"{host}|{username}|{field}".lower()
