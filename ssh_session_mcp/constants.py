"""工具参数与运行时默认值。"""
from __future__ import annotations

DEFAULT_CONNECTION_ID = "default"
DEFAULT_SSH_PORT = 22

DEFAULT_COMMAND_TIMEOUT_MS = 30000
DEFAULT_SCRIPT_TIMEOUT_MS = 60000
DEFAULT_SFTP_TIMEOUT_SECONDS = 300.0

DEFAULT_INTERPRETER = "bash"
DEFAULT_SCRIPT_FILENAME = "mcp_script.sh"
DEFAULT_REMOTE_TEMP_DIR = "/tmp"
DEFAULT_LIST_PATH = "."

PYTHON_INTERPRETERS = frozenset({"python", "python3"})
PYTHON_SHEBANG = "#!/usr/bin/env python3"
SHELL_SHEBANG = "#!/bin/bash"

KEYRING_SERVICE_NAME = "ssh-session-mcp"
