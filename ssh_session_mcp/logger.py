from __future__ import annotations

import re
import sys
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from loguru import logger

from ssh_session_mcp.settings import SSHSessionSettings

_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(?i)(password\s*[:=]\s*)([^\s]+)"), r"\1***"),
    (re.compile(r"(?i)(passphrase\s*[:=]\s*)([^\s]+)"), r"\1***"),
    (re.compile(r"(?i)(token\s*[:=]\s*)([^\s]+)"), r"\1***"),
]


def redact(text: str) -> str:
    redacted = text
    for pattern, repl in _REDACTIONS:
        redacted = pattern.sub(repl, redacted)
    return redacted


def _resolve_log_dir(settings: SSHSessionSettings) -> Path:
    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        return Path(settings.log_dir)
    except OSError:
        fallback = Path(gettempdir()) / "ssh-session-mcp-logs"
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def setup_logger(settings: SSHSessionSettings) -> None:
    log_dir = _resolve_log_dir(settings)
    log_file = log_dir / "app.log"
    err_file = log_dir / "error.log"

    logger.remove()

    def patcher(record: Any) -> None:
        record["message"] = redact(record.get("message", ""))

    logger.configure(patcher=patcher)

    # stdout 是 MCP 通道，只在交互终端时输出到 stderr
    if getattr(sys.stderr, "isatty", lambda: False)():
        logger.add(
            sys.stderr,
            level=settings.log_level,
            colorize=True,
            backtrace=False,
            diagnose=False,
            enqueue=True,
        )

    logger.add(
        str(log_file),
        level=settings.log_level,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        encoding="utf-8",
    )

    logger.add(
        str(err_file),
        level="ERROR",
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        encoding="utf-8",
    )
