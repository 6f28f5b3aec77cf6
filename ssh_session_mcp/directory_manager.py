from __future__ import annotations

import stat
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import asyncssh

from ssh_session_mcp.command_executor import run_with_deadline
from ssh_session_mcp.constants import DEFAULT_CONNECTION_ID, DEFAULT_LIST_PATH
from ssh_session_mcp.exceptions import RemoteReadError
from ssh_session_mcp.session_registry import SessionRecord, SessionRegistry
from ssh_session_mcp.settings import SSHSessionSettings
from ssh_session_mcp.types import DirectoryEntryDict, DirectoryListingDict

EMPTY_DIRECTORY = "Directory is empty"
DETAILED_HEADER = "Permissions  Size     Modified                Name"


def _iso_timestamp(mtime: int) -> str:
    moment = datetime.fromtimestamp(mtime, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    is_dir: bool
    permissions: int | None = None
    size: int | None = None
    mtime: int | None = None

    @classmethod
    def from_sftp_name(cls, item: Any) -> DirectoryEntry:
        attrs = item.attrs
        permissions = getattr(attrs, "permissions", None)
        return cls(
            name=str(item.filename),
            is_dir=permissions is not None and stat.S_ISDIR(permissions),
            permissions=permissions,
            size=getattr(attrs, "size", None),
            mtime=getattr(attrs, "mtime", None),
        )

    def render_detailed(self) -> str:
        flag = "d" if self.is_dir else "-"
        perms = f"{self.permissions & 0o777:03o}" if self.permissions is not None else "???"
        size = f"{self.size:>8}" if self.size is not None else "     ???"
        mtime = _iso_timestamp(self.mtime) if self.mtime is not None else "Unknown"
        return f"{flag}{perms}      {size}   {mtime}  {self.name}"

    def to_dict(self) -> DirectoryEntryDict:
        return {
            "name": self.name,
            "is_dir": self.is_dir,
            "permissions": self.permissions,
            "size": self.size,
            "mtime": self.mtime,
        }


@dataclass(frozen=True)
class DirectoryListing:
    path: str
    detailed: bool
    entries: list[DirectoryEntry] = field(default_factory=list)

    def render(self) -> str:
        output = f"Directory listing for: {self.path}\n\n"
        if self.detailed:
            output += DETAILED_HEADER + "\n"
            output += "-" * 60 + "\n"
            for entry in self.entries:
                output += entry.render_detailed() + "\n"
            return output

        dirs = [f"{e.name}/" for e in self.entries if e.is_dir]
        files = [e.name for e in self.entries if not e.is_dir]
        if dirs:
            output += "Directories:\n"
            output += "".join(f"  {d}\n" for d in dirs)
            output += "\n"
        if files:
            output += "Files:\n"
            output += "".join(f"  {f}\n" for f in files)
        if not dirs and not files:
            output += EMPTY_DIRECTORY
        return output

    def to_dict(self) -> DirectoryListingDict:
        return {
            "path": self.path,
            "detailed": self.detailed,
            "entries": [e.to_dict() for e in self.entries],
        }


class DirectoryManager:
    def __init__(
        self,
        *,
        settings: SSHSessionSettings,
        registry: SessionRegistry,
    ) -> None:
        self._settings = settings
        self._registry = registry

    async def list_directory(
        self,
        *,
        remote_path: str = DEFAULT_LIST_PATH,
        connection_id: str = DEFAULT_CONNECTION_ID,
        detailed: bool = False,
    ) -> DirectoryListing:
        path = remote_path or DEFAULT_LIST_PATH
        record = await self._registry.lookup(connection_id)

        timeout_ms = int(self._settings.sftp_timeout_seconds * 1000)
        entries = await run_with_deadline(
            self._read_entries(record, path),
            timeout_ms=timeout_ms,
            message=f"Directory listing timeout after {timeout_ms}ms",
        )
        return DirectoryListing(path=path, detailed=detailed, entries=entries)

    @staticmethod
    async def _read_entries(record: SessionRecord, path: str) -> list[DirectoryEntry]:
        try:
            async with record.connection.start_sftp_client() as sftp:
                names = await sftp.readdir(path)
        except (OSError, asyncssh.Error) as exc:
            raise RemoteReadError(
                f"Failed to list directory: {exc}",
                remote_path=path,
            ) from exc

        return [
            DirectoryEntry.from_sftp_name(item)
            for item in names
            if str(item.filename) not in (".", "..")
        ]
