from __future__ import annotations

from typing import TypedDict


class SessionRecordDict(TypedDict):
    connection_id: str
    host: str
    port: int
    username: str
    connected_at: float


class CommandOutcomeDict(TypedDict):
    command: str
    exit_code: int | None
    signal: str | None
    stdout: str
    stderr: str


class ScriptOutcomeDict(TypedDict):
    interpreter: str
    remote_path: str
    cleaned_up: bool
    outcome: CommandOutcomeDict


class TransferResultDict(TypedDict):
    connection_id: str
    direction: str
    local_path: str
    remote_path: str
    bytes_transferred: int


class DirectoryEntryDict(TypedDict):
    name: str
    is_dir: bool
    permissions: int | None
    size: int | None
    mtime: int | None


class DirectoryListingDict(TypedDict):
    path: str
    detailed: bool
    entries: list[DirectoryEntryDict]
