"""Sandbox runtime provider interface."""

from collections.abc import AsyncIterator, Sequence
from typing import Protocol

from ..types import CommandResult, FileArtifact, ServerReady


class ProcessHandle(Protocol):
    """A long-running process inside a sandbox."""

    def output(self) -> AsyncIterator[str]:
        """Combined stdout/stderr as text chunks, ending when the process exits.

        The returned iterator is closable (aclose) to release the stream.
        """
        ...

    async def kill(self) -> None:
        ...

    async def wait(self) -> int:
        ...


class Sandbox(Protocol):
    """An acquired sandbox: a filesystem and a place to run processes."""

    async def mount(self, files: Sequence[FileArtifact]) -> None:
        ...

    async def sync(self, files: Sequence[FileArtifact]) -> None:
        ...

    async def run_command(self, command: Sequence[str]) -> CommandResult:
        ...

    async def spawn(self, command: Sequence[str]) -> ProcessHandle:
        ...

    def server_ready_events(self) -> AsyncIterator[ServerReady]:
        """Channel of server-ready notifications; each is delivered once."""
        ...


class RuntimeProvider(Protocol):
    async def acquire(self) -> Sandbox:
        """Return the session's sandbox, provisioning it on first call."""
        ...
