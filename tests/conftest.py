"""Shared fakes for runner tests."""

import asyncio
from collections.abc import AsyncIterator, Sequence

import pytest

from livepreview.config import RunnerConfig
from livepreview.runner.orchestrator import Orchestrator
from livepreview.types import CommandResult, FileArtifact, ServerReady


class FakeProcess:
    """Process handle whose output and exit are driven by the test."""

    def __init__(self):
        self._chunks: asyncio.Queue = asyncio.Queue()
        self._exited = asyncio.Event()
        self.exit_code: int | None = None
        self.kill_error: Exception | None = None
        self.kill_calls = 0

    def feed(self, text: str) -> None:
        self._chunks.put_nowait(text)

    def break_stream(self, error: Exception) -> None:
        self._chunks.put_nowait(error)

    def finish(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self._chunks.put_nowait(None)
        self._exited.set()

    async def output(self) -> AsyncIterator[str]:
        while True:
            item = await self._chunks.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def kill(self) -> None:
        self.kill_calls += 1
        if self.kill_error is not None:
            raise self.kill_error
        if self.exit_code is None:
            self.finish(-15)

    async def wait(self) -> int:
        await self._exited.wait()
        return self.exit_code


class FakeSandbox:
    """In-memory sandbox recording every call."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.mounts: list[tuple[FileArtifact, ...]] = []
        self.syncs: list[tuple[FileArtifact, ...]] = []
        self.commands: list[tuple[str, ...]] = []
        self.processes: list[FakeProcess] = []

        self.mount_error: Exception | None = None
        self.sync_error: Exception | None = None
        self.run_error: Exception | None = None
        self.spawn_error: Exception | None = None
        self.mount_gate: asyncio.Event | None = None
        self.run_gate: asyncio.Event | None = None
        self.install_result = CommandResult(success=True, output="added 12 packages\n", exit_code=0)

        self._ready: asyncio.Queue[ServerReady] = asyncio.Queue()

    async def mount(self, files: Sequence[FileArtifact]) -> None:
        if self.mount_gate is not None:
            await self.mount_gate.wait()
        if self.mount_error is not None:
            raise self.mount_error
        self.mounts.append(tuple(files))
        self.files = {artifact.path: artifact.data() for artifact in files}

    async def sync(self, files: Sequence[FileArtifact]) -> None:
        if self.sync_error is not None:
            raise self.sync_error
        self.syncs.append(tuple(files))
        self.files = {artifact.path: artifact.data() for artifact in files}

    async def run_command(self, command: Sequence[str]) -> CommandResult:
        self.commands.append(tuple(command))
        if self.run_gate is not None:
            await self.run_gate.wait()
        if self.run_error is not None:
            raise self.run_error
        return self.install_result

    async def spawn(self, command: Sequence[str]) -> FakeProcess:
        self.commands.append(tuple(command))
        if self.spawn_error is not None:
            raise self.spawn_error
        process = FakeProcess()
        self.processes.append(process)
        return process

    def announce(self, port: int, url: str) -> None:
        self._ready.put_nowait(ServerReady(port=port, url=url))

    async def server_ready_events(self) -> AsyncIterator[ServerReady]:
        while True:
            yield await self._ready.get()


class FakeRuntime:
    """Provider returning a single FakeSandbox."""

    def __init__(self, sandbox: FakeSandbox | None = None):
        self.sandbox = sandbox or FakeSandbox()
        self.acquire_calls = 0
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def acquire(self) -> FakeSandbox:
        self.acquire_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.sandbox


async def settle(rounds: int = 10) -> None:
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def project_files() -> list[FileArtifact]:
    return [
        FileArtifact(path="package.json", content='{"name": "demo", "scripts": {"dev": "vite"}}'),
        FileArtifact(path="src/main.js", content="console.log('hello')\n"),
    ]


@pytest.fixture
def sandbox() -> FakeSandbox:
    return FakeSandbox()


@pytest.fixture
def runtime(sandbox: FakeSandbox) -> FakeRuntime:
    return FakeRuntime(sandbox)


@pytest.fixture
def config() -> RunnerConfig:
    return RunnerConfig(
        install_command=("npm", "install"),
        dev_command=("npm", "run", "dev"),
        dev_port=3000,
    )


@pytest.fixture
def orchestrator(runtime: FakeRuntime, config: RunnerConfig) -> Orchestrator:
    return Orchestrator(runtime, config)
