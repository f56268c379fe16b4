"""
Modal runtime: the sandbox is a Modal Sandbox with an encrypted tunnel on the
dev port.

Files are written through the sandbox filesystem API, commands run via
Sandbox.exec, and readiness is detected by probing the tunnel URL.
"""

import asyncio
import posixpath
import shlex
from collections.abc import AsyncIterator, Sequence

import httpx
import modal

from ..config import RunnerConfig
from ..errors import AcquisitionError
from ..log_config import get_logger
from ..types import CommandResult, FileArtifact, ServerReady

WORKDIR = "/workspace"
PID_FILE = "/tmp/livepreview-devserver.pid"


def _shell(command: Sequence[str], port: int) -> list[str]:
    """Wrap a command so stderr is merged into stdout and PORT is set."""
    return ["sh", "-c", f"exec env PORT={port} {shlex.join(command)} 2>&1"]


class ModalProcess:
    """Handle to a process started with Sandbox.exec."""

    def __init__(self, sandbox: modal.Sandbox, process):
        self._sandbox = sandbox
        self._process = process
        self.returncode: int | None = None
        self.log = get_logger("modal_process", sandbox_id=sandbox.object_id)

    async def output(self) -> AsyncIterator[str]:
        async for chunk in self._process.stdout:
            yield chunk

    async def kill(self) -> None:
        # Sandbox.exec gives no signal primitive; the wrapper recorded its pid.
        killer = await self._sandbox.exec.aio(
            "sh",
            "-c",
            f'pid="$(cat {PID_FILE})" && pkill -TERM -P "$pid"; kill -TERM "$pid"',
        )
        exit_code = await killer.wait.aio()
        if exit_code != 0:
            self.log.warn("process.kill_nonzero", exit_code=exit_code)

    async def wait(self) -> int:
        self.returncode = await self._process.wait.aio()
        return self.returncode


class ModalSandbox:
    """A provisioned Modal Sandbox."""

    PROBE_INTERVAL = 1.0
    PROBE_TIMEOUT = 5.0

    def __init__(self, sandbox: modal.Sandbox, config: RunnerConfig):
        self._sandbox = sandbox
        self.config = config
        self.log = get_logger("modal_sandbox", sandbox_id=sandbox.object_id)
        self._ready: asyncio.Queue[ServerReady] = asyncio.Queue()
        self._tracked: set[str] = set()
        self._probe_tasks: set[asyncio.Task[None]] = set()

    async def _write(self, artifact: FileArtifact) -> None:
        target = posixpath.join(WORKDIR, artifact.path)
        parent = posixpath.dirname(target)
        if parent != WORKDIR:
            await self._sandbox.mkdir.aio(parent, parents=True)
        handle = await self._sandbox.open.aio(target, "wb")
        try:
            await handle.write.aio(artifact.data())
        finally:
            await handle.close.aio()

    async def mount(self, files: Sequence[FileArtifact]) -> None:
        for artifact in files:
            await self._write(artifact)
        self._tracked = {artifact.path for artifact in files}
        self.log.info("sandbox.mounted", file_count=len(files))

    async def sync(self, files: Sequence[FileArtifact]) -> None:
        for artifact in files:
            await self._write(artifact)

        current = {artifact.path for artifact in files}
        stale = self._tracked - current
        for path in stale:
            await self._sandbox.rm.aio(posixpath.join(WORKDIR, path))
        self._tracked = current
        self.log.info("sandbox.synced", file_count=len(files), removed=len(stale))

    async def run_command(self, command: Sequence[str]) -> CommandResult:
        process = await self._sandbox.exec.aio(
            *_shell(command, self.config.dev_port),
            workdir=WORKDIR,
        )
        output = await process.stdout.read.aio()
        exit_code = await process.wait.aio()
        return CommandResult(success=exit_code == 0, output=output, exit_code=exit_code)

    async def spawn(self, command: Sequence[str]) -> ModalProcess:
        wrapped = (
            f"echo $$ > {PID_FILE}; "
            f"exec env PORT={self.config.dev_port} {shlex.join(command)} 2>&1"
        )
        process = await self._sandbox.exec.aio("sh", "-c", wrapped, workdir=WORKDIR)
        handle = ModalProcess(self._sandbox, process)

        task = asyncio.create_task(self._probe_until_ready(handle))
        self._probe_tasks.add(task)
        task.add_done_callback(self._probe_tasks.discard)
        return handle

    async def _probe_until_ready(self, handle: ModalProcess) -> None:
        port = self.config.dev_port
        tunnels = await self._sandbox.tunnels.aio()
        tunnel = tunnels.get(port)
        if tunnel is None:
            self.log.error("sandbox.tunnel_missing", port=port)
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.ready_timeout

        async with httpx.AsyncClient() as client:
            while loop.time() < deadline:
                if handle.returncode is not None:
                    return
                try:
                    resp = await client.get(tunnel.url, timeout=self.PROBE_TIMEOUT)
                    if resp.status_code < 500:
                        event = ServerReady(port=port, url=tunnel.url)
                        self.log.info("sandbox.server_ready", port=port, url=tunnel.url)
                        await self._ready.put(event)
                        return
                except httpx.TransportError:
                    pass
                await asyncio.sleep(self.PROBE_INTERVAL)

        self.log.warn("sandbox.probe_timeout", port=port, timeout_s=self.config.ready_timeout)

    async def server_ready_events(self) -> AsyncIterator[ServerReady]:
        while True:
            yield await self._ready.get()

    async def close(self) -> None:
        for task in list(self._probe_tasks):
            task.cancel()
        await self._sandbox.terminate.aio()


class ModalRuntime:
    """Provider creating one Modal Sandbox per instance."""

    SANDBOX_TIMEOUT = 60 * 60

    def __init__(self, config: RunnerConfig | None = None):
        self.config = config or RunnerConfig(runtime="modal")
        self._sandbox: ModalSandbox | None = None
        self._lock = asyncio.Lock()
        self.log = get_logger("modal_runtime", app_name=self.config.modal_app_name)

    async def acquire(self) -> ModalSandbox:
        async with self._lock:
            if self._sandbox is not None:
                return self._sandbox

            self.log.info("runtime.acquire_start", image=self.config.modal_image)
            try:
                app = await modal.App.lookup.aio(self.config.modal_app_name, create_if_missing=True)
                sandbox = await modal.Sandbox.create.aio(
                    app=app,
                    image=modal.Image.from_registry(self.config.modal_image),
                    encrypted_ports=[self.config.dev_port],
                    timeout=self.SANDBOX_TIMEOUT,
                    workdir=WORKDIR,
                )
            except Exception as e:
                raise AcquisitionError(f"Could not create Modal sandbox: {e}") from e

            self._sandbox = ModalSandbox(sandbox, self.config)
            self.log.info("runtime.acquired", sandbox_id=sandbox.object_id)
            return self._sandbox

    async def release(self) -> None:
        async with self._lock:
            if self._sandbox is None:
                return
            await self._sandbox.close()
            self._sandbox = None
