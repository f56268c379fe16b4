"""Local runtime: a temporary directory per sandbox and plain subprocesses."""

import asyncio
import codecs
import os
import shutil
import signal
import tempfile
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

import httpx

from ..config import RunnerConfig
from ..errors import AcquisitionError
from ..log_config import get_logger
from ..types import CommandResult, FileArtifact, ServerReady


class LocalProcess:
    """Handle to a subprocess started in its own process group."""

    READ_SIZE = 4096
    KILL_GRACE = 5.0

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process
        self.log = get_logger("local_process", pid=process.pid)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def output(self) -> AsyncIterator[str]:
        stream = self._process.stdout
        if stream is None:
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(self.READ_SIZE)
            if not chunk:
                tail = decoder.decode(b"", final=True)
                if tail:
                    yield tail
                return
            text = decoder.decode(chunk)
            if text:
                yield text

    async def kill(self) -> None:
        """Terminate the process group, escalating to SIGKILL after a grace period."""
        if self._process.returncode is not None:
            return

        try:
            os.killpg(self._process.pid, signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(self._process.wait(), timeout=self.KILL_GRACE)
        except TimeoutError:
            self.log.warn("process.kill_escalate", grace_s=self.KILL_GRACE)
            try:
                os.killpg(self._process.pid, signal.SIGKILL)
            except ProcessLookupError:
                return
            await self._process.wait()

    async def wait(self) -> int:
        return await self._process.wait()


class LocalSandbox:
    """A directory on the host acting as the sandbox filesystem."""

    PROBE_INTERVAL = 0.5
    PROBE_TIMEOUT = 2.0

    def __init__(self, root: Path, config: RunnerConfig):
        self.root = root
        self.config = config
        self.log = get_logger("local_sandbox", root=str(root))
        self._ready: asyncio.Queue[ServerReady] = asyncio.Queue()
        self._tracked: set[str] = set()
        self._probe_tasks: set[asyncio.Task[None]] = set()

    def _resolve_path(self, path: str) -> Path:
        root = self.root.resolve()
        resolved = (root / path).resolve()
        if root != resolved and root not in resolved.parents:
            raise ValueError(f"Path escapes sandbox: {path}")
        return resolved

    def _write(self, artifact: FileArtifact) -> bool:
        """Write one file. Returns False when the content was already current."""
        target = self._resolve_path(artifact.path)
        data = artifact.data()
        if target.is_file() and target.read_bytes() == data:
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return True

    def _write_all(self, files: Sequence[FileArtifact]) -> None:
        for artifact in files:
            self._write(artifact)
        self._tracked = {artifact.path for artifact in files}

    def _apply_snapshot(self, files: Sequence[FileArtifact]) -> tuple[int, int]:
        written = sum(1 for artifact in files if self._write(artifact))

        current = {artifact.path for artifact in files}
        removed = 0
        for stale in self._tracked - current:
            self._resolve_path(stale).unlink(missing_ok=True)
            removed += 1
        self._tracked = current
        return written, removed

    async def mount(self, files: Sequence[FileArtifact]) -> None:
        await asyncio.to_thread(self._write_all, files)
        self.log.info("sandbox.mounted", file_count=len(files))

    async def sync(self, files: Sequence[FileArtifact]) -> None:
        written, removed = await asyncio.to_thread(self._apply_snapshot, files)
        self.log.info(
            "sandbox.synced",
            file_count=len(files),
            written=written,
            removed=removed,
        )

    def _env(self) -> dict[str, str]:
        return {
            **os.environ,
            "PORT": str(self.config.dev_port),
            **self.config.extra_env,
        }

    async def run_command(self, command: Sequence[str]) -> CommandResult:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=self.root,
            env=self._env(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        stdout, _ = await process.communicate()
        return CommandResult(
            success=process.returncode == 0,
            output=stdout.decode(errors="replace") if stdout else "",
            exit_code=process.returncode,
        )

    async def spawn(self, command: Sequence[str]) -> LocalProcess:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=self.root,
            env=self._env(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        handle = LocalProcess(process)

        task = asyncio.create_task(self._probe_until_ready(handle))
        self._probe_tasks.add(task)
        task.add_done_callback(self._probe_tasks.discard)
        return handle

    async def _probe_until_ready(self, handle: LocalProcess) -> None:
        """Poll the dev port until it answers, then publish a ServerReady."""
        port = self.config.dev_port
        probe_url = f"http://127.0.0.1:{port}/"
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.ready_timeout

        async with httpx.AsyncClient(trust_env=False) as client:
            while loop.time() < deadline:
                if handle.returncode is not None:
                    self.log.debug("sandbox.probe_abandoned", reason="process_exited")
                    return
                try:
                    await client.get(probe_url, timeout=self.PROBE_TIMEOUT)
                except httpx.TransportError:
                    await asyncio.sleep(self.PROBE_INTERVAL)
                    continue

                event = ServerReady(port=port, url=f"http://localhost:{port}")
                self.log.info("sandbox.server_ready", port=port, url=event.url)
                await self._ready.put(event)
                return

        self.log.warn("sandbox.probe_timeout", port=port, timeout_s=self.config.ready_timeout)

    async def server_ready_events(self) -> AsyncIterator[ServerReady]:
        while True:
            yield await self._ready.get()

    async def close(self) -> None:
        for task in list(self._probe_tasks):
            task.cancel()


class LocalRuntime:
    """Provider handing out a single LocalSandbox per instance."""

    def __init__(self, config: RunnerConfig | None = None, base_dir: str | Path | None = None):
        self.config = config or RunnerConfig()
        self._base_dir = Path(base_dir) if base_dir else self.config.workspace_dir
        self._sandbox: LocalSandbox | None = None
        self._lock = asyncio.Lock()
        self.log = get_logger("local_runtime")

    async def acquire(self) -> LocalSandbox:
        async with self._lock:
            if self._sandbox is not None:
                return self._sandbox

            try:
                if self._base_dir is not None:
                    self._base_dir.mkdir(parents=True, exist_ok=True)
                root = Path(
                    tempfile.mkdtemp(
                        prefix="livepreview-",
                        dir=str(self._base_dir) if self._base_dir else None,
                    )
                )
            except OSError as e:
                raise AcquisitionError(f"Could not create sandbox directory: {e}") from e

            self._sandbox = LocalSandbox(root, self.config)
            self.log.info("runtime.acquired", root=str(root))
            return self._sandbox

    async def release(self) -> None:
        """Discard the sandbox directory."""
        async with self._lock:
            if self._sandbox is None:
                return
            await self._sandbox.close()
            shutil.rmtree(self._sandbox.root, ignore_errors=True)
            self.log.info("runtime.released", root=str(self._sandbox.root))
            self._sandbox = None
