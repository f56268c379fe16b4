"""
Top-level state machine for a preview session.

Owns the one-shot sequence acquire -> mount, then serves the user actions
(install, start, stop, sync) behind guards. Every outcome is recorded in the
step ledger; guard violations are raised to the caller.
"""

import asyncio
import itertools
import time
from collections.abc import Callable, Iterable

from ..config import RunnerConfig
from ..errors import (
    AcquisitionError,
    AlreadyRunningError,
    InstallError,
    InstallInProgressError,
    InstallRequiredError,
    ManifestMissingError,
    MountError,
    NotReadyError,
    NotRunningError,
    StartError,
    StreamReadError,
    SyncError,
)
from ..log_config import get_logger
from ..runtime.base import RuntimeProvider
from ..types import (
    ExecutionStep,
    FileArtifact,
    Phase,
    RunnerView,
    ServerState,
    Snapshot,
    StepStatus,
    build_snapshot,
)
from .devserver import DevServerController
from .files import FileSynchronizer, fingerprint
from .installer import DependencyInstaller
from .ledger import StepLedger
from .output import OutputBuffer
from .preview import PreviewBridge
from .session import SandboxSession


class Orchestrator:
    """
    Glues the session, ledger, output buffer, synchronizer, installer, dev
    server controller and preview bridge together.

    All methods run on one event loop. Conflicting requests are rejected by
    guards rather than queued behind locks.
    """

    INSTALL_PREFIX = "install-"

    def __init__(
        self,
        runtime: RuntimeProvider,
        config: RunnerConfig | None = None,
        on_files_synced: Callable[[], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RunnerConfig()
        self.on_files_synced = on_files_synced

        self.session = SandboxSession(runtime)
        self.ledger = StepLedger(clock)
        self.output = OutputBuffer(self.config.output_limit)
        self.preview = PreviewBridge()
        self.files = FileSynchronizer(self.session)
        self.installer = DependencyInstaller(self.session, self.config.install_command)
        self.devserver = DevServerController(
            self.session,
            self.output,
            self.preview,
            self.config.dev_command,
        )

        self.phase = Phase.UNINITIALIZED
        self._snapshot: Snapshot = ()
        self._synced_fingerprint: str | None = None
        self._seq = itertools.count(1)
        self._init_task: asyncio.Future[bool] | None = None
        self._preview_task: asyncio.Task[None] | None = None
        self._supervisor: asyncio.Task[None] | None = None

        self.log = get_logger("orchestrator")

    def _key(self, prefix: str) -> str:
        return f"{prefix}-{next(self._seq)}"

    # State queries

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def has_manifest(self) -> bool:
        if not self.config.manifest:
            return True
        return any(artifact.path == self.config.manifest for artifact in self._snapshot)

    @property
    def install_running(self) -> bool:
        return self.ledger.any(self.INSTALL_PREFIX, StepStatus.RUNNING)

    @property
    def installed(self) -> bool:
        return self.ledger.any(self.INSTALL_PREFIX, StepStatus.SUCCESS)

    @property
    def server_running(self) -> bool:
        return self.devserver.state == ServerState.RUNNING

    @property
    def can_install(self) -> bool:
        return self.phase == Phase.READY and self.has_manifest and not self.install_running

    @property
    def can_start(self) -> bool:
        return (
            self.phase == Phase.READY
            and self.devserver.state == ServerState.IDLE
            and self.installed
        )

    @property
    def can_stop(self) -> bool:
        return self.server_running and self.session.process is not None

    def view(self) -> RunnerView:
        return RunnerView(
            phase=self.phase,
            steps=self.ledger.steps(),
            terminal_output=self.output.text,
            preview_url=self.preview.url,
            preview_state=self.preview.state,
            preview_generation=self.preview.generation,
            container_ready=self.phase == Phase.READY,
            server_running=self.server_running,
            has_manifest=self.has_manifest,
            can_install=self.can_install,
            can_start=self.can_start,
            can_stop=self.can_stop,
        )

    # File set changes

    async def update_files(
        self,
        files: Iterable[FileArtifact],
        visible: bool = True,
    ) -> ExecutionStep | None:
        """
        React to a new snapshot from upstream.

        Boots the session on the first visible, non-empty snapshot; re-syncs
        once ready. While acquiring or mounting the latest snapshot is kept
        and reconciled when the mount completes.
        """
        self._snapshot = build_snapshot(files)

        if self.phase == Phase.UNINITIALIZED:
            if visible and self._snapshot:
                await self.initialize()
            return None

        if self.phase == Phase.READY:
            return await self.sync(self._snapshot)

        self.log.debug("files.deferred", phase=self.phase, file_count=len(self._snapshot))
        return None

    async def initialize(self) -> bool:
        """Acquire and mount once. Concurrent callers share the same attempt."""
        if self._init_task is None:
            if self.phase != Phase.UNINITIALIZED or not self._snapshot:
                return self.phase == Phase.READY
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> bool:
        start_time = time.time()

        self.phase = Phase.ACQUIRING
        self.ledger.add_or_update("init", "Initializing sandbox", StepStatus.RUNNING)
        try:
            sandbox = await self.session.acquire()
        except AcquisitionError as e:
            return self._fail("init", e)
        self.ledger.transition("init", StepStatus.SUCCESS)

        self.phase = Phase.MOUNTING
        mounted = self._snapshot
        self.ledger.add_or_update("mount", "Mounting project files", StepStatus.RUNNING)
        try:
            await self.files.mount(mounted)
        except MountError as e:
            return self._fail("mount", e)
        self._synced_fingerprint = fingerprint(mounted)
        self.ledger.transition("mount", StepStatus.SUCCESS)

        self.phase = Phase.READY
        self._preview_task = asyncio.create_task(
            self.preview.listen(sandbox.server_ready_events())
        )
        self.log.info(
            "session.ready",
            file_count=len(mounted),
            duration_ms=int((time.time() - start_time) * 1000),
        )

        if self._snapshot is not mounted:
            await self.sync(self._snapshot)
        return True

    def _fail(self, key: str, error: Exception) -> bool:
        self.phase = Phase.FAILED
        self.ledger.transition(key, StepStatus.ERROR, str(error) or type(error).__name__)
        self.log.error("session.fatal", step=key, exc=error)
        return False

    def _require_ready(self) -> None:
        if self.phase != Phase.READY:
            raise NotReadyError(f"Sandbox is not ready ({self.phase})")

    # User actions

    async def sync(self, files: Iterable[FileArtifact] | None = None) -> ExecutionStep | None:
        """
        Push a snapshot into the sandbox.

        Returns None when the snapshot matches the last synced (or in-flight)
        one, so a repeated trigger produces a single step.
        """
        self._require_ready()
        if files is not None:
            self._snapshot = build_snapshot(files)
        snapshot = self._snapshot

        digest = fingerprint(snapshot)
        if digest == self._synced_fingerprint:
            self.log.debug("files.sync_skipped", reason="unchanged")
            return None
        self._synced_fingerprint = digest

        key = self._key("sync")
        self.ledger.add_or_update(key, f"Syncing {len(snapshot)} files", StepStatus.RUNNING)
        try:
            await self.files.sync(snapshot)
        except SyncError as e:
            if self._synced_fingerprint == digest:
                self._synced_fingerprint = None
            return self.ledger.transition(key, StepStatus.ERROR, str(e))

        step = self.ledger.transition(key, StepStatus.SUCCESS)
        if self.on_files_synced is not None:
            self.on_files_synced()
        return step

    async def install(self) -> ExecutionStep:
        self._require_ready()
        if not self.has_manifest:
            raise ManifestMissingError(f"No {self.config.manifest} in the project")
        if self.install_running:
            raise InstallInProgressError("An install is already running")

        key = self._key("install")
        self.ledger.add_or_update(key, "Installing dependencies", StepStatus.RUNNING)
        try:
            result = await self.installer.install()
        except InstallError as e:
            return self.ledger.transition(key, StepStatus.ERROR, str(e))

        if result.output:
            if self.output.text and not self.output.text.endswith("\n"):
                self.output.append("\n")
            self.output.append(result.output)

        status = StepStatus.SUCCESS if result.success else StepStatus.ERROR
        return self.ledger.transition(key, status, result.output)

    async def start(self) -> ExecutionStep:
        self._require_ready()
        if self.devserver.state != ServerState.IDLE:
            raise AlreadyRunningError(f"Dev server is {self.devserver.state}")
        if not self.installed:
            raise InstallRequiredError("Install dependencies before starting the dev server")

        key = self._key("dev")
        self.ledger.add_or_update(key, "Starting development server", StepStatus.RUNNING)
        try:
            await self.devserver.start()
        except StartError as e:
            return self.ledger.transition(key, StepStatus.ERROR, str(e))

        self._supervisor = asyncio.create_task(self._supervise())
        return self.ledger.transition(key, StepStatus.SUCCESS)

    async def _supervise(self) -> None:
        try:
            exit_code = await self.devserver.wait_exited()
        except StreamReadError as e:
            self.ledger.add_or_update(
                self._key("stream"),
                "Lost development server output",
                StepStatus.ERROR,
                str(e),
            )
            return

        if exit_code is None:
            return

        status = StepStatus.SUCCESS if exit_code == 0 else StepStatus.ERROR
        self.ledger.add_or_update(
            self._key("exit"),
            f"Development server exited with code {exit_code}",
            status,
        )

    async def stop(self) -> ExecutionStep:
        if not self.can_stop:
            raise NotRunningError("No development server is running")

        kill_error = await self.devserver.stop()
        self.output.clear()

        key = self._key("stop")
        if kill_error is not None:
            return self.ledger.add_or_update(
                key,
                "Stopped development server",
                StepStatus.ERROR,
                f"Kill request failed: {kill_error}",
            )
        return self.ledger.add_or_update(key, "Stopped development server", StepStatus.SUCCESS)

    def refresh_preview(self) -> bool:
        return self.preview.refresh()

    def preview_loaded(self, generation: int | None = None) -> bool:
        return self.preview.mark_loaded(generation)

    def preview_failed(self, generation: int | None = None) -> bool:
        return self.preview.mark_failed(generation)

    async def close(self) -> None:
        """Stop background work. The sandbox itself is left to its provider."""
        tasks = [task for task in (self._preview_task, self._supervisor) if task is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self.server_running:
            await self.devserver.stop()
        self.log.info("session.closed")
